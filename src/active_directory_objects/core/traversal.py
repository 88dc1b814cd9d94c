"""Breadth-first traversal of group membership edges."""

import logging
from collections import deque
from typing import TYPE_CHECKING, Any, Deque, Dict, List

if TYPE_CHECKING:
    from .directory import ActiveDirectory
    from .directory_object import ADObject

logger = logging.getLogger("active-directory-objects.traversal")

MEMBER = "member"
MEMBER_OF = "memberOf"


def traverse_membership(directory: "ActiveDirectory",
                        start: "ADObject",
                        attribute_name: str = MEMBER,
                        recursive: bool = True,
                        use_cache: bool = True) -> List["ADObject"]:
    """
    Resolve the objects reachable from ``start`` over a membership attribute.

    Each edge value is a distinguished name looked up through the session.
    Objects are expanded at most once, keyed by objectGUID (or DN when the
    GUID is unknown), so nested cycles terminate. The start object counts as
    already expanded: a cycle back to it adds it to the result without
    searching its edges again. Edges that no longer resolve are skipped.

    Args:
        directory: Session used to resolve distinguished names
        start: Object whose edges are followed
        attribute_name: "member" for members, "memberOf" for groups
        recursive: Follow edges transitively; otherwise only direct ones
        use_cache: Let each lookup be answered from the query cache

    Returns:
        Reached objects in discovery order; ``start`` is included only if a
        cycle leads back to it
    """
    visited: Dict[Any, "ADObject"] = {}
    expanded = {start.identity_key}
    queue: Deque["ADObject"] = deque([start])

    while queue:
        current = queue.popleft()
        for dn in current.attributes.get_strings(attribute_name):
            target = directory.get_object_by_distinguished_name(dn, use_cache=use_cache)
            if target is None:
                logger.debug(f"Skipping unresolvable {attribute_name} edge {dn} of {current.distinguished_name}")
                continue

            key = target.identity_key
            if key in visited:
                continue
            visited[key] = target
            if recursive and key not in expanded:
                expanded.add(key)
                queue.append(target)

    logger.debug(f"{attribute_name} traversal from {start.distinguished_name} reached {len(visited)} object(s)")
    return list(visited.values())
