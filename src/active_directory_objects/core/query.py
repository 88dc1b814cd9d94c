"""Search configuration and the per-session query cache."""

from collections import OrderedDict
from dataclasses import dataclass, replace
from enum import Enum
from typing import Hashable, Iterable, List, Optional, Tuple

import ldap3

from .logging import get_logger

logger = get_logger("query-cache")


class SearchScope(str, Enum):
    """Search scope, valued with the matching ldap3 constant."""

    BASE = ldap3.BASE
    ONE_LEVEL = ldap3.LEVEL
    SUBTREE = ldap3.SUBTREE


@dataclass(frozen=True)
class QueryConfig:
    """
    Where and how to search.

    Instances are hashable and compare field by field, so they can be used
    as part of a cache key. Attribute names keep the order and case given.
    """

    base_dn: str
    scope: SearchScope = SearchScope.SUBTREE
    attributes: Tuple[str, ...] = (ldap3.ALL_ATTRIBUTES,)
    page_size: int = 1000

    def __post_init__(self):
        # lists are accepted for convenience but the key must be hashable
        if not isinstance(self.attributes, tuple):
            object.__setattr__(self, "attributes", tuple(self.attributes))

    def with_attributes(self, attributes: Iterable[str]) -> "QueryConfig":
        return replace(self, attributes=tuple(attributes))

    def with_base(self, base_dn: str, scope: Optional[SearchScope] = None) -> "QueryConfig":
        return replace(self, base_dn=base_dn, scope=scope or self.scope)


class QueryCache:
    """
    Results of previous searches keyed by (filter, query configuration).

    Keys are compared exactly: filters that differ only in case or spacing
    are different keys. Entries are never invalidated by writes made through
    the session; callers bypass the cache with ``use_cache=False`` when they
    need fresh data.

    With ``capacity`` set the cache evicts the least recently used key;
    without it every entry lives as long as the cache.
    """

    def __init__(self, capacity: Optional[int] = None):
        if capacity is not None and capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: "OrderedDict[Hashable, list]" = OrderedDict()

    @staticmethod
    def _key(search_filter: Optional[str], config: QueryConfig) -> Hashable:
        return (search_filter, config)

    def get(self, search_filter: Optional[str], config: QueryConfig) -> Optional[List]:
        """Return a copy of the cached list, or None on a miss."""
        key = self._key(search_filter, config)
        values = self._entries.get(key)
        if values is None:
            return None
        self._entries.move_to_end(key)
        return list(values)

    def add(self, search_filter: Optional[str], objects: Iterable, config: QueryConfig) -> None:
        key = self._key(search_filter, config)
        self._entries[key] = list(objects)
        self._entries.move_to_end(key)

        if self.capacity is not None:
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cached query {evicted[0]!r}")

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Tuple[Optional[str], QueryConfig]) -> bool:
        return self._key(*key) in self._entries
