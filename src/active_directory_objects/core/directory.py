"""Active Directory session.

Query and manipulate directory objects through one LDAP connection. Search
results are cached per (filter, query configuration) for the lifetime of the
session; writes never invalidate the cache, so pass ``use_cache=False`` when
fresh data is required.

Not thread-safe: one session per caller.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Union

import ldap3
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import escape_rdn

from ..config.models import Config, DEFAULT_FIRST_SITE_NAME
from .attributes import datetime_to_filetime, guid_to_filter_value
from .directory_object import ADObject
from .exceptions import DirectoryModifyError, DirectoryValidationError
from .flags import GroupType
from .ldap_manager import LDAPManager
from .query import QueryCache, QueryConfig, SearchScope

logger = logging.getLogger("active-directory-objects.directory")

USERS_FILTER = "(&(objectCategory=person)(objectClass=user))"
COMPUTERS_FILTER = "(&(objectCategory=computer)(objectClass=computer))"
GROUPS_FILTER = "(objectClass=group)"
EMPTY_GROUPS_FILTER = "(&(objectClass=group)(!(member=*)))"


def _require(value: Optional[str], name: str) -> str:
    value = value.strip() if isinstance(value, str) else ""
    if not value:
        raise DirectoryValidationError(f"{name} must not be empty")
    return value


def _filter_value(value: str, wildcards: bool) -> str:
    escaped = escape_filter_chars(value)
    if wildcards:
        escaped = escaped.replace("\\2a", "*")
    return escaped


def _with_object_guid(config: QueryConfig) -> QueryConfig:
    # objects are identified by objectGUID, so it is always requested
    names = {name.lower() for name in config.attributes}
    if ldap3.ALL_ATTRIBUTES in names or "objectguid" in names:
        return config
    return config.with_attributes(config.attributes + ("objectGUID",))


def _generalized_time(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y%m%d%H%M%S") + ".0Z"


class ActiveDirectory:
    """
    Query and manipulation of Active Directory objects.

    Either pass a Config, from which the LDAP transport is built, or an
    already constructed LDAPManager.
    """

    DEFAULT_FIRST_SITE_NAME = DEFAULT_FIRST_SITE_NAME

    # longest sAMAccountName AD accepts for a group
    GROUP_NAME_MAX_CHARS = 63

    # hard server-side limit of AD
    PAGE_SIZE = 1000

    # values of a multi-valued attribute per request; ldap3 fetches the rest by range
    MAX_NUM_MULTIVALUE_ATTRIBUTES = 1500

    def __init__(self,
                 config: Optional[Config] = None,
                 ldap_manager: Optional[LDAPManager] = None,
                 cache_capacity: Optional[int] = None):
        if ldap_manager is None:
            if config is None:
                raise DirectoryValidationError("Either config or ldap_manager is required")
            ldap_manager = LDAPManager(config.active_directory, config.security, config.performance)
        if config is not None and cache_capacity is None:
            cache_capacity = config.performance.cache_capacity

        self.config = config
        self.ldap = ldap_manager
        self.cache = QueryCache(cache_capacity)

    # -------------------------------------------------------------------------
    # Domain information
    # -------------------------------------------------------------------------

    @property
    def distinguished_name(self) -> Optional[str]:
        """Base distinguished name of the domain."""
        return self.ldap.default_naming_context

    def _domain_root_string(self, attribute_name: str) -> Optional[str]:
        dn = self.distinguished_name
        if not dn:
            return None
        config = QueryConfig(
            base_dn=dn,
            scope=SearchScope.BASE,
            attributes=(attribute_name,),
            page_size=self.PAGE_SIZE
        )
        entries = self.ldap.entry_get(f"(distinguishedName={_filter_value(dn, False)})", config)
        return entries[0].get_string(attribute_name) if entries else None

    @property
    def name(self) -> Optional[str]:
        """DNS name of the domain."""
        canonical_name = self._domain_root_string("canonicalName")
        return canonical_name.replace("/", "") if canonical_name else None

    @property
    def nt_name(self) -> Optional[str]:
        """NetBIOS name of the domain."""
        principal_name = self._domain_root_string("msDS-PrincipalName")
        return principal_name.replace("\\", "") if principal_name else None

    @property
    def administrators_group_dn(self) -> str:
        return f"CN=Administrators,CN=Builtin,{self.distinguished_name}"

    @property
    def domain_admins_group_dn(self) -> str:
        return f"CN=Domain Admins,CN=Users,{self.distinguished_name}"

    @property
    def domain_users_group_dn(self) -> str:
        return f"CN=Domain Users,CN=Users,{self.distinguished_name}"

    @property
    def enterprise_admins_group_dn(self) -> str:
        return f"CN=Enterprise Admins,CN=Users,{self.distinguished_name}"

    def append_distinguished_name(self, path_to_root: Optional[str]) -> Optional[str]:
        """
        Make a path relative to the domain root absolute.

        Returns:
            The absolute DN, the domain DN for a blank path, None for None
        """
        if path_to_root is None:
            return None
        if not path_to_root.strip():
            return self.distinguished_name
        return f"{path_to_root},{self.distinguished_name}"

    # -------------------------------------------------------------------------
    # Object lookup
    # -------------------------------------------------------------------------

    def get_objects(self,
                    search_filter: Optional[str],
                    query_config: Optional[QueryConfig] = None,
                    use_cache: bool = True) -> List[ADObject]:
        """
        Get all objects matching an LDAP filter.

        Args:
            search_filter: LDAP filter, None for every object under the base
            query_config: Search base, scope, attributes and page size;
                          defaults to the session's query configuration;
                          objectGUID is always requested
            use_cache: Answer from the query cache when possible. Fresh
                       results are always stored in the cache.

        Returns:
            Matching objects in server order
        """
        query_config = _with_object_guid(query_config or self.ldap.query_config)

        if use_cache:
            cached = self.cache.get(search_filter, query_config)
            if cached is not None:
                logger.debug(f"Using cache of [{len(cached)}] objects for query: {search_filter}")
                return cached

        collections = self.ldap.entry_get(search_filter, query_config)
        logger.debug(f"Query filter[{search_filter}] retrieved {len(collections)} objects")
        objects = ADObject.create(self, collections)
        self.cache.add(search_filter, objects, query_config)
        return list(objects)

    def get_objects_by_attribute(self,
                                 attribute_name: str,
                                 attribute_value: str,
                                 query_config: Optional[QueryConfig] = None,
                                 use_cache: bool = True,
                                 exact: bool = False) -> List[ADObject]:
        """
        Get objects whose attribute matches a value.

        The value may contain * wildcards unless ``exact`` is set; all other
        filter metacharacters are escaped.
        """
        attribute_name = _require(attribute_name, "attribute_name")
        attribute_value = _require(attribute_value, "attribute_value")
        search_filter = f"({attribute_name}={_filter_value(attribute_value, wildcards=not exact)})"
        return self.get_objects(search_filter, query_config=query_config, use_cache=use_cache)

    def get_object_by_distinguished_name(self,
                                         distinguished_name: str,
                                         query_config: Optional[QueryConfig] = None,
                                         use_cache: bool = True) -> Optional[ADObject]:
        objects = self.get_objects_by_attribute(
            "distinguishedName", distinguished_name,
            query_config=query_config, use_cache=use_cache, exact=True
        )
        return objects[0] if objects else None

    def get_object_by_sam_account_name(self,
                                       sam_account_name: str,
                                       query_config: Optional[QueryConfig] = None,
                                       use_cache: bool = True) -> Optional[ADObject]:
        objects = self.get_objects_by_attribute(
            "sAMAccountName", sam_account_name,
            query_config=query_config, use_cache=use_cache, exact=True
        )
        return objects[0] if objects else None

    def get_object_by_object_guid(self,
                                  object_guid: Union[uuid.UUID, str],
                                  query_config: Optional[QueryConfig] = None,
                                  use_cache: bool = True) -> Optional[ADObject]:
        if object_guid is None:
            raise DirectoryValidationError("object_guid must not be empty")
        try:
            value = guid_to_filter_value(object_guid)
        except ValueError as e:
            raise DirectoryValidationError(str(e)) from e
        objects = self.get_objects(f"(objectGUID={value})", query_config=query_config, use_cache=use_cache)
        return objects[0] if objects else None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_all(self, query_config: Optional[QueryConfig] = None, use_cache: bool = False) -> List[ADObject]:
        return self.get_objects(None, query_config=query_config, use_cache=use_cache)

    def get_users(self, query_config: Optional[QueryConfig] = None, use_cache: bool = False) -> List[ADObject]:
        return self.get_objects(USERS_FILTER, query_config=query_config, use_cache=use_cache)

    def get_users_by_modified(self,
                              start: datetime,
                              end: datetime,
                              query_config: Optional[QueryConfig] = None,
                              use_cache: bool = False) -> List[ADObject]:
        """Users whose whenChanged lies between start and end (inclusive)."""
        search_filter = (
            f"(&{USERS_FILTER}"
            f"(whenChanged>={_generalized_time(start)})"
            f"(whenChanged<={_generalized_time(end)}))"
        )
        return self.get_objects(search_filter, query_config=query_config, use_cache=use_cache)

    def get_users_by_last_logon_timestamp(self,
                                          start: datetime,
                                          end: datetime,
                                          query_config: Optional[QueryConfig] = None,
                                          use_cache: bool = False) -> List[ADObject]:
        """Users whose lastLogonTimestamp lies between start and end (inclusive)."""
        search_filter = (
            f"(&{USERS_FILTER}"
            f"(lastLogonTimestamp>={datetime_to_filetime(start)})"
            f"(lastLogonTimestamp<={datetime_to_filetime(end)}))"
        )
        return self.get_objects(search_filter, query_config=query_config, use_cache=use_cache)

    def get_users_without_last_logon_timestamp(self,
                                               query_config: Optional[QueryConfig] = None,
                                               use_cache: bool = False) -> List[ADObject]:
        search_filter = f"(&{USERS_FILTER}(!(lastLogonTimestamp=*)))"
        return self.get_objects(search_filter, query_config=query_config, use_cache=use_cache)

    def get_computers(self, query_config: Optional[QueryConfig] = None, use_cache: bool = False) -> List[ADObject]:
        return self.get_objects(COMPUTERS_FILTER, query_config=query_config, use_cache=use_cache)

    def get_groups(self, query_config: Optional[QueryConfig] = None, use_cache: bool = False) -> List[ADObject]:
        return self.get_objects(GROUPS_FILTER, query_config=query_config, use_cache=use_cache)

    def get_empty_groups(self, query_config: Optional[QueryConfig] = None, use_cache: bool = False) -> List[ADObject]:
        return self.get_objects(EMPTY_GROUPS_FILTER, query_config=query_config, use_cache=use_cache)

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def _add_object(self, sam_account_name: str, ou_distinguished_name: str,
                    group_type: Optional[GroupType]) -> Optional[ADObject]:
        sam_account_name = _require(sam_account_name, "sam_account_name")
        ou_distinguished_name = _require(ou_distinguished_name, "ou_distinguished_name")

        if group_type is not None and not self.is_group_name_valid(sam_account_name):
            raise DirectoryValidationError(f"Not a valid group name: {sam_account_name!r}")

        if self.get_object_by_distinguished_name(ou_distinguished_name) is None:
            raise DirectoryModifyError("The OU does not exist in Active Directory", ou_distinguished_name)

        dn = f"CN={escape_rdn(sam_account_name)},{ou_distinguished_name}"
        attributes = [("sAMAccountName", sam_account_name)]

        if group_type is None:
            attributes.append(("objectClass", "user"))
            domain = self.name or self.ldap.ad_config.domain
            if domain:
                attributes.append(("userPrincipalName", f"{sam_account_name}@{domain}"))
        else:
            attributes.append(("objectClass", "group"))
            attributes.append(("groupType", str(int(group_type))))

        self.ldap.entry_add(dn, attributes)
        return self.get_object_by_distinguished_name(dn, use_cache=False)

    def add_user(self, sam_account_name: str, ou_distinguished_name: str) -> Optional[ADObject]:
        """Create a user in an OU and return it."""
        return self._add_object(sam_account_name, ou_distinguished_name, None)

    def add_group(self, sam_account_name: str, ou_distinguished_name: str,
                  group_type: GroupType = GroupType.GLOBAL_SECURITY) -> Optional[ADObject]:
        """
        Create a group in an OU and return it.

        Raises:
            DirectoryValidationError: If the name fails is_group_name_valid
        """
        return self._add_object(sam_account_name, ou_distinguished_name, GroupType(group_type))

    def delete_object(self, obj: Optional[ADObject]) -> bool:
        if obj is None:
            return False
        return self.ldap.entry_delete(obj.distinguished_name)

    def _move_rename(self, obj: ADObject, parent_dn: str, common_name: str) -> Optional[ADObject]:
        self.ldap.entry_move_rename(obj.distinguished_name, parent_dn, common_name)
        if obj.object_guid is None:
            return None
        return self.get_object_by_object_guid(obj.object_guid, use_cache=False)

    def move_object(self, obj: ADObject, parent_distinguished_name: str) -> Optional[ADObject]:
        """Move an object to a new parent, keeping its name."""
        if obj is None:
            raise DirectoryValidationError("obj must not be None")
        parent_distinguished_name = _require(parent_distinguished_name, "parent_distinguished_name")
        common_name = _require(obj.cn, "cn")
        return self._move_rename(obj, parent_distinguished_name, common_name)

    def rename_object(self, obj: ADObject, new_common_name: str) -> Optional[ADObject]:
        """Rename an object in place."""
        if obj is None:
            raise DirectoryValidationError("obj must not be None")
        new_common_name = _require(new_common_name, "new_common_name")
        parent = _require(obj.organizational_unit, "organizational_unit")
        return self._move_rename(obj, parent, new_common_name)

    # -------------------------------------------------------------------------
    # Static helpers
    # -------------------------------------------------------------------------

    def get_site_domain_controllers(self, domain_name: Optional[str], site_name: Optional[str]) -> List[str]:
        """Domain controllers of a site, empty if unknown."""
        domain_name = (domain_name or "").strip()
        site_name = (site_name or "").strip()
        if not domain_name or not site_name:
            return []
        return self.ldap.get_servers_for_site(domain_name, site_name)

    @staticmethod
    def is_group_name_valid(name: Optional[str]) -> bool:
        """
        Check a group name against AD's limits.

        At most 63 characters, no leading space or period, and at least one
        letter (a name of only digits, periods or spaces is rejected).
        """
        if not name:
            return False
        if len(name) > ActiveDirectory.GROUP_NAME_MAX_CHARS:
            return False
        if name[0] in (" ", "."):
            return False
        return any(c.isalpha() for c in name)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def clear_cache(self) -> None:
        self.cache.clear()

    def close(self) -> None:
        self.ldap.disconnect()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
