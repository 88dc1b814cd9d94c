"""Core functionality for Active Directory objects."""

from .account import AccountHandle
from .attributes import AttributeCollection
from .directory import ActiveDirectory
from .directory_object import ADObject, Attribute
from .exceptions import (
    DirectoryError,
    DirectoryConnectionError,
    DirectorySearchError,
    DirectoryModifyError,
    DirectoryValidationError,
)
from .flags import GroupType, GroupTypeFlag, UserAccountControl
from .ldap_manager import LDAPManager
from .logging import setup_logging
from .query import QueryCache, QueryConfig, SearchScope
from .traversal import traverse_membership

__all__ = [
    "AccountHandle",
    "AttributeCollection",
    "ActiveDirectory",
    "ADObject",
    "Attribute",
    "DirectoryError",
    "DirectoryConnectionError",
    "DirectorySearchError",
    "DirectoryModifyError",
    "DirectoryValidationError",
    "GroupType",
    "GroupTypeFlag",
    "UserAccountControl",
    "LDAPManager",
    "setup_logging",
    "QueryCache",
    "QueryConfig",
    "SearchScope",
    "traverse_membership",
]
