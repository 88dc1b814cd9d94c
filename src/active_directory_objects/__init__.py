"""Query, cache and modify Active Directory objects over LDAP."""

from .config import Config, load_config
from .core import (
    ActiveDirectory,
    ADObject,
    AttributeCollection,
    DirectoryError,
    GroupType,
    QueryConfig,
    SearchScope,
    UserAccountControl,
    setup_logging,
)

__version__ = "1.0.0"

__all__ = [
    "Config",
    "load_config",
    "ActiveDirectory",
    "ADObject",
    "AttributeCollection",
    "DirectoryError",
    "GroupType",
    "QueryConfig",
    "SearchScope",
    "UserAccountControl",
    "setup_logging",
]
