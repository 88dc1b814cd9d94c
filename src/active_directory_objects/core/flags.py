"""Bit flags stored in Active Directory integer attributes."""

from enum import IntEnum, IntFlag
from typing import FrozenSet, Optional


class UserAccountControl(IntFlag):
    """Bits of the userAccountControl attribute."""

    SCRIPT = 0x0001
    ACCOUNTDISABLE = 0x0002
    HOMEDIR_REQUIRED = 0x0008
    LOCKOUT = 0x0010
    PASSWD_NOTREQD = 0x0020
    PASSWD_CANT_CHANGE = 0x0040
    ENCRYPTED_TEXT_PWD_ALLOWED = 0x0080
    TEMP_DUPLICATE_ACCOUNT = 0x0100
    NORMAL_ACCOUNT = 0x0200
    INTERDOMAIN_TRUST_ACCOUNT = 0x0800
    WORKSTATION_TRUST_ACCOUNT = 0x1000
    SERVER_TRUST_ACCOUNT = 0x2000
    DONT_EXPIRE_PASSWORD = 0x10000
    MNS_LOGON_ACCOUNT = 0x20000
    SMARTCARD_REQUIRED = 0x40000
    TRUSTED_FOR_DELEGATION = 0x80000
    NOT_DELEGATED = 0x100000
    USE_DES_KEY_ONLY = 0x200000
    DONT_REQ_PREAUTH = 0x400000
    PASSWORD_EXPIRED = 0x800000
    TRUSTED_TO_AUTH_FOR_DELEGATION = 0x1000000
    PARTIAL_SECRETS_ACCOUNT = 0x4000000


def decode_user_account_control(value: Optional[int]) -> FrozenSet[UserAccountControl]:
    """Split a userAccountControl value into its named flags."""
    if value is None:
        return frozenset()
    return frozenset(flag for flag in UserAccountControl if value & flag == flag)


def has_flag(value: Optional[int], flag: int) -> bool:
    """Check a single bit of a nullable integer attribute."""
    if value is None:
        return False
    return value & flag == flag


class GroupTypeFlag(IntFlag):
    """Bits of the groupType attribute."""

    BUILTIN_LOCAL = 0x00000001
    GLOBAL = 0x00000002
    DOMAIN_LOCAL = 0x00000004
    UNIVERSAL = 0x00000008
    APP_BASIC = 0x00000010
    APP_QUERY = 0x00000020
    SECURITY_ENABLED = 0x80000000


class GroupType(IntEnum):
    """groupType values for creating groups, as AD stores them (signed 32 bit)."""

    GLOBAL_DISTRIBUTION = 0x00000002
    DOMAIN_LOCAL_DISTRIBUTION = 0x00000004
    UNIVERSAL_DISTRIBUTION = 0x00000008
    GLOBAL_SECURITY = -2147483646
    DOMAIN_LOCAL_SECURITY = -2147483644
    UNIVERSAL_SECURITY = -2147483640


def decode_group_type(value: Optional[int]) -> FrozenSet[GroupTypeFlag]:
    """Split a groupType value into its named flags."""
    if value is None:
        return frozenset()
    unsigned = value & 0xFFFFFFFF
    return frozenset(flag for flag in GroupTypeFlag if unsigned & flag == flag)
