"""Account-management view of a user or computer entry."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional, Tuple

from .attributes import AttributeCollection, FILETIME_EPOCH
from .flags import UserAccountControl, has_flag

if TYPE_CHECKING:
    from .ldap_manager import LDAPManager

# constructed attributes are only returned when asked for by name
ACCOUNT_ATTRIBUTES: Tuple[str, ...] = (
    "userAccountControl",
    "msDS-User-Account-Control-Computed",
    "msDS-UserPasswordExpiryTimeComputed",
    "lockoutTime",
    "pwdLastSet",
)


class AccountHandle:
    """
    Lockout, disabled and password-expiry state of one account.

    Built from a base-scope read of the account attributes, including the
    server-computed ones. The handle is a snapshot; writes go straight to
    the directory and do not update it.
    """

    def __init__(self, manager: "LDAPManager", attributes: AttributeCollection):
        self._manager = manager
        self.attributes = attributes

    @property
    def distinguished_name(self) -> str:
        return self.attributes.distinguished_name

    @property
    def user_account_control(self) -> Optional[int]:
        return self.attributes.get_int("userAccountControl")

    @property
    def is_disabled(self) -> bool:
        return has_flag(self.user_account_control, UserAccountControl.ACCOUNTDISABLE)

    @property
    def is_locked(self) -> bool:
        computed = self.attributes.get_int("msDS-User-Account-Control-Computed")
        if has_flag(computed, UserAccountControl.LOCKOUT):
            return True
        lockout_time = self.attributes.get_datetime("lockoutTime")
        return lockout_time is not None and lockout_time > FILETIME_EPOCH

    @property
    def password_expiration_date(self) -> Optional[datetime]:
        expiry = self.attributes.get_datetime("msDS-UserPasswordExpiryTimeComputed")
        # zero: must change at next logon; max: never expires
        if expiry is None or expiry <= FILETIME_EPOCH or expiry.year >= 9999:
            return None
        return expiry

    def set_disabled(self, disabled: bool) -> bool:
        current = self.user_account_control
        if current is None:
            return False
        if disabled:
            value = current | UserAccountControl.ACCOUNTDISABLE
        else:
            value = current & ~int(UserAccountControl.ACCOUNTDISABLE)
        return self._manager.attribute_save(self.distinguished_name, "userAccountControl", [str(int(value))])

    def unlock(self) -> bool:
        return self._manager.attribute_save(self.distinguished_name, "lockoutTime", ["0"])

    def expire_password_now(self) -> bool:
        return self._manager.attribute_save(self.distinguished_name, "pwdLastSet", ["0"])

    def set_password(self, new_password: str) -> bool:
        """Set a new password and clear any lockout."""
        if not self._manager.modify_password(self.distinguished_name, new_password):
            return False
        return self.unlock()
