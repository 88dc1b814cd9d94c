"""
Directory objects.

An ADObject wraps one AttributeCollection. Business fields are computed from
the raw attributes on every access; only the decoded userAccountControl
flags and the extended account handle are memoised, and both are cleared by
refresh().

Every write replaces one attribute's full value list through the transport
and then re-fetches the entry by objectGUID, bypassing the query cache.
"""

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Union

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import parse_dn

from .account import AccountHandle
from .attributes import AttributeCollection, FILETIME_EPOCH
from .exceptions import DirectoryError, DirectoryValidationError
from .flags import (
    GroupType,
    GroupTypeFlag,
    UserAccountControl,
    decode_group_type,
    decode_user_account_control,
    has_flag,
)
from .traversal import MEMBER, MEMBER_OF, traverse_membership

if TYPE_CHECKING:
    from .directory import ActiveDirectory

logger = logging.getLogger("active-directory-objects.object")

# pwdLastSet earlier than this means the password was never set
PASSWORD_NEVER_SET_BEFORE = datetime(1800, 1, 1, tzinfo=timezone.utc)

SKIPPED = "[SKIPPED]"

_UNSET = object()

Parser = Callable[[AttributeCollection, str], Any]


def _trim_or_none(value: Any) -> Optional[Any]:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _nonzero_datetime(attributes: AttributeCollection, name: str) -> Optional[datetime]:
    """Timestamp where the FILETIME zero value means 'never'."""
    value = attributes.get_datetime(name)
    if value is None or value <= FILETIME_EPOCH:
        return None
    return value


class Attribute:
    """
    Typed accessor for one directory attribute.

    Reading parses the current snapshot; assigning to a writable attribute
    saves it to the directory and refreshes the object.
    """

    def __init__(self, ldap_name: str, parser: Parser = AttributeCollection.get_string, writable: bool = False):
        self.ldap_name = ldap_name
        self.parser = parser
        self.writable = writable
        self.name = ldap_name

    def __set_name__(self, owner, name):
        self.name = name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self
        return self.parser(obj.attributes, self.ldap_name)

    def __set__(self, obj, value):
        if not self.writable:
            raise AttributeError(f"{self.name} is read-only")
        value = _trim_or_none(value)
        obj.attribute_save(self.ldap_name, [] if value is None else [value])


STRING = AttributeCollection.get_string
STRINGS = AttributeCollection.get_strings
INT = AttributeCollection.get_int
BOOL = AttributeCollection.get_bool
DATETIME = AttributeCollection.get_datetime
BYTES = AttributeCollection.get_bytes
BYTES_LIST = AttributeCollection.get_bytes_list


class ADObject:
    """A user, group, computer or any other entry of the directory."""

    EXPENSIVE_PROPERTIES: FrozenSet[str] = frozenset({
        "is_disabled",
        "is_locked",
        "password_expiration_date",
    })

    DERIVED_PROPERTIES = (
        "organizational_unit",
        "is_group",
        "is_user",
        "is_computer",
        "user_account_controls",
        "user_account_control_computed",
        "password_expired",
        "is_disabled",
        "is_locked",
        "password_expiration_date",
    )

    account_expires = Attribute("accountExpires", DATETIME)
    bad_password_time = Attribute("badPasswordTime", DATETIME)
    bad_pwd_count = Attribute("badPwdCount", INT)
    cn = Attribute("cn")
    comment = Attribute("comment", writable=True)
    company = Attribute("company", writable=True)
    country_code = Attribute("countryCode", writable=True)
    creation_time = Attribute("creationTime", DATETIME)
    dc = Attribute("dc")
    department = Attribute("department", writable=True)
    description = Attribute("description", writable=True)
    display_name = Attribute("displayName", writable=True)
    display_name_printable = Attribute("displayNamePrintable", writable=True)
    dns_host_name = Attribute("dNSHostName")
    dns_property = Attribute("dNSProperty", BYTES)
    dns_record = Attribute("dnsRecord", BYTES)
    dsa_signature = Attribute("dSASignature", BYTES)
    employee_number = Attribute("employeeNumber", writable=True)
    given_name = Attribute("givenName", writable=True)
    group_type = Attribute("groupType", INT)
    home_directory = Attribute("homeDirectory", writable=True)
    home_drive = Attribute("homeDrive", writable=True)
    home_mdb = Attribute("homeMDB")
    home_mta = Attribute("homeMTA")
    info = Attribute("info", writable=True)
    initials = Attribute("initials", writable=True)
    is_critical_system_object = Attribute("isCriticalSystemObject", BOOL)
    last_logon = Attribute("lastLogon", _nonzero_datetime)
    last_logon_timestamp = Attribute("lastLogonTimestamp", _nonzero_datetime)
    last_set_time = Attribute("lastSetTime", DATETIME)
    location = Attribute("location", writable=True)
    lockout_time = Attribute("lockoutTime", _nonzero_datetime)
    logon_count = Attribute("logonCount", INT)
    mail = Attribute("mail", writable=True)
    mail_nickname = Attribute("mailNickname", writable=True)
    managed_by = Attribute("managedBy", writable=True)
    managed_objects = Attribute("managedObjects", STRINGS)
    mastered_by = Attribute("masteredBy", STRINGS)
    max_pwd_age = Attribute("maxPwdAge", INT)
    member = Attribute("member", STRINGS)
    member_of = Attribute("memberOf", STRINGS)
    min_pwd_age = Attribute("minPwdAge", INT)
    min_pwd_length = Attribute("minPwdLength", INT)
    name = Attribute("name", writable=True)
    object_category = Attribute("objectCategory")
    object_class = Attribute("objectClass", STRINGS)
    object_sid = Attribute("objectSid", BYTES)
    object_version = Attribute("objectVersion", INT)
    operating_system = Attribute("operatingSystem")
    operating_system_hotfix = Attribute("operatingSystemHotfix")
    operating_system_service_pack = Attribute("operatingSystemServicePack")
    operating_system_version = Attribute("operatingSystemVersion")
    other_well_known_objects = Attribute("otherWellKnownObjects", STRINGS)
    ou = Attribute("ou")
    physical_delivery_office_name = Attribute("physicalDeliveryOfficeName", writable=True)
    primary_group_id = Attribute("primaryGroupID", INT)
    priority = Attribute("priority", INT)
    prior_set_time = Attribute("priorSetTime", DATETIME)
    profile_path = Attribute("profilePath", writable=True)
    protocol_settings = Attribute("protocolSettings", BYTES_LIST)
    proxy_addresses = Attribute("proxyAddresses", STRINGS)
    pwd_history_length = Attribute("pwdHistoryLength", INT)
    pwd_last_set = Attribute("pwdLastSet", DATETIME)
    pwd_properties = Attribute("pwdProperties", INT)
    revision = Attribute("revision", INT)
    sam_account_name = Attribute("sAMAccountName", writable=True)
    sam_account_type = Attribute("sAMAccountType", INT)
    script_path = Attribute("scriptPath", writable=True)
    security_identifier = Attribute("securityIdentifier", BYTES)
    server_name = Attribute("serverName")
    sn = Attribute("sn", writable=True)
    system_flags = Attribute("systemFlags", INT)
    target_address = Attribute("targetAddress", writable=True)
    telephone_number = Attribute("telephoneNumber", writable=True)
    unc_name = Attribute("uNCName", writable=True)
    url = Attribute("url", writable=True)
    user_account_control = Attribute("userAccountControl", INT)
    user_certificate = Attribute("userCertificate", BYTES_LIST)
    user_parameters = Attribute("userParameters", BYTES)
    user_principal_name = Attribute("userPrincipalName", writable=True)
    usn_changed = Attribute("uSNChanged", INT)
    usn_created = Attribute("uSNCreated", INT)
    version_number = Attribute("versionNumber", INT)
    well_known_objects = Attribute("wellKnownObjects", STRINGS)
    when_changed = Attribute("whenChanged", DATETIME)
    when_created = Attribute("whenCreated", DATETIME)
    www_home_page = Attribute("wWWHomePage", writable=True)

    def __init__(self, directory: "ActiveDirectory", attributes: AttributeCollection):
        if directory is None:
            raise DirectoryValidationError("directory is required")
        if attributes is None:
            raise DirectoryValidationError("attributes are required")
        self._directory = directory
        self.attributes = attributes
        self._dangling = False
        self._user_account_controls: Optional[FrozenSet[UserAccountControl]] = None
        self._account_handle: Any = _UNSET

    @classmethod
    def create(cls, directory: "ActiveDirectory", collections: Iterable[Optional[AttributeCollection]]) -> List["ADObject"]:
        return [cls(directory, attributes) for attributes in collections or [] if attributes is not None]

    @classmethod
    def fields(cls) -> Dict[str, Attribute]:
        """The typed attribute accessors of this class, by property name."""
        found: Dict[str, Attribute] = {}
        for klass in reversed(cls.__mro__):
            for key, value in vars(klass).items():
                if isinstance(value, Attribute):
                    found[key] = value
        return found

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def distinguished_name(self) -> str:
        return self.attributes.distinguished_name

    @property
    def object_guid(self):
        return self.attributes.object_guid

    @property
    def identity_key(self) -> Any:
        """objectGUID when known, otherwise the lower-cased DN."""
        guid = self.object_guid
        if guid is not None:
            return guid
        return self.distinguished_name.casefold()

    @property
    def is_dangling(self) -> bool:
        """True once a refresh found the entry gone from the directory."""
        return self._dangling

    def __eq__(self, other):
        if not isinstance(other, ADObject):
            return NotImplemented
        mine, theirs = self.object_guid, other.object_guid
        if mine is not None and theirs is not None:
            return mine == theirs
        return self.distinguished_name.casefold() == other.distinguished_name.casefold()

    def __hash__(self):
        # objectGUID when known, so a snapshot without it hashes apart from one
        # with it; session lookups always request objectGUID
        return hash(self.identity_key)

    def __lt__(self, other):
        if not isinstance(other, ADObject):
            return NotImplemented
        return self.distinguished_name.casefold() < other.distinguished_name.casefold()

    def __str__(self):
        return self.distinguished_name or self.cn or self.sam_account_name or str(self.object_guid)

    def __repr__(self):
        return f"<ADObject {self!s}>"

    # -------------------------------------------------------------------------
    # Aliases and derived fields
    # -------------------------------------------------------------------------

    @property
    def first_name(self) -> Optional[str]:
        return self.given_name

    @first_name.setter
    def first_name(self, value):
        self.given_name = value

    @property
    def last_name(self) -> Optional[str]:
        return self.sn

    @last_name.setter
    def last_name(self, value):
        self.sn = value

    @property
    def logon_name(self) -> Optional[str]:
        return self.user_principal_name

    @logon_name.setter
    def logon_name(self, value):
        self.user_principal_name = value

    @property
    def logon_name_pre_windows_2000(self) -> Optional[str]:
        return self.sam_account_name

    @logon_name_pre_windows_2000.setter
    def logon_name_pre_windows_2000(self, value):
        self.sam_account_name = value

    @property
    def office(self) -> Optional[str]:
        return self.physical_delivery_office_name

    @office.setter
    def office(self, value):
        self.physical_delivery_office_name = value

    @property
    def web_page(self) -> Optional[str]:
        return self.www_home_page

    @web_page.setter
    def web_page(self, value):
        self.www_home_page = value

    @property
    def login_script(self) -> Optional[str]:
        return self.script_path

    @login_script.setter
    def login_script(self, value):
        self.script_path = value

    @property
    def user_account_control_computed(self) -> Optional[int]:
        value = self.attributes.get_int("msDS-User-Account-Control-Computed")
        if value is None:
            value = self.attributes.get_int("ms-DS-User-Account-Control-Computed")
        return value

    @property
    def organizational_unit(self) -> Optional[str]:
        """Distinguished name of the container holding this object."""
        try:
            components = parse_dn(self.distinguished_name)
        except LDAPInvalidDnError:
            return None
        if len(components) < 2:
            return None
        return ",".join(f"{attr.strip()}={value}" for attr, value, _ in components[1:])

    @property
    def group_type_flags(self) -> FrozenSet[GroupTypeFlag]:
        return decode_group_type(self.group_type)

    @property
    def group_type_enum(self) -> Optional[GroupType]:
        value = self.group_type
        if value is None:
            return None
        try:
            return GroupType(value)
        except ValueError:
            return None

    def is_object_class(self, object_class: str) -> bool:
        wanted = object_class.casefold()
        return any(value.casefold() == wanted for value in self.object_class)

    def is_object_category(self, object_category: str) -> bool:
        category = self.object_category
        if category is None:
            return False
        try:
            components = parse_dn(category)
        except LDAPInvalidDnError:
            return category.casefold() == object_category.casefold()
        wanted = object_category.casefold()
        return any(value.casefold() == wanted for _, value, _ in components)

    @property
    def is_group(self) -> bool:
        return self.is_object_class("group")

    @property
    def is_user(self) -> bool:
        return self.is_object_class("user") and self.is_object_category("person")

    @property
    def is_computer(self) -> bool:
        return self.is_object_class("computer") and self.is_object_category("computer")

    # -------------------------------------------------------------------------
    # userAccountControl
    # -------------------------------------------------------------------------

    @property
    def user_account_controls(self) -> FrozenSet[UserAccountControl]:
        if self._user_account_controls is None:
            self._user_account_controls = decode_user_account_control(self.user_account_control)
        return self._user_account_controls

    def has_user_account_control(self, flag: UserAccountControl) -> bool:
        return flag in self.user_account_controls

    def add_user_account_control(self, flag: UserAccountControl) -> bool:
        """
        Set a flag in userAccountControl.

        Returns:
            False without writing if the attribute is missing or the flag is
            already set, otherwise the result of the save
        """
        current = self.user_account_control
        if current is None or self.has_user_account_control(flag):
            return False
        return self.attribute_save("userAccountControl", [str(int(current | flag))])

    def remove_user_account_control(self, flag: UserAccountControl) -> bool:
        """Clear a flag in userAccountControl. See add_user_account_control."""
        current = self.user_account_control
        if current is None or not self.has_user_account_control(flag):
            return False
        return self.attribute_save("userAccountControl", [str(int(current & ~int(flag)))])

    # -------------------------------------------------------------------------
    # Password and account state
    # -------------------------------------------------------------------------

    @property
    def password_expired(self) -> bool:
        # order matters: the computed bit wins over DONT_EXPIRE_PASSWORD
        if has_flag(self.user_account_control_computed, UserAccountControl.PASSWORD_EXPIRED):
            return True
        if has_flag(self.user_account_control, UserAccountControl.DONT_EXPIRE_PASSWORD):
            return False
        pwd_last_set = self.pwd_last_set
        if pwd_last_set is not None and pwd_last_set < PASSWORD_NEVER_SET_BEFORE:
            return True
        return False

    @password_expired.setter
    def password_expired(self, value: bool):
        if not value:
            self.attribute_save("pwdLastSet", ["-1"])
            return

        handle = self._get_account_handle()
        if handle is None:
            self.attribute_save("pwdLastSet", ["0"])
            return
        handle.expire_password_now()
        self.refresh()

    def _get_account_handle(self) -> Optional[AccountHandle]:
        if self._account_handle is _UNSET:
            try:
                self._account_handle = self._directory.ldap.get_account_handle(self.distinguished_name)
            except DirectoryError as e:
                logger.debug(f"Error retrieving account properties of {self}: {e}")
                self._account_handle = None
        return self._account_handle

    @property
    def is_locked(self) -> Optional[bool]:
        handle = self._get_account_handle()
        return None if handle is None else handle.is_locked

    @property
    def is_disabled(self) -> bool:
        if self.has_user_account_control(UserAccountControl.ACCOUNTDISABLE):
            return True
        return bool(self.is_locked)

    @is_disabled.setter
    def is_disabled(self, value: bool):
        if value:
            self.add_user_account_control(UserAccountControl.ACCOUNTDISABLE)
            return

        self.remove_user_account_control(UserAccountControl.ACCOUNTDISABLE)
        handle = self._get_account_handle()
        if handle is not None:
            handle.unlock()
            self.refresh()

    @property
    def password_expiration_date(self) -> Optional[datetime]:
        handle = self._get_account_handle()
        return None if handle is None else handle.password_expiration_date

    def set_password(self, new_password: str) -> bool:
        """Set the account password and clear any lockout."""
        if not new_password:
            raise DirectoryValidationError("new_password must not be empty")
        handle = self._get_account_handle()
        if handle is None:
            return False
        result = handle.set_password(new_password)
        self.refresh()
        return result

    # -------------------------------------------------------------------------
    # Writes and refresh
    # -------------------------------------------------------------------------

    def attribute_save(self, attribute_name: str, values: Union[Iterable[Any], None]) -> bool:
        """Replace all values of one attribute, then refresh this object."""
        if values is None:
            values = []
        elif isinstance(values, (str, bytes, int)):
            values = [values]
        result = self._directory.ldap.attribute_save(self.distinguished_name, attribute_name, list(values))
        self.refresh()
        return result

    def refresh(self) -> bool:
        """
        Re-read this entry from the directory, bypassing the cache.

        Returns:
            False if the entry no longer exists; the object then keeps its
            last snapshot and is_dangling becomes True
        """
        guid = self.object_guid
        if guid is not None:
            fresh = self._directory.get_object_by_object_guid(guid, use_cache=False)
        else:
            fresh = self._directory.get_object_by_distinguished_name(self.distinguished_name, use_cache=False)

        self._user_account_controls = None
        self._account_handle = _UNSET

        if fresh is None:
            logger.warning(f"Object vanished from the directory: {self.distinguished_name}")
            self._dangling = True
            return False

        self.attributes = fresh.attributes
        self._dangling = False
        return True

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def add_member(self, member: Union["ADObject", str, None]) -> bool:
        """
        Add a member to this group.

        Returns:
            False if the member is already present (case-insensitive)
        """
        if member is None:
            return False
        if isinstance(member, ADObject):
            result = self.add_member(member.distinguished_name)
            member.refresh()
            return result

        dn = _require_dn(member)
        values = []
        for existing in self.member:
            if existing.casefold() == dn.casefold():
                return False
            values.append(existing)
        values.append(dn)

        result = self._directory.ldap.attribute_save(self.distinguished_name, MEMBER, values)
        self.refresh()
        return result

    def remove_member(self, member: Union["ADObject", str, None]) -> bool:
        """
        Remove a member from this group.

        Returns:
            False if the member was not present (case-insensitive)
        """
        if member is None:
            return False
        if isinstance(member, ADObject):
            result = self.remove_member(member.distinguished_name)
            member.refresh()
            return result

        dn = _require_dn(member)
        values = []
        found = False
        for existing in self.member:
            if existing.casefold() == dn.casefold():
                found = True
            else:
                values.append(existing)
        if not found:
            return False

        result = self._directory.ldap.attribute_save(self.distinguished_name, MEMBER, values)
        self.refresh()
        return result

    def get_members(self, recursive: bool = True, use_cache: bool = True) -> List["ADObject"]:
        return traverse_membership(self._directory, self, MEMBER, recursive=recursive, use_cache=use_cache)

    def get_member_of(self, recursive: bool = True, use_cache: bool = True) -> List["ADObject"]:
        return traverse_membership(self._directory, self, MEMBER_OF, recursive=recursive, use_cache=use_cache)

    @property
    def member_objects(self) -> List["ADObject"]:
        return self.get_members(recursive=False)

    @property
    def member_objects_all(self) -> List["ADObject"]:
        return self.get_members(recursive=True)

    @property
    def member_of_objects(self) -> List["ADObject"]:
        return self.get_member_of(recursive=False)

    @property
    def member_of_objects_all(self) -> List["ADObject"]:
        return self.get_member_of(recursive=True)

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    def get_properties(self, include_expensive: bool = False) -> Dict[str, Any]:
        """
        All typed and derived fields by name.

        Expensive fields need an extra directory read per object and are
        reported as "[SKIPPED]" unless include_expensive is set.
        """
        properties: Dict[str, Any] = {
            "distinguished_name": self.distinguished_name,
            "object_guid": self.object_guid,
        }
        for name in self.fields():
            properties[name] = getattr(self, name)
        for name in self.DERIVED_PROPERTIES:
            if not include_expensive and name in self.EXPENSIVE_PROPERTIES:
                properties[name] = SKIPPED
            else:
                properties[name] = getattr(self, name)
        return properties


def _require_dn(value: str) -> str:
    dn = value.strip() if isinstance(value, str) else ""
    if not dn:
        raise DirectoryValidationError("distinguished name must not be empty")
    return dn
