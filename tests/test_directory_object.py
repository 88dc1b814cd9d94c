"""Tests for directory objects."""

import uuid
from unittest.mock import Mock

import pytest

from active_directory_objects.core.attributes import AttributeCollection
from active_directory_objects.core.directory_object import ADObject, SKIPPED
from active_directory_objects.core.exceptions import DirectorySearchError, DirectoryValidationError
from active_directory_objects.core.flags import GroupTypeFlag, UserAccountControl

from conftest import USERS_OU

PASSWORD_EXPIRED = int(UserAccountControl.PASSWORD_EXPIRED)
DONT_EXPIRE = int(UserAccountControl.DONT_EXPIRE_PASSWORD)
RECENT_FILETIME = 133500000000000000  # early 2024


def make_object(dn, guid=None, **attributes):
    raw = {"objectGUID": [guid.bytes_le]} if guid else None
    return ADObject(Mock(), AttributeCollection(dn, attributes, raw))


class TestIdentity:
    """Test equality, hashing and ordering."""

    def test_equal_by_guid_despite_dn(self):
        guid = uuid.uuid4()
        before = make_object("CN=Old,DC=test,DC=local", guid)
        after = make_object("CN=New,DC=test,DC=local", guid)
        assert before == after
        assert hash(before) == hash(after)

    def test_different_guid_same_dn(self):
        first = make_object("CN=A,DC=test,DC=local", uuid.uuid4())
        second = make_object("CN=A,DC=test,DC=local", uuid.uuid4())
        assert first != second

    def test_dn_fallback_is_case_insensitive(self):
        first = make_object("CN=A,DC=test,DC=local")
        second = make_object("cn=a,dc=TEST,dc=local")
        assert first == second
        assert len({first, second}) == 1

    def test_ordering_by_dn(self):
        objects = [make_object("CN=b,DC=x"), make_object("CN=A,DC=x"), make_object("CN=c,DC=x")]
        assert [o.distinguished_name for o in sorted(objects)] == ["CN=A,DC=x", "CN=b,DC=x", "CN=c,DC=x"]

    def test_requires_directory_and_attributes(self):
        with pytest.raises(DirectoryValidationError):
            ADObject(None, AttributeCollection("CN=A,DC=x"))
        with pytest.raises(DirectoryValidationError):
            ADObject(Mock(), None)

    def test_create_skips_missing_entries(self):
        collections = [AttributeCollection("CN=A,DC=x"), None, AttributeCollection("CN=B,DC=x")]
        assert len(ADObject.create(Mock(), collections)) == 2


class TestFields:
    """Test typed accessors and derived fields."""

    def test_typed_accessors(self):
        obj = make_object(
            "CN=Alice,OU=Staff,DC=test,DC=local",
            givenName=["Alice"],
            sn=["Smith"],
            logonCount=["7"],
            isCriticalSystemObject=["TRUE"],
            lastLogon=["0"],
            lastLogonTimestamp=[RECENT_FILETIME],
        )
        assert obj.first_name == "Alice"
        assert obj.last_name == "Smith"
        assert obj.logon_count == 7
        assert obj.is_critical_system_object is True
        assert obj.last_logon is None
        assert obj.last_logon_timestamp.year == 2024
        assert obj.description is None

    def test_organizational_unit_with_escaped_comma(self):
        obj = make_object("CN=Doe\\, John,OU=Staff,DC=test,DC=local")
        assert obj.organizational_unit == "OU=Staff,DC=test,DC=local"

    def test_organizational_unit_with_trailing_escaped_backslash(self):
        obj = make_object("CN=back\\\\,OU=Staff,DC=t,DC=l")
        assert obj.organizational_unit == "OU=Staff,DC=t,DC=l"

    def test_organizational_unit_of_root(self):
        assert make_object("DC=local").organizational_unit is None

    def test_object_kind(self):
        user = make_object(
            "CN=Alice,DC=x",
            objectClass=["top", "person", "organizationalPerson", "user"],
            objectCategory=["CN=Person,CN=Schema,CN=Configuration,DC=x"],
        )
        computer = make_object(
            "CN=PC1,DC=x",
            objectClass=["top", "person", "organizationalPerson", "user", "computer"],
            objectCategory=["CN=Computer,CN=Schema,CN=Configuration,DC=x"],
        )
        assert user.is_user and not user.is_computer and not user.is_group
        assert computer.is_computer and not computer.is_user

    def test_group_type_flags(self):
        group = make_object("CN=G,DC=x", groupType=[-2147483644])
        assert group.group_type_flags == frozenset({GroupTypeFlag.DOMAIN_LOCAL, GroupTypeFlag.SECURITY_ENABLED})

    def test_user_account_controls(self):
        obj = make_object("CN=A,DC=x", userAccountControl=[514])
        assert obj.user_account_controls == frozenset({
            UserAccountControl.NORMAL_ACCOUNT,
            UserAccountControl.ACCOUNTDISABLE,
        })
        assert obj.has_user_account_control(UserAccountControl.ACCOUNTDISABLE)

    def test_fields_registry(self):
        fields = ADObject.fields()
        assert fields["sam_account_name"].ldap_name == "sAMAccountName"
        assert fields["sam_account_name"].writable
        assert not fields["object_sid"].writable

    @pytest.mark.parametrize("computed, uac, pwd_last_set, expected", [
        (PASSWORD_EXPIRED, 512 | DONT_EXPIRE, None, True),
        (0, 512 | DONT_EXPIRE, 0, False),
        (0, 512, 0, True),
        (None, 512, 0, True),
        (0, 512, RECENT_FILETIME, False),
        (0, 512, None, False),
    ])
    def test_password_expired(self, computed, uac, pwd_last_set, expected):
        attributes = {"userAccountControl": [uac]}
        if computed is not None:
            attributes["msDS-User-Account-Control-Computed"] = [computed]
        if pwd_last_set is not None:
            attributes["pwdLastSet"] = [pwd_last_set]
        assert make_object("CN=A,DC=x", **attributes).password_expired is expected

    def test_properties_skip_expensive(self):
        directory = Mock()
        obj = ADObject(directory, AttributeCollection("CN=A,DC=x", {"userAccountControl": [512]}))

        properties = obj.get_properties()

        assert properties["is_locked"] == SKIPPED
        assert properties["password_expiration_date"] == SKIPPED
        assert properties["password_expired"] is False
        assert properties["distinguished_name"] == "CN=A,DC=x"
        directory.ldap.get_account_handle.assert_not_called()


class TestWrites:
    """Test writes through the session transport."""

    def test_setter_saves_and_refreshes(self, directory, transport, add_user):
        obj = directory.get_object_by_distinguished_name(add_user("Alice"))

        obj.description = "  Sales lead  "

        assert transport.writes[-1] == ("modify", obj.distinguished_name, "description", ["Sales lead"])
        assert obj.description == "Sales lead"

    def test_empty_value_clears_attribute(self, directory, transport, add_user):
        obj = directory.get_object_by_distinguished_name(add_user("Alice", description=["x"]))

        obj.description = " "

        assert transport.writes[-1][3] == []
        assert obj.description is None

    def test_alias_setter(self, directory, transport, add_user):
        obj = directory.get_object_by_distinguished_name(add_user("Alice"))
        obj.office = "HQ"
        assert transport.writes[-1][2] == "physicalDeliveryOfficeName"
        assert obj.office == "HQ"

    def test_read_only_attribute(self, directory, add_user):
        obj = directory.get_object_by_distinguished_name(add_user("Alice"))
        with pytest.raises(AttributeError):
            obj.cn = "Bob"

    def test_add_user_account_control(self, directory, transport, add_user):
        obj = directory.get_object_by_distinguished_name(add_user("Alice"))

        assert obj.add_user_account_control(UserAccountControl.ACCOUNTDISABLE) is True
        assert transport.writes[-1][3] == ["514"]
        assert obj.has_user_account_control(UserAccountControl.ACCOUNTDISABLE)
        assert obj.add_user_account_control(UserAccountControl.ACCOUNTDISABLE) is False

    def test_remove_absent_user_account_control(self, directory, transport, add_user):
        obj = directory.get_object_by_distinguished_name(add_user("Alice"))
        assert obj.remove_user_account_control(UserAccountControl.ACCOUNTDISABLE) is False
        assert transport.writes == []

    def test_refresh_vanished_object(self, directory, transport, add_user):
        dn = add_user("Alice")
        obj = directory.get_object_by_distinguished_name(dn)
        del transport.entries[dn.casefold()]

        assert obj.refresh() is False
        assert obj.is_dangling
        assert obj.cn == "Alice"

    def test_password_not_expired_setter(self, directory, transport, add_user):
        obj = directory.get_object_by_distinguished_name(add_user("Alice"))
        obj.password_expired = False
        assert transport.writes[-1][2:] == ("pwdLastSet", ["-1"])

    def test_password_expired_setter_uses_handle(self, directory, transport, add_user):
        dn = add_user("Alice")
        handle = Mock()
        transport.account_handles[dn.casefold()] = handle
        obj = directory.get_object_by_distinguished_name(dn)

        obj.password_expired = True

        handle.expire_password_now.assert_called_once()

    def test_password_expired_setter_without_handle(self, directory, transport, add_user):
        obj = directory.get_object_by_distinguished_name(add_user("Alice"))
        obj.password_expired = True
        assert transport.writes[-1][2:] == ("pwdLastSet", ["0"])


class TestAccountState:
    """Test the extended account properties."""

    def test_without_handle(self, directory, add_user):
        obj = directory.get_object_by_distinguished_name(add_user("Alice"))
        assert obj.is_locked is None
        assert obj.is_disabled is False
        assert obj.password_expiration_date is None

    def test_locked_account_reported_disabled(self, directory, transport, add_user):
        dn = add_user("Alice")
        transport.account_handles[dn.casefold()] = Mock(is_locked=True)
        obj = directory.get_object_by_distinguished_name(dn)
        assert obj.is_locked is True
        assert obj.is_disabled is True

    def test_handle_lookup_error_is_tolerated(self, directory, add_user):
        obj = directory.get_object_by_distinguished_name(add_user("Alice"))
        directory.ldap.get_account_handle = Mock(side_effect=DirectorySearchError("denied"))
        assert obj.is_locked is None

    def test_handle_is_memoised_until_refresh(self, directory, transport, add_user):
        dn = add_user("Alice")
        obj = directory.get_object_by_distinguished_name(dn)
        transport.get_account_handle = Mock(return_value=None)

        obj.is_locked
        obj.password_expiration_date
        assert transport.get_account_handle.call_count == 1

        obj.refresh()
        obj.is_locked
        assert transport.get_account_handle.call_count == 2

    def test_enable_unlocks(self, directory, transport, add_user):
        dn = add_user("Alice", userAccountControl=[514])
        handle = Mock()
        transport.account_handles[dn.casefold()] = handle
        obj = directory.get_object_by_distinguished_name(dn)

        obj.is_disabled = False

        assert ("modify", dn, "userAccountControl", ["512"]) in transport.writes
        handle.unlock.assert_called_once()

    def test_set_password(self, directory, transport, add_user):
        dn = add_user("Alice")
        handle = Mock()
        handle.set_password.return_value = True
        transport.account_handles[dn.casefold()] = handle
        obj = directory.get_object_by_distinguished_name(dn)

        assert obj.set_password("N3w-Secret!") is True
        handle.set_password.assert_called_once_with("N3w-Secret!")

    def test_set_empty_password(self, directory, add_user):
        obj = directory.get_object_by_distinguished_name(add_user("Alice"))
        with pytest.raises(DirectoryValidationError):
            obj.set_password("")


class TestMembership:
    """Test member writes."""

    def test_add_member(self, directory, transport, add_user, add_group):
        alice = add_user("Alice")
        bob = add_user("Bob")
        group = directory.get_object_by_distinguished_name(add_group("Sales", members=[alice]))

        assert group.add_member(bob) is True
        assert transport.writes[-1] == ("modify", group.distinguished_name, "member", [alice, bob])
        assert group.member == [alice, bob]

    def test_add_member_twice(self, directory, add_user, add_group):
        bob = add_user("Bob")
        group = directory.get_object_by_distinguished_name(add_group("Sales"))

        assert group.add_member(bob) is True
        assert group.add_member(bob) is False
        assert group.member == [bob]

    def test_add_existing_member_is_noop(self, directory, transport, add_user, add_group):
        alice = add_user("Alice")
        group = directory.get_object_by_distinguished_name(add_group("Sales", members=[alice]))

        assert group.add_member(alice.upper()) is False
        assert transport.writes == []

    def test_add_member_object_refreshes_member(self, directory, transport, add_user, add_group):
        alice = directory.get_object_by_distinguished_name(add_user("Alice"))
        group = directory.get_object_by_distinguished_name(add_group("Sales"))
        before = transport.search_count

        assert group.add_member(alice) is True
        # one refresh for the group, one for the member
        assert transport.search_count == before + 2

    def test_remove_member(self, directory, transport, add_user, add_group):
        alice = add_user("Alice")
        bob = add_user("Bob")
        group = directory.get_object_by_distinguished_name(add_group("Sales", members=[alice, bob]))

        assert group.remove_member(alice.lower()) is True
        assert group.member == [bob]

    def test_remove_absent_member(self, directory, transport, add_user, add_group):
        group = directory.get_object_by_distinguished_name(add_group("Sales"))
        assert group.remove_member(f"CN=Nobody,{USERS_OU}") is False
        assert transport.writes == []

    def test_none_member(self, directory, add_group):
        group = directory.get_object_by_distinguished_name(add_group("Sales"))
        assert group.add_member(None) is False
        assert group.remove_member(None) is False

    def test_blank_member_rejected(self, directory, add_group):
        group = directory.get_object_by_distinguished_name(add_group("Sales"))
        with pytest.raises(DirectoryValidationError):
            group.add_member("  ")
