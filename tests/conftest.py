"""Shared fixtures: an in-memory stand-in for the LDAP transport."""

import re
import uuid
from fnmatch import fnmatchcase
from unittest.mock import Mock

import pytest

from active_directory_objects.core.attributes import AttributeCollection
from active_directory_objects.core.directory import ActiveDirectory
from active_directory_objects.core.query import QueryConfig

BASE_DN = "DC=test,DC=local"
USERS_OU = "OU=Staff,DC=test,DC=local"
PERSON_CATEGORY = "CN=Person,CN=Schema,CN=Configuration,DC=test,DC=local"
GROUP_CATEGORY = "CN=Group,CN=Schema,CN=Configuration,DC=test,DC=local"

_SIMPLE_FILTER = re.compile(r"^\(([A-Za-z0-9-]+)=(.*)\)$")
_ESCAPED = re.compile(rb"\\([0-9a-fA-F]{2})")


def _unescape(value: str) -> bytes:
    return _ESCAPED.sub(lambda m: bytes([int(m.group(1), 16)]), value.encode("utf-8"))


class FakeTransport:
    """
    Directory held in a dict, answering single-attribute equality filters.

    Mirrors the public surface of LDAPManager that ActiveDirectory and
    ADObject use, and counts searches so caching can be asserted.
    """

    def __init__(self):
        self.entries = {}
        self.searches = []
        self.writes = []
        self.account_handles = {}
        self.ad_config = Mock(domain="test.local")
        self.default_naming_context = BASE_DN
        self.query_config = QueryConfig(base_dn=BASE_DN)
        self.disconnect = Mock()

    @property
    def search_count(self):
        return len(self.searches)

    def add_entry(self, dn, guid=None, **attributes):
        guid = guid or uuid.uuid4()
        attributes.setdefault("distinguishedName", dn)
        self.entries[dn.casefold()] = [dn, guid, attributes]
        return guid

    def _collection(self, dn, guid, attributes):
        return AttributeCollection(
            dn,
            dict(attributes, objectGUID="{%s}" % guid),
            {"objectGUID": [guid.bytes_le]}
        )

    @staticmethod
    def _matches(guid, attributes, name, value):
        if name.lower() == "objectguid":
            return _unescape(value) == guid.bytes_le
        wanted = _unescape(value).decode("utf-8").casefold()
        for key, values in attributes.items():
            if key.lower() != name.lower():
                continue
            values = values if isinstance(values, list) else [values]
            return any(fnmatchcase(str(v).casefold(), wanted) for v in values)
        return False

    def entry_get(self, search_filter, config):
        self.searches.append((search_filter, config))
        match = _SIMPLE_FILTER.match(search_filter or "")
        if match is None:
            raise AssertionError(f"FakeTransport cannot evaluate {search_filter!r}")
        name, value = match.groups()
        return [
            self._collection(dn, guid, attributes)
            for dn, guid, attributes in list(self.entries.values())
            if self._matches(guid, attributes, name, value)
        ]

    def entry_add(self, dn, attributes):
        values = {}
        for name, value in attributes:
            values.setdefault(name, []).append(value)
        self.writes.append(("add", dn, values))
        self.add_entry(dn, **values)
        return True

    def entry_delete(self, dn):
        self.writes.append(("delete", dn))
        return self.entries.pop(dn.casefold(), None) is not None

    def entry_move_rename(self, dn, new_parent_dn, new_common_name):
        self.writes.append(("move", dn, new_parent_dn, new_common_name))
        _, guid, attributes = self.entries.pop(dn.casefold())
        new_dn = f"CN={new_common_name},{new_parent_dn}"
        attributes["distinguishedName"] = new_dn
        attributes["cn"] = new_common_name
        self.entries[new_dn.casefold()] = [new_dn, guid, attributes]
        return True

    def attribute_save(self, dn, attribute_name, values):
        values = list(values)
        self.writes.append(("modify", dn, attribute_name, values))
        attributes = self.entries[dn.casefold()][2]
        for key in [k for k in attributes if k.lower() == attribute_name.lower()]:
            del attributes[key]
        if values:
            attributes[attribute_name] = values
        return True

    def modify_password(self, dn, new_password):
        self.writes.append(("password", dn))
        return True

    def get_account_handle(self, dn):
        return self.account_handles.get(dn.casefold())

    def get_servers_for_site(self, domain, site):
        return []


@pytest.fixture
def transport():
    """In-memory directory with the domain root and one OU."""
    fake = FakeTransport()
    fake.add_entry(
        BASE_DN,
        objectClass=["top", "domain", "domainDNS"],
        canonicalName=["test.local/"],
        **{"msDS-PrincipalName": ["TEST\\"]}
    )
    fake.add_entry(USERS_OU, objectClass=["top", "organizationalUnit"], ou=["Staff"])
    return fake


@pytest.fixture
def directory(transport):
    """Session on top of the in-memory transport."""
    return ActiveDirectory(ldap_manager=transport)


@pytest.fixture
def add_user(transport):
    """Factory adding a user entry below the Staff OU."""
    def _add(cn, **attributes):
        dn = f"CN={cn},{USERS_OU}"
        attributes.setdefault("objectClass", ["top", "person", "organizationalPerson", "user"])
        attributes.setdefault("objectCategory", PERSON_CATEGORY)
        attributes.setdefault("sAMAccountName", cn.lower())
        attributes.setdefault("cn", cn)
        attributes.setdefault("userAccountControl", 512)
        transport.add_entry(dn, **attributes)
        return dn
    return _add


@pytest.fixture
def add_group(transport):
    """Factory adding a group entry below the Staff OU."""
    def _add(cn, members=(), **attributes):
        dn = f"CN={cn},{USERS_OU}"
        attributes.setdefault("objectClass", ["top", "group"])
        attributes.setdefault("objectCategory", GROUP_CATEGORY)
        attributes.setdefault("sAMAccountName", cn)
        attributes.setdefault("cn", cn)
        attributes.setdefault("groupType", -2147483646)
        if members:
            attributes["member"] = list(members)
        transport.add_entry(dn, **attributes)
        return dn
    return _add
