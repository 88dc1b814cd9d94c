"""
Attribute collections for directory entries.

An AttributeCollection is a point-in-time snapshot of one entry as returned
by a search. It is never modified after construction; a refresh produces a
new collection.

Values are kept the way ldap3 formats them (str, int, bool, datetime, bytes)
together with the raw bytes the server sent, so typed accessors can parse
either form. Every accessor re-parses on each call and returns None (or an
empty list) when the attribute is missing or cannot be parsed.
"""

import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from ldap3.utils.conv import escape_bytes

# FILETIME counts 100ns intervals since this instant
FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)
FILETIME_NEVER = 0x7FFFFFFFFFFFFFFF

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


def filetime_to_datetime(filetime: int) -> datetime:
    """Convert a Windows FILETIME to an aware UTC datetime."""
    if filetime >= FILETIME_NEVER:
        return datetime.max.replace(tzinfo=timezone.utc)
    if filetime < 0:
        filetime = -filetime
    try:
        return FILETIME_EPOCH + timedelta(microseconds=filetime // 10)
    except OverflowError:
        return datetime.max.replace(tzinfo=timezone.utc)


def datetime_to_filetime(dt: datetime) -> int:
    """Convert a datetime (naive values are taken as UTC) to a Windows FILETIME."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - FILETIME_EPOCH
    return (delta.days * 86400 + delta.seconds) * 10000000 + delta.microseconds * 10


def parse_generalized_time(value: str) -> Optional[datetime]:
    """Parse LDAP generalized time such as ``20210131120000.0Z``."""
    digits = value.strip().rstrip("Zz").split(".")[0]
    try:
        return datetime.strptime(digits[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def guid_from_value(value: Any) -> Optional[uuid.UUID]:
    """Build a UUID from an objectGUID value (16 raw bytes or its string form)."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 16:
            return None
        # AD stores the first three fields little-endian
        return uuid.UUID(bytes_le=bytes(value))
    try:
        return uuid.UUID(str(value).strip().strip("{}"))
    except ValueError:
        return None


def guid_to_filter_value(guid: Union[uuid.UUID, str]) -> str:
    """Escape a GUID for use as the value of an ``(objectGUID=...)`` filter."""
    if not isinstance(guid, uuid.UUID):
        parsed = guid_from_value(guid)
        if parsed is None:
            raise ValueError(f"Not a GUID: {guid!r}")
        guid = parsed
    return escape_bytes(guid.bytes_le)


def _as_tuple(value: Any) -> Tuple[Any, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(v for v in value if v is not None)
    return (value,)


def _to_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(_to_text(value).strip())
    except ValueError:
        return None


def _to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = _to_text(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return None


def _to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, int) and not isinstance(value, bool):
        return filetime_to_datetime(value)
    text = _to_text(value).strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return filetime_to_datetime(int(text))
    return parse_generalized_time(text)


class AttributeCollection(Mapping):
    """
    Immutable snapshot of one directory entry.

    Behaves as a read-only, case-insensitive mapping from attribute name to
    the tuple of its values.
    """

    def __init__(self,
                 distinguished_name: str,
                 attributes: Optional[Dict[str, Any]] = None,
                 raw_attributes: Optional[Dict[str, Any]] = None):
        self._distinguished_name = distinguished_name
        self._values: Dict[str, Tuple[str, Tuple[Any, ...]]] = {}
        self._raw: Dict[str, Tuple[Any, ...]] = {}

        for name, value in (attributes or {}).items():
            self._values[name.lower()] = (name, _as_tuple(value))
        for name, value in (raw_attributes or {}).items():
            self._raw[name.lower()] = _as_tuple(value)

    @property
    def distinguished_name(self) -> str:
        return self._distinguished_name

    @property
    def object_guid(self) -> Optional[uuid.UUID]:
        raw = self._raw.get("objectguid")
        if raw:
            guid = guid_from_value(raw[0])
            if guid is not None:
                return guid
        values = self.get_values("objectGUID")
        return guid_from_value(values[0]) if values else None

    def __getitem__(self, name: str) -> Tuple[Any, ...]:
        return self._values[name.lower()][1]

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._values.values())

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._values

    def __repr__(self) -> str:
        return f"<AttributeCollection {self._distinguished_name!r} ({len(self)} attributes)>"

    def get_values(self, name: str) -> Tuple[Any, ...]:
        """All values of an attribute, empty when missing."""
        entry = self._values.get(name.lower())
        return entry[1] if entry else ()

    def get_raw_values(self, name: str) -> Tuple[Any, ...]:
        return self._raw.get(name.lower(), ())

    def _first(self, name: str) -> Any:
        values = self.get_values(name)
        return values[0] if values else None

    def get_string(self, name: str) -> Optional[str]:
        value = self._first(name)
        if value is None:
            return None
        if name.lower() == "objectguid":
            guid = self.object_guid
            return str(guid) if guid else None
        return _to_text(value)

    def get_strings(self, name: str) -> List[str]:
        return [_to_text(v) for v in self.get_values(name)]

    def _parse(self, name: str, parser) -> Any:
        value = self._first(name)
        if value is None:
            return None
        result = parser(value)
        if result is None:
            # ldap3 may format a value into something else (e.g. a timedelta)
            raw = self.get_raw_values(name)
            if raw:
                result = parser(raw[0])
        return result

    def get_int(self, name: str) -> Optional[int]:
        return self._parse(name, _to_int)

    def get_bool(self, name: str) -> Optional[bool]:
        return self._parse(name, _to_bool)

    def get_datetime(self, name: str) -> Optional[datetime]:
        return self._parse(name, _to_datetime)

    def get_bytes(self, name: str) -> Optional[bytes]:
        values = self.get_bytes_list(name)
        return values[0] if values else None

    def get_bytes_list(self, name: str) -> List[bytes]:
        raw = self.get_raw_values(name)
        if raw:
            return [bytes(v) for v in raw if isinstance(v, (bytes, bytearray))]
        return [bytes(v) for v in self.get_values(name) if isinstance(v, (bytes, bytearray))]
