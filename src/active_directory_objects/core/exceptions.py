"""Errors raised by the directory layer."""

from typing import Optional


class DirectoryError(Exception):
    """Base class for directory errors."""


class DirectoryConnectionError(DirectoryError):
    """The directory server could not be resolved, reached or bound to."""


class DirectorySearchError(DirectoryError):
    """A search was rejected or failed while paging."""

    def __init__(self, message: str, search_filter: Optional[str] = None, base_dn: Optional[str] = None):
        super().__init__(message)
        self.search_filter = search_filter
        self.base_dn = base_dn


class DirectoryModifyError(DirectoryError):
    """An add, delete, move or attribute write was rejected."""

    def __init__(self, message: str, distinguished_name: Optional[str] = None, attribute: Optional[str] = None):
        super().__init__(message)
        self.distinguished_name = distinguished_name
        self.attribute = attribute

    def __str__(self) -> str:
        text = super().__str__()
        context = []
        if self.distinguished_name:
            context.append(f"dn={self.distinguished_name}")
        if self.attribute:
            context.append(f"attribute={self.attribute}")
        if context:
            text += f" ({', '.join(context)})"
        return text


class DirectoryValidationError(DirectoryError, ValueError):
    """A local precondition failed; nothing was sent to the directory."""
