"""Error taxonomy shared by the memory core and the tool boundary.

Core functions raise these; the tool layer renders them with their prefix so
an agent reading the response can tell the failure classes apart.
"""

from __future__ import annotations


class StrataError(Exception):
    """Base class for all memory-store errors."""

    prefix = "Error: "

    def render(self) -> str:
        return f"{self.prefix}{self}"


class NotInitializedError(StrataError):
    """No memory scope applies to the requested path."""

    prefix = "Error (not initialized): "


class InvalidInputError(StrataError):
    """Caller input rejected before any I/O happened."""

    prefix = "Error (invalid input): "

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class MalformedContentError(StrataError):
    """A memory file exists but could not be parsed structurally."""

    prefix = "Error (malformed content): "


# OSError is left as-is in the core; the tool layer renders it with this prefix.
IO_ERROR_PREFIX = "Error (io): "
