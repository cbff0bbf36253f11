from __future__ import annotations

from typing import Any


class CwlError(Exception):
    """Base class for roster engine failures."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in sorted(self.context.items()))
        return f"{self.message} ({details})"


class ValidationError(CwlError):
    """Input is malformed or outside policy; the store is untouched."""


class NotFoundError(CwlError):
    """A referenced player, clan or list does not exist."""


class ConflictError(CwlError):
    """The mutation would break roster membership or ordering."""


class StoreError(CwlError):
    """The underlying storage failed; the operation was rolled back."""
