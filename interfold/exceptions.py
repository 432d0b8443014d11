"""Error kinds raised by the Interfold core.

``NotFoundError`` is used both for missing rows and for rows owned by another
user, so callers can never probe for the existence of foreign data.
"""

from __future__ import annotations


class InterfoldError(Exception):
    """Base class for all Interfold errors."""


class NotFoundError(InterfoldError, LookupError):
    """A referenced entity is absent or not owned by the caller."""

    def __init__(self, entity: str, message: str | None = None) -> None:
        self.entity = entity
        super().__init__(message or f"{entity} not found")


class ValidationError(InterfoldError, ValueError):
    """Input rejected before any write was attempted."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class ConstraintViolation(InterfoldError):
    """A storage-level constraint rejected a write."""


class OutlineIntegrityError(InterfoldError):
    """Outline rows cannot be assembled into a tree."""

    def __init__(self, message: str, node_ids: list[str] | None = None) -> None:
        self.node_ids = node_ids or []
        super().__init__(message)


class IdentityRequiredError(InterfoldError):
    """An operation was invoked without a caller identity."""
