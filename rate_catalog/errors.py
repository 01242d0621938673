"""
Error taxonomy for the rate catalog.

  - ``ValidationError``      - malformed observation or request; surfaced to
                               the caller synchronously, never retried.
  - ``NotFoundError``        - operation targets a record/alert id that does
                               not exist.
  - ``UpstreamUnavailable``  - AI collaborator unreachable or returned
                               malformed output; recovered locally.
  - ``NotificationFailure``  - outbound notification failed; logged and
                               swallowed by ``dispatch_safely()``.
  - ``PersistenceError``     - store-layer failure (connection loss, write
                               conflict); surfaced, not retried.

``ValidationError`` here is unrelated to ``pydantic.ValidationError``; the
normalizer translates the latter into the former.
"""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for all rate catalog errors."""


class ValidationError(CatalogError, ValueError):
    """An observation or request failed validation."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(CatalogError, LookupError):
    """The targeted record or alert does not exist."""

    def __init__(self, kind: str, identifier: int | str) -> None:
        super().__init__(f"{kind} {identifier!r} not found.")
        self.kind = kind
        self.identifier = identifier


class UpstreamUnavailable(CatalogError):
    """An AI collaborator could not be reached or returned unusable output."""


class NotificationFailure(CatalogError):
    """The notification collaborator failed to deliver a message."""


class PersistenceError(CatalogError):
    """The record store failed to complete an operation."""
