"""Error taxonomy shared by the core and adapters."""

from __future__ import annotations

from typing import Optional


class MidnightError(Exception):
    """Base class for every error raised on purpose by this project."""


class RemoteError(MidnightError):
    """Transient remote failure: network error, timeout or non-success status."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class AuthError(RemoteError):
    """Token exchange failed, or a request was still unauthorised after one re-auth."""


class EntityDecodeError(MidnightError):
    """A single remote entity could not be decoded."""


class StructuralError(MidnightError):
    """Expected structure was not found in scraped or user-provided text."""


class NoMatchError(StructuralError):
    """The expected marker or pattern is absent."""


class MalformedMatchError(StructuralError):
    """The marker or pattern is present but its content cannot be parsed."""


class MarkerNotFoundError(NoMatchError):
    """A scraped page no longer contains the markers we extract data from."""


class MalformedPayloadError(MalformedMatchError):
    """A scraped page contains the markers but the payload is not what we expect."""


class StoreUnavailableError(MidnightError):
    """The store kept failing after the bounded retries."""


class UnknownEntityError(MidnightError):
    """An operation referenced an entity the store does not track."""
