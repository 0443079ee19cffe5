"""Typed failure outcomes raised by the link service, the stores and auth.

Routes translate these into HTTP status codes; nothing below the HTTP edge
raises ``HTTPException`` directly.

Error Taxonomy
==============
::
    ShortenerError
    ├─ ValidationError           400/422  malformed original URL
    ├─ DuplicateError            400      original URL already shortened
    ├─ NotFoundError             404      unknown id or short code
    ├─ ForbiddenError            403      delete by non-owner, non-admin
    ├─ UnauthenticatedError      401      no usable caller identity
    │  └─ UnknownOwnerError      401      token subject has no user row
    ├─ CredentialsError          400      registration policy / bad login
    ├─ AllocationExhaustedError  503      short code retries used up
    ├─ StorageUnavailableError   503      transient storage failure (retryable)
    └─ UniqueConflictError       (store internal, never reaches routes)
"""

__all__ = [
    "AllocationExhaustedError",
    "CredentialsError",
    "DuplicateError",
    "ForbiddenError",
    "NotFoundError",
    "ShortenerError",
    "StorageUnavailableError",
    "UnauthenticatedError",
    "UniqueConflictError",
    "UnknownOwnerError",
    "ValidationError",
]


class ShortenerError(Exception):
    """Base class for every expected failure of the shortener."""


class ValidationError(ShortenerError):
    pass


class DuplicateError(ShortenerError):
    def __init__(self, original_url: str) -> None:
        super().__init__(f"URL '{original_url}' already exists")
        self.original_url = original_url


class NotFoundError(ShortenerError):
    pass


class ForbiddenError(ShortenerError):
    pass


class UnauthenticatedError(ShortenerError):
    pass


class CredentialsError(ShortenerError):
    """Registration or login rejected; ``errors`` lists every reason."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(", ".join(errors))
        self.errors = errors


class AllocationExhaustedError(ShortenerError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Could not allocate a unique short code after {attempts} attempts")
        self.attempts = attempts


class StorageUnavailableError(ShortenerError):
    """Transient storage failure; the caller may retry."""


class UniqueConflictError(ShortenerError):
    """A store insert hit a uniqueness constraint on ``field``."""

    def __init__(self, field: str) -> None:
        super().__init__(f"Unique constraint violated on '{field}'")
        self.field = field


class UnknownOwnerError(UnauthenticatedError):
    """A link insert named an owner with no ``users`` row."""

    def __init__(self, owner_id: str) -> None:
        super().__init__(f"Owner '{owner_id}' does not exist")
        self.owner_id = owner_id
