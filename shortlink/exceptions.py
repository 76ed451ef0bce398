"""Exceptions raised by the shortlink core.

Propagation policy:
    - The read path only ever surfaces LinkNotFoundError, or
      StoreUnavailableError when the store cannot be read on a cache miss.
    - Cache failures are absorbed inside CacheLayer; CacheUnavailableError
      is raised by CacheLayer.ping() for health reporting only.
    - BatchFlushFailedError never leaves the aggregator.

Classes:
    ShortLinkError:
        Base class for all application-specific errors.

    LinkNotFoundError:
        The link is absent or expired. Callers cannot tell the two apart.

    LinkAlreadyExistsError:
        A link with the same short code or alias already exists.

    InvalidLinkError:
        A create request failed business validation (reserved alias, past expiry).

    CacheUnavailableError:
        The cache backend is unreachable.

    StoreUnavailableError:
        The relational store failed (connection issues, timeouts, aborted transactions).

    BatchFlushFailedError:
        A click batch could not be committed after all retry attempts.

Example:
    >>> from shortlink.exceptions import LinkNotFoundError
    >>> raise LinkNotFoundError("abc123")
    Traceback (most recent call last):
        ...
    shortlink.exceptions.LinkNotFoundError: abc123
"""


class ShortLinkError(Exception):
    """Base exception for all application-specific errors."""

    error_code = "app:shortlink_error"


class LinkNotFoundError(ShortLinkError):
    """Raised when a link is absent or expired."""

    error_code = "link:not_found"


class LinkAlreadyExistsError(ShortLinkError):
    """Raised when a short code or alias is already taken."""

    error_code = "link:already_exists"


class InvalidLinkError(ShortLinkError):
    """Raised when a create request is rejected by business rules."""

    error_code = "link:invalid"


class CacheUnavailableError(ShortLinkError):
    """Raised when the cache backend cannot be reached."""

    error_code = "infra:cache_unavailable"


class StoreUnavailableError(ShortLinkError):
    """Raised when the relational store fails.

    e.g. connection issues, timeouts, aborted transactions, etc.
    """

    error_code = "infra:store_unavailable"


class BatchFlushFailedError(ShortLinkError):
    """Raised when a click batch exhausts its retry attempts."""

    error_code = "analytics:batch_flush_failed"

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts
