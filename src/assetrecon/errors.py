"""Exception hierarchy for Assetrecon.

Callers distinguish three families of failure:

- Client faults (``ValidationError``, ``JobStateError``): the request was
  malformed or not allowed in the current state. Never retried.
- Missing resources (``NotFoundError``): the referenced job, row or asset
  does not exist.
- Server-side faults (``ProviderError`` and ``InfrastructureError``
  subclasses): an upstream dependency failed.

Only ``RetryableProviderError`` is retried internally, and only by callers
that own a retry loop (see ``assetrecon.intelligence.backoff``).
"""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base exception for all Assetrecon errors."""

    pass


class ValidationError(ReconciliationError):
    """Raised when caller input is malformed or missing required fields."""

    pass


class NotFoundError(ReconciliationError):
    """Raised when a referenced job, row, or catalog asset does not exist.

    Attributes:
        resource: Kind of resource that was looked up (e.g. "job", "row").
        identifier: Identifier that could not be resolved.
    """

    def __init__(self, resource: str, identifier: object) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource.capitalize()} {identifier} not found")


class JobStateError(ReconciliationError):
    """Raised when an operation is not allowed in the job's current status."""

    pass


class ProviderError(ReconciliationError):
    """Base exception for embedding provider failures.

    Attributes:
        status_code: HTTP status returned by the provider, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RetryableProviderError(ProviderError):
    """Transient provider failure (rate limit, 5xx, timeout, connection reset)."""

    pass


class FatalProviderError(ProviderError):
    """Non-retryable provider failure, or a retryable one after retries ran out."""

    pass


class InfrastructureError(ReconciliationError):
    """Raised when the backing store cannot be reached."""

    pass


class NotConnectedError(InfrastructureError):
    """Raised when a database handle is used before connect() or after disconnect()."""

    def __init__(self) -> None:
        super().__init__("Database is not connected")
