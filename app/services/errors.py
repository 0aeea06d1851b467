"""
Exceptions raised by the DRE engine and translated to HTTP responses by the routers.
"""


class DreError(Exception):
    """Base class for engine errors."""


class PeriodValidationError(DreError, ValueError):
    """A period request or override payload failed validation.

    ``errors`` is a list of ``{"field": ..., "message": ...}`` dicts so the API
    can return every problem at once instead of the first one.
    """

    def __init__(self, errors: list[dict]):
        self.errors = errors
        super().__init__("; ".join(f"{e['field']}: {e['message']}" for e in errors))


class PersistenceError(DreError):
    """The store could not complete a read or write for this request."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")
