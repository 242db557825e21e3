"""Custom exception hierarchy for pyresource."""

from __future__ import annotations


class ResourceError(Exception):
    """Base exception for all pyresource errors."""


class ResourceConfigError(ResourceError):
    """Invalid or missing configuration."""


class ResourceNotRegisteredError(ResourceError):
    """A resource id was used before a producer was registered for it.

    This is a caller contract violation, not a fetch failure: it is raised
    to the caller and never recorded in ``Resource.error``.
    """

    def __init__(self, resource_id: str) -> None:
        self.resource_id = resource_id
        super().__init__(f"Resource not registered: {resource_id}")


class ResourceAlreadyRegisteredError(ResourceError):
    """A producer is already registered for this resource id."""

    def __init__(self, resource_id: str) -> None:
        self.resource_id = resource_id
        super().__init__(f"Resource already registered: {resource_id}")


class ResourceStorageError(ResourceError):
    """Cache storage read/write failure (IO error, corrupt document)."""

    def __init__(self, message: str, *, key: str = "") -> None:
        self.key = key
        super().__init__(message)


class ResourceManagerClosedError(ResourceError):
    """The manager was closed and no longer registers or fetches resources."""
