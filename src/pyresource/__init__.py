"""pyresource - Async manager for lazily-fetched, cacheable resources."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyresource")
except PackageNotFoundError:
    __version__ = "0+local"
from pyresource.config import ManagerConfig
from pyresource.exceptions import (
    ResourceAlreadyRegisteredError,
    ResourceConfigError,
    ResourceError,
    ResourceManagerClosedError,
    ResourceNotRegisteredError,
    ResourceStorageError,
)
from pyresource.manager import Consumer, ResourceManager
from pyresource.models import (
    CacheEntry,
    CacheOptions,
    ConsumeOptions,
    FetchFunction,
    Resource,
    ResourceStatus,
    Source,
)
from pyresource.storage import JsonFileStorage, MemoryStorage, Storage

__all__ = [
    "__version__",
    "CacheEntry",
    "CacheOptions",
    "ConsumeOptions",
    "Consumer",
    "FetchFunction",
    "JsonFileStorage",
    "ManagerConfig",
    "MemoryStorage",
    "Resource",
    "ResourceAlreadyRegisteredError",
    "ResourceConfigError",
    "ResourceError",
    "ResourceManager",
    "ResourceManagerClosedError",
    "ResourceNotRegisteredError",
    "ResourceStatus",
    "ResourceStorageError",
    "Source",
    "Storage",
]
