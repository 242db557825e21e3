"""Resource state and producer models.

:class:`Resource` is the per-id state every consumer receives. It is a
frozen pydantic model: transitions build a new instance (``model_copy``)
rather than mutating the stored one, so a consumer holding a reference
never sees it change underneath.

:class:`Source` and :class:`CacheOptions` are plain frozen dataclasses
because they carry callables and borrowed storage handles, not data.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from pyresource.exceptions import ResourceConfigError

if TYPE_CHECKING:
    from pyresource.storage import Storage

T = TypeVar("T")


class ResourceStatus(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERRORED = "errored"


class Resource(BaseModel, Generic[T]):
    """Tracked state of one resource id."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    cache: bool = Field(default=False, description="True if data was restored from cache storage")
    loading: bool = False
    loaded: bool = False
    error: str | None = None
    data: T | None = None

    @property
    def status(self) -> ResourceStatus:
        if self.loading:
            return ResourceStatus.LOADING
        if self.loaded:
            return ResourceStatus.LOADED
        if self.error is not None:
            return ResourceStatus.ERRORED
        return ResourceStatus.IDLE


class ConsumeOptions(BaseModel):
    """Arguments of the most recent ``consume`` call for an id."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    props: Any = None
    reload: bool = False


class CacheEntry(BaseModel):
    """Persisted snapshot of a loaded resource."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource: Resource
    timestamp: int = Field(..., description="Wall-clock epoch milliseconds of the write")


@dataclasses.dataclass(frozen=True)
class CacheOptions:
    """Cache policy of a producer.

    Parameters
    ----------
    storage : Storage or None
        Storage to persist into. Borrowed, never closed by the manager.
        Defaults to the manager's storage.
    ttl_ms : float or None
        Milliseconds after a successful fetch before a reload is
        scheduled. ``None`` or ``0`` disables the reload.
    """

    storage: Storage | None = None
    ttl_ms: float | None = None

    def __post_init__(self) -> None:
        if self.ttl_ms is not None and self.ttl_ms < 0:
            raise ResourceConfigError(f"ttl_ms must be >= 0, got {self.ttl_ms}")


FetchFunction = Callable[[Any, Resource[Any]], Awaitable[T]]
"""Producer callable: ``await fetch(props, current_resource)``."""


@dataclasses.dataclass(frozen=True)
class Source(Generic[T]):
    """A registered producer: fetch function plus optional cache policy."""

    fetch: FetchFunction[T]
    cache: CacheOptions | None = None
