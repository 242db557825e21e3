"""Async manager for lazily-fetched, cacheable resources."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from pyresource._summary import summarize_for_log
from pyresource.config import ManagerConfig
from pyresource.exceptions import (
    ResourceAlreadyRegisteredError,
    ResourceManagerClosedError,
    ResourceNotRegisteredError,
)
from pyresource.models import CacheEntry, CacheOptions, ConsumeOptions, Resource, Source
from pyresource.storage import JsonFileStorage, MemoryStorage, Storage

_logger = logging.getLogger(__name__)

Consumer = Callable[[Resource[Any]], None]


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


def _failure_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _same_consumer(item: Consumer, consumer: Consumer) -> bool:
    if item is consumer:
        return True
    item_self = getattr(item, "__self__", None)
    if item_self is None or item_self is not getattr(consumer, "__self__", None):
        return False
    # Bound methods are recreated on every attribute access.
    item_func = getattr(item, "__func__", None)
    if item_func is not None:
        return item_func is getattr(consumer, "__func__", None)
    return getattr(item, "__name__", None) == getattr(consumer, "__name__", None)


class ResourceManager:
    """Registry of resources, their producers and their consumers.

    Usage::

        async with ResourceManager() as manager:
            await manager.register_resource("user", Source(fetch_user))
            manager.subscribe("user", render)
            await manager.consume("user", props={"id": 42})

    All state changes go through a single update path which stores the
    new :class:`~pyresource.models.Resource`, notifies consumers in
    subscription order and, for fresh loaded data of a cached source,
    writes the cache and (re)schedules the TTL reload.
    """

    def __init__(
        self,
        config: ManagerConfig | None = None,
        *,
        storage: Storage | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._config = config or ManagerConfig()
        if storage is None:
            if self._config.storage_path:
                storage = JsonFileStorage(self._config.storage_path)
            else:
                storage = MemoryStorage()
        self._storage = storage
        self._clock = clock or _now_ms
        self._resources: dict[str, Resource[Any]] = {}
        self._producers: dict[str, Source[Any]] = {}
        self._consumers: dict[str, list[Consumer]] = {}
        self._requests: dict[str, ConsumeOptions] = {}
        self._reload_timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._background_errors: list[BaseException] = []
        self._closed = False

    @property
    def config(self) -> ManagerConfig:
        return self._config

    @property
    def storage(self) -> Storage:
        """Default storage for sources that do not bring their own."""
        return self._storage

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ResourceManager:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        """Cancel pending reloads and wait for in-flight cache writes.

        A closed manager cannot be reused: reloads cancelled mid-fetch leave
        their resource in the loading state, so ``register_resource`` and
        ``consume`` raise :class:`ResourceManagerClosedError` afterwards.
        """
        self._closed = True
        for handle in self._reload_timers.values():
            handle.cancel()
        self._reload_timers.clear()
        writes: list[asyncio.Task[None]] = []
        for task in list(self._tasks):
            if task.get_name().startswith("pyresource-write:"):
                writes.append(task)
            else:
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._background_errors.clear()
        _logger.debug("Resource manager closed (%d pending writes flushed)", len(writes))

    async def drain(self) -> None:
        """Wait until no background task (cache write, reload) is outstanding.

        Tasks spawned while draining are awaited as well. The first failure
        collected since the previous drain is re-raised.
        """
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._background_errors:
            error = self._background_errors[0]
            self._background_errors.clear()
            raise error

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_open(self) -> None:
        if self._closed:
            raise ResourceManagerClosedError("Resource manager is closed")

    def _cache_key(self, resource_id: str) -> str:
        return f"{self._config.key_prefix}{resource_id}"

    def _spawn(self, coro: Coroutine[Any, Any, None], *, name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self._background_errors.append(exc)
        _logger.error("Background task %s failed", task.get_name(), exc_info=exc)

    def _log_transition(self, resource_id: str, resource: Resource[Any]) -> None:
        if not _logger.isEnabledFor(logging.DEBUG):
            return
        if self._config.log_payloads:
            _logger.debug(
                "Resource %s -> %s cache=%s data=%r",
                resource_id,
                resource.status,
                resource.cache,
                summarize_for_log(resource.data, max_string=self._config.log_max_string),
            )
        else:
            _logger.debug("Resource %s -> %s cache=%s", resource_id, resource.status, resource.cache)

    def _update_resource(self, resource_id: str, resource: Resource[Any]) -> None:
        """Apply *resource* as the new state of *resource_id*."""
        current = self._resources.get(resource_id)
        # Cached snapshots never replace data that was fetched live.
        if current is not None and current.loaded and resource.cache:
            _logger.debug("Dropping cached value for %s: already loaded", resource_id)
            return

        self._resources[resource_id] = resource
        self._log_transition(resource_id, resource)

        for consumer in list(self._consumers.get(resource_id, ())):
            try:
                consumer(resource)
            except Exception:
                _logger.warning("Consumer %r of %s failed", consumer, resource_id, exc_info=True)

        producer = self._producers[resource_id]
        if resource.cache or not resource.loaded or producer.cache is None:
            return
        self._persist(resource_id, producer.cache, resource)
        if producer.cache.ttl_ms:
            self._schedule_reload(resource_id, producer.cache.ttl_ms)

    def _persist(self, resource_id: str, cache: CacheOptions, resource: Resource[Any]) -> None:
        store = cache.storage if cache.storage is not None else self._storage
        key = self._cache_key(resource_id)
        entry = CacheEntry(resource=resource, timestamp=self._clock())
        self._spawn(store.set(key, entry), name=f"pyresource-write:{key}")

    def _schedule_reload(self, resource_id: str, ttl_ms: float) -> None:
        previous = self._reload_timers.pop(resource_id, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._reload_timers[resource_id] = loop.call_later(ttl_ms / 1000.0, self._fire_reload, resource_id)
        _logger.debug("Scheduled reload of %s in %.0f ms", resource_id, ttl_ms)

    def _fire_reload(self, resource_id: str) -> None:
        self._reload_timers.pop(resource_id, None)
        self._spawn(self.consume(resource_id, reload=True), name=f"pyresource-reload:{resource_id}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def register_resource(self, resource_id: str, source: Source[Any]) -> None:
        """Register the producer of *resource_id* and prime it from cache.

        With a cache policy, a stored entry is applied as a cache-origin
        resource when the source has no TTL or when the entry is *older*
        than the TTL. Otherwise a ``consume`` issued before registration
        is replayed in the background.
        """
        self._require_open()
        if resource_id in self._producers:
            raise ResourceAlreadyRegisteredError(resource_id)
        self._producers[resource_id] = source
        self._resources[resource_id] = Resource()

        cache = source.cache
        if cache is None:
            return

        store = cache.storage if cache.storage is not None else self._storage
        try:
            entry = await store.get(self._cache_key(resource_id))
        except BaseException:
            # A failed read leaves the id unregistered so the caller can retry.
            if self._producers.get(resource_id) is source:
                del self._producers[resource_id]
                self._resources.pop(resource_id, None)
            raise
        if entry is not None:
            passed_ms = self._clock() - entry.timestamp
            # Applied when elapsed time exceeds the TTL, not while it is fresh.
            if not cache.ttl_ms or passed_ms > cache.ttl_ms:
                self._update_resource(
                    resource_id,
                    Resource(data=entry.resource.data, loaded=True, cache=True),
                )
                return

        request = self._requests.get(resource_id)
        if request is not None:
            _logger.debug("Replaying pending request for %s", resource_id)
            self._spawn(
                self.consume(resource_id, props=request.props, reload=request.reload),
                name=f"pyresource-replay:{resource_id}",
            )

    def subscribe(self, resource_id: str, consumer: Consumer) -> None:
        """Add *consumer* and deliver the current state if registered."""
        self._consumers.setdefault(resource_id, []).append(consumer)
        resource = self._resources.get(resource_id)
        if resource is not None:
            consumer(resource)

    def unsubscribe(self, resource_id: str, consumer: Consumer) -> None:
        """Remove every occurrence of *consumer* for *resource_id*."""
        consumers = self._consumers.get(resource_id)
        if consumers is None:
            return
        self._consumers[resource_id] = [item for item in consumers if not _same_consumer(item, consumer)]

    async def consume(self, resource_id: str, *, props: Any = None, reload: bool = False) -> None:
        """Fetch *resource_id* unless it is loading or already loaded.

        Raises
        ------
        ResourceNotRegisteredError
            No producer was registered for *resource_id*. Fetch failures
            are never raised; they end up in ``Resource.error``.
        ResourceManagerClosedError
            The manager was closed with :meth:`aclose`.
        """
        self._require_open()
        self._requests[resource_id] = ConsumeOptions(props=props, reload=reload)

        producer = self._producers.get(resource_id)
        resource = self._resources.get(resource_id)
        if producer is None or resource is None:
            raise ResourceNotRegisteredError(resource_id)
        if resource.loading:
            _logger.debug("Skipping consume of %s: already loading", resource_id)
            return
        if resource.loaded and not reload:
            return

        resource = resource.model_copy(update={"loading": True})
        self._update_resource(resource_id, resource)
        try:
            data = await producer.fetch(props, resource)
        except Exception as exc:
            _logger.debug("Fetch of %s failed", resource_id, exc_info=True)
            self._update_resource(resource_id, Resource(error=_failure_message(exc)))
            return
        self._update_resource(resource_id, Resource(data=data, loaded=True))

    def get(self, resource_id: str) -> Resource[Any] | None:
        return self._resources.get(resource_id)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._producers

