from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import pytest

from pyresource.exceptions import ResourceManagerClosedError, ResourceNotRegisteredError
from pyresource.manager import ResourceManager
from pyresource.models import CacheOptions, Resource, ResourceStatus, Source


@dataclass
class FakeProducer:
    """Fetch function recording every call.

    Returns ``results`` in order (repeating the last one), raises ``error``
    when set, and blocks on ``release`` when given.
    """

    results: list[Any] = field(default_factory=lambda: ["X"])
    error: Exception | None = None
    delay: float = 0.0
    release: asyncio.Event | None = None
    calls: list[tuple[Any, Resource[Any]]] = field(default_factory=list)

    async def __call__(self, props: Any, resource: Resource[Any]) -> Any:
        self.calls.append((props, resource))
        if self.release is not None:
            await self.release.wait()
        elif self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        index = min(len(self.calls), len(self.results)) - 1
        return self.results[index]


def _shape(resource: Resource[Any]) -> tuple[bool, bool, Any, str | None]:
    return resource.loading, resource.loaded, resource.data, resource.error


@pytest.mark.asyncio
async def test_consume_notifies_loading_then_loaded() -> None:
    manager = ResourceManager()
    producer = FakeProducer(results=["X"], delay=0.01)
    await manager.register_resource("a", Source(producer))

    seen: list[Resource[Any]] = []
    manager.subscribe("a", seen.append)
    await manager.consume("a")

    assert [_shape(r) for r in seen] == [
        (False, False, None, None),
        (True, False, None, None),
        (False, True, "X", None),
    ]
    final = manager.get("a")
    assert final is not None
    assert final.cache is False
    assert final.status is ResourceStatus.LOADED


@pytest.mark.asyncio
async def test_fetch_receives_props_and_loading_resource() -> None:
    manager = ResourceManager()
    producer = FakeProducer()
    await manager.register_resource("a", Source(producer))

    await manager.consume("a", props={"id": 7})

    assert len(producer.calls) == 1
    props, resource = producer.calls[0]
    assert props == {"id": 7}
    assert resource.loading is True
    assert resource.loaded is False


@pytest.mark.asyncio
async def test_failed_fetch_records_error_message() -> None:
    manager = ResourceManager()
    await manager.register_resource("b", Source(FakeProducer(error=RuntimeError("boom"))))

    await manager.consume("b")

    resource = manager.get("b")
    assert resource is not None
    assert _shape(resource) == (False, False, None, "boom")
    assert resource.cache is False
    assert resource.status is ResourceStatus.ERRORED


@pytest.mark.asyncio
async def test_error_without_message_uses_exception_name() -> None:
    manager = ResourceManager()
    await manager.register_resource("b", Source(FakeProducer(error=LookupError())))

    await manager.consume("b")

    resource = manager.get("b")
    assert resource is not None
    assert resource.error == "LookupError"


@pytest.mark.asyncio
async def test_errored_resource_can_be_retried() -> None:
    manager = ResourceManager()
    producer = FakeProducer(results=["ok"], error=RuntimeError("boom"))
    await manager.register_resource("b", Source(producer))

    await manager.consume("b")
    producer.error = None
    await manager.consume("b")

    resource = manager.get("b")
    assert resource is not None
    assert _shape(resource) == (False, True, "ok", None)
    assert len(producer.calls) == 2


@pytest.mark.asyncio
async def test_concurrent_consume_while_loading_fetches_once() -> None:
    manager = ResourceManager()
    release = asyncio.Event()
    producer = FakeProducer(release=release)
    await manager.register_resource("a", Source(producer))

    first = asyncio.create_task(manager.consume("a"))
    await asyncio.sleep(0)
    current = manager.get("a")
    assert current is not None and current.loading

    # Reload requests are dropped too, not queued.
    second = asyncio.create_task(manager.consume("a", reload=True))
    await asyncio.sleep(0)
    release.set()
    await asyncio.gather(first, second)

    assert len(producer.calls) == 1


@pytest.mark.asyncio
async def test_consume_calls_started_together_collapse() -> None:
    manager = ResourceManager()
    producer = FakeProducer(delay=0.01)
    await manager.register_resource("a", Source(producer))

    await asyncio.gather(manager.consume("a"), manager.consume("a"), manager.consume("a"))

    assert len(producer.calls) == 1


@pytest.mark.asyncio
async def test_loaded_resource_is_not_refetched_without_reload() -> None:
    manager = ResourceManager()
    producer = FakeProducer(results=["v1", "v2"])
    await manager.register_resource("a", Source(producer))

    await manager.consume("a")
    await manager.consume("a")
    assert len(producer.calls) == 1

    await manager.consume("a", reload=True)
    assert len(producer.calls) == 2
    resource = manager.get("a")
    assert resource is not None
    assert resource.data == "v2"


@pytest.mark.asyncio
async def test_reload_keeps_previous_data_while_loading() -> None:
    manager = ResourceManager()
    release = asyncio.Event()
    producer = FakeProducer(results=["v1", "v2"])
    await manager.register_resource("a", Source(producer))
    await manager.consume("a")

    producer.release = release
    task = asyncio.create_task(manager.consume("a", reload=True))
    await asyncio.sleep(0)

    during = manager.get("a")
    assert during is not None
    assert (during.loading, during.loaded, during.data) == (True, True, "v1")

    release.set()
    await task


@pytest.mark.asyncio
async def test_consume_unregistered_raises_without_creating_state() -> None:
    manager = ResourceManager()

    with pytest.raises(ResourceNotRegisteredError) as excinfo:
        await manager.consume("unregistered-id")

    assert excinfo.value.resource_id == "unregistered-id"
    assert manager.get("unregistered-id") is None
    assert "unregistered-id" not in manager


@pytest.mark.asyncio
async def test_cancelled_fetch_is_not_recorded_as_error() -> None:
    manager = ResourceManager()
    producer = FakeProducer(release=asyncio.Event())
    await manager.register_resource("a", Source(producer))

    task = asyncio.create_task(manager.consume("a"))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    resource = manager.get("a")
    assert resource is not None
    assert resource.error is None
    assert resource.loading is True


@pytest.mark.asyncio
async def test_closed_manager_rejects_new_work() -> None:
    manager = ResourceManager()
    producer = FakeProducer(release=asyncio.Event())
    await manager.register_resource("a", Source(producer))

    async with manager:
        pass

    assert manager.closed
    with pytest.raises(ResourceManagerClosedError):
        await manager.consume("a")
    with pytest.raises(ResourceManagerClosedError):
        await manager.register_resource("b", Source(producer))
    assert producer.calls == []


@pytest.mark.asyncio
async def test_default_clock_stamps_wall_clock_milliseconds() -> None:
    manager = ResourceManager(clock=None)
    await manager.register_resource("a", Source(FakeProducer(), CacheOptions()))

    before = int(time.time() * 1000)
    await manager.consume("a")
    await manager.drain()

    entry = await manager.storage.get("resource-a")
    assert entry is not None
    assert before <= entry.timestamp <= int(time.time() * 1000)
