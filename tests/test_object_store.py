import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from conftest import CountingClock, make_data_uri
from src.core.errors import StorageError
from src.core.metrics import render_prometheus_metrics
from src.storage.keys import NAMESPACE_HISTORY, NAMESPACE_LIBRARY, NAMESPACE_PERSONA, ImageKey
from src.storage.models import StoredImage
from src.storage.object_store import ObjectStore


@pytest.mark.anyio
async def test_put_get_delete_round_trip(store) -> None:
    key = ImageKey.history("abc123")
    image = make_data_uri("first")

    stored = await store.put(key, image)
    fetched = await store.get(key)
    present = await store.contains(key)
    await store.delete(key)

    assert stored.key == key
    assert stored.payload == image
    assert fetched == image
    assert present is True
    assert await store.get(key) is None
    assert await store.contains(key) is False


@pytest.mark.anyio
async def test_put_overwrites_existing_key(store) -> None:
    key = ImageKey.library("lib_fixed")

    await store.put(key, make_data_uri("old"))
    await store.put(key, make_data_uri("new"))
    entries = await store.list_all()

    assert len(entries) == 1
    assert entries[0].payload == make_data_uri("new")


@pytest.mark.anyio
async def test_list_all_filters_by_prefix_newest_first(store) -> None:
    await store.put(ImageKey.library("lib_a"), make_data_uri("a"))
    await store.put(ImageKey.history("plain"), make_data_uri("h"))
    await store.put(ImageKey.library("lib_b"), make_data_uri("b"))
    await store.put(ImageKey.persona("persona_x", "left"), make_data_uri("p"))

    library = await store.list_all("lib_")
    everything = await store.list_all()
    persona_keys = await store.list_keys("persona_")

    assert [entry.key.value for entry in library] == ["lib_b", "lib_a"]
    assert [entry.key.namespace for entry in everything] == [
        NAMESPACE_PERSONA,
        NAMESPACE_LIBRARY,
        NAMESPACE_HISTORY,
        NAMESPACE_LIBRARY,
    ]
    assert [key.value for key in persona_keys] == ["persona_x_left"]


@pytest.mark.anyio
async def test_list_namespace_and_clear(store) -> None:
    await store.put(ImageKey.history("h1"), make_data_uri("h1"))
    await store.put(ImageKey.library("lib_1"), make_data_uri("l1"))

    history = await store.list_namespace(NAMESPACE_HISTORY)
    await store.clear()

    assert [entry.key.value for entry in history] == ["h1"]
    assert await store.list_all() == []


@pytest.mark.anyio
async def test_concurrent_first_use_opens_engine_once(engine) -> None:
    calls = []

    def _factory():
        calls.append(1)
        return engine

    store = ObjectStore(_factory, clock=CountingClock())

    await asyncio.gather(
        store.put(ImageKey.history("one"), make_data_uri("1")),
        store.put(ImageKey.history("two"), make_data_uri("2")),
        store.get(ImageKey.history("one")),
    )
    entries = await store.list_all()

    assert len(calls) == 1
    assert {entry.key.value for entry in entries} == {"one", "two"}


@pytest.mark.anyio
async def test_failed_open_raises_storage_error_and_retries(engine) -> None:
    attempts = []

    def _factory():
        attempts.append(1)
        if len(attempts) == 1:
            raise OperationalError("connect", {}, Exception("disk unavailable"))
        return engine

    store = ObjectStore(_factory, clock=CountingClock())

    with pytest.raises(StorageError) as exc_info:
        await store.get(ImageKey.history("missing"))

    assert exc_info.value.code == "storage_open_failed"
    assert await store.get(ImageKey.history("missing")) is None
    assert len(attempts) == 2


@pytest.mark.anyio
async def test_filesystem_failure_on_open_is_a_storage_error(engine) -> None:
    attempts = []

    def _factory():
        attempts.append(1)
        if len(attempts) == 1:
            raise PermissionError("read-only filesystem")
        return engine

    store = ObjectStore(_factory, clock=CountingClock())

    with pytest.raises(StorageError) as exc_info:
        await store.put(ImageKey.history("blocked"), make_data_uri("x"))

    assert exc_info.value.code == "storage_open_failed"
    assert "read-only filesystem" in exc_info.value.details
    await store.put(ImageKey.history("retried"), make_data_uri("y"))
    assert await store.get(ImageKey.history("retried")) == make_data_uri("y")
    assert len(attempts) == 2


@pytest.mark.anyio
async def test_operation_failure_is_wrapped_and_counted(store, engine) -> None:
    await store.put(ImageKey.history("seed"), make_data_uri("seed"))
    StoredImage.__table__.drop(engine)

    with pytest.raises(StorageError) as exc_info:
        await store.get(ImageKey.history("seed"))

    assert exc_info.value.code == "storage_get_failed"
    assert exc_info.value.kind == "storage"
    body = render_prometheus_metrics(app_name="nano", app_version="test", env="test")
    assert 'nano_storage_errors_total{operation="get"} 1' in body
