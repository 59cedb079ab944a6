from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_data_uri
from src.core.errors import ReferenceLimitError
from src.media.history import HistoryManager, evict_history
from src.media.providers.base import GenerationResult
from src.schemas.history import GenerationParameters, HistoryItem
from src.session.state import SessionContext, load_history
from src.storage.keys import ImageKey
from src.storage.object_store import ObjectStore
from src.storage.preferences import PREF_HISTORY


BASE_DATE = datetime(2025, 1, 1, tzinfo=timezone.utc)

PARAMETERS = GenerationParameters(
    resolution="4K",
    aspect_ratio="9:16",
    output_format="jpg",
    safety_filter_level="block_medium_and_above",
    provider="replicate",
)


def _item(index: int, *, local: bool = False) -> HistoryItem:
    return HistoryItem(
        prompt=f"prompt {index}",
        url=f"https://cdn.example/{index}.png",
        date=BASE_DATE - timedelta(minutes=index),
        local_id=f"local{index}" if local else None,
    )


def _fixed_clock() -> datetime:
    return BASE_DATE + timedelta(hours=1)


def test_evict_history_prefers_oldest_non_local_entry() -> None:
    items = [_item(0), _item(1, local=True), _item(2), _item(3, local=True)]

    result = evict_history(items, limit=3)

    assert [item.prompt for item in result] == ["prompt 0", "prompt 1", "prompt 3"]


def test_evict_history_drops_tail_when_everything_is_local() -> None:
    items = [_item(index, local=True) for index in range(4)]

    result = evict_history(items, limit=3)

    assert [item.prompt for item in result] == ["prompt 0", "prompt 1", "prompt 2"]


@pytest.mark.anyio
async def test_add_to_history_keeps_local_entries_when_full(session, store) -> None:
    local_indexes = {2, 5, 9}
    session.history = [_item(index, local=index in local_indexes) for index in range(10)]
    manager = HistoryManager(session, store, clock=_fixed_clock)

    await manager.add_to_history("fresh prompt", "https://cdn.example/fresh.png")

    assert len(session.history) == 10
    assert session.history[0].prompt == "fresh prompt"
    prompts = [item.prompt for item in session.history]
    assert "prompt 8" not in prompts
    assert sum(1 for item in session.history if item.is_local) == 3
    for index in local_indexes:
        assert f"prompt {index}" in prompts



@pytest.mark.anyio
async def test_history_never_exceeds_limit(session, store) -> None:
    manager = HistoryManager(session, store, clock=_fixed_clock)

    for index in range(25):
        await manager.add_to_history(f"p{index}", f"https://cdn.example/{index}.png", local_id=None)
        assert len(session.history) <= 10

    assert [item.prompt for item in session.history][:2] == ["p24", "p23"]


@pytest.mark.anyio
async def test_evicted_local_entry_deletes_its_stored_image(session, store) -> None:
    session.history = [_item(index, local=True) for index in range(10)]
    manager = HistoryManager(session, store, clock=_fixed_clock)
    await store.put(ImageKey.history("local9"), make_data_uri("oldest"))
    await store.put(ImageKey.history("local0"), make_data_uri("newest"))
    await store.put(ImageKey.library("lib_keep"), make_data_uri("oldest"))

    await manager.add_to_history("new", "https://cdn.example/new.png", local_id="fresh")

    assert await store.contains(ImageKey.history("local9")) is False
    assert await store.contains(ImageKey.history("local0")) is True
    assert await store.contains(ImageKey.library("lib_keep")) is True


@pytest.mark.anyio
async def test_history_is_persisted_and_reload_keeps_local_entries(session, store, preferences, settings) -> None:
    manager = HistoryManager(session, store, clock=_fixed_clock)

    await manager.add_to_history("remote only", "https://cdn.example/a.png")
    await manager.add_to_history("saved", "https://cdn.example/b.png", local_id="abc", parameters=PARAMETERS)

    raw = preferences.get_json(PREF_HISTORY)
    assert raw[0]["localId"] == "abc"
    assert raw[0]["parameters"]["resolution"] == "4K"
    assert "localId" not in raw[1]

    reloaded = load_history(preferences, limit=10)
    assert [item.prompt for item in reloaded] == ["saved"]
    assert SessionContext.load(preferences, settings).history == reloaded


@pytest.mark.anyio
async def test_record_generation_saves_data_uri_locally(session, store) -> None:
    session.save_locally = True
    manager = HistoryManager(session, store, clock=_fixed_clock)
    image = make_data_uri("generated")
    result = GenerationResult(provider="gemini", image=image, mime_type="image/png")

    item = await manager.record_generation("cat astronaut", result, PARAMETERS)

    assert item.is_local
    assert item.url == image
    assert await store.get(ImageKey.history(item.local_id)) == image


@pytest.mark.anyio
async def test_record_generation_survives_unwritable_store(session) -> None:
    def _factory():
        raise PermissionError("read-only filesystem")

    session.save_locally = True
    manager = HistoryManager(session, ObjectStore(_factory), clock=_fixed_clock)
    result = GenerationResult(provider="gemini", image=make_data_uri("generated"), mime_type="image/png")

    item = await manager.record_generation("cat astronaut", result, PARAMETERS)

    assert item.local_id is None
    assert item.url == make_data_uri("generated")
    assert session.history == [item]


def test_reuse_generation_only_prefills_pending_request(session, store) -> None:
    manager = HistoryManager(session, store, clock=_fixed_clock)
    item = HistoryItem(
        prompt="reuse me",
        url="https://cdn.example/r.png",
        date=BASE_DATE,
        parameters=PARAMETERS,
    )
    session.history = [item]
    session.references.add(make_data_uri("ref"))

    first = manager.reuse_generation(item).snapshot()
    second = manager.reuse_generation(item).snapshot()

    assert first == second
    assert first.prompt == "reuse me"
    assert first.resolution == "4K"
    assert first.aspect_ratio == "9:16"
    assert first.output_format == "jpg"
    assert first.safety_filter_level == "block_medium_and_above"
    assert session.history == [item]
    assert session.references.images == (make_data_uri("ref"),)


@pytest.mark.anyio
async def test_use_as_reference_prefers_local_copy(session, store) -> None:
    manager = HistoryManager(session, store, clock=_fixed_clock)
    await store.put(ImageKey.history("local1"), make_data_uri("stored"))

    count = await manager.use_as_reference(_item(1, local=True))

    assert count == 1
    assert session.references.images == (make_data_uri("stored"),)


@pytest.mark.anyio
async def test_use_as_reference_rejects_when_full(session, store) -> None:
    manager = HistoryManager(session, store, clock=_fixed_clock)
    session.references.add_all([make_data_uri(f"r{index}") for index in range(14)])

    with pytest.raises(ReferenceLimitError):
        await manager.use_as_reference(_item(1, local=True))

    assert len(session.references) == 14
