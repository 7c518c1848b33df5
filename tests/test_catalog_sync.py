import pytest

from conftest import DIM, FakeEmbeddingBackend, FakeHistory, FakeMetadata
from library_recommender.rag.catalog_sync import CatalogSync, build_description_text
from library_recommender.rag.embedding_client import EmbeddingClient
from library_recommender.rag.errors import HistoryUnavailable
from library_recommender.rag.readiness import ReadinessGate
from library_recommender.rag.schemas import ItemDetails, PlayRecord, SyncOutcome, SyncResult


def _details(name: str) -> ItemDetails:
    return ItemDetails(
        name=name,
        short_description=f"{name} is a game.",
        genres=["Action", "Adventure"],
        tags=["Single-player"],
        developers=["Valve"],
        publishers=["Valve"],
    )


def _library(n: int) -> tuple[list[PlayRecord], dict[int, ItemDetails]]:
    records = [PlayRecord(item_id=i, name=f"Game {i}", playtime_minutes=100 * (n - i)) for i in range(1, n + 1)]
    return records, {r.item_id: _details(r.name) for r in records}


def _sync(history, metadata, embedder, store, **kw):
    kw.setdefault("batch_delay_s", 0)
    return CatalogSync(history, metadata, embedder, store, **kw)


def test_description_text_template():
    text = build_description_text(_details("Portal"))
    assert text == (
        "Name: Portal\n"
        "Genres: Action, Adventure\n"
        "Tags: Single-player\n"
        "Developer: Valve\n"
        "Description: Portal is a game."
    )


def test_description_text_unknown_fields():
    text = build_description_text(ItemDetails(name="Mystery"))
    assert "Genres: Unknown" in text
    assert "Developer: Unknown" in text


async def test_sync_item_indexes_item(embedder, store):
    sync = _sync(FakeHistory(), FakeMetadata({220: _details("Half-Life 2")}), embedder, store)

    assert await sync.sync_item(220) is SyncOutcome.INDEXED

    item = await store.get(220)
    assert item is not None
    assert item.name == "Half-Life 2"
    assert item.developer == "Valve"
    assert item.short_description == "Half-Life 2 is a game."
    assert item.description_text.startswith("Name: Half-Life 2")
    assert len(item.embedding) == DIM


@pytest.mark.parametrize("details", [None, ItemDetails(name="")])
async def test_sync_item_skips_missing_metadata(embedder, store, backend, details):
    sync = _sync(FakeHistory(), FakeMetadata({1: details}), embedder, store)

    assert await sync.sync_item(1) is SyncOutcome.SKIPPED
    assert backend.calls == []
    assert not await store.contains(1)


async def test_sync_item_with_embedding_outage_is_stored_unindexed(store):
    backend = FakeEmbeddingBackend()
    backend.down = True
    embedder = EmbeddingClient(backend, dimension=DIM, timeout_s=1.0)
    sync = _sync(FakeHistory(), FakeMetadata({7: _details("Dota 2")}), embedder, store)

    assert await sync.sync_item(7) is SyncOutcome.UNEMBEDDED
    assert await store.contains(7)
    assert (await ReadinessGate(store).check_ready()).indexed_count == 0


async def test_one_failing_item_does_not_affect_the_rest(embedder, store):
    records, details = _library(10)
    metadata = FakeMetadata(details, fail_ids={4})
    sync = _sync(FakeHistory(records), metadata, embedder, store)

    result = await sync.sync_user_library("u1")

    assert result == SyncResult(succeeded=9, failed=1, total=10)
    for rec in records:
        assert await store.contains(rec.item_id) is (rec.item_id != 4)


async def test_batches_bound_concurrency(embedder, store):
    records, details = _library(7)
    metadata = FakeMetadata(details, delay_s=0.01)
    sync = _sync(FakeHistory(records), metadata, embedder, store, batch_size=3)

    result = await sync.sync_user_library("u1")

    assert result.succeeded == 7
    assert metadata.max_in_flight == 3
    # batch N+1 starts only after batch N: first three calls are the first batch
    assert sorted(metadata.calls[:3]) == [1, 2, 3]
    assert sorted(metadata.calls[3:6]) == [4, 5, 6]


async def test_skipped_and_unembedded_are_counted(store):
    records, details = _library(3)
    details[2] = None
    backend = FakeEmbeddingBackend(fail_on=("Game 3",))
    embedder = EmbeddingClient(backend, dimension=DIM, timeout_s=1.0)
    sync = _sync(FakeHistory(records), FakeMetadata(details), embedder, store)

    result = await sync.sync_user_library("u1")

    assert result == SyncResult(succeeded=3, failed=0, total=3, skipped=1, unembedded=1)


async def test_history_failure_aborts_sync(embedder, store):
    metadata = FakeMetadata({})
    sync = _sync(FakeHistory(fail=True), metadata, embedder, store)

    with pytest.raises(HistoryUnavailable) as exc_info:
        await sync.sync_user_library("u1")

    assert exc_info.value.result == SyncResult(succeeded=0, failed=0, total=0)
    assert metadata.calls == []


async def test_empty_library(embedder, store):
    sync = _sync(FakeHistory([]), FakeMetadata({}), embedder, store)
    assert await sync.sync_user_library("u1") == SyncResult(succeeded=0, failed=0, total=0)


async def test_resync_is_idempotent(embedder, store):
    records, details = _library(5)
    sync = _sync(FakeHistory(records), FakeMetadata(details), embedder, store, batch_size=2)

    first = await sync.sync_user_library("u1")
    second = await sync.sync_user_library("u1")

    assert first == second == SyncResult(succeeded=5, failed=0, total=5)
    assert await store.count(embedded_only=False) == 5


async def test_readiness_before_and_after_sync(embedder, store):
    gate = ReadinessGate(store)
    before = await gate.check_ready()
    assert (before.ready, before.indexed_count) == (False, 0)

    records, details = _library(2)
    await _sync(FakeHistory(records), FakeMetadata(details), embedder, store).sync_user_library("u1")

    after = await gate.check_ready()
    assert after.ready is True
    assert after.indexed_count >= 1


def test_invalid_batch_size(embedder, store):
    with pytest.raises(ValueError):
        CatalogSync(FakeHistory(), FakeMetadata({}), embedder, store, batch_size=0)


async def test_batch_delay_between_batches_only(embedder, store, sleeps):
    records, details = _library(7)
    sync = CatalogSync(FakeHistory(records), FakeMetadata(details), embedder, store, batch_size=3, batch_delay_s=2.0)

    result = await sync.sync_user_library("u1")

    assert result.succeeded == 7
    # 3 batches: a pause after the first two, none after the last
    assert sleeps == [2.0, 2.0]


async def test_single_batch_has_no_delay(embedder, store, sleeps):
    records, details = _library(3)
    sync = CatalogSync(FakeHistory(records), FakeMetadata(details), embedder, store, batch_size=3, batch_delay_s=2.0)

    await sync.sync_user_library("u1")

    assert sleeps == []
