from __future__ import annotations

import asyncio
import hashlib
import json
import re

import pytest
from qdrant_client import AsyncQdrantClient

from library_recommender.rag.embedding_client import EmbeddingClient
from library_recommender.rag.schemas import CatalogItem, ItemDetails, PlayHistoryPage, PlayRecord
from library_recommender.rag.vector_store import QdrantItemStore

DIM = 8


def hash_vector(text: str, dim: int = DIM) -> list[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    vec = [(b / 255.0) * 2 - 1 for b in digest[:dim]]
    if all(x == 0 for x in vec):
        vec[0] = 1.0
    return vec


def unit(axis: int, dim: int = DIM) -> list[float]:
    vec = [0.0] * dim
    vec[axis] = 1.0
    return vec


class FakeEmbeddingBackend:
    """Deterministic hash vectors; `fail_on` texts (substring match) raise."""

    def __init__(self, dim: int = DIM, fail_on: tuple[str, ...] = (), fail_batches: bool = False):
        self.dim = dim
        self.fail_on = fail_on
        self.fail_batches = fail_batches
        self.calls: list[list[str]] = []
        self.down = False

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.down:
            raise ConnectionError("embedding backend unreachable")
        if self.fail_batches and len(texts) > 1:
            raise RuntimeError("batch endpoint failed")
        for t in texts:
            if any(f in t for f in self.fail_on):
                raise RuntimeError(f"cannot embed {t!r}")
        return [hash_vector(t, self.dim) for t in texts]


class FakeHistory:
    def __init__(self, records: list[PlayRecord] | None = None, fail: bool = False):
        self.records = list(records or [])
        self.fail = fail
        self.calls = 0

    async def get_top_played(self, user_id: str, limit: int) -> list[PlayRecord]:
        self.calls += 1
        if self.fail:
            raise ConnectionError("history database down")
        played = [r for r in self.records if r.playtime_minutes > 0]
        return sorted(played, key=lambda r: r.playtime_minutes, reverse=True)[:limit]

    async def get_all_played(self, user_id: str, limit: int, offset: int) -> PlayHistoryPage:
        self.calls += 1
        if self.fail:
            raise ConnectionError("history database down")
        return PlayHistoryPage(items=self.records[offset : offset + limit], total_count=len(self.records))


class FakeMetadata:
    def __init__(self, details: dict[int, ItemDetails | None], fail_ids: set[int] = frozenset(), delay_s: float = 0.0):
        self.details = details
        self.fail_ids = set(fail_ids)
        self.delay_s = delay_s
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls: list[int] = []

    async def get_details(self, item_id: int) -> ItemDetails | None:
        self.calls.append(item_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay_s)
            if item_id in self.fail_ids:
                raise RuntimeError(f"store api failed for {item_id}")
            return self.details.get(item_id)
        finally:
            self.in_flight -= 1


class FakeCompletion:
    """Picks the first candidate in the prompt unless scripted answers are given."""

    def __init__(self, answers: list[str] | None = None, fail: bool = False, delay_s: float = 0.0):
        self.answers = list(answers or [])
        self.fail = fail
        self.delay_s = delay_s
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        await asyncio.sleep(self.delay_s)
        if self.fail:
            raise ConnectionError("LLM endpoint down")
        if self.answers:
            return self.answers.pop(0)
        first = re.search(r"^Game: (.+)$", prompt, re.MULTILINE)
        return json.dumps(
            {
                "recommendedGame": first.group(1) if first else "",
                "reason": "Closest match to your favourites.",
                "confidence": 0.9,
                "gameType": "Action",
                "similarity": "Shares the pacing of your top games.",
            }
        )


def make_item(item_id: int, name: str | None = None, embedding: list[float] | None = None, **kw) -> CatalogItem:
    name = name or f"Game {item_id}"
    return CatalogItem(
        item_id=item_id,
        name=name,
        description_text=kw.pop("description_text", f"Name: {name}"),
        genres=kw.pop("genres", ["Action"]),
        tags=kw.pop("tags", ["Single-player"]),
        developer=kw.pop("developer", "Valve"),
        embedding=embedding if embedding is not None else hash_vector(name),
        **kw,
    )


@pytest.fixture
async def store():
    client = AsyncQdrantClient(location=":memory:")
    s = QdrantItemStore(client, collection_name="test_games", dimension=DIM)
    await s.ensure_collection()
    yield s
    await s.close()


@pytest.fixture
def backend():
    return FakeEmbeddingBackend()


@pytest.fixture
def embedder(backend):
    return EmbeddingClient(backend, dimension=DIM, batch_delay_s=0, single_delay_s=0, timeout_s=1.0)


@pytest.fixture
def sleeps(monkeypatch):
    """Non-zero asyncio.sleep delays, in call order; sleeping itself is skipped."""
    recorded: list[float] = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, result=None):
        if delay:
            recorded.append(delay)
        return await real_sleep(0, result)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return recorded
