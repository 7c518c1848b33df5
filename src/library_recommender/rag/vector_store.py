"""
Item vector store on a Qdrant collection.

Layout:
- point id            : item id (one point per catalog item, upsert replaces)
- named vector        : "description" (cosine, dimension D); absent when the
                        item has no usable embedding
- payload             : item_id, name, description, short_description, genres,
                        tags, developer, publisher, last_updated, has_embedding

No retries here: transport/server failures surface as StoreUnavailable and the
caller decides.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Sequence, TypeVar

import httpx
from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from library_recommender.rag.errors import InvalidVector, StoreUnavailable
from library_recommender.rag.schemas import CandidateMatch, CatalogItem

logger = logging.getLogger(__name__)

VECTOR_NAME = "description"
# initial over-fetch; grown while equal scores straddle the cut-off
TIE_MARGIN = 10

T = TypeVar("T")

_UNAVAILABLE_ERRORS = (
    UnexpectedResponse,
    ResponseHandlingException,
    httpx.HTTPError,
    ConnectionError,
    asyncio.TimeoutError,
    OSError,
)

_EMBEDDED_FILTER = models.Filter(
    must=[models.FieldCondition(key="has_embedding", match=models.MatchValue(value=True))]
)


def get_qdrant_client(url: str, api_key: str | None = None, timeout_s: float = 10.0) -> AsyncQdrantClient:
    if url == ":memory:":
        return AsyncQdrantClient(location=":memory:")
    return AsyncQdrantClient(url=url, api_key=api_key, timeout=int(timeout_s))


class QdrantItemStore:
    def __init__(
        self,
        client: AsyncQdrantClient,
        *,
        collection_name: str = "steam_games",
        dimension: int = 768,
        timeout_s: float = 10.0,
    ):
        self.client = client
        self.collection_name = collection_name
        self.dimension = int(dimension)
        self.timeout_s = float(timeout_s)

    async def _io(self, op: str, aw: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(aw, timeout=self.timeout_s)
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailable(
                f"Vector store {op} failed: {e!r}", collection=self.collection_name
            ) from e

    async def ensure_collection(self) -> None:
        exists = await self._io("collection check", self.client.collection_exists(self.collection_name))
        if exists:
            return
        await self._io(
            "collection create",
            self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config={
                    VECTOR_NAME: models.VectorParams(size=self.dimension, distance=models.Distance.COSINE)
                },
            ),
        )
        logger.info("Created collection %s (dim=%d, cosine)", self.collection_name, self.dimension)

    def _check_vector(self, vec: Sequence[float], *, item_id: int | None = None) -> None:
        if len(vec) != self.dimension:
            raise InvalidVector(
                f"Expected a {self.dimension}-dimensional vector, got {len(vec)}",
                item_id=item_id,
            )

    # -----------------------------
    # Writes
    # -----------------------------
    async def upsert(self, item: CatalogItem) -> None:
        if item.embedding is not None:
            self._check_vector(item.embedding, item_id=item.item_id)

        embedded = item.has_embedding
        vector: dict[str, list[float]] = {VECTOR_NAME: [float(x) for x in item.embedding]} if embedded else {}
        point = models.PointStruct(id=int(item.item_id), vector=vector, payload=_to_payload(item))
        await self._io("upsert", self.client.upsert(collection_name=self.collection_name, points=[point]))
        if not embedded:
            logger.warning("Item %s stored without embedding; excluded from search", item.item_id)

    # -----------------------------
    # Reads
    # -----------------------------
    async def search(self, query_vector: Sequence[float], k: int) -> list[CandidateMatch]:
        if int(k) < 1:
            raise ValueError("k must be >= 1")
        self._check_vector(query_vector)

        k = int(k)
        query = [float(x) for x in query_vector]
        limit = k + TIE_MARGIN
        while True:
            res = await self._io(
                "search",
                self.client.query_points(
                    collection_name=self.collection_name,
                    query=query,
                    using=VECTOR_NAME,
                    query_filter=_EMBEDDED_FILTER,
                    limit=limit,
                    with_payload=True,
                ),
            )
            points = res.points
            # done once the cut-off point scores strictly below the k-th one
            if len(points) < limit or points[-1].score < points[k - 1].score:
                break
            limit *= 2

        matches = [_to_match(p.id, p.score, p.payload or {}) for p in points]
        matches.sort(key=lambda m: (-m.similarity, m.item_id))
        return matches[:k]

    async def get(self, item_id: int) -> CatalogItem | None:
        records = await self._io(
            "retrieve",
            self.client.retrieve(
                collection_name=self.collection_name,
                ids=[int(item_id)],
                with_payload=True,
                with_vectors=True,
            ),
        )
        if not records:
            return None
        rec = records[0]
        vectors = rec.vector if isinstance(rec.vector, dict) else {}
        embedding = vectors.get(VECTOR_NAME)
        return _from_payload(rec.payload or {}, list(embedding) if embedding else None)

    async def contains(self, item_id: int) -> bool:
        return await self.get(item_id) is not None

    async def count(self, *, embedded_only: bool = True) -> int:
        res = await self._io(
            "count",
            self.client.count(
                collection_name=self.collection_name,
                count_filter=_EMBEDDED_FILTER if embedded_only else None,
                exact=True,
            ),
        )
        return int(res.count)

    async def close(self) -> None:
        await self.client.close()


def _to_payload(item: CatalogItem) -> dict[str, Any]:
    return {
        "item_id": int(item.item_id),
        "name": item.name,
        "description": item.description_text,
        "short_description": item.short_description,
        "genres": list(item.genres),
        "tags": list(item.tags),
        "developer": item.developer,
        "publisher": item.publisher,
        "last_updated": item.last_updated.isoformat(),
        "has_embedding": item.has_embedding,
    }


def _from_payload(payload: dict[str, Any], embedding: list[float] | None) -> CatalogItem:
    return CatalogItem(
        item_id=int(payload["item_id"]),
        name=payload.get("name", ""),
        description_text=payload.get("description", ""),
        genres=list(payload.get("genres") or []),
        tags=list(payload.get("tags") or []),
        developer=payload.get("developer"),
        embedding=embedding,
        short_description=payload.get("short_description"),
        publisher=payload.get("publisher"),
        last_updated=datetime.fromisoformat(payload["last_updated"]),
    )


def _to_match(point_id: Any, score: float, payload: dict[str, Any]) -> CandidateMatch:
    return CandidateMatch(
        item_id=int(payload.get("item_id", point_id)),
        name=payload.get("name", ""),
        description_text=payload.get("description", ""),
        genres=list(payload.get("genres") or []),
        developer=payload.get("developer"),
        similarity=float(score),
        short_description=payload.get("short_description"),
    )
