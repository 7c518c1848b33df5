"""
Text embedding client.

- embed_batch: chunked, sequential chunks with a fixed delay; a failed chunk is
  retried text by text, and a text that still fails becomes a zero vector
- embed_one: single call, zero vector on failure

Zero vectors are never an error here; callers detect them with
`is_zero_vector` when correctness matters.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from openai import AsyncOpenAI

from library_recommender.rag.schemas import EmbeddingBackend, is_zero_vector

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 768
DEFAULT_BATCH_SIZE = 100
# character cut applied before sending; keeps every text under model token limits
MAX_EMBED_CHARS = 8000

PROBE_TEXT = "embedding service probe"


class OpenAIEmbeddingBackend:
    """`embeddings.create` against any OpenAI-compatible endpoint."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str = "text-embedding-3-small",
        dimension: int | None = DEFAULT_DIMENSION,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.dimension = dimension
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        kwargs = {"model": self.model, "input": texts}
        if self.dimension:
            kwargs["dimensions"] = self.dimension
        res = await self._client.embeddings.create(**kwargs)
        data = sorted(res.data, key=lambda d: d.index)
        return [list(d.embedding) for d in data]

    async def close(self) -> None:
        await self._client.close()


class EmbeddingClient:
    def __init__(
        self,
        backend: EmbeddingBackend,
        *,
        dimension: int = DEFAULT_DIMENSION,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_s: float = 0.5,
        single_delay_s: float = 0.1,
        timeout_s: float = 30.0,
        max_chars: int = MAX_EMBED_CHARS,
    ):
        if dimension < 1:
            raise ValueError("dimension must be >= 1")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.backend = backend
        self.dimension = int(dimension)
        self.batch_size = int(batch_size)
        self.batch_delay_s = float(batch_delay_s)
        self.single_delay_s = float(single_delay_s)
        self.timeout_s = float(timeout_s)
        self.max_chars = int(max_chars)

    def zero_vector(self) -> list[float]:
        return [0.0] * self.dimension

    def _prepare(self, text: str) -> str:
        if not isinstance(text, str) or not text.strip():
            raise ValueError("Texts to embed must be non-empty strings.")
        return text.strip()[: self.max_chars]

    async def _call(self, texts: list[str]) -> list[list[float]]:
        vectors = await asyncio.wait_for(self.backend.embed(texts), timeout=self.timeout_s)
        if len(vectors) != len(texts):
            raise ValueError(f"backend returned {len(vectors)} vectors for {len(texts)} texts")
        for vec in vectors:
            if len(vec) != self.dimension:
                raise ValueError(
                    f"backend returned dimension {len(vec)}, expected {self.dimension}"
                )
        return [[float(x) for x in vec] for vec in vectors]

    async def embed_one(self, text: str) -> list[float]:
        prepared = self._prepare(text)
        try:
            return (await self._call([prepared]))[0]
        except Exception as e:
            logger.error("Embedding failed, using zero vector: %r", e)
            return self.zero_vector()

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        prepared = [self._prepare(t) for t in texts]
        if not prepared:
            return []

        n_batches = (len(prepared) + self.batch_size - 1) // self.batch_size
        logger.info("Embedding %d texts in %d batch(es)", len(prepared), n_batches)

        results: list[list[float]] = []
        for b, start in enumerate(range(0, len(prepared), self.batch_size), start=1):
            chunk = prepared[start : start + self.batch_size]
            logger.debug("Embedding batch %d/%d", b, n_batches)
            try:
                results.extend(await self._call(chunk))
            except Exception as e:
                logger.warning("Batch %d/%d failed (%r), retrying one by one", b, n_batches, e)
                results.extend(await self._embed_individually(chunk))

            if start + self.batch_size < len(prepared):
                await asyncio.sleep(self.batch_delay_s)

        zeros = sum(1 for v in results if is_zero_vector(v))
        logger.info("Embedded %d texts (%d zero-vector fallbacks)", len(results), zeros)
        return results

    async def _embed_individually(self, chunk: list[str]) -> list[list[float]]:
        out: list[list[float]] = []
        for i, text in enumerate(chunk):
            try:
                out.append((await self._call([text]))[0])
            except Exception as e:
                logger.error("Single text embedding failed, using zero vector: %r", e)
                out.append(self.zero_vector())
            if i + 1 < len(chunk):
                await asyncio.sleep(self.single_delay_s)
        return out

    async def check_backend(self) -> bool:
        """True if the backend answers with a vector of the configured dimension."""
        try:
            vec = (await self._call([PROBE_TEXT]))[0]
        except Exception as e:
            logger.error("Embedding service check failed: %r", e)
            return False
        logger.info("Embedding service OK, dimension=%d", len(vec))
        return not is_zero_vector(vec)
