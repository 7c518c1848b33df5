"""
Wires the pipeline from Settings. Everything is built per call and injected;
there are no module-level clients.
"""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from library_recommender.api.providers import SteamMetadataProvider, SteamPlayHistoryProvider
from library_recommender.api.steam_client import SteamClient
from library_recommender.core.config import Settings
from library_recommender.llm.completion import OpenAIChatCompletion
from library_recommender.rag.catalog_sync import CatalogSync
from library_recommender.rag.embedding_client import EmbeddingClient, OpenAIEmbeddingBackend
from library_recommender.rag.readiness import ReadinessGate
from library_recommender.rag.recommendation_engine import RecommendationEngine
from library_recommender.rag.vector_store import QdrantItemStore, get_qdrant_client


@dataclass
class Pipeline:
    embedder: EmbeddingClient
    store: QdrantItemStore
    sync: CatalogSync
    engine: RecommendationEngine
    readiness: ReadinessGate


def build_embedder(settings: Settings) -> EmbeddingClient:
    backend = OpenAIEmbeddingBackend(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.EMBEDDING_BASE_URL,
        model=settings.EMBEDDING_MODEL,
        dimension=settings.EMBEDDING_DIMENSION,
    )
    return EmbeddingClient(
        backend,
        dimension=settings.EMBEDDING_DIMENSION,
        batch_size=settings.EMBEDDING_BATCH_SIZE,
        batch_delay_s=settings.EMBEDDING_BATCH_DELAY_S,
        single_delay_s=settings.EMBEDDING_SINGLE_DELAY_S,
        timeout_s=settings.EMBEDDING_TIMEOUT_S,
    )


def build_store(settings: Settings) -> QdrantItemStore:
    client = get_qdrant_client(settings.QDRANT_URL, settings.QDRANT_API_KEY, settings.QDRANT_TIMEOUT_S)
    return QdrantItemStore(
        client,
        collection_name=settings.QDRANT_COLLECTION_NAME,
        dimension=settings.EMBEDDING_DIMENSION,
        timeout_s=settings.QDRANT_TIMEOUT_S,
    )


def build_completion(settings: Settings) -> OpenAIChatCompletion:
    return OpenAIChatCompletion(
        api_key=settings.LLM_API_KEY,
        base_url=settings.LLM_BASE_URL,
        model=settings.LLM_MODEL,
        temperature=settings.LLM_TEMPERATURE,
        referer=settings.APP_URL,
    )


@asynccontextmanager
async def open_pipeline(settings: Settings, *, strict: bool | None = None) -> AsyncIterator[Pipeline]:
    async with AsyncExitStack() as stack:
        # each client is registered as soon as it exists; closing continues past failures
        steam = SteamClient(settings.STEAM_API_KEY)
        stack.push_async_callback(steam.aclose)
        store = build_store(settings)
        stack.push_async_callback(store.close)
        embedder = build_embedder(settings)
        stack.push_async_callback(embedder.backend.close)  # type: ignore[attr-defined]
        completion = build_completion(settings)
        stack.push_async_callback(completion.close)

        history = SteamPlayHistoryProvider(steam)
        await store.ensure_collection()
        yield Pipeline(
            embedder=embedder,
            store=store,
            sync=CatalogSync(
                history,
                SteamMetadataProvider(steam),
                embedder,
                store,
                batch_size=settings.SYNC_BATCH_SIZE,
                batch_delay_s=settings.SYNC_BATCH_DELAY_S,
                library_limit=settings.SYNC_LIBRARY_LIMIT,
            ),
            engine=RecommendationEngine(
                history,
                embedder,
                store,
                completion,
                top_n=settings.TOP_N,
                k=settings.TOP_K,
                timeout_s=settings.LLM_TIMEOUT_S,
                strict=settings.STRICT_RECOMMENDATIONS if strict is None else strict,
            ),
            readiness=ReadinessGate(store),
        )
