"""
Catalog sync: user library → item metadata → description text → embedding → vector store.

- sync_item          : one item, the independently testable primitive
- sync_user_library  : whole library in small concurrent batches, with a fixed
                       pause between batches for upstream rate limits

Per-item failures are counted and logged and never stop the run. Only a failure
to load the play history itself is fatal.
"""

from __future__ import annotations

import asyncio
import logging

from tqdm import tqdm

from library_recommender.rag.embedding_client import EmbeddingClient
from library_recommender.rag.errors import HistoryUnavailable
from library_recommender.rag.schemas import (
    CatalogItem,
    ItemDetails,
    ItemMetadataProvider,
    PlayHistoryProvider,
    SyncOutcome,
    SyncResult,
    is_zero_vector,
    utc_now,
)
from library_recommender.rag.vector_store import QdrantItemStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 3
DEFAULT_BATCH_DELAY_S = 2.0
DEFAULT_LIBRARY_LIMIT = 5000


def build_description_text(details: ItemDetails) -> str:
    genres = ", ".join(details.genres) or "Unknown"
    tags = ", ".join(details.tags)
    developers = ", ".join(details.developers) or "Unknown"
    description = details.short_description or ""
    return (
        f"Name: {details.name}\n"
        f"Genres: {genres}\n"
        f"Tags: {tags}\n"
        f"Developer: {developers}\n"
        f"Description: {description}"
    ).strip()


class CatalogSync:
    def __init__(
        self,
        history: PlayHistoryProvider,
        metadata: ItemMetadataProvider,
        embedder: EmbeddingClient,
        store: QdrantItemStore,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_s: float = DEFAULT_BATCH_DELAY_S,
        library_limit: int = DEFAULT_LIBRARY_LIMIT,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.history = history
        self.metadata = metadata
        self.embedder = embedder
        self.store = store
        self.batch_size = int(batch_size)
        self.batch_delay_s = float(batch_delay_s)
        self.library_limit = int(library_limit)

    async def sync_item(self, item_id: int) -> SyncOutcome:
        details = await self.metadata.get_details(item_id)
        if details is None or not details.name:
            logger.info("Item %s skipped: metadata missing or incomplete", item_id)
            return SyncOutcome.SKIPPED

        text = build_description_text(details)
        logger.debug("Item %s text: %s...", item_id, text[:100])
        vector = await self.embedder.embed_one(text)

        item = CatalogItem(
            item_id=int(item_id),
            name=details.name,
            description_text=text,
            genres=list(details.genres),
            tags=list(details.tags),
            developer=", ".join(details.developers) or None,
            embedding=vector,
            short_description=details.short_description or None,
            publisher=", ".join(details.publishers) or None,
            last_updated=utc_now(),
        )
        await self.store.upsert(item)

        if is_zero_vector(vector):
            return SyncOutcome.UNEMBEDDED
        logger.info("Item %s (%s) indexed", item_id, details.name)
        return SyncOutcome.INDEXED

    async def sync_user_library(self, user_id: str, *, progress: bool = False) -> SyncResult:
        logger.info("Syncing library for user %s", user_id)
        try:
            page = await self.history.get_all_played(user_id, self.library_limit, 0)
        except Exception as e:
            raise HistoryUnavailable(
                f"Could not load play history for user {user_id}: {e!r}",
                result=SyncResult(succeeded=0, failed=0, total=0),
                user_id=user_id,
            ) from e

        items = list(page.items)
        if not items:
            logger.info("Library of user %s is empty, nothing to sync", user_id)
            return SyncResult(succeeded=0, failed=0, total=0)

        batches = [items[i : i + self.batch_size] for i in range(0, len(items), self.batch_size)]
        logger.info("User %s: %d items in %d batches", user_id, len(items), len(batches))

        succeeded = failed = skipped = unembedded = 0
        for b, batch in enumerate(tqdm(batches, desc="sync", unit="batch", disable=not progress), start=1):
            outcomes = await asyncio.gather(
                *(self.sync_item(rec.item_id) for rec in batch), return_exceptions=True
            )
            for rec, outcome in zip(batch, outcomes):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    failed += 1
                    logger.error("Item %s (%s) failed to sync: %r", rec.item_id, rec.name, outcome)
                    continue
                succeeded += 1
                if outcome is SyncOutcome.SKIPPED:
                    skipped += 1
                elif outcome is SyncOutcome.UNEMBEDDED:
                    unembedded += 1

            if b < len(batches):
                logger.debug("Batch %d/%d done, waiting %.1fs", b, len(batches), self.batch_delay_s)
                await asyncio.sleep(self.batch_delay_s)

        result = SyncResult(
            succeeded=succeeded,
            failed=failed,
            total=len(items),
            skipped=skipped,
            unembedded=unembedded,
        )
        logger.info(
            "Library sync for user %s done: %d succeeded, %d failed (%d skipped, %d without embedding)",
            user_id, result.succeeded, result.failed, result.skipped, result.unembedded,
        )
        return result
