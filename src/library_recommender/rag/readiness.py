from __future__ import annotations

import logging

from library_recommender.rag.schemas import Readiness
from library_recommender.rag.vector_store import QdrantItemStore

logger = logging.getLogger(__name__)


class ReadinessGate:
    """Is the catalog indexed enough to serve recommendations?"""

    def __init__(self, store: QdrantItemStore):
        self.store = store

    async def check_ready(self) -> Readiness:
        # StoreUnavailable propagates: "store down" is not "nothing indexed"
        count = await self.store.count(embedded_only=True)
        logger.debug("Readiness: %d indexed items", count)
        return Readiness(ready=count > 0, indexed_count=count)
