"""
Main entry point: sync the configured user's library, then recommend.

- indexing  : library_recommender.rag.catalog_sync
- recommend : library_recommender.rag.recommendation_engine

Run from the project root:
  python main.py
"""
import asyncio
import json
import os
from dataclasses import asdict
from pathlib import Path

from dotenv import load_dotenv

from library_recommender.core.config import Settings
from library_recommender.core.factory import open_pipeline
from library_recommender.core.log import setup_logging
from library_recommender.rag.errors import RecommenderError

# -----------------------------
# .env (project root or config/.env)
# -----------------------------
_root = Path(__file__).resolve().parent
load_dotenv(_root / ".env")
load_dotenv(_root / "config" / ".env")

STEAM_ID = os.environ.get("STEAM_ID", "USER_STEAM_ID")


async def run(steam_id: str) -> dict:
    settings = Settings()
    async with open_pipeline(settings) as pipeline:
        sync_result = await pipeline.sync.sync_user_library(steam_id, progress=True)
        status = await pipeline.readiness.check_ready()
        if not status.ready:
            return {"sync": asdict(sync_result), "error": "No indexed games yet"}
        try:
            result = await pipeline.engine.recommend(steam_id)
        except RecommenderError as e:
            return {"sync": asdict(sync_result), "error": str(e), "suggestion": e.remediation}
        return {"sync": asdict(sync_result), **result.to_dict()}


if __name__ == "__main__":
    setup_logging()
    print("Syncing library and generating a recommendation…")
    out = asyncio.run(run(STEAM_ID))
    print("\nRecommendation:\n", json.dumps(out, ensure_ascii=False, indent=2))
