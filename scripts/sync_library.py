"""
Index a user's Steam library into the item vector store.

For every owned game: store appdetails → description text → embedding → Qdrant.
Runs in small concurrent batches with a pause between batches.

Run from the project root:
  python scripts/sync_library.py --steam-id 7656119XXXXXXXXXX --progress
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from dataclasses import asdict
from pathlib import Path

from dotenv import load_dotenv

from library_recommender.core.config import Settings
from library_recommender.core.factory import open_pipeline
from library_recommender.core.log import setup_logging
from library_recommender.rag.errors import HistoryUnavailable


async def _run(settings: Settings, steam_id: str, progress: bool) -> dict:
    async with open_pipeline(settings) as pipeline:
        if not await pipeline.embedder.check_backend():
            raise SystemExit("Embedding service is not configured correctly (check OPENAI_API_KEY / EMBEDDING_*).")
        try:
            result = await pipeline.sync.sync_user_library(steam_id, progress=progress)
        except HistoryUnavailable as e:
            return {"error": str(e), "result": asdict(e.result) if e.result else None}
        readiness = await pipeline.readiness.check_ready()
        return {"result": asdict(result), "indexed_count": readiness.indexed_count}


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Sync a Steam library into the recommendation index")
    parser.add_argument("--steam-id", default=None, help="SteamID64 (defaults to STEAM_ID env)")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--batch-delay", type=float, default=None, help="Seconds between batches")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar")
    args = parser.parse_args(argv)

    # .env (project root or config/.env)
    root = Path(__file__).resolve().parents[1]
    load_dotenv(root / ".env")
    load_dotenv(root / "config" / ".env")
    setup_logging()

    steam_id = args.steam_id or os.environ.get("STEAM_ID")
    if not steam_id:
        raise SystemExit("--steam-id or STEAM_ID is required.")

    settings = Settings()
    if args.batch_size is not None:
        settings = settings.model_copy(update={"SYNC_BATCH_SIZE": int(args.batch_size)})
    if args.batch_delay is not None:
        settings = settings.model_copy(update={"SYNC_BATCH_DELAY_S": float(args.batch_delay)})

    out = asyncio.run(_run(settings, steam_id, args.progress))
    print(json.dumps(out, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
