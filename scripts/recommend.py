"""
One RAG recommendation for a Steam user, printed as JSON.

Checks the index first so "not indexed yet" is reported separately from
"no play history" and "AI service down".

Run from the project root:
  python scripts/recommend.py --steam-id 7656119XXXXXXXXXX [--strict]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path

from dotenv import load_dotenv

from library_recommender.core.config import Settings
from library_recommender.core.factory import open_pipeline
from library_recommender.core.log import setup_logging
from library_recommender.rag.errors import RecommenderError


async def recommend_for(settings: Settings, steam_id: str, *, strict: bool | None = None) -> dict:
    async with open_pipeline(settings, strict=strict) as pipeline:
        status = await pipeline.readiness.check_ready()
        if not status.ready:
            return {
                "error": "Recommendation service is not ready",
                "suggestion": "Sync your library details first, then retry",
                "syncedCount": status.indexed_count,
            }
        try:
            result = await pipeline.engine.recommend(steam_id)
        except RecommenderError as e:
            return {"error": str(e), "category": e.category, "suggestion": e.remediation}

        out = result.to_dict()
        out["metadata"]["syncedGamesCount"] = status.indexed_count
        return out


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="RAG game recommendation for a Steam user")
    parser.add_argument("--steam-id", default=None, help="SteamID64 (defaults to STEAM_ID env)")
    parser.add_argument("--strict", action="store_true", help="Only accept games from the retrieved candidates")
    parser.add_argument("--top-k", type=int, default=None, help="Number of candidates to retrieve")
    args = parser.parse_args(argv)

    root = Path(__file__).resolve().parents[1]
    load_dotenv(root / ".env")
    load_dotenv(root / "config" / ".env")
    setup_logging()

    steam_id = args.steam_id or os.environ.get("STEAM_ID")
    if not steam_id:
        raise SystemExit("--steam-id or STEAM_ID is required.")

    settings = Settings()
    if args.top_k is not None:
        settings = settings.model_copy(update={"TOP_K": int(args.top_k)})

    out = asyncio.run(recommend_for(settings, steam_id, strict=True if args.strict else None))
    print(json.dumps(out, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
