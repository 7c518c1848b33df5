"""
Steam-backed collaborators for the recommender.

- SteamPlayHistoryProvider : owned games → PlayRecord, playtime descending
- SteamMetadataProvider    : store appdetails → ItemDetails
"""

from __future__ import annotations

from typing import Any

from library_recommender.api.steam_client import SteamClient
from library_recommender.rag.schemas import ItemDetails, PlayHistoryPage, PlayRecord


def _safe_int(x: Any, default: int = 0) -> int:
    if x is None:
        return default
    try:
        return int(x)
    except (ValueError, TypeError):
        return default


def _descriptions(items: Any) -> list[str]:
    if not isinstance(items, list):
        return []
    out: list[str] = []
    for it in items:
        if isinstance(it, dict) and it.get("description"):
            out.append(str(it["description"]))
    return out


def _strings(items: Any) -> list[str]:
    if not isinstance(items, list):
        return []
    return [str(x) for x in items if x]


class SteamPlayHistoryProvider:
    """user_id is a SteamID64."""

    def __init__(self, client: SteamClient):
        self.client = client

    async def _records(self, user_id: str) -> list[PlayRecord]:
        games = await self.client.get_owned_games(user_id)
        records = [
            PlayRecord(
                item_id=_safe_int(g.get("appid")),
                name=str(g.get("name") or ""),
                playtime_minutes=_safe_int(g.get("playtime_forever")),
            )
            for g in games
            if isinstance(g, dict) and g.get("appid") is not None
        ]
        # stable: equal playtimes keep Steam's order
        records.sort(key=lambda r: r.playtime_minutes, reverse=True)
        return records

    async def get_top_played(self, user_id: str, limit: int) -> list[PlayRecord]:
        records = await self._records(user_id)
        return [r for r in records if r.playtime_minutes > 0][: max(0, int(limit))]

    async def get_all_played(self, user_id: str, limit: int, offset: int) -> PlayHistoryPage:
        records = await self._records(user_id)
        start = max(0, int(offset))
        return PlayHistoryPage(items=records[start : start + max(0, int(limit))], total_count=len(records))


class SteamMetadataProvider:
    def __init__(self, client: SteamClient):
        self.client = client

    async def get_details(self, item_id: int) -> ItemDetails | None:
        data = await self.client.get_appdetails(int(item_id))
        if not data:
            return None
        return ItemDetails(
            name=str(data.get("name") or ""),
            short_description=str(data.get("short_description") or ""),
            genres=_descriptions(data.get("genres")),
            tags=_descriptions(data.get("categories")),
            developers=_strings(data.get("developers")),
            publishers=_strings(data.get("publishers")),
        )
