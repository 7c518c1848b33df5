"""
Async Steam Web / Store API client.

Goals:
- keep every HTTP call to Steam in one place; the pipeline only sees data
- rate limit / retry / timeout policy is controlled here

Only the two endpoints the recommender needs are exposed: owned games (play
history) and store appdetails (item metadata).
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SteamClientConfig:
    # network / retries
    timeout_s: float = 10.0
    max_retries: int = 4
    backoff_base_s: float = 0.7
    backoff_cap_s: float = 10.0

    # rate limit (minimum interval between calls, seconds)
    min_interval_web_s: float = 0.25
    min_interval_store_s: float = 0.35

    # store locale
    cc: str = "us"
    lang: str = "en"


class _MinIntervalLimiter:
    def __init__(self, min_interval_s: float):
        self._min_interval_s = float(min_interval_s)
        self._next_allowed_at = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            now = time.monotonic()
            if now < self._next_allowed_at:
                await asyncio.sleep(self._next_allowed_at - now)
            self._next_allowed_at = time.monotonic() + self._min_interval_s


class SteamClient:
    """
    - Steam Web API: api.steampowered.com (key required)
    - Steam Store API: store.steampowered.com (no key)
    """

    WEB_BASE = "https://api.steampowered.com"
    STORE_BASE = "https://store.steampowered.com"

    def __init__(
        self,
        steam_api_key: str | None = None,
        *,
        config: SteamClientConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.steam_api_key = steam_api_key
        self.config = config or SteamClientConfig()

        self._web_limiter = _MinIntervalLimiter(self.config.min_interval_web_s)
        self._store_limiter = _MinIntervalLimiter(self.config.min_interval_store_s)

        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout_s),
            headers={"User-Agent": "library-recommender/steam-client"},
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "SteamClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _backoff(self, attempt: int) -> float:
        backoff = min(self.config.backoff_cap_s, self.config.backoff_base_s * (2**attempt))
        return backoff + random.uniform(0.0, 0.25 * backoff)

    async def _request_json(
        self,
        *,
        base: str,
        path: str,
        params: dict[str, Any],
        limiter: _MinIntervalLimiter,
        method: str = "GET",
    ) -> Any:
        last_exc: Exception | None = None
        url = f"{base}{path}"

        for attempt in range(self.config.max_retries + 1):
            try:
                await limiter.wait()
                resp = await self._http.request(method, url, params=params)

                # retry rate limits and server errors (429, 5xx)
                if resp.status_code == 429 or 500 <= resp.status_code <= 599:
                    if attempt < self.config.max_retries:
                        sleep_s = self._backoff(attempt)
                        retry_after = resp.headers.get("retry-after")
                        if retry_after is not None:
                            try:
                                sleep_s = min(float(retry_after), self.config.backoff_cap_s)
                            except ValueError:
                                pass
                        logger.warning(
                            "Steam %s -> %d, retry %d in %.1fs",
                            path, resp.status_code, attempt + 1, sleep_s,
                        )
                        await asyncio.sleep(sleep_s)
                        continue

                resp.raise_for_status()
                return resp.json()
            except (httpx.RequestError, httpx.HTTPStatusError, json.JSONDecodeError) as e:
                last_exc = e
                if attempt >= self.config.max_retries:
                    break
                await asyncio.sleep(self._backoff(attempt))

        assert last_exc is not None
        raise last_exc

    def _require_key(self) -> str:
        if not self.steam_api_key:
            raise ValueError("STEAM_API_KEY is required for Steam Web API calls.")
        return self.steam_api_key

    async def get_owned_games(self, steam_id: str) -> list[dict]:
        payload = await self._request_json(
            base=self.WEB_BASE,
            path="/IPlayerService/GetOwnedGames/v0001/",
            params={
                "key": self._require_key(),
                "steamid": steam_id,
                "include_appinfo": "true",
                "include_played_free_games": "true",
                "format": "json",
            },
            limiter=self._web_limiter,
        )
        return payload.get("response", {}).get("games", [])  # type: ignore[return-value]

    async def get_appdetails(self, appid: int) -> dict | None:
        """Store `data` block for one app, or None when Steam reports success=false."""
        payload = await self._request_json(
            base=self.STORE_BASE,
            path="/api/appdetails",
            params={"appids": str(appid), "cc": self.config.cc, "l": self.config.lang},
            limiter=self._store_limiter,
        )
        entry = payload.get(str(appid)) if isinstance(payload, dict) else None
        if not isinstance(entry, dict) or not entry.get("success"):
            return None
        data = entry.get("data")
        return data if isinstance(data, dict) else None
