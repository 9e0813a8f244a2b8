"""Rugcheck.xyz API client — contract security report for Solana tokens."""

import asyncio
from decimal import Decimal, InvalidOperation

import httpx
from loguru import logger

from src.parsers.rate_limiter import RateLimiter
from src.parsers.rugcheck.models import RugcheckReport, RugcheckRisk

BASE_URL = "https://api.rugcheck.xyz/v1"
MAX_RETRIES = 2
RETRY_DELAYS = [2.0, 5.0]


class RugcheckClient:
    """Async HTTP client for Rugcheck.xyz (free, no API key)."""

    def __init__(self, max_rps: float = 2.0, timeout: float = 15.0) -> None:
        self._rate_limiter = RateLimiter(max_rps)
        self._client = httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def get_token_report(self, mint: str) -> RugcheckReport | None:
        """Fetch the full token report.

        Returns None if token not found or API error.
        """
        url = f"{BASE_URL}/tokens/{mint}/report"

        for attempt in range(MAX_RETRIES + 1):
            try:
                await self._rate_limiter.acquire()
                resp = await self._client.get(url)

                if resp.status_code == 404:
                    return None
                if resp.status_code == 429:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[RUGCHECK] Rate limited, waiting {delay}s")
                    await asyncio.sleep(delay)
                    continue
                if resp.status_code != 200:
                    logger.debug(f"[RUGCHECK] HTTP {resp.status_code} for {mint}")
                    return None

                return parse_report(resp.json(), mint)

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[RUGCHECK] {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                else:
                    logger.warning(f"[RUGCHECK] Failed after {MAX_RETRIES + 1} attempts: {e}")
                    return None

        return None


def parse_report(data: dict, mint: str) -> RugcheckReport:
    """Parse raw JSON into RugcheckReport."""
    risks = [
        RugcheckRisk(
            name=r.get("name", "unknown"),
            description=r.get("description", ""),
            level=r.get("level", "info"),
            score=r.get("score", 0),
        )
        for r in data.get("risks") or []
    ]

    token_meta = data.get("tokenMeta") or {}
    token = data.get("token") or {}

    supply = None
    raw_supply = token.get("supply")
    if raw_supply is not None:
        try:
            supply = Decimal(str(raw_supply)) / (Decimal(10) ** int(token.get("decimals", 0)))
        except (InvalidOperation, ValueError):
            supply = None

    return RugcheckReport(
        mint=mint,
        rugged=bool(data.get("rugged", False)),
        mint_authority=data.get("mintAuthority") or token.get("mintAuthority") or None,
        freeze_authority=data.get("freezeAuthority") or token.get("freezeAuthority") or None,
        mutable=bool(token_meta.get("mutable", False)),
        score=data.get("score", 0) or 0,
        risks=risks,
        token_name=token_meta.get("name", "") or "",
        token_symbol=token_meta.get("symbol", "") or "",
        supply=supply,
    )
