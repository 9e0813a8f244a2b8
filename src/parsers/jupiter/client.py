"""Jupiter Price API client — current USD price per token."""

import asyncio
from decimal import Decimal, InvalidOperation

import httpx
from loguru import logger

from src.parsers.jupiter.models import JupiterPrice
from src.parsers.rate_limiter import RateLimiter

BASE_URL = "https://api.jup.ag/price/v2"
MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]


class JupiterClient:
    """Async HTTP client for the Jupiter price endpoint."""

    def __init__(
        self,
        api_key: str = "",
        max_rps: float = 1.0,
        base_url: str = BASE_URL,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url
        self._rate_limiter = RateLimiter(max_rps)
        headers: dict[str, str] = {}
        if api_key:
            headers["x-api-key"] = api_key
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers)

    async def close(self) -> None:
        await self._client.aclose()

    async def get_price(self, mint: str) -> Decimal | None:
        """Latest price for mint, or None when unknown or the API fails."""
        quote = await self.get_price_info(mint)
        return quote.price if quote else None

    async def get_price_info(self, mint: str) -> JupiterPrice | None:
        for attempt in range(MAX_RETRIES + 1):
            try:
                await self._rate_limiter.acquire()
                resp = await self._client.get(self._base_url, params={"ids": mint})

                if resp.status_code == 429:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[JUPITER] Rate limited, waiting {delay}s")
                    await asyncio.sleep(delay)
                    continue
                if resp.status_code != 200:
                    logger.debug(f"[JUPITER] HTTP {resp.status_code} for {mint}")
                    return None

                return parse_price(resp.json(), mint)

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[JUPITER] {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                else:
                    logger.warning(f"[JUPITER] Failed after {MAX_RETRIES + 1} attempts: {e}")
                    return None

        return None


def parse_price(data: dict, mint: str) -> JupiterPrice | None:
    """Parse Jupiter API response for a single mint."""
    token_data = (data.get("data") or {}).get(mint)
    if not token_data:
        return None

    price_raw = token_data.get("price")
    if price_raw is None:
        return None
    try:
        price = Decimal(str(price_raw))
    except InvalidOperation:
        logger.debug(f"[JUPITER] Unparseable price {price_raw!r} for {mint}")
        return None
    if price <= 0:
        return None

    return JupiterPrice(id=mint, type=token_data.get("type", ""), price=price)
