"""Helius API client — pool resolution, token metadata and dev-sold checks."""

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
from loguru import logger

from src.parsers.helius.models import (
    HeliusInstruction,
    HeliusTokenTransfer,
    HeliusTransaction,
    TokenMetadata,
)
from src.parsers.rate_limiter import RateLimiter

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]

# Raydium AMM v4 initialize2: accounts[8] = coin mint, accounts[9] = pc mint
POOL_COIN_MINT_INDEX = 8
POOL_PC_MINT_INDEX = 9


class HeliusClient:
    """Async HTTP client for Helius Enhanced API and DAS RPC."""

    def __init__(
        self,
        api_key: str,
        rpc_url: str = "",
        max_rps: float = 10.0,
        timeout: float = 15.0,
    ) -> None:
        self._api_key = api_key
        self._rpc_url = rpc_url or f"https://mainnet.helius-rpc.com/?api-key={api_key}"
        self._api_url = "https://api.helius.xyz/v0"
        self._rate_limiter = RateLimiter(max_rps)
        self._client = httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def get_parsed_transactions(
        self, signatures: list[str]
    ) -> list[HeliusTransaction]:
        """Fetch enhanced parsed transactions by signatures (max 100)."""
        url = f"{self._api_url}/transactions?api-key={self._api_key}"
        payload = {"transactions": signatures[:100]}

        for attempt in range(MAX_RETRIES + 1):
            try:
                await self._rate_limiter.acquire()
                resp = await self._client.post(url, json=payload)

                if resp.status_code == 429:
                    await asyncio.sleep(RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)])
                    continue
                if resp.status_code != 200:
                    logger.debug(f"[HELIUS] HTTP {resp.status_code} for parsed txs")
                    return []

                return [_parse_tx(tx) for tx in resp.json()]

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)])
                else:
                    logger.warning(f"[HELIUS] get_parsed_transactions failed: {e}")
                    return []

        return []

    async def resolve_pool_mint(
        self,
        signature: str,
        *,
        program_id: str,
        quote_mint: str,
        attempts: int = 3,
        retry_delay: float = 2.0,
    ) -> str | None:
        """Resolve a pool-initialisation signature to the new token's mint.

        Freshly processed transactions are often not indexed yet, so an empty
        response is retried a few times before giving up.
        """
        for attempt in range(attempts):
            txs = await self.get_parsed_transactions([signature])
            if txs:
                return extract_pool_mint(txs[0], program_id=program_id, quote_mint=quote_mint)
            if attempt < attempts - 1:
                await asyncio.sleep(retry_delay)

        logger.debug(f"[HELIUS] Transaction {signature[:16]} not indexed after {attempts} tries")
        return None

    async def get_asset(self, asset_id: str) -> dict[str, Any] | None:
        """Fetch asset metadata via Helius DAS (Digital Asset Standard) API."""
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getAsset",
            "params": {"id": asset_id},
        }

        for attempt in range(MAX_RETRIES + 1):
            try:
                await self._rate_limiter.acquire()
                resp = await self._client.post(self._rpc_url, json=payload)

                if resp.status_code == 429:
                    await asyncio.sleep(RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)])
                    continue
                if resp.status_code != 200:
                    logger.debug(f"[HELIUS] get_asset HTTP {resp.status_code}")
                    return None

                data = resp.json()
                if "error" in data:
                    logger.debug(f"[HELIUS] get_asset RPC error: {data['error']}")
                    return None

                return data.get("result")

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)])
                else:
                    logger.warning(f"[HELIUS] get_asset failed: {e}")
                    return None

        return None

    async def get_token_metadata(self, mint: str) -> TokenMetadata | None:
        asset = await self.get_asset(mint)
        if asset is None:
            return None
        return parse_asset(asset, mint)

    async def has_dev_sold(self, mint: str) -> bool | None:
        """True if a fee payer ever transferred this mint out of its own wallet.

        Returns None when the history could not be fetched.
        """
        url = f"{self._api_url}/addresses/{mint}/transactions"
        params = {"api-key": self._api_key, "type": "TRANSFER"}

        for attempt in range(MAX_RETRIES + 1):
            try:
                await self._rate_limiter.acquire()
                resp = await self._client.get(url, params=params)

                if resp.status_code == 429:
                    await asyncio.sleep(RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)])
                    continue
                if resp.status_code != 200:
                    logger.debug(f"[HELIUS] dev-sold HTTP {resp.status_code} for {mint}")
                    return None

                txs = [_parse_tx(tx) for tx in resp.json()]
                return any(_is_dev_transfer(tx, mint) for tx in txs)

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)])
                else:
                    logger.warning(f"[HELIUS] has_dev_sold failed: {e}")
                    return None

        return None


def _is_dev_transfer(tx: HeliusTransaction, mint: str) -> bool:
    return any(
        t.mint == mint
        and t.from_user_account
        and t.from_user_account == tx.fee_payer
        and t.token_amount > 0
        for t in tx.token_transfers
    )


def extract_pool_mint(
    tx: HeliusTransaction, *, program_id: str, quote_mint: str
) -> str | None:
    """Pick the non-quote mint out of the pool program's instruction accounts."""
    for ix in tx.instructions:
        if ix.program_id != program_id:
            continue
        if len(ix.accounts) <= POOL_PC_MINT_INDEX:
            continue
        coin = ix.accounts[POOL_COIN_MINT_INDEX]
        pc = ix.accounts[POOL_PC_MINT_INDEX]
        if coin == quote_mint:
            return pc
        if pc == quote_mint:
            return coin
        # Neither side is SOL: not a pool we can buy into
        return None
    return None


def parse_asset(asset: dict, mint: str) -> TokenMetadata:
    metadata = (asset.get("content") or {}).get("metadata") or {}
    token_info = asset.get("token_info") or {}

    supply = Decimal("0")
    raw_supply = token_info.get("supply")
    if raw_supply is not None:
        try:
            supply = Decimal(str(raw_supply)) / (Decimal(10) ** int(token_info.get("decimals", 0)))
        except (InvalidOperation, ValueError):
            supply = Decimal("0")

    return TokenMetadata(
        mint=mint,
        name=metadata.get("name") or "Unknown",
        symbol=metadata.get("symbol") or token_info.get("symbol") or "",
        supply=supply,
    )


def _parse_tx(data: dict) -> HeliusTransaction:
    """Parse raw Helius enhanced transaction."""
    token_transfers = [
        HeliusTokenTransfer(
            from_user_account=t.get("fromUserAccount") or "",
            to_user_account=t.get("toUserAccount") or "",
            token_amount=t.get("tokenAmount") or 0,
            mint=t.get("mint") or "",
        )
        for t in data.get("tokenTransfers") or []
    ]

    instructions = [
        HeliusInstruction(
            program_id=ix.get("programId") or "",
            accounts=ix.get("accounts") or [],
            data=ix.get("data") or "",
        )
        for ix in data.get("instructions") or []
    ]

    return HeliusTransaction(
        signature=data.get("signature", ""),
        type=data.get("type", ""),
        source=data.get("source", ""),
        fee_payer=data.get("feePayer", ""),
        timestamp=data.get("timestamp", 0),
        token_transfers=token_transfers,
        instructions=instructions,
        transaction_error=data.get("transactionError"),
    )
