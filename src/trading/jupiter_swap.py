"""Jupiter swap execution — quote, build transaction, sign, send, confirm.

Pipeline:
  1. GET /swap/v1/quote — optimal route for the full amount
  2. POST /swap/v1/swap — serialized VersionedTransaction for our wallet
  3. Sign locally with the wallet keypair
  4. Send via RPC sendTransaction
  5. Poll getSignatureStatuses until confirmed

input_mint=None means "spend SOL": the configured buy size is swapped out of
WSOL. Selling a token swaps the whole wallet balance of that token.
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx
from loguru import logger
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.transaction import VersionedTransaction  # type: ignore[import-untyped]

from src.parsers.rate_limiter import RateLimiter

QUOTE_URL = "https://api.jup.ag/swap/v1/quote"
SWAP_URL = "https://api.jup.ag/swap/v1/swap"
WSOL_MINT = "So11111111111111111111111111111111111111112"

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]

LAMPORTS_PER_SOL = 1_000_000_000

# Confirmation polling
CONFIRM_POLL_INTERVAL = 2.0  # seconds
CONFIRM_TIMEOUT = 60  # seconds


@dataclass
class SwapResult:
    """Result of a swap execution attempt."""

    success: bool
    tx_hash: str | None = None
    input_amount: Decimal | None = None
    output_amount: Decimal | None = None
    error: str | None = None


class JupiterSwapClient:
    """Executes Jupiter swaps for a single wallet."""

    def __init__(
        self,
        *,
        api_key: str = "",
        rpc_url: str,
        keypair: Keypair,
        buy_amount_sol: float = 0.05,
        max_rps: float = 1.0,
        slippage_bps: int = 500,
        priority_fee_lamports: int | str = "auto",
    ) -> None:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key

        self._http = httpx.AsyncClient(timeout=15.0, headers=headers)
        self._rpc_http = httpx.AsyncClient(timeout=30.0)
        self._rpc_url = rpc_url
        self._keypair = keypair
        self._buy_lamports = int(Decimal(str(buy_amount_sol)) * LAMPORTS_PER_SOL)
        self._rate_limiter = RateLimiter(max_rps)
        self._slippage_bps = slippage_bps
        self._priority_fee = priority_fee_lamports

    async def close(self) -> None:
        await self._http.aclose()
        await self._rpc_http.aclose()

    async def swap(self, input_mint: str | None, output_mint: str) -> SwapResult:
        if input_mint is None:
            input_mint = WSOL_MINT
            amount = self._buy_lamports
        else:
            amount = await self._token_balance(input_mint)
            if amount <= 0:
                # Position never opened (or already closed): nothing to sell
                logger.info(f"[SWAP] No {input_mint[:12]} balance, nothing to sell")
                return SwapResult(success=True, input_amount=Decimal(0), output_amount=Decimal(0))

        logger.info(f"[SWAP] {input_mint[:12]} -> {output_mint[:12]} amount={amount}")

        quote = await self._get_quote(input_mint, output_mint, amount)
        if quote is None:
            return SwapResult(success=False, error="Quote failed")

        swap_tx = await self._get_swap_transaction(quote)
        if swap_tx is None:
            return SwapResult(success=False, error="Swap transaction fetch failed")

        try:
            tx_b64 = self._sign(swap_tx)
        except Exception as e:
            return SwapResult(success=False, error=f"TX sign failed: {e}")

        tx_hash = await self._send_raw_transaction(tx_b64)
        if tx_hash is None:
            return SwapResult(success=False, error="sendTransaction RPC failed")

        confirmed, err = await self._wait_for_confirmation(tx_hash)
        if not confirmed:
            return SwapResult(success=False, tx_hash=tx_hash, error=err)

        return SwapResult(
            success=True,
            tx_hash=tx_hash,
            input_amount=Decimal(str(quote.get("inAmount", 0))),
            output_amount=Decimal(str(quote.get("outAmount", 0))),
        )

    # ─── Jupiter API methods ─────────────────────────────────────────

    async def _get_quote(self, input_mint: str, output_mint: str, amount: int) -> dict | None:
        """GET /swap/v1/quote with retry."""
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(self._slippage_bps),
        }
        return await self._jupiter_request("GET", QUOTE_URL, params=params)

    async def _get_swap_transaction(self, quote: dict) -> str | None:
        """POST /swap/v1/swap; returns the base64 unsigned transaction."""
        payload = {
            "quoteResponse": quote,
            "userPublicKey": str(self._keypair.pubkey()),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": self._priority_fee,
        }
        data = await self._jupiter_request("POST", SWAP_URL, json=payload)
        if data is None:
            return None
        swap_tx = data.get("swapTransaction")
        if not swap_tx:
            logger.warning("[SWAP] No swapTransaction in response")
            return None
        return swap_tx

    async def _jupiter_request(self, method: str, url: str, **kwargs: Any) -> dict | None:
        for attempt in range(MAX_RETRIES + 1):
            try:
                await self._rate_limiter.acquire()
                resp = await self._http.request(method, url, **kwargs)

                if resp.status_code == 429 or resp.status_code >= 500:
                    if attempt < MAX_RETRIES:
                        delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                        logger.debug(f"[SWAP] HTTP {resp.status_code} from {url}, retry in {delay}s")
                        await asyncio.sleep(delay)
                        continue
                    logger.warning(f"[SWAP] {url} failed: HTTP {resp.status_code}")
                    return None

                if resp.status_code != 200:
                    logger.warning(f"[SWAP] {url} HTTP {resp.status_code}: {resp.text[:200]}")
                    return None

                return resp.json()

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[SWAP] {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                else:
                    logger.warning(f"[SWAP] {url} failed after retries: {e}")
                    return None

        return None

    # ─── Wallet + RPC ────────────────────────────────────────────────

    def _sign(self, swap_tx_b64: str) -> str:
        raw = VersionedTransaction.from_bytes(base64.b64decode(swap_tx_b64))
        signed = VersionedTransaction(raw.message, [self._keypair])
        return base64.b64encode(bytes(signed)).decode("ascii")

    async def _rpc(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            resp = await self._rpc_http.post(self._rpc_url, json=payload)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[SWAP] RPC {method} failed: {e}")
            return None
        if "error" in data:
            logger.warning(f"[SWAP] RPC {method} error: {data['error']}")
            return None
        return data.get("result")

    async def _token_balance(self, mint: str) -> int:
        """Raw token balance of the wallet across all its accounts for mint."""
        result = await self._rpc(
            "getTokenAccountsByOwner",
            [
                str(self._keypair.pubkey()),
                {"mint": mint},
                {"encoding": "jsonParsed"},
            ],
        )
        if not result:
            return 0
        total = 0
        for account in result.get("value", []):
            info = account.get("account", {}).get("data", {}).get("parsed", {}).get("info", {})
            total += int(info.get("tokenAmount", {}).get("amount", 0))
        return total

    async def _send_raw_transaction(self, tx_b64: str) -> str | None:
        return await self._rpc(
            "sendTransaction",
            [tx_b64, {"encoding": "base64", "skipPreflight": True, "maxRetries": 2}],
        )

    async def _wait_for_confirmation(
        self, tx_hash: str, timeout: float = CONFIRM_TIMEOUT
    ) -> tuple[bool, str | None]:
        """Poll getSignatureStatuses until confirmed, failed on-chain, or timeout."""
        elapsed = 0.0
        while elapsed < timeout:
            result = await self._rpc("getSignatureStatuses", [[tx_hash]])
            statuses = (result or {}).get("value") or [None]
            status = statuses[0]
            if status:
                if status.get("err"):
                    logger.warning(f"[SWAP] TX {tx_hash[:16]} error on-chain: {status['err']}")
                    return False, f"Transaction failed on-chain: {status['err']}"
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    logger.debug(f"[SWAP] TX {tx_hash[:16]} confirmed in {elapsed:.1f}s")
                    return True, None
            await asyncio.sleep(CONFIRM_POLL_INTERVAL)
            elapsed += CONFIRM_POLL_INTERVAL
        return False, f"Confirmation timeout ({timeout:.0f}s)"
