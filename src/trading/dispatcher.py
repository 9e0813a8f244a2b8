"""Trade dispatcher — bounded number of in-flight swaps.

A request that arrives while the cap is exhausted is rejected immediately
(SKIPPED), not queued: the lifecycle monitor re-evaluates the token on its
next poll anyway. The in-flight counter is only touched from the event loop
thread, incremented before the first await and decremented in a finally block.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from loguru import logger

from src.trading.jupiter_swap import SwapResult


class SwapExecutor(Protocol):
    async def swap(self, input_mint: str | None, output_mint: str) -> SwapResult: ...


class DispatchStatus(Enum):
    FILLED = "filled"
    FAILED = "failed"
    SKIPPED = "skipped"  # in-flight cap reached
    SIMULATED = "simulated"  # simulation mode, nothing sent


@dataclass
class DispatchResult:
    status: DispatchStatus
    tx_hash: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Position should be treated as taken (or released) by the caller."""
        return self.status in (DispatchStatus.FILLED, DispatchStatus.SIMULATED)


class TradeDispatcher:
    def __init__(
        self,
        swap: SwapExecutor | None,
        *,
        max_in_flight: int = 2,
        timeout: float = 90.0,
        simulation_mode: bool = False,
    ) -> None:
        if swap is None and not simulation_mode:
            raise ValueError("a swap executor is required outside simulation mode")
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self._swap = swap
        self._max_in_flight = max_in_flight
        self._timeout = timeout
        self._simulation = simulation_mode
        self._in_flight = 0
        self._peak_in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    @property
    def max_in_flight(self) -> int:
        return self._max_in_flight

    async def buy(self, address: str) -> DispatchResult:
        return await self._dispatch("BUY", None, address)

    async def sell(self, address: str, into: str) -> DispatchResult:
        return await self._dispatch("SELL", address, into)

    async def _dispatch(self, side: str, input_mint: str | None, output_mint: str) -> DispatchResult:
        token = output_mint if input_mint is None else input_mint

        if self._simulation:
            logger.info(f"[DISPATCH] 👀 {side} {token} not sent: simulation mode is enabled")
            return DispatchResult(status=DispatchStatus.SIMULATED)

        if self._in_flight >= self._max_in_flight:
            logger.warning(
                f"[DISPATCH] ⏳ {side} {token} skipped: "
                f"{self._in_flight}/{self._max_in_flight} trades in flight"
            )
            return DispatchResult(status=DispatchStatus.SKIPPED, error="in-flight cap reached")

        self._in_flight += 1
        self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        try:
            assert self._swap is not None
            result = await asyncio.wait_for(
                self._swap.swap(input_mint, output_mint), timeout=self._timeout
            )
        except TimeoutError:
            logger.error(f"[DISPATCH] {side} {token} timed out after {self._timeout:.0f}s")
            return DispatchResult(status=DispatchStatus.FAILED, error="swap timed out")
        except Exception as e:
            logger.error(f"[DISPATCH] {side} {token} raised: {e}")
            return DispatchResult(status=DispatchStatus.FAILED, error=str(e))
        finally:
            self._in_flight -= 1

        if not result.success:
            logger.warning(f"[DISPATCH] ⛔ {side} {token} failed: {result.error}")
            return DispatchResult(status=DispatchStatus.FAILED, tx_hash=result.tx_hash, error=result.error)

        if result.tx_hash is None:
            logger.info(f"[DISPATCH] {side} {token}: nothing to swap")
        else:
            logger.success(f"[DISPATCH] 🚀 {side} {token}: https://solscan.io/tx/{result.tx_hash}")
        return DispatchResult(status=DispatchStatus.FILLED, tx_hash=result.tx_hash)
