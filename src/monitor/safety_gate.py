"""Safety gate — rug check + best-effort metadata enrichment.

Fails closed: a rug check that errors, times out or returns nothing counts as
unsafe. Metadata is optional and never fails the gate.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from src.parsers.helius.client import HeliusClient
    from src.parsers.rugcheck.client import RugcheckClient
    from src.parsers.rugcheck.models import RugcheckReport


@dataclass
class GateResult:
    passed: bool
    name: str = "Unknown"
    total_supply: Decimal = Decimal("0")
    reason: str = ""


@dataclass
class SafetyPolicy:
    allow_mint_authority: bool = False
    allow_freeze_authority: bool = False
    allow_mutable: bool = False

    def rejection_reason(self, report: RugcheckReport) -> str | None:
        if report.rugged:
            return "token flagged as rugged"
        if report.mint_authority and not self.allow_mint_authority:
            return "mint authority still enabled"
        if report.freeze_authority and not self.allow_freeze_authority:
            return "freeze authority still enabled"
        if report.mutable and not self.allow_mutable:
            return "metadata is mutable"
        return None


class SafetyGate:
    def __init__(
        self,
        *,
        rugcheck: RugcheckClient,
        metadata: HeliusClient,
        policy: SafetyPolicy | None = None,
        timeout: float = 20.0,
    ) -> None:
        self._rugcheck = rugcheck
        self._metadata = metadata
        self._policy = policy or SafetyPolicy()
        self._timeout = timeout

    async def check(self, address: str) -> GateResult:
        try:
            report = await asyncio.wait_for(
                self._rugcheck.get_token_report(address), timeout=self._timeout
            )
        except TimeoutError:
            logger.error(f"[GATE] Rug check timed out for {address}")
            return GateResult(passed=False, reason="rug check timed out")
        except Exception as e:
            logger.error(f"[GATE] Rug check failed for {address}: {e}")
            return GateResult(passed=False, reason=f"rug check failed: {e}")

        if report is None:
            logger.warning(f"[GATE] No rug check report for {address}")
            return GateResult(passed=False, reason="no rug check report")

        reason = self._policy.rejection_reason(report)
        if reason is not None:
            logger.warning(f"[GATE] 🚫 {address} rejected: {reason}")
            return GateResult(passed=False, reason=reason)

        name, supply = await self.fetch_metadata(address)
        if name == "Unknown" and report.token_name:
            name = report.token_name
        if supply == 0 and report.supply:
            supply = report.supply

        logger.info(f"[GATE] ✅ Rug check passed for {address} ({name})")
        return GateResult(passed=True, name=name, total_supply=supply)

    async def fetch_metadata(self, address: str) -> tuple[str, Decimal]:
        """Best-effort (name, supply); ("Unknown", 0) on any failure."""
        try:
            meta = await asyncio.wait_for(
                self._metadata.get_token_metadata(address), timeout=self._timeout
            )
        except TimeoutError:
            logger.warning(f"[GATE] Metadata lookup timed out for {address}")
            return "Unknown", Decimal("0")
        except Exception as e:
            logger.warning(f"[GATE] Metadata lookup failed for {address}: {e}")
            return "Unknown", Decimal("0")

        if meta is None:
            logger.debug(f"[GATE] No metadata for {address}")
            return "Unknown", Decimal("0")
        return meta.name or "Unknown", meta.supply
