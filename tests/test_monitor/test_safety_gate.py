"""Tests for SafetyGate — fail-closed rug check, policy, metadata enrichment."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.monitor.safety_gate import SafetyGate, SafetyPolicy
from src.parsers.helius.models import TokenMetadata
from src.parsers.rugcheck.models import RugcheckReport

MINT = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


def _gate(report=None, meta=None, *, policy=None, timeout=1.0) -> SafetyGate:
    rugcheck = MagicMock()
    rugcheck.get_token_report = AsyncMock(return_value=report)
    metadata = MagicMock()
    metadata.get_token_metadata = AsyncMock(return_value=meta)
    return SafetyGate(rugcheck=rugcheck, metadata=metadata, policy=policy, timeout=timeout)


@pytest.mark.asyncio
async def test_clean_report_passes_with_metadata():
    gate = _gate(
        RugcheckReport(mint=MINT),
        TokenMetadata(mint=MINT, name="Bonk", symbol="BONK", supply=Decimal("1000")),
    )

    result = await gate.check(MINT)

    assert result.passed
    assert result.name == "Bonk"
    assert result.total_supply == Decimal("1000")


@pytest.mark.asyncio
async def test_missing_report_fails_closed():
    result = await _gate(None).check(MINT)
    assert not result.passed
    assert result.reason == "no rug check report"


@pytest.mark.asyncio
async def test_rugcheck_exception_fails_closed():
    gate = _gate()
    gate._rugcheck.get_token_report = AsyncMock(side_effect=RuntimeError("503"))

    result = await gate.check(MINT)

    assert not result.passed
    assert "503" in result.reason


@pytest.mark.asyncio
async def test_rugcheck_timeout_fails_closed():
    async def slow(_mint):
        await asyncio.sleep(5)

    gate = _gate(timeout=0.01)
    gate._rugcheck.get_token_report = slow

    result = await gate.check(MINT)

    assert not result.passed
    assert result.reason == "rug check timed out"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fields,reason",
    [
        ({"rugged": True}, "token flagged as rugged"),
        ({"mint_authority": "Auth111"}, "mint authority still enabled"),
        ({"freeze_authority": "Auth111"}, "freeze authority still enabled"),
        ({"mutable": True}, "metadata is mutable"),
    ],
)
async def test_policy_rejections(fields, reason):
    result = await _gate(RugcheckReport(mint=MINT, **fields)).check(MINT)
    assert not result.passed
    assert result.reason == reason


@pytest.mark.asyncio
async def test_policy_can_allow_mint_authority():
    policy = SafetyPolicy(allow_mint_authority=True)
    gate = _gate(RugcheckReport(mint=MINT, mint_authority="Auth111"), policy=policy)
    assert (await gate.check(MINT)).passed


@pytest.mark.asyncio
async def test_metadata_failure_does_not_fail_gate():
    gate = _gate(RugcheckReport(mint=MINT, token_name="FromReport", supply=Decimal("42")))
    gate._metadata.get_token_metadata = AsyncMock(side_effect=RuntimeError("DAS down"))

    result = await gate.check(MINT)

    assert result.passed
    assert result.name == "FromReport"
    assert result.total_supply == Decimal("42")


@pytest.mark.asyncio
async def test_fetch_metadata_defaults():
    name, supply = await _gate().fetch_metadata(MINT)
    assert name == "Unknown"
    assert supply == Decimal("0")
