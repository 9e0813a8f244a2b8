"""Tests for Helius client — pool mint extraction, metadata, dev-sold detection."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config.settings import RAYDIUM_AMM_V4_PROGRAM_ID, WSOL_MINT
from src.parsers.helius.client import HeliusClient, _parse_tx, extract_pool_mint, parse_asset

MINT = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
DEV = "DevWa11et1111111111111111111111111111111111"
SIG = "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"


def _pool_tx(coin: str, pc: str, program: str = RAYDIUM_AMM_V4_PROGRAM_ID) -> dict:
    accounts = [f"Acc{i}" for i in range(8)] + [coin, pc] + ["Acc10", "Acc11"]
    return {
        "signature": SIG,
        "type": "CREATE_POOL",
        "feePayer": DEV,
        "instructions": [
            {"programId": "ComputeBudget111111111111111111111111111111", "accounts": []},
            {"programId": program, "accounts": accounts, "data": "xyz"},
        ],
    }


def _response(status: int, payload=None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    return resp


# ── extract_pool_mint ──────────────────────────────────────────────────


def test_extract_mint_when_sol_is_pc():
    tx = _parse_tx(_pool_tx(MINT, WSOL_MINT))
    assert extract_pool_mint(tx, program_id=RAYDIUM_AMM_V4_PROGRAM_ID, quote_mint=WSOL_MINT) == MINT


def test_extract_mint_when_sol_is_coin():
    tx = _parse_tx(_pool_tx(WSOL_MINT, MINT))
    assert extract_pool_mint(tx, program_id=RAYDIUM_AMM_V4_PROGRAM_ID, quote_mint=WSOL_MINT) == MINT


def test_extract_mint_non_sol_pair():
    tx = _parse_tx(_pool_tx(MINT, "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"))
    assert extract_pool_mint(tx, program_id=RAYDIUM_AMM_V4_PROGRAM_ID, quote_mint=WSOL_MINT) is None


def test_extract_mint_other_program():
    tx = _parse_tx(_pool_tx(MINT, WSOL_MINT, program="Other1111111111111111111111111111111111111"))
    assert extract_pool_mint(tx, program_id=RAYDIUM_AMM_V4_PROGRAM_ID, quote_mint=WSOL_MINT) is None


@pytest.mark.asyncio
async def test_resolve_pool_mint_retries_until_indexed():
    client = HeliusClient("key", max_rps=100)
    client.get_parsed_transactions = AsyncMock(side_effect=[[], [_parse_tx(_pool_tx(MINT, WSOL_MINT))]])

    with patch("src.parsers.helius.client.asyncio.sleep", new_callable=AsyncMock):
        mint = await client.resolve_pool_mint(
            SIG, program_id=RAYDIUM_AMM_V4_PROGRAM_ID, quote_mint=WSOL_MINT
        )

    assert mint == MINT
    assert client.get_parsed_transactions.await_count == 2


@pytest.mark.asyncio
async def test_resolve_pool_mint_gives_up():
    client = HeliusClient("key", max_rps=100)
    client.get_parsed_transactions = AsyncMock(return_value=[])

    with patch("src.parsers.helius.client.asyncio.sleep", new_callable=AsyncMock):
        mint = await client.resolve_pool_mint(
            SIG, program_id=RAYDIUM_AMM_V4_PROGRAM_ID, quote_mint=WSOL_MINT, attempts=3
        )

    assert mint is None
    assert client.get_parsed_transactions.await_count == 3


# ── metadata ───────────────────────────────────────────────────────────


def test_parse_asset():
    asset = {
        "content": {"metadata": {"name": "Bonk", "symbol": "BONK"}},
        "token_info": {"supply": 5_000_000_000, "decimals": 5},
    }
    meta = parse_asset(asset, MINT)
    assert meta.name == "Bonk"
    assert meta.symbol == "BONK"
    assert meta.supply == Decimal("50000")


def test_parse_asset_empty():
    meta = parse_asset({}, MINT)
    assert meta.name == "Unknown"
    assert meta.supply == Decimal("0")


@pytest.mark.asyncio
async def test_get_token_metadata_rpc_error():
    client = HeliusClient("key", max_rps=100)
    with patch.object(client, "_client") as mock_http:
        mock_http.post = AsyncMock(return_value=_response(200, {"error": {"code": -32000}}))
        assert await client.get_token_metadata(MINT) is None


# ── dev sold ───────────────────────────────────────────────────────────


def _transfer_tx(sender: str, fee_payer: str, amount: float = 1000.0) -> dict:
    return {
        "signature": SIG,
        "type": "TRANSFER",
        "feePayer": fee_payer,
        "tokenTransfers": [
            {"fromUserAccount": sender, "toUserAccount": "Buyer111", "tokenAmount": amount, "mint": MINT}
        ],
    }


@pytest.mark.asyncio
async def test_dev_sold_detected():
    client = HeliusClient("key", max_rps=100)
    with patch.object(client, "_client") as mock_http:
        mock_http.get = AsyncMock(return_value=_response(200, [_transfer_tx(DEV, DEV)]))
        assert await client.has_dev_sold(MINT) is True

    params = mock_http.get.await_args.kwargs["params"]
    assert params["type"] == "TRANSFER"


@pytest.mark.asyncio
async def test_third_party_transfer_is_not_dev_sale():
    client = HeliusClient("key", max_rps=100)
    with patch.object(client, "_client") as mock_http:
        mock_http.get = AsyncMock(return_value=_response(200, [_transfer_tx("Someone", DEV)]))
        assert await client.has_dev_sold(MINT) is False


@pytest.mark.asyncio
async def test_dev_sold_unknown_on_http_error():
    client = HeliusClient("key", max_rps=100)
    with patch.object(client, "_client") as mock_http:
        mock_http.get = AsyncMock(return_value=_response(500))
        assert await client.has_dev_sold(MINT) is None
