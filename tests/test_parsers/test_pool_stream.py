"""Tests for RaydiumPoolStream — message classification, pool detection, reconnect."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from config.settings import RAYDIUM_AMM_V4_PROGRAM_ID
from src.monitor.events import EventKind
from src.parsers.raydium.models import (
    LogsNotification,
    MalformedMessage,
    RpcErrorEnvelope,
    SubscriptionAck,
    classify_message,
)
from src.parsers.raydium.ws_client import ConnectionState, RaydiumPoolStream

SIG = "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"
MINT = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


def _notification(logs, err=None) -> dict:
    return {
        "jsonrpc": "2.0",
        "method": "logsNotification",
        "params": {
            "result": {"context": {"slot": 1}, "value": {"signature": SIG, "err": err, "logs": logs}},
            "subscription": 42,
        },
    }


POOL_LOGS = [
    f"Program {RAYDIUM_AMM_V4_PROGRAM_ID} invoke [1]",
    "Program log: initialize2: InitializeInstruction2 { nonce: 254, open_time: 0 }",
]


def _stream(queue=None, resolve=None, **kwargs) -> RaydiumPoolStream:
    return RaydiumPoolStream(
        "wss://example.invalid",
        program_id=RAYDIUM_AMM_V4_PROGRAM_ID,
        queue=queue if queue is not None else asyncio.Queue(),
        resolve_mint=resolve or AsyncMock(return_value=MINT),
        **kwargs,
    )


# ── classify_message ───────────────────────────────────────────────────


def test_classify_ack():
    assert classify_message({"jsonrpc": "2.0", "result": 42, "id": 1}) == SubscriptionAck(42)


def test_classify_rpc_error():
    parsed = classify_message({"error": {"code": -32602, "message": "Invalid params"}})
    assert parsed == RpcErrorEnvelope(code=-32602, message="Invalid params")


def test_classify_notification():
    parsed = classify_message(_notification(["a", "b"]))
    assert isinstance(parsed, LogsNotification)
    assert parsed.signature == SIG
    assert parsed.logs == ["a", "b"]
    assert not parsed.failed


def test_classify_failed_notification():
    parsed = classify_message(_notification([], err={"InstructionError": [0, "Custom"]}))
    assert parsed.failed


@pytest.mark.parametrize(
    "payload",
    [
        [1, 2, 3],
        "hello",
        {"jsonrpc": "2.0"},
        {"params": {"result": {"value": {"logs": []}}}},  # no signature
    ],
)
def test_classify_malformed(payload):
    assert isinstance(classify_message(payload), MalformedMessage)


# ── handle_message ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_pool_init_log_enqueues_discovery():
    queue = asyncio.Queue()
    resolve = AsyncMock(return_value=MINT)
    stream = _stream(queue, resolve)

    stream.handle_message(json.dumps(_notification(POOL_LOGS)))
    event = await asyncio.wait_for(queue.get(), timeout=1.0)

    resolve.assert_awaited_once_with(SIG)
    assert event.address == MINT
    assert event.kind is EventKind.DISCOVERED
    assert event.source == "stream"
    assert event.signature == SIG


@pytest.mark.asyncio
async def test_logs_without_marker_ignored():
    resolve = AsyncMock(return_value=MINT)
    stream = _stream(resolve=resolve)

    stream.handle_message(json.dumps(_notification(["Program log: swap"])))
    await asyncio.sleep(0)

    resolve.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_transaction_ignored():
    resolve = AsyncMock(return_value=MINT)
    stream = _stream(resolve=resolve)

    stream.handle_message(json.dumps(_notification(POOL_LOGS, err={"InstructionError": []})))
    await asyncio.sleep(0)

    resolve.assert_not_awaited()


@pytest.mark.asyncio
async def test_unresolved_mint_not_enqueued():
    queue = asyncio.Queue()
    stream = _stream(queue, AsyncMock(return_value=None))

    stream.handle_message(json.dumps(_notification(POOL_LOGS)))
    await asyncio.sleep(0.01)

    assert queue.empty()


@pytest.mark.asyncio
async def test_garbage_frames_do_not_raise():
    stream = _stream()
    stream.handle_message("not json{")
    stream.handle_message(b"\xff\xfe")
    stream.handle_message("[]")
    stream.handle_message(json.dumps({"error": "nope"}))


def test_ack_records_subscription_id():
    stream = _stream()
    stream.handle_message(json.dumps({"jsonrpc": "2.0", "result": 7, "id": 1}))
    assert stream.subscription_id == 7


def test_subscribe_request_shape():
    req = _stream(commitment="confirmed").subscribe_request()
    assert req["method"] == "logsSubscribe"
    assert req["params"][0] == {"mentions": [RAYDIUM_AMM_V4_PROGRAM_ID]}
    assert req["params"][1] == {"commitment": "confirmed"}


# ── Reconnect ──────────────────────────────────────────────────────────


class FakeConnection:
    def __init__(self, frames: list[str]) -> None:
        self.frames = frames
        self.sent: list[str] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        pass

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for frame in self.frames:
            yield frame


@pytest.mark.asyncio
async def test_reconnects_after_transport_errors():
    attempts = 0

    def failing_connect(*args, **kwargs):
        nonlocal attempts
        attempts += 1
        raise OSError("connection refused")

    stream = _stream(connect_factory=failing_connect, reconnect_delay=5.0)
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)
        if len(sleeps) == 3:
            stream._running = False

    with patch("src.parsers.raydium.ws_client.asyncio.sleep", side_effect=fake_sleep):
        await stream.connect()

    assert attempts == 3
    assert sleeps == [5.0, 5.0, 5.0]
    assert stream.reconnect_count == 3
    assert stream.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_resubscribes_after_remote_close():
    conns = [
        FakeConnection([json.dumps({"jsonrpc": "2.0", "result": 1, "id": 1})]),
        FakeConnection([json.dumps(_notification(POOL_LOGS))]),
    ]
    stream = _stream(connect_factory=lambda *a, **kw: conns.pop(0))

    async def fake_sleep(delay):
        if not conns:
            stream._running = False

    queue = stream._queue
    with patch("src.parsers.raydium.ws_client.asyncio.sleep", side_effect=fake_sleep):
        await stream.connect()

    event = await asyncio.wait_for(queue.get(), timeout=1.0)
    assert event.address == MINT
    assert stream.reconnect_count == 2
    assert stream.message_count == 2
