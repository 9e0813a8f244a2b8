"""WebSocket client for new Raydium pools via Solana logsSubscribe.

logsSubscribe gives us: signature + log messages. A pool-initialisation log
line marks a new pool; the signature is then resolved to the token mint with a
follow-up transaction lookup and pushed onto the discovery queue.

Reconnects forever with a fixed delay. There is no circuit breaker: the stream
is the primary discovery source and must come back on its own.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from enum import Enum

import websockets
from loguru import logger
from websockets.asyncio.client import ClientConnection, connect

from src.monitor.events import DiscoveryEvent, EventKind
from src.parsers.raydium.models import (
    LogsNotification,
    MalformedMessage,
    RpcErrorEnvelope,
    SubscriptionAck,
    classify_message,
)

POOL_INIT_MARKER = "initialize2: InitializeInstruction2"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ACTIVE = "active"


class RaydiumPoolStream:
    """logsSubscribe client that turns pool-creation logs into discovery events."""

    def __init__(
        self,
        ws_url: str,
        *,
        program_id: str,
        queue: asyncio.Queue[DiscoveryEvent],
        resolve_mint: Callable[[str], Awaitable[str | None]],
        commitment: str = "processed",
        ping_interval: float = 30.0,
        reconnect_delay: float = 5.0,
        resolve_timeout: float = 30.0,
        connect_factory: Callable[..., object] = connect,
    ) -> None:
        self._ws_url = ws_url
        self._program_id = program_id
        self._queue = queue
        self._resolve_mint = resolve_mint
        self._commitment = commitment
        self._ping_interval = ping_interval
        self._reconnect_delay = reconnect_delay
        self._resolve_timeout = resolve_timeout
        self._connect = connect_factory

        self._ws: ClientConnection | None = None
        self._state = ConnectionState.DISCONNECTED
        self._running = False
        self._message_count = 0
        self._reconnect_count = 0
        self._subscription_id: int | str | None = None
        self._pending_tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def message_count(self) -> int:
        return self._message_count

    @property
    def reconnect_count(self) -> int:
        return self._reconnect_count

    @property
    def subscription_id(self) -> int | str | None:
        return self._subscription_id

    def subscribe_request(self) -> dict:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [self._program_id]},
                {"commitment": self._commitment},
            ],
        }

    async def connect(self) -> None:
        """Connect and listen. Reconnects after every close or transport error."""
        self._running = True
        while self._running:
            try:
                self._state = ConnectionState.CONNECTING
                async with self._connect(
                    self._ws_url,
                    ping_interval=self._ping_interval,
                    ping_timeout=10,
                    close_timeout=5,
                ) as ws:
                    self._ws = ws
                    self._state = ConnectionState.CONNECTED
                    await ws.send(json.dumps(self.subscribe_request()))
                    self._state = ConnectionState.ACTIVE
                    logger.info("[STREAM] WS connected, logsSubscribe sent")
                    await self._listen()
                if self._running:
                    logger.warning("[STREAM] WS closed by remote")
            except (
                websockets.ConnectionClosed,
                websockets.InvalidHandshake,
                ConnectionError,
                OSError,
                TimeoutError,
            ) as e:
                logger.warning(f"[STREAM] WS disconnected: {e}")
            except Exception as e:
                logger.error(f"[STREAM] Unexpected WS failure: {e}")

            self._state = ConnectionState.DISCONNECTED
            self._ws = None
            self._subscription_id = None
            if self._running:
                self._reconnect_count += 1
                logger.info(f"[STREAM] Reconnecting in {self._reconnect_delay:.0f}s...")
                await asyncio.sleep(self._reconnect_delay)

    async def _listen(self) -> None:
        if not self._ws:
            return

        async for message in self._ws:
            self._message_count += 1
            self.handle_message(message)

    def handle_message(self, message: str | bytes) -> None:
        """Dispatch one raw frame. Never raises: bad frames are logged and dropped."""
        try:
            data = json.loads(message)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"[STREAM] Dropping non-JSON message: {e}")
            return

        parsed = classify_message(data)
        if isinstance(parsed, SubscriptionAck):
            self._subscription_id = parsed.subscription_id
            logger.success(
                f"[STREAM] Subscribed to {self._program_id[:8]}... (id={parsed.subscription_id})"
            )
        elif isinstance(parsed, RpcErrorEnvelope):
            logger.error(f"[STREAM] RPC error {parsed.code}: {parsed.message}")
        elif isinstance(parsed, LogsNotification):
            # Failed transactions never created a pool
            if parsed.failed:
                return
            if any(POOL_INIT_MARKER in line for line in parsed.logs):
                self._spawn(self._on_pool_created(parsed.signature))
        elif isinstance(parsed, MalformedMessage):
            logger.warning(f"[STREAM] Dropping malformed message: {parsed.reason}")

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro)
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _on_pool_created(self, signature: str) -> None:
        logger.info(f"[STREAM] New pool detected: https://solscan.io/tx/{signature}")
        try:
            mint = await asyncio.wait_for(
                self._resolve_mint(signature), timeout=self._resolve_timeout
            )
        except TimeoutError:
            logger.error(f"[STREAM] Mint lookup timed out for {signature[:16]}")
            return
        except Exception as e:
            logger.error(f"[STREAM] Mint lookup failed for {signature[:16]}: {e}")
            return

        if not mint:
            logger.warning(f"[STREAM] No token mint in pool tx {signature[:16]}, skipping")
            return

        await self._queue.put(
            DiscoveryEvent(
                address=mint,
                kind=EventKind.DISCOVERED,
                source="stream",
                signature=signature,
            )
        )

    async def stop(self) -> None:
        self._running = False
        if self._ws:
            await self._ws.close()
            self._ws = None
        for task in list(self._pending_tasks):
            task.cancel()
        self._state = ConnectionState.DISCONNECTED
