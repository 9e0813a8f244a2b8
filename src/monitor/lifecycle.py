"""Lifecycle monitor — owns every token's state machine.

    discovered --gate pass + price--> active
    active --price > reference * (1 + trigger%)--> buying --> active (bought)
    active --dev sold--> inactive
    active --another token designated--> selling --> inactive
    inactive --older than retention--> deleted

The monitor is the only writer of the token store. Work for one address is
serialised by a per-address lock (gating, polling and designation never
interleave for the same token); different addresses proceed concurrently.
Network calls run outside the store's critical sections and each one is
bounded by a timeout.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, TypeVar

from loguru import logger

from src.models.token import TrackedToken, utcnow
from src.monitor.events import DiscoveryEvent, EventKind
from src.monitor.scheduler import Scheduler

if TYPE_CHECKING:
    from config.settings import Settings
    from src.db.token_store import TokenStore
    from src.monitor.safety_gate import SafetyGate
    from src.trading.dispatcher import DispatchResult, TradeDispatcher

T = TypeVar("T")

PriceLookup = Callable[[str], Awaitable[Decimal | None]]
DevSoldLookup = Callable[[str], Awaitable[bool | None]]


@dataclass
class MonitorConfig:
    buy_trigger_pct: Decimal = Decimal("200")
    buy_window_hours: float | None = None
    poll_interval_sec: float = 10.0
    poll_token_delay_sec: float = 0.6
    cleanup_interval_sec: float = 24 * 60 * 60
    token_max_age_hours: float = 72
    call_timeout_sec: float = 20.0
    buy_initial_delay_sec: float = 0.0
    wsol_mint: str = "So11111111111111111111111111111111111111112"
    max_concurrent_events: int = 10
    trade_drain_timeout_sec: float = 90.0  # how long stop() waits for sent swaps

    @classmethod
    def from_settings(cls, cfg: Settings) -> MonitorConfig:
        return cls(
            buy_trigger_pct=Decimal(str(cfg.buy_trigger_pct)),
            buy_window_hours=cfg.buy_window_hours,
            poll_interval_sec=cfg.poll_interval_sec,
            poll_token_delay_sec=cfg.poll_token_delay_sec,
            cleanup_interval_sec=cfg.cleanup_interval_sec,
            token_max_age_hours=cfg.token_max_age_hours,
            call_timeout_sec=cfg.external_call_timeout_sec,
            buy_initial_delay_sec=cfg.buy_initial_delay_sec,
            wsol_mint=cfg.wsol_mint,
            max_concurrent_events=cfg.max_concurrent_events,
            trade_drain_timeout_sec=cfg.swap_timeout_sec,
        )


class LifecycleMonitor:
    def __init__(
        self,
        *,
        store: TokenStore,
        gate: SafetyGate,
        dispatcher: TradeDispatcher,
        get_price: PriceLookup,
        check_dev_sold: DevSoldLookup,
        config: MonitorConfig | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._store = store
        self._gate = gate
        self._dispatcher = dispatcher
        self._get_price = get_price
        self._check_dev_sold = check_dev_sold
        self._config = config or MonitorConfig()
        self._scheduler = scheduler or Scheduler()

        self._address_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._pending_tasks: set[asyncio.Task] = set()
        self._trade_tasks: set[asyncio.Task] = set()
        self._event_slots = asyncio.Semaphore(self._config.max_concurrent_events)
        self._consumer: asyncio.Task | None = None
        self._stopping = False

    @property
    def active_events(self) -> int:
        return len(self._pending_tasks)

    # ─── Lifecycle ───────────────────────────────────────────────────

    def start(self, queue: asyncio.Queue[DiscoveryEvent]) -> None:
        cfg = self._config
        self._scheduler.add("poll", cfg.poll_interval_sec, self.run_poll_sweep)
        self._scheduler.add(
            "cleanup",
            cfg.cleanup_interval_sec,
            self.run_cleanup,
            initial_delay_sec=cfg.cleanup_interval_sec,
        )
        self._scheduler.start()
        self._consumer = asyncio.create_task(self.consume(queue), name="discovery_consumer")
        logger.info("[MONITOR] Token monitoring started")

    async def stop(self) -> None:
        self._stopping = True
        await self._scheduler.stop()
        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None

        # Event handlers stop here, but swaps already sent run to completion
        # (shielded in _dispatch); their results are discarded.
        pending = list(self._pending_tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        trades = list(self._trade_tasks)
        if trades:
            logger.info(f"[MONITOR] Waiting for {len(trades)} in-flight trades to finish")
            _, unfinished = await asyncio.wait(
                trades, timeout=self._config.trade_drain_timeout_sec
            )
            if unfinished:
                logger.warning(f"[MONITOR] {len(unfinished)} trades still running at shutdown")
        logger.info("[MONITOR] Token monitoring stopped")

    # ─── Event intake ────────────────────────────────────────────────

    async def consume(self, queue: asyncio.Queue[DiscoveryEvent]) -> None:
        """Single consumer of the discovery queue.

        At most max_concurrent_events handlers run at once; while all slots are
        busy nothing is taken off the queue, so a full queue blocks producers.
        """
        while True:
            await self._event_slots.acquire()
            try:
                event = await queue.get()
            except BaseException:
                self._event_slots.release()
                raise
            task = asyncio.create_task(self._handle_event(event))
            self._pending_tasks.add(task)
            task.add_done_callback(functools.partial(self._on_event_done, queue))

    def _on_event_done(self, queue: asyncio.Queue[DiscoveryEvent], task: asyncio.Task) -> None:
        # Runs even if the handler was cancelled before it started
        self._pending_tasks.discard(task)
        self._event_slots.release()
        queue.task_done()

    async def _handle_event(self, event: DiscoveryEvent) -> None:
        try:
            if event.kind is EventKind.DESIGNATED:
                await self.set_correct_token(event.address)
            else:
                await self.handle_discovery(event.address, source=event.source)
        except Exception as e:
            logger.error(f"[MONITOR] Error handling {event.kind.value} {event.address}: {e}")

    @asynccontextmanager
    async def _address_lock(self, address: str) -> AsyncIterator[None]:
        lock = self._address_locks.setdefault(address, asyncio.Lock())
        self._lock_users[address] = self._lock_users.get(address, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[address] -= 1
            if self._lock_users[address] == 0:
                del self._lock_users[address]
                del self._address_locks[address]

    async def _call(self, what: str, address: str, coro: Awaitable[T]) -> T | None:
        """Await an external call with the configured timeout; None on any failure."""
        try:
            return await asyncio.wait_for(coro, timeout=self._config.call_timeout_sec)
        except TimeoutError:
            logger.error(f"[MONITOR] {what} timed out for {address}")
        except Exception as e:
            logger.error(f"[MONITOR] {what} failed for {address}: {e}")
        return None

    # ─── Discovery → active ──────────────────────────────────────────

    async def handle_discovery(self, address: str, *, source: str = "") -> bool:
        """Gate and enroll a newly discovered token. Returns True if enrolled."""
        async with self._address_lock(address):
            if await self._store.get_token(address) is not None:
                logger.info(f"[MONITOR] Token {address} already being monitored")
                return False

            result = await self._gate.check(address)
            if not result.passed:
                logger.warning(f"[MONITOR] 🚫 {address} not added: {result.reason}")
                return False

            price = await self._call("Price lookup", address, self._get_price(address))
            if price is None or price <= 0:
                logger.warning(f"[MONITOR] {address} dropped: no price available")
                return False

            return await self._enroll(
                address, price, name=result.name, total_supply=result.total_supply, source=source
            )

    async def _enroll(
        self,
        address: str,
        price: Decimal,
        *,
        name: str,
        total_supply: Decimal,
        source: str,
    ) -> bool:
        market_cap = price * total_supply if total_supply else None
        created = await self._store.add_token(
            address,
            price,
            name=name,
            total_supply=total_supply,
            market_cap=market_cap,
            source=source,
        )
        if created:
            logger.success(f"[MONITOR] Added new token to monitor: {address} ({name}) @ {price}")
        else:
            logger.info(f"[MONITOR] Token {address} already being monitored")
        return created

    # ─── Poll sweep ──────────────────────────────────────────────────

    async def run_poll_sweep(self) -> None:
        tokens = await self._store.get_active_tokens()
        for i, token in enumerate(tokens):
            if i and self._config.poll_token_delay_sec:
                await asyncio.sleep(self._config.poll_token_delay_sec)
            try:
                await self.evaluate_token(token)
            except Exception as e:
                logger.error(f"[MONITOR] Error checking token {token.address}: {e}")

    async def evaluate_token(self, token: TrackedToken) -> None:
        address = token.address
        async with self._address_lock(address):
            current = await self._store.get_token(address)
            if current is None or not current.is_active:
                return

            price = await self._call("Price lookup", address, self._get_price(address))
            if price is None:
                logger.warning(f"[MONITOR] No price for {address} this cycle")
            else:
                await self._store.update_price(address, price)
                change = current.price_change_pct(price)
                logger.debug(f"[MONITOR] {address} {price} ({change:+.1f}% vs reference)")
                if change > self._config.buy_trigger_pct:
                    await self._on_trigger(current, change)

            dev_sold = await self._call("Dev-sold check", address, self._check_dev_sold(address))
            if dev_sold:
                if await self._store.mark_inactive(address):
                    logger.warning(f"[MONITOR] Developer sold tokens for {address}, marking as inactive")

    def _in_buy_window(self, token: TrackedToken) -> bool:
        hours = self._config.buy_window_hours
        if hours is None:
            return True
        return utcnow() - token.discovered_at <= timedelta(hours=hours)

    async def _on_trigger(self, token: TrackedToken, change: Decimal) -> None:
        if token.bought_at is not None:
            logger.debug(f"[MONITOR] {token.address} above trigger but already bought")
            return
        if not self._in_buy_window(token):
            logger.info(f"[MONITOR] {token.address} +{change:.0f}% outside buy window, skipping")
            return
        logger.info(f"[MONITOR] 📈 {token.address} up {change:.0f}%, buying")
        await self._buy(token.address)

    async def _dispatch(self, call: Awaitable[DispatchResult]) -> DispatchResult:
        """Run a trade in its own task; cancelling the caller never cancels the swap."""
        trade = asyncio.ensure_future(call)
        self._trade_tasks.add(trade)
        trade.add_done_callback(self._trade_tasks.discard)
        return await asyncio.shield(trade)

    async def _buy(self, address: str) -> bool:
        result = await self._dispatch(self._dispatcher.buy(address))
        if self._stopping:
            logger.warning(f"[MONITOR] Shutting down, discarding buy result for {address}")
            return False
        if not result.ok:
            logger.warning(
                f"[MONITOR] Buy for {address} {result.status.value}: {result.error}, retrying next cycle"
            )
            return False
        await self._store.mark_bought(address)
        logger.success(f"[MONITOR] Bought token {address}")
        return True

    # ─── Designation ─────────────────────────────────────────────────

    async def set_correct_token(self, address: str) -> None:
        """Sell every other active token, then make sure the designated one is held."""
        logger.info(f"[MONITOR] Setting correct token: {address}")

        for token in await self._store.get_active_tokens():
            if token.address == address:
                continue
            try:
                await self._sell_incorrect(token.address)
            except Exception as e:
                logger.error(f"[MONITOR] Error selling token {token.address}: {e}")

        await self._hold_designated(address)

    async def _sell_incorrect(self, address: str) -> None:
        async with self._address_lock(address):
            current = await self._store.get_token(address)
            if current is None or not current.is_active:
                return
            result = await self._dispatch(self._dispatcher.sell(address, self._config.wsol_mint))
            if self._stopping:
                logger.warning(f"[MONITOR] Shutting down, discarding sell result for {address}")
                return
            if not result.ok:
                logger.error(f"[MONITOR] Could not sell {address}: {result.error or result.status.value}")
                return
            await self._store.mark_inactive(address)
            logger.success(f"[MONITOR] Sold incorrect token {address}")

    async def _hold_designated(self, address: str) -> None:
        async with self._address_lock(address):
            existing = await self._store.get_token(address)
            if existing is None:
                price = await self._call("Price lookup", address, self._get_price(address))
                if price is None or price <= 0:
                    logger.error(f"[MONITOR] Designated token {address} has no price, not enrolled")
                    return
                name, supply = await self._gate.fetch_metadata(address)
                await self._enroll(address, price, name=name, total_supply=supply, source="signal")
            elif not existing.is_active:
                logger.warning(f"[MONITOR] Designated token {address} is inactive, not buying")
                return
            elif existing.bought_at is not None:
                logger.info(f"[MONITOR] Designated token {address} already held")
                return

            if self._config.buy_initial_delay_sec:
                await asyncio.sleep(self._config.buy_initial_delay_sec)
            await self._buy(address)

    # ─── Cleanup ─────────────────────────────────────────────────────

    async def run_cleanup(self) -> int:
        removed = await self._store.cleanup_old_tokens(self._config.token_max_age_hours)
        logger.info(f"[MONITOR] Cleanup removed {removed} stale inactive tokens")
        return removed
