"""Entry point for the token sniper."""

import asyncio
import functools
import signal
import sys

from loguru import logger
from solders.keypair import Keypair  # type: ignore[import-untyped]

from config.settings import ConfigError, settings, validate_settings
from src.db.token_store import TokenStore
from src.monitor.events import DiscoveryEvent
from src.monitor.lifecycle import LifecycleMonitor, MonitorConfig
from src.monitor.safety_gate import SafetyGate, SafetyPolicy
from src.parsers.helius.client import HeliusClient
from src.parsers.jupiter.client import JupiterClient
from src.parsers.raydium.ws_client import RaydiumPoolStream
from src.parsers.rugcheck.client import RugcheckClient
from src.parsers.telegram.listener import SignalChannelError, TelegramSignalListener
from src.trading.dispatcher import TradeDispatcher
from src.trading.jupiter_swap import JupiterSwapClient
from src.utils.logger import setup_logger


async def run() -> int:
    helius = HeliusClient(
        settings.helius_api_key, rpc_url=settings.rpc_url, max_rps=settings.helius_max_rps
    )
    jupiter = JupiterClient(
        settings.jupiter_api_key, max_rps=settings.jupiter_max_rps, base_url=settings.jupiter_price_url
    )
    rugcheck = RugcheckClient(max_rps=settings.rugcheck_max_rps)

    swap_client = None
    if settings.wallet_private_key:
        swap_client = JupiterSwapClient(
            api_key=settings.jupiter_api_key,
            rpc_url=settings.rpc_url,
            keypair=Keypair.from_base58_string(settings.wallet_private_key.strip()),
            buy_amount_sol=settings.buy_amount_sol,
            slippage_bps=settings.slippage_bps,
            priority_fee_lamports=settings.priority_fee_lamports,
        )
    if settings.simulation_mode:
        logger.warning("Simulation mode is enabled: no swaps will be sent")

    dispatcher = TradeDispatcher(
        swap_client,
        max_in_flight=settings.concurrent_transactions,
        timeout=settings.swap_timeout_sec,
        simulation_mode=settings.simulation_mode,
    )
    gate = SafetyGate(
        rugcheck=rugcheck,
        metadata=helius,
        policy=SafetyPolicy(
            allow_mint_authority=settings.allow_mint_authority,
            allow_freeze_authority=settings.allow_freeze_authority,
            allow_mutable=settings.allow_mutable,
        ),
        timeout=settings.external_call_timeout_sec,
    )

    queue: asyncio.Queue[DiscoveryEvent] = asyncio.Queue(maxsize=settings.event_queue_size)
    stream = RaydiumPoolStream(
        settings.ws_url,
        program_id=settings.raydium_program_id,
        queue=queue,
        resolve_mint=functools.partial(
            helius.resolve_pool_mint,
            program_id=settings.raydium_program_id,
            quote_mint=settings.wsol_mint,
        ),
        commitment=settings.stream_commitment,
        ping_interval=settings.ws_ping_interval_sec,
        reconnect_delay=settings.ws_reconnect_delay_sec,
    )
    listener = TelegramSignalListener(
        api_id=settings.telegram_api_id,
        api_hash=settings.telegram_api_hash,
        session=settings.telegram_session,
        channel_ids=settings.channel_ids,
        queue=queue,
    )

    exit_code = 0
    async with TokenStore(settings.database_url) as store:
        logger.info(f"Token store ready ({await store.count()} tokens)")
        monitor = LifecycleMonitor(
            store=store,
            gate=gate,
            dispatcher=dispatcher,
            get_price=jupiter.get_price,
            check_dev_sold=helius.has_dev_sold,
            config=MonitorConfig.from_settings(settings),
        )

        try:
            await listener.start()
        except SignalChannelError as e:
            logger.error(f"Signal channel unavailable: {e}")
            exit_code = 1
        else:
            # Graceful shutdown on SIGINT/SIGTERM
            loop = asyncio.get_running_loop()
            shutdown_event = asyncio.Event()

            def _signal_handler() -> None:
                logger.info("Shutdown signal received")
                shutdown_event.set()

            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, _signal_handler)

            monitor.start(queue)
            stream_task = asyncio.create_task(stream.connect(), name="pool_stream")

            await shutdown_event.wait()

            await stream.stop()
            stream_task.cancel()
            await asyncio.gather(stream_task, return_exceptions=True)
            await listener.stop()
            await monitor.stop()

    await helius.close()
    await jupiter.close()
    await rugcheck.close()
    if swap_client is not None:
        await swap_client.close()
    return exit_code


async def main() -> None:
    setup_logger(level="INFO")
    logger.info("Starting token sniper...")

    try:
        validate_settings(settings)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    exit_code = await run()
    logger.info("Shutdown complete")
    sys.exit(exit_code)


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
