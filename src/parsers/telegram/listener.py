"""Telegram signal-channel listener (telethon user session).

Reads every message the account receives, keeps the ones posted in the
allow-listed channels, and turns a token address found in them into a
DESIGNATED discovery event. Reconnection is handled by telethon itself; a
failure to start is fatal because the process cannot trade without signals.
"""

import asyncio

from loguru import logger
from telethon import TelegramClient, events
from telethon.sessions import StringSession

from src.monitor.events import DiscoveryEvent, EventKind
from src.parsers.telegram.address import extract_token_address


class SignalChannelError(RuntimeError):
    """The Telegram client could not be started."""


class TelegramSignalListener:
    def __init__(
        self,
        *,
        api_id: int,
        api_hash: str,
        session: str,
        channel_ids: set[str],
        queue: asyncio.Queue[DiscoveryEvent],
        client: TelegramClient | None = None,
    ) -> None:
        self._channel_ids = channel_ids
        self._queue = queue
        self._client = client or TelegramClient(
            StringSession(session),
            api_id,
            api_hash,
            connection_retries=5,
            auto_reconnect=True,
        )
        self._channel_names: dict[str, str] = {}
        self._message_count = 0

    @property
    def channel_names(self) -> dict[str, str]:
        return dict(self._channel_names)

    @property
    def message_count(self) -> int:
        return self._message_count

    async def start(self) -> None:
        try:
            await self._client.connect()
            if not await self._client.is_user_authorized():
                raise SignalChannelError("Telegram session is not authorized")
            await self._load_channels()
        except SignalChannelError:
            raise
        except Exception as e:
            raise SignalChannelError(f"Telegram client failed to start: {e}") from e

        self._client.add_event_handler(self._on_new_message, events.NewMessage())
        watched = [self._channel_names.get(cid, cid) for cid in sorted(self._channel_ids)]
        logger.info(f"[SIGNAL] Listening to {len(watched)} channels: {', '.join(watched)}")

    async def _load_channels(self) -> None:
        async for dialog in self._client.iter_dialogs():
            if not dialog.is_channel:
                continue
            channel_id = str(dialog.entity.id)
            self._channel_names[channel_id] = dialog.title or ""
            logger.debug(f"[SIGNAL] Channel {dialog.title} ({channel_id})")

    async def _on_new_message(self, event: events.NewMessage.Event) -> None:
        try:
            text = event.message.message or ""
            channel_id = getattr(event.message.peer_id, "channel_id", None)
            if channel_id is None or not text:
                return
            await self.handle_message(text, str(channel_id))
        except Exception as e:
            logger.error(f"[SIGNAL] Error processing message: {e}")

    async def handle_message(self, text: str, channel_id: str) -> DiscoveryEvent | None:
        """Turn one channel message into a designation event, if it names a token."""
        if channel_id not in self._channel_ids:
            return None

        self._message_count += 1
        channel_name = self._channel_names.get(channel_id, "Unknown Channel")
        logger.info(f"[SIGNAL] Message from {channel_name} ({channel_id}): {text!r}")

        address = extract_token_address(text)
        if address is None:
            logger.debug(f"[SIGNAL] No token address in message from {channel_name}")
            return None

        logger.info(f"[SIGNAL] Token address {address} from {channel_name}")
        logger.info(f"[SIGNAL] GMGN: https://gmgn.ai/sol/token/{address}")
        logger.info(
            f"[SIGNAL] BullX: https://neo.bullx.io/terminal?chainId=1399811149&address={address}"
        )

        event = DiscoveryEvent(
            address=address,
            kind=EventKind.DESIGNATED,
            source="signal",
            channel=channel_name,
        )
        await self._queue.put(event)
        return event

    async def stop(self) -> None:
        if self._client.is_connected():
            await self._client.disconnect()
        logger.info("[SIGNAL] Telegram client disconnected")
