"""
Order notifications to the store's Telegram chat.

Handlers only enqueue; a single background worker owns delivery and retries
with exponential backoff, so a slow or failing Bot API never affects the
customer-facing response.
"""

import asyncio
from typing import Optional

import structlog
from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.types import LinkPreviewOptions

logger = structlog.get_logger(__name__)


class NotifierError(Exception):
    """A notification could not be delivered."""


class TelegramNotifier:
    def __init__(self, token: str, chat_id: str, bot: Optional[Bot] = None):
        self.chat_id = chat_id
        self.bot = bot or Bot(token=token)

    async def send(self, text: str):
        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                link_preview_options=LinkPreviewOptions(is_disabled=True),
            )
        except (TelegramAPIError, OSError, asyncio.TimeoutError) as e:
            raise NotifierError(str(e)) from e

    async def close(self):
        await self.bot.session.close()


class NullNotifier:
    """Used when BOT_TOKEN / CHAT_ID are not configured."""

    async def send(self, text: str):
        logger.info("notification_skipped", reason="notifier_not_configured", length=len(text))

    async def close(self):
        pass


class NotificationQueue:
    def __init__(self, notifier, max_attempts: int = 5, backoff_base: float = 1.0):
        self.notifier = notifier
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def enqueue(self, text: str, order_id: Optional[int] = None):
        self._queue.put_nowait((order_id, text))
        logger.info("notification_enqueued", order_id=order_id, pending=self._queue.qsize())

    async def deliver(self, text: str, order_id: Optional[int] = None) -> bool:
        """Try to send one message, retrying with backoff. Returns True on success."""
        delay = self.backoff_base
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.notifier.send(text)
            except NotifierError as e:
                logger.warning(
                    "notification_failed",
                    order_id=order_id,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=str(e),
                )
                if attempt == self.max_attempts:
                    break
                await asyncio.sleep(delay)
                delay *= 2
            else:
                logger.info("notification_sent", order_id=order_id, attempt=attempt)
                return True

        logger.error("notification_dropped", order_id=order_id, attempts=self.max_attempts)
        return False

    async def _run(self):
        while True:
            order_id, text = await self._queue.get()
            try:
                await self.deliver(text, order_id)
            except Exception as e:
                # keep the worker alive whatever the notifier raises
                logger.error("notification_worker_error", order_id=order_id, error=str(e))
            finally:
                self._queue.task_done()

    def start(self):
        if self._worker is None:
            self._worker = asyncio.create_task(self._run())

    async def join(self):
        await self._queue.join()

    async def stop(self, timeout: float = 5.0):
        """Give queued notifications a chance to go out, then cancel the worker."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning("notification_queue_abandoned", pending=self._queue.qsize())
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        await self.notifier.close()
