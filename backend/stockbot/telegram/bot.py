"""
Telegram bot runtime.

The bot owns its own asyncio loop in a daemon thread (FastAPI keeps the
main loop). The sale listener runs as a task on the bot loop, and HTTP
handlers reach the bot through ``BotGateway``, which submits coroutines to
that loop with ``run_coroutine_threadsafe``.
"""
import asyncio
import logging
import threading
from typing import Optional

from telegram import error
from telegram.ext import Application

from stockbot.core.config import Settings, settings
from stockbot.services.inventory import InventoryRepository
from stockbot.services.sales import SaleIngestionListener
from stockbot.services.screenshots import ScreenshotRepository
from stockbot.store.default import document_store
from stockbot.store.document_store import DocumentStore
from stockbot.telegram.engine import ConversationEngine
from stockbot.telegram.handlers import register_handlers
from stockbot.telegram.notifications import NotificationDispatcher, TelegramMessenger
from stockbot.telegram.sessions import SessionStore

logger = logging.getLogger(__name__)

_bot_app: Optional[Application] = None
_bot_loop: Optional[asyncio.AbstractEventLoop] = None
_listener: Optional[SaleIngestionListener] = None


def wire_application(app: Application, store: DocumentStore, config: Settings) -> SaleIngestionListener:
    """Build engine + listener around ``app.bot`` and register the update handlers."""
    notifier = NotificationDispatcher(TelegramMessenger(app.bot), config.admin_chat_ids)
    inventory = InventoryRepository(store)
    screenshots = ScreenshotRepository(store)

    app.bot_data["engine"] = ConversationEngine(
        SessionStore(), store, inventory, screenshots, notifier, config
    )
    register_handlers(app)
    return SaleIngestionListener(store, inventory, screenshots, notifier, config)


async def _start_polling_with_retry(app, max_retries=3, initial_backoff=2):
    for attempt in range(max_retries):
        try:
            logger.info(f"[Telegram] Starting polling (attempt {attempt + 1}/{max_retries})...")
            await app.updater.start_polling(drop_pending_updates=True)
            logger.info("[Telegram] Polling started")
            return True
        except error.Conflict as e:
            if attempt < max_retries - 1:
                backoff = initial_backoff * (2 ** attempt)
                logger.warning(f"[Telegram] Conflict detected: {e}. Retrying in {backoff}s...")
                await asyncio.sleep(backoff)
            else:
                logger.error(f"[Telegram] Failed after {max_retries} retries. Bot disabled. Error: {e}")
                return False
        except Exception as e:
            logger.error(f"[Telegram] Unexpected error starting polling: {e}")
            return False


def _run_bot():
    global _bot_app, _bot_loop, _listener
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    try:
        _bot_app = Application.builder().token(settings.TELEGRAM_BOT_TOKEN).build()
        _listener = wire_application(_bot_app, document_store, settings)

        loop.run_until_complete(_bot_app.initialize())
        loop.run_until_complete(_bot_app.start())
        if not loop.run_until_complete(_start_polling_with_retry(_bot_app)):
            return

        loop.create_task(_listener.run())
        _bot_loop = loop
        logger.info("[Telegram] Bot is up and running")
        loop.run_forever()
    except Exception as e:
        logger.error(f"[Telegram] Bot error: {e}", exc_info=True)
    finally:
        _bot_loop = None
        try:
            if _bot_app:
                if _bot_app.updater and _bot_app.updater.running:
                    loop.run_until_complete(_bot_app.updater.stop())
                if _bot_app.running:
                    loop.run_until_complete(_bot_app.stop())
                loop.run_until_complete(_bot_app.shutdown())
        except Exception as e:
            logger.warning(f"[Telegram] Error during shutdown: {e}")
        loop.close()


def start_bot_background():
    if not settings.TELEGRAM_BOT_TOKEN:
        return
    t = threading.Thread(target=_run_bot, name="telegram-bot", daemon=True)
    t.start()


def stop_bot_background():
    """Stop the listener and the bot loop. Called on FastAPI shutdown."""
    loop = _bot_loop
    if _listener:
        _listener.stop()
    if loop:
        loop.call_soon_threadsafe(loop.stop)


class BotGateway:
    """What the HTTP boundary needs from the bot: send a text, resolve a file."""

    async def _submit(self, call):
        app, loop = _bot_app, _bot_loop
        if app is None or loop is None:
            raise RuntimeError("Telegram bot is not running")
        return await asyncio.wrap_future(asyncio.run_coroutine_threadsafe(call(app.bot), loop))

    async def send_message(self, chat_id, text: str) -> None:
        await self._submit(lambda bot: bot.send_message(chat_id=chat_id, text=text))

    async def resolve_file_url(self, file_id: str) -> str:
        file = await self._submit(lambda bot: bot.get_file(file_id))
        if file.file_path.startswith("http"):
            return file.file_path
        return settings.TELEGRAM_FILE_URL.format(token=settings.TELEGRAM_BOT_TOKEN, path=file.file_path)
