"""
Telegram update handlers.

Thin adapters: pull chat id, text/photo or callback data out of the Update
and hand them to the ConversationEngine stored in ``bot_data["engine"]``.
Events from chats outside the allow-list end here with no reply.
"""
import functools
import logging
from telegram import Update
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes, MessageHandler, filters

from stockbot.core.exceptions import UnauthorizedEvent
from stockbot.telegram.engine import ConversationEngine

logger = logging.getLogger(__name__)

COMMANDS = ["start", "store", "edit", "screenshot", "list", "byorder", "cancel"]


def actor_name(user) -> str:
    if user is None:
        return "unknown"
    if user.username:
        return f"@{user.username}"
    return user.first_name or str(user.id)


def _engine(context: ContextTypes.DEFAULT_TYPE) -> ConversationEngine:
    return context.application.bot_data["engine"]


def drop_unauthorized(handler):
    @functools.wraps(handler)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        try:
            await handler(update, context)
        except UnauthorizedEvent as e:
            # audit entry already written by the engine
            logger.debug(f"[Telegram] Dropped update: {e}")
    return wrapper


@drop_unauthorized
async def handle_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message or not update.message.text or not update.effective_chat:
        return
    command = update.message.text.split()[0]
    user = update.effective_user
    await _engine(context).handle_command(
        update.effective_chat.id,
        command,
        actor=actor_name(user),
        first_name=user.first_name if user else None,
    )


@drop_unauthorized
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message or not update.message.text or not update.effective_chat:
        return
    await _engine(context).handle_text(
        update.effective_chat.id, update.message.text, actor=actor_name(update.effective_user)
    )


@drop_unauthorized
async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message or not update.message.photo or not update.effective_chat:
        return
    # Telegram lists sizes smallest first
    file_id = update.message.photo[-1].file_id
    await _engine(context).handle_photo(
        update.effective_chat.id, file_id, actor=actor_name(update.effective_user)
    )


@drop_unauthorized
async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.message:
        return
    answer = await _engine(context).handle_callback(
        query.message.chat.id, query.data or "", actor=actor_name(query.from_user)
    )
    await query.answer(text=answer.text, show_alert=answer.show_alert)


def register_handlers(app: Application) -> None:
    app.add_handler(CommandHandler(COMMANDS, handle_command))
    app.add_handler(MessageHandler(filters.PHOTO, handle_photo))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_handler(CallbackQueryHandler(handle_callback))
