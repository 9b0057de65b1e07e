"""
python-telegram-bot handlers.

Thin adapters: unpack the Update and hand off to the Dispatcher. All
routing, gating and conversation logic lives there.
"""

from telegram import Update
from telegram.ext import ContextTypes

from .dispatcher import get_dispatcher
from .keyboards import ERROR_TEXT
from .logging_config import bot_logger as logger


def _display_name(user) -> str:
    return user.username or user.first_name or str(user.id)


async def handle_start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start: reset the flow and show the main menu."""
    user = update.effective_user
    chat_id = update.effective_chat.id
    await get_dispatcher().handle_start(user.id, chat_id, _display_name(user))


async def handle_text_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user = update.effective_user
    message = update.effective_message
    await get_dispatcher().handle_text(
        user.id,
        update.effective_chat.id,
        message.message_id,
        message.text,
        _display_name(user)
    )


async def handle_callback_query(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle inline keyboard button callbacks."""
    query = update.callback_query
    user = update.effective_user

    if query.message is None:
        logger.warning(f"Callback without message from user_id={user.id}: {query.data}")
        await query.answer()
        return

    await get_dispatcher().handle_callback(
        user.id,
        query.message.chat_id,
        query.message.message_id,
        query.id,
        query.data or "",
        _display_name(user)
    )


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle errors in handlers."""
    logger.error(f"Bot error: {context.error}", exc_info=context.error)

    if isinstance(update, Update) and update.effective_message:
        await update.effective_message.reply_text(ERROR_TEXT)
