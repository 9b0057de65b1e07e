"""
Main Telegram bot handler.

Uses python-telegram-bot library, in webhook mode (FastAPI feeds updates
into process_update) or long polling (run_polling).
"""

from telegram import Update
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, MessageHandler, filters

from vaultbot.config import get_settings
from .dispatcher import get_dispatcher, shutdown_dispatcher
from .handlers import (
    handle_callback_query,
    handle_error,
    handle_start_command,
    handle_text_message,
)
from .logging_config import bot_logger as logger, setup_logging


# Global application instance (initialized once)
_application: Application | None = None


def get_bot_application() -> Application:
    """Get or create telegram bot application."""
    global _application

    if _application is None:
        settings = get_settings()

        # Updates from different users run concurrently; the conversation
        # engine serializes each user's own text.
        _application = (
            Application.builder()
            .token(settings.telegram_bot_token)
            .concurrent_updates(True)
            .build()
        )

        _application.add_handler(CommandHandler("start", handle_start_command))

        # Text messages
        _application.add_handler(
            MessageHandler(filters.UpdateType.MESSAGE & filters.TEXT & ~filters.COMMAND, handle_text_message)
        )

        # Callback queries (inline keyboard buttons)
        _application.add_handler(CallbackQueryHandler(handle_callback_query))

        _application.add_error_handler(handle_error)

        logger.info("Telegram bot application initialized")

    return _application


async def handle_telegram_update(update_data: dict) -> None:
    """
    Process incoming webhook update from Telegram.

    This is called by FastAPI webhook endpoint.
    Runs handlers in background (fire-and-forget).
    """
    try:
        app = get_bot_application()

        update = Update.de_json(update_data, app.bot)

        if update:
            await app.process_update(update)
        else:
            logger.warning("Received invalid update data")

    except Exception as e:
        logger.error(f"Failed to process update: {e}", exc_info=True)


async def initialize_bot() -> None:
    """
    Initialize bot application (call on startup).
    """
    app = get_bot_application()
    await app.initialize()
    get_dispatcher()
    logger.info("Bot initialized successfully")


async def shutdown_bot() -> None:
    """
    Shutdown bot application (call on shutdown).
    """
    global _application
    await shutdown_dispatcher()
    if _application:
        await _application.shutdown()
        _application = None
        logger.info("Bot shut down")


async def _post_shutdown(app: Application) -> None:
    await shutdown_dispatcher()


def run_polling() -> None:
    """Run the bot with long polling (no web server)."""
    setup_logging()
    app = get_bot_application()
    app.post_shutdown = _post_shutdown
    get_dispatcher()
    logger.info("Starting long polling")
    app.run_polling(allowed_updates=["message", "callback_query"])


if __name__ == "__main__":
    run_polling()
