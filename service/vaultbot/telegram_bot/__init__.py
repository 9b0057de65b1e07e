"""
Telegram bot module for the Steam account vault.

- Receives updates (webhook or long polling)
- Gates every update on the required channel subscription
- Routes menu callbacks and wizard text to the conversation engine
"""

from .bot import handle_telegram_update, initialize_bot, shutdown_bot, run_polling
from .dispatcher import Dispatcher, get_dispatcher

__all__ = [
    "handle_telegram_update",
    "initialize_bot",
    "shutdown_bot",
    "run_polling",
    "Dispatcher",
    "get_dispatcher",
]
