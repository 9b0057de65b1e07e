"""
Update dispatcher.

Every inbound update goes through the subscription gate first:
- /start:     cancel the current flow, show the main menu
- free text:  forward to the user's active conversation step (or drop)
- callbacks:  cancel the current flow, then run the menu handler

Confirmation buttons (confirm_yes, confirm_no, add_more_games) are the exception: they
answer the active confirmation step instead of cancelling it.
"""

from typing import Optional

from vaultbot.config import Settings, get_settings
from vaultbot.services.games import load_aliases
from vaultbot.services.probe import CredentialProbe
from vaultbot.services.steam_auth import SteamWebAuth
from vaultbot.services.subscription import SubscriptionGate
from vaultbot.storage import get_store
from . import keyboards as kb
from .context import SessionStore, StepKind
from .conversation import ConversationEngine
from .logging_config import bot_logger as logger
from .menus import MenuContext, resolve_route
from .telegram_api import TelegramTransport

# Buttons that answer the active confirmation step instead of cancelling it
CONFIRM_CALLBACKS = {"confirm_yes": "yes", "confirm_no": "no", "add_more_games": "more"}


class Dispatcher:
    """Routes updates to the gate, the menus and the conversation engine."""

    def __init__(
        self,
        engine: ConversationEngine,
        gate: SubscriptionGate,
        transport: TelegramTransport,
        settings: Settings
    ):
        self.engine = engine
        self.gate = gate
        self.transport = transport
        self.settings = settings

    def _touch(self, user_id: int, chat_id: int, username: Optional[str]) -> None:
        session = self.engine.sessions.get(user_id)
        if username:
            session.username = username
        if session.chat_id is None:
            session.chat_id = chat_id

    async def show_subscription_prompt(self, chat_id: int, message_id: Optional[int] = None) -> None:
        buttons = kb.subscription(self.settings.required_channel_url)
        if message_id is not None:
            await self.transport.edit_text(chat_id, message_id, kb.SUBSCRIBE_TEXT, buttons)
        else:
            await self.transport.send_text(chat_id, kb.SUBSCRIBE_TEXT, buttons)

    async def handle_start(self, user_id: int, chat_id: int, username: Optional[str] = None) -> None:
        logger.info(f"/start from user_id={user_id}, username={username}")
        self._touch(user_id, chat_id, username)
        self.engine.cancel(user_id)

        if not await self.gate.is_allowed(user_id):
            await self.show_subscription_prompt(chat_id)
            return

        await self.transport.send_text(chat_id, kb.MAIN_MENU_TEXT, kb.main_menu(self.settings.is_admin(user_id)))

    async def handle_text(
        self,
        user_id: int,
        chat_id: int,
        message_id: int,
        text: str,
        username: Optional[str] = None
    ) -> bool:
        """
        Forward free text to the active step.

        Returns:
            True if a step handler consumed it
        """
        logger.info(f"Text from user_id={user_id}, text_len={len(text or '')}")
        self._touch(user_id, chat_id, username)

        # The gate check runs under the user's lock so messages keep arrival order
        async with self.engine.sessions.lock_for(user_id):
            # Checked on every message, mid-wizard included
            if not await self.gate.is_allowed(user_id):
                logger.info(f"user_id={user_id} is not subscribed, blocking text")
                await self.show_subscription_prompt(chat_id)
                return False

            return await self.engine.handle_text_locked(user_id, chat_id, message_id, text)

    async def handle_callback(
        self,
        user_id: int,
        chat_id: int,
        message_id: int,
        callback_id: str,
        data: str,
        username: Optional[str] = None
    ) -> None:
        logger.info(f"Callback from user_id={user_id}: {data}")
        self._touch(user_id, chat_id, username)

        if data == "check_subscription":
            if await self.gate.refresh(user_id):
                await self.transport.answer_callback(callback_id)
                self.engine.cancel(user_id)
                await self.transport.edit_text(
                    chat_id, message_id, kb.MAIN_MENU_TEXT, kb.main_menu(self.settings.is_admin(user_id))
                )
            else:
                await self.transport.answer_callback(callback_id, kb.NOT_SUBSCRIBED_ALERT, show_alert=True)
            return

        if not await self.gate.is_allowed(user_id):
            await self.transport.answer_callback(callback_id)
            await self.show_subscription_prompt(chat_id, message_id)
            return

        if data == "current_page":
            await self.transport.answer_callback(callback_id)
            return

        if data in CONFIRM_CALLBACKS:
            await self.transport.answer_callback(callback_id)
            await self.engine.handle_text(
                user_id, chat_id, None, CONFIRM_CALLBACKS[data],
                only_kind=StepKind.AWAITING_CONFIRMATION
            )
            return

        route, arg = resolve_route(data)
        if route is None:
            logger.warning(f"Unknown callback data from user_id={user_id}: {data}")
            await self.transport.answer_callback(callback_id)
            return

        if route.admin_only and not self.settings.is_admin(user_id):
            await self.transport.answer_callback(callback_id, "Admins only", show_alert=True)
            return

        await self.transport.answer_callback(callback_id)

        # Every menu action ends the current flow first
        generation = self.engine.cancel(user_id)
        menu = MenuContext(
            user_id=user_id,
            chat_id=chat_id,
            message_id=message_id,
            generation=generation,
            engine=self.engine,
            transport=self.transport
        )
        await route.handler(menu, arg)


# Global instance
_dispatcher: Optional[Dispatcher] = None


def get_dispatcher() -> Dispatcher:
    """Get or create the dispatcher singleton with production collaborators."""
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        transport = TelegramTransport(settings.required_channel_id)
        probe = CredentialProbe(SteamWebAuth(settings.steam_api_url), timeout=settings.probe_timeout_seconds)
        engine = ConversationEngine(
            sessions=SessionStore(),
            transport=transport,
            store=get_store(),
            probe=probe,
            settings=settings,
            aliases=load_aliases(settings.aliases_file)
        )
        gate = SubscriptionGate(transport.get_channel_membership, ttl=settings.subscription_ttl_seconds)
        _dispatcher = Dispatcher(engine, gate, transport, settings)
        logger.info("Dispatcher initialized")
    return _dispatcher


async def shutdown_dispatcher() -> None:
    """Close the Steam HTTP client."""
    global _dispatcher
    if _dispatcher is not None:
        platform = _dispatcher.engine.probe.platform
        if isinstance(platform, SteamWebAuth):
            await platform.close()
        _dispatcher = None
