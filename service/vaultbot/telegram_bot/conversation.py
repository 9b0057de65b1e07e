"""
Conversation state machine.

Each user has at most one active Step. Free text from the user is fed to
the handler registered for that step:

    1. delete the user's message (best effort)
    2. run the step handler (may probe Steam or read/write the store)
    3. replace the step with the handler's Transition, or clear it

Every replace or clear bumps the session generation. A StepContext
remembers the generation it was created with; once the step has been
superseded (menu action, /start, another flow) every guarded call on the
context raises Superseded and the engine throws the handler's work away.
Late probe results for an old step therefore never reach the chat or
the session.

Text for one user is handled strictly one message at a time (per-user
lock, FIFO). The dispatcher holds the same lock across its subscription
check and calls handle_text_locked(). Cancellation does not take the lock: it bumps the generation
immediately and the in-flight handler is discarded at its next
suspension point.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from vaultbot.config import Settings
from vaultbot.services.probe import CredentialProbe, ProbeOutcome
from vaultbot.storage import AccountRecord, JsonStore, RequestRecord
from .context import Draft, NO_STEP, Session, SessionStore, Step, StepKind
from .keyboards import ERROR_TEXT, back
from .logging_config import bot_logger as logger
from .telegram_api import TelegramTransport


class Superseded(Exception):
    """The step a handler was running for is no longer the active one."""


@dataclass(frozen=True)
class Transition:
    """What happens to the session after a step handler returns."""
    action: str  # "to", "stay", "finish"
    step: Optional[Step] = None

    @classmethod
    def to(cls, step: Step) -> Transition:
        return cls("to", step)

    @classmethod
    def stay(cls) -> Transition:
        return cls("stay")

    @classmethod
    def finish(cls) -> Transition:
        return cls("finish")


StepHandler = Callable[["StepContext", str], Awaitable[Transition]]


class StepContext:
    """
    Everything a step handler may touch, guarded by the session generation.
    """

    def __init__(self, engine: ConversationEngine, session: Session, generation: int):
        self.engine = engine
        self.session = session
        self.generation = generation
        self.draft = session.draft if session.draft is not None else Draft()
        self.step = session.active_step

    @property
    def user_id(self) -> int:
        return self.session.user_id

    @property
    def settings(self) -> Settings:
        return self.engine.settings

    @property
    def aliases(self) -> dict[str, list[str]]:
        return self.engine.aliases

    @property
    def is_admin(self) -> bool:
        return self.engine.settings.is_admin(self.user_id)

    @property
    def stale(self) -> bool:
        return self.session.generation != self.generation

    def ensure_current(self) -> None:
        if self.stale:
            raise Superseded(f"{self.step} for user_id={self.user_id}")

    async def show(self, text: str, buttons: Optional[list[list[dict]]] = None) -> None:
        """Edit the wizard panel."""
        self.ensure_current()
        await self.engine.show(self.session, text, buttons, generation=self.generation)

    async def probe(self, login: str, secret: Optional[str] = None) -> ProbeOutcome:
        self.ensure_current()
        outcome = await self.engine.probe.probe(login, secret)
        self.ensure_current()
        return outcome

    def read_accounts(self) -> list[AccountRecord]:
        self.ensure_current()
        return self.engine.store.read_accounts()

    def write_accounts(self, accounts: list[AccountRecord]) -> None:
        self.ensure_current()
        self.engine.store.write_accounts(accounts)

    def read_requests(self) -> list[RequestRecord]:
        self.ensure_current()
        return self.engine.store.read_requests()

    def write_requests(self, requests: list[RequestRecord]) -> None:
        self.ensure_current()
        self.engine.store.write_requests(requests)


class ConversationEngine:
    """Owns the sessions and drives step handlers."""

    def __init__(
        self,
        sessions: SessionStore,
        transport: TelegramTransport,
        store: JsonStore,
        probe: CredentialProbe,
        settings: Settings,
        aliases: Optional[dict[str, list[str]]] = None,
        handlers: Optional[dict[tuple, StepHandler]] = None
    ):
        if handlers is None:
            from .flows import STEP_HANDLERS
            handlers = STEP_HANDLERS

        self.sessions = sessions
        self.transport = transport
        self.store = store
        self.probe = probe
        self.settings = settings
        self.aliases = aliases or {}
        self.handlers = handlers

    def active_step(self, user_id: int) -> Step:
        session = self.sessions.peek(user_id)
        return session.active_step if session else NO_STEP

    def start(
        self,
        user_id: int,
        chat_id: int,
        message_id: Optional[int],
        step: Step,
        draft: Optional[Draft] = None,
        expected_generation: Optional[int] = None
    ) -> bool:
        """
        Install the first step of a flow, replacing whatever was active.

        With expected_generation, the install is refused if anything else
        replaced the user's step in the meantime.
        """
        session = self.sessions.get(user_id)
        if expected_generation is not None and session.generation != expected_generation:
            logger.info(f"Not starting {step.flow} for user_id={user_id}: superseded")
            return False

        session.chat_id = chat_id
        session.panel_message_id = message_id
        session.replace(step, draft if draft is not None else Draft(added_by=user_id))
        logger.info(f"user_id={user_id} -> {step.flow.value if step.flow else '-'}:{step.kind.value}")
        return True

    def cancel(self, user_id: int) -> int:
        """Clear the active step and draft, whatever they are. Returns the new generation."""
        session = self.sessions.get(user_id)
        if not session.active_step.is_idle:
            logger.info(f"Cancelled {session.active_step.kind.value} for user_id={user_id}")
        return session.replace(NO_STEP)

    async def show(
        self,
        session: Session,
        text: str,
        buttons: Optional[list[list[dict]]] = None,
        generation: Optional[int] = None
    ) -> None:
        """
        Edit the panel, or send a new one when there is none.

        With generation, a newly sent panel is only recorded if the session
        was not replaced while the message was in flight.
        """
        if session.panel_message_id is not None:
            await self.transport.edit_text(session.chat_id, session.panel_message_id, text, buttons)
            return
        message_id = await self.transport.send_text(session.chat_id, text, buttons)
        if generation is not None and session.generation != generation:
            logger.debug(f"Panel sent for superseded step, user_id={session.user_id}; not recording it")
            return
        session.panel_message_id = message_id

    async def handle_text(
        self,
        user_id: int,
        chat_id: int,
        message_id: Optional[int],
        text: str,
        only_kind: Optional[StepKind] = None
    ) -> bool:
        """
        Feed one text message to the user's active step, under the user's lock.

        only_kind restricts delivery to a step of that kind (confirmation
        buttons must not be read as a login).

        Returns:
            True if a handler consumed the message, False if it was dropped
            (no active step) or discarded (superseded while running).
        """
        async with self.sessions.lock_for(user_id):
            return await self.handle_text_locked(user_id, chat_id, message_id, text, only_kind)

    async def handle_text_locked(
        self,
        user_id: int,
        chat_id: int,
        message_id: Optional[int],
        text: str,
        only_kind: Optional[StepKind] = None
    ) -> bool:
        """Same as handle_text; the caller already holds sessions.lock_for(user_id)."""
        session = self.sessions.peek(user_id)
        if session is None or session.active_step.is_idle:
            logger.debug(f"No active step for user_id={user_id}, dropping text")
            return False
        if only_kind is not None and session.active_step.kind is not only_kind:
            logger.debug(f"Active step for user_id={user_id} is not {only_kind.value}, dropping input")
            return False

        step = session.active_step
        handler = self.handlers.get(step.key)
        if handler is None:
            logger.error(f"No handler registered for {step}")
            return False

        if session.chat_id is None:
            session.chat_id = chat_id
        ctx = StepContext(self, session, session.generation)

        if message_id is not None:
            await self.transport.delete_message(chat_id, message_id)

        try:
            ctx.ensure_current()
            transition = await handler(ctx, text or "")
        except Superseded:
            logger.info(f"Discarded result of superseded {step.kind.value} for user_id={user_id}")
            return False
        except Exception as e:
            logger.error(f"Step handler {step} failed for user_id={user_id}: {e}", exc_info=True)
            if not ctx.stale:
                generation = session.replace(NO_STEP)
                await self.show(session, ERROR_TEXT, back(), generation=generation)
            return True

        return self._apply(ctx, transition)

    def _apply(self, ctx: StepContext, transition: Transition) -> bool:
        session = ctx.session
        if ctx.stale:
            logger.info(f"Discarded transition for superseded step, user_id={session.user_id}")
            return False

        if transition.action == "finish":
            session.replace(NO_STEP)
        elif transition.action == "stay":
            session.replace(ctx.step, keep_draft=True)
        else:
            session.draft = ctx.draft
            session.replace(transition.step, keep_draft=True)
        logger.debug(f"user_id={session.user_id} now at {session.active_step.kind.value}")
        return True
