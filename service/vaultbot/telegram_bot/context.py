"""
Per-user conversation state for the Telegram bot.

In-memory only: sessions are lost on restart and never evicted.

A Session holds exactly one active Step. Replacing or clearing the step
bumps the session generation; a handler that captured an older
generation is stale and must not touch the session or the chat.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class StepKind(str, Enum):
    NONE = "none"
    AWAITING_LOGIN = "awaiting_login"
    AWAITING_PASSWORD = "awaiting_password"
    AWAITING_EXTRA = "awaiting_extra"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class Flow(str, Enum):
    ADD_ACCOUNT = "add_account"
    EDIT_ACCOUNT = "edit_account"
    FIND_ACCOUNT = "find_account"
    CHECK_ACCOUNT = "check_account"
    MASS_CHECK = "mass_check"
    SUBMIT_REQUEST = "submit_request"
    SEARCH = "search"


class ExtraKind(str, Enum):
    GAMES = "games"
    REQUEST = "request"
    SEARCH_QUERY = "search_query"
    ACCOUNT_LIST = "account_list"


@dataclass(frozen=True)
class Step:
    kind: StepKind
    flow: Optional[Flow] = None
    extra: Optional[ExtraKind] = None

    @classmethod
    def awaiting_login(cls, flow: Flow) -> Step:
        return cls(StepKind.AWAITING_LOGIN, flow)

    @classmethod
    def awaiting_password(cls, flow: Flow) -> Step:
        return cls(StepKind.AWAITING_PASSWORD, flow)

    @classmethod
    def awaiting_extra(cls, flow: Flow, extra: ExtraKind) -> Step:
        return cls(StepKind.AWAITING_EXTRA, flow, extra)

    @classmethod
    def awaiting_confirmation(cls, flow: Flow) -> Step:
        return cls(StepKind.AWAITING_CONFIRMATION, flow)

    @property
    def is_idle(self) -> bool:
        return self.kind is StepKind.NONE

    @property
    def key(self) -> tuple:
        """Handler registry key."""
        return (self.flow, self.kind, self.extra)


NO_STEP = Step(StepKind.NONE)


@dataclass
class Draft:
    """Scratch data collected across wizard steps."""
    login: str = ""
    secret: str = ""
    extra_data: list[str] = field(default_factory=list)
    added_by: Optional[int] = None
    target: Optional[str] = None  # login of the record being edited


@dataclass
class Session:
    user_id: int
    chat_id: Optional[int] = None
    username: Optional[str] = None
    panel_message_id: Optional[int] = None  # bot message the wizard edits in place
    active_step: Step = NO_STEP
    draft: Optional[Draft] = None
    generation: int = 0

    def replace(self, step: Step, draft: Optional[Draft] = None, keep_draft: bool = False) -> int:
        """Swap the active step (never stacks). Returns the new generation."""
        self.active_step = step
        if not keep_draft:
            self.draft = draft
        if step.is_idle:
            self.draft = None
        self.generation += 1
        return self.generation


class SessionStore:
    """
    Sessions and per-user locks keyed by Telegram user id.

    Only the handler holding a user's lock (or a synchronous cancel)
    mutates that user's session.
    """

    def __init__(self):
        self._sessions: dict[int, Session] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    def get(self, user_id: int) -> Session:
        """Get the user's session, creating it on first interaction."""
        session = self._sessions.get(user_id)
        if session is None:
            session = Session(user_id=user_id)
            self._sessions[user_id] = session
        return session

    def peek(self, user_id: int) -> Optional[Session]:
        return self._sessions.get(user_id)

    def lock_for(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock
