"""
Shared fakes for bot tests: a recording Telegram transport, an in-memory
store and a scriptable auth platform.
"""

import asyncio
import os
from typing import Optional

import pytest

os.environ.setdefault("TELEGRAM_BOT_TOKEN", "test-token")

from vaultbot.config import Settings
from vaultbot.services.probe import AuthError, CredentialProbe
from vaultbot.services.subscription import SubscriptionGate
from vaultbot.storage import AccountRecord, RequestRecord
from vaultbot.telegram_bot.context import SessionStore
from vaultbot.telegram_bot.conversation import ConversationEngine
from vaultbot.telegram_bot.dispatcher import Dispatcher

ADMIN_ID = 1
USER_ID = 42
CHAT_ID = 4200


class FakeTransport:
    """Records every outgoing call."""

    def __init__(self):
        self.sent: list[tuple] = []
        self.edits: list[tuple] = []
        self.deleted: list[tuple] = []
        self.answers: list[tuple] = []
        self.membership: dict[int, str] = {}
        self.membership_error: Optional[Exception] = None
        self.membership_calls = 0
        self._next_message_id = 1000
        self._outgoing: list[tuple] = []

    async def send_text(self, chat_id, text, buttons=None):
        self._next_message_id += 1
        self.sent.append((chat_id, text, buttons))
        self._outgoing.append((text, buttons))
        return self._next_message_id

    async def edit_text(self, chat_id, message_id, text, buttons=None):
        self.edits.append((chat_id, message_id, text, buttons))
        self._outgoing.append((text, buttons))

    async def delete_message(self, chat_id, message_id):
        self.deleted.append((chat_id, message_id))

    async def answer_callback(self, callback_query_id, text=None, show_alert=False):
        self.answers.append((callback_query_id, text, show_alert))

    async def get_channel_membership(self, user_id):
        self.membership_calls += 1
        if self.membership_error is not None:
            raise self.membership_error
        return self.membership.get(user_id, "left")

    @property
    def outgoing(self) -> list[tuple]:
        """(text, buttons) of every send and edit, in order."""
        return self._outgoing

    @property
    def last_text(self) -> str:
        return self._outgoing[-1][0]

    @property
    def last_buttons(self):
        return self._outgoing[-1][1]

    def callbacks(self) -> list[str]:
        """callback_data of the most recent keyboard."""
        return [b["callback_data"] for row in (self.last_buttons or []) for b in row if "callback_data" in b]


class MemoryStore:
    """In-memory stand-in for JsonStore."""

    def __init__(self, accounts=None, requests=None):
        self.accounts: list[AccountRecord] = list(accounts or [])
        self.requests: list[RequestRecord] = list(requests or [])
        self.account_writes = 0

    def read_accounts(self):
        return [account.model_copy(deep=True) for account in self.accounts]

    def write_accounts(self, accounts):
        self.account_writes += 1
        self.accounts = list(accounts)

    def read_requests(self):
        return list(self.requests)

    def write_requests(self, requests):
        self.requests = list(requests)


class FakeSession:
    """AuthSession whose signals are plain futures the test resolves."""

    def __init__(self, login: str, secret: str):
        loop = asyncio.get_running_loop()
        self.login = login
        self.secret = secret
        self.logged_on = loop.create_future()
        self.challenge = loop.create_future()
        self.error = loop.create_future()
        self.close_calls = 0

    async def wait_logged_on(self):
        await asyncio.shield(self.logged_on)

    async def wait_challenge(self):
        await asyncio.shield(self.challenge)

    async def wait_error(self):
        return await asyncio.shield(self.error)

    async def close(self):
        self.close_calls += 1


class FakePlatform:
    """
    AuthPlatform driven by a table of login -> {secret: result}.

    result is "valid", "challenge", an int error code, or "hang" (never
    resolves). Unlisted secrets resolve to error code 5.
    """

    def __init__(self, table: Optional[dict] = None):
        self.table = table or {}
        self.sessions: list[FakeSession] = []
        self.gates: dict[str, asyncio.Event] = {}
        self._tasks: list[asyncio.Task] = []

    async def open_session(self, login, secret):
        session = FakeSession(login, secret)
        self.sessions.append(session)
        result = self.table.get(login, {}).get(secret, 5)
        gate = self.gates.get(login)
        self._tasks.append(asyncio.create_task(self._resolve(session, result, gate)))
        return session

    @staticmethod
    async def _resolve(session: FakeSession, result, gate: Optional[asyncio.Event]):
        if gate is not None:
            await gate.wait()
        if result == "hang":
            return
        if result == "valid":
            session.logged_on.set_result(None)
        elif result == "challenge":
            session.challenge.set_result(None)
        else:
            session.error.set_result(AuthError(result, f"code {result}"))


@pytest.fixture
def settings():
    return Settings(
        telegram_bot_token="test",
        admin_ids=[ADMIN_ID],
        required_channel_id="@test_channel",
        required_channel_url="https://t.me/test_channel",
        _env_file=None,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def engine(transport, store, platform, settings):
    return ConversationEngine(
        sessions=SessionStore(),
        transport=transport,
        store=store,
        probe=CredentialProbe(platform, timeout=0.5),
        settings=settings,
        aliases={"Red Dead Redemption 2": ["rdr2", "rdr 2"]},
    )


@pytest.fixture
def gate(transport):
    return SubscriptionGate(transport.get_channel_membership, ttl=900)


@pytest.fixture
def dispatcher(engine, gate, transport, settings):
    transport.membership[USER_ID] = "member"
    transport.membership[ADMIN_ID] = "creator"
    return Dispatcher(engine, gate, transport, settings)
