"""
Tests for the conversation engine: step replacement, stale-result
discarding and per-user serialization.
"""

import asyncio

import pytest

from vaultbot.services.probe import CredentialProbe
from vaultbot.telegram_bot.context import NO_STEP, Draft, ExtraKind, Flow, SessionStore, Step, StepKind
from vaultbot.telegram_bot.conversation import ConversationEngine, Transition
from vaultbot.telegram_bot.keyboards import ERROR_TEXT
from conftest import CHAT_ID, USER_ID, FakePlatform, FakeTransport

LOGIN = Step.awaiting_login(Flow.CHECK_ACCOUNT)
PASSWORD = Step.awaiting_password(Flow.CHECK_ACCOUNT)
REQUEST = Step.awaiting_extra(Flow.SUBMIT_REQUEST, ExtraKind.REQUEST)


def make_engine(transport, store, settings, handlers, platform=None):
    return ConversationEngine(
        sessions=SessionStore(),
        transport=transport,
        store=store,
        probe=CredentialProbe(platform or FakePlatform(), timeout=0.5),
        settings=settings,
        handlers=handlers,
    )


class TestStepReplacement:

    def test_start_replaces_instead_of_stacking(self, transport, store, settings):
        engine = make_engine(transport, store, settings, {})
        engine.start(USER_ID, CHAT_ID, 10, LOGIN)
        engine.start(USER_ID, CHAT_ID, 10, REQUEST)

        assert engine.active_step(USER_ID) == REQUEST

    def test_every_replace_bumps_generation(self, transport, store, settings):
        engine = make_engine(transport, store, settings, {})
        engine.start(USER_ID, CHAT_ID, 10, LOGIN)
        first = engine.sessions.get(USER_ID).generation

        assert engine.cancel(USER_ID) == first + 1
        assert engine.active_step(USER_ID) == NO_STEP
        assert engine.sessions.get(USER_ID).draft is None

    def test_start_refused_when_superseded(self, transport, store, settings):
        engine = make_engine(transport, store, settings, {})
        generation = engine.cancel(USER_ID)
        engine.start(USER_ID, CHAT_ID, 10, LOGIN)

        assert engine.start(USER_ID, CHAT_ID, 10, REQUEST, expected_generation=generation) is False
        assert engine.active_step(USER_ID) == LOGIN

    def test_unknown_user_is_idle(self, transport, store, settings):
        engine = make_engine(transport, store, settings, {})
        assert engine.active_step(999) == NO_STEP


class TestHandleText:

    @pytest.mark.asyncio
    async def test_text_without_active_step_is_dropped(self, transport, store, settings):
        calls = []

        async def handler(ctx, text):
            calls.append(text)
            return Transition.finish()

        engine = make_engine(transport, store, settings, {LOGIN.key: handler})

        assert await engine.handle_text(USER_ID, CHAT_ID, 5, "hello") is False
        assert calls == []
        assert transport.deleted == []
        assert transport.outgoing == []

    @pytest.mark.asyncio
    async def test_user_message_is_deleted_and_panel_edited(self, transport, store, settings):
        async def handler(ctx, text):
            await ctx.show(f"got {text}")
            return Transition.finish()

        engine = make_engine(transport, store, settings, {LOGIN.key: handler})
        engine.start(USER_ID, CHAT_ID, 10, LOGIN)

        assert await engine.handle_text(USER_ID, CHAT_ID, 5, "alice") is True
        assert transport.deleted == [(CHAT_ID, 5)]
        assert transport.edits[-1][1:3] == (10, "got alice")
        assert engine.active_step(USER_ID) == NO_STEP

    @pytest.mark.asyncio
    async def test_transition_to_keeps_draft(self, transport, store, settings):
        async def handler(ctx, text):
            ctx.draft.login = text
            return Transition.to(PASSWORD)

        engine = make_engine(transport, store, settings, {LOGIN.key: handler})
        engine.start(USER_ID, CHAT_ID, 10, LOGIN)
        await engine.handle_text(USER_ID, CHAT_ID, 5, "alice")

        session = engine.sessions.get(USER_ID)
        assert session.active_step == PASSWORD
        assert session.draft.login == "alice"

    @pytest.mark.asyncio
    async def test_stay_keeps_step_and_draft(self, transport, store, settings):
        async def handler(ctx, text):
            return Transition.stay()

        engine = make_engine(transport, store, settings, {PASSWORD.key: handler})
        engine.start(USER_ID, CHAT_ID, 10, PASSWORD, Draft(login="alice"))
        before = engine.sessions.get(USER_ID).generation
        await engine.handle_text(USER_ID, CHAT_ID, 5, "wrong")

        session = engine.sessions.get(USER_ID)
        assert session.active_step == PASSWORD
        assert session.draft.login == "alice"
        assert session.generation == before + 1

    @pytest.mark.asyncio
    async def test_only_kind_mismatch_is_dropped(self, transport, store, settings):
        calls = []

        async def handler(ctx, text):
            calls.append(text)
            return Transition.finish()

        engine = make_engine(transport, store, settings, {LOGIN.key: handler})
        engine.start(USER_ID, CHAT_ID, 10, LOGIN)

        handled = await engine.handle_text(
            USER_ID, CHAT_ID, None, "yes", only_kind=StepKind.AWAITING_CONFIRMATION
        )

        assert handled is False
        assert calls == []
        assert engine.active_step(USER_ID) == LOGIN

    @pytest.mark.asyncio
    async def test_handler_error_clears_step_and_shows_error(self, transport, store, settings):
        async def handler(ctx, text):
            raise ValueError("corrupt acc.json")

        engine = make_engine(transport, store, settings, {LOGIN.key: handler})
        engine.start(USER_ID, CHAT_ID, 10, LOGIN)

        assert await engine.handle_text(USER_ID, CHAT_ID, 5, "alice") is True
        assert engine.active_step(USER_ID) == NO_STEP
        assert transport.last_text == ERROR_TEXT

    @pytest.mark.asyncio
    async def test_panel_is_sent_when_missing(self, transport, store, settings):
        async def handler(ctx, text):
            await ctx.show("first")
            await ctx.show("second")
            return Transition.finish()

        engine = make_engine(transport, store, settings, {LOGIN.key: handler})
        engine.start(USER_ID, CHAT_ID, None, LOGIN)
        await engine.handle_text(USER_ID, CHAT_ID, 5, "alice")

        assert [sent[1] for sent in transport.sent] == ["first"]
        assert transport.edits[-1][2] == "second"


class TestSupersededSteps:
    """Work for a replaced step never reaches the chat or the session."""

    @pytest.mark.asyncio
    async def test_cancel_during_probe_discards_result(self, transport, store, settings):
        platform = FakePlatform({"alice": {"pw": "valid"}})
        platform.gates["alice"] = asyncio.Event()

        async def handler(ctx, text):
            await ctx.show("checking")
            outcome = await ctx.probe("alice", text)
            await ctx.show(outcome.message)
            return Transition.finish()

        engine = make_engine(transport, store, settings, {PASSWORD.key: handler}, platform)
        engine.start(USER_ID, CHAT_ID, 10, PASSWORD)

        task = asyncio.create_task(engine.handle_text(USER_ID, CHAT_ID, 5, "pw"))
        await asyncio.sleep(0.01)
        engine.cancel(USER_ID)
        engine.start(USER_ID, CHAT_ID, 10, REQUEST)
        platform.gates["alice"].set()

        assert await task is False
        assert transport.last_text == "checking"
        assert engine.active_step(USER_ID) == REQUEST
        assert platform.sessions[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_stale_handler_cannot_write_store(self, transport, store, settings):
        release = asyncio.Event()

        async def handler(ctx, text):
            await release.wait()
            ctx.write_requests([])
            return Transition.finish()

        engine = make_engine(transport, store, settings, {REQUEST.key: handler})
        engine.start(USER_ID, CHAT_ID, 10, REQUEST)
        store.requests = ["keep"]

        task = asyncio.create_task(engine.handle_text(USER_ID, CHAT_ID, 5, "x"))
        await asyncio.sleep(0.01)
        engine.cancel(USER_ID)
        release.set()

        assert await task is False
        assert store.requests == ["keep"]

    @pytest.mark.asyncio
    async def test_panel_sent_after_cancel_is_not_recorded(self, store, settings):
        transport = SlowSendTransport()

        async def handler(ctx, text):
            await ctx.show("checking")
            return Transition.finish()

        engine = make_engine(transport, store, settings, {REQUEST.key: handler})
        engine.start(USER_ID, CHAT_ID, None, REQUEST)

        task = asyncio.create_task(engine.handle_text(USER_ID, CHAT_ID, 5, "x"))
        await asyncio.sleep(0.01)
        engine.cancel(USER_ID)
        transport.release.set()

        assert await task is False
        assert transport.sent[-1][1] == "checking"
        assert engine.sessions.get(USER_ID).panel_message_id is None


class SlowSendTransport(FakeTransport):
    """send_text blocks until released."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def send_text(self, chat_id, text, buttons=None):
        await self.release.wait()
        return await super().send_text(chat_id, text, buttons)


class TestPerUserSerialization:

    @pytest.mark.asyncio
    async def test_messages_from_one_user_run_one_at_a_time(self, transport, store, settings):
        events = []
        release = asyncio.Event()

        async def handler(ctx, text):
            events.append(f"start {text}")
            if text == "first":
                await release.wait()
            events.append(f"end {text}")
            return Transition.stay()

        engine = make_engine(transport, store, settings, {REQUEST.key: handler})
        engine.start(USER_ID, CHAT_ID, 10, REQUEST)

        first = asyncio.create_task(engine.handle_text(USER_ID, CHAT_ID, 5, "first"))
        second = asyncio.create_task(engine.handle_text(USER_ID, CHAT_ID, 6, "second"))
        await asyncio.sleep(0.01)
        assert events == ["start first"]

        release.set()
        await asyncio.gather(first, second)
        assert events == ["start first", "end first", "start second", "end second"]

    @pytest.mark.asyncio
    async def test_other_users_are_not_blocked(self, transport, store, settings):
        release = asyncio.Event()
        finished = []

        async def handler(ctx, text):
            if ctx.user_id == USER_ID:
                await release.wait()
            finished.append(ctx.user_id)
            return Transition.finish()

        engine = make_engine(transport, store, settings, {REQUEST.key: handler})
        engine.start(USER_ID, CHAT_ID, 10, REQUEST)
        engine.start(7, 700, 11, REQUEST)

        blocked = asyncio.create_task(engine.handle_text(USER_ID, CHAT_ID, 5, "a"))
        await asyncio.sleep(0.01)
        await engine.handle_text(7, 700, 6, "b")
        assert finished == [7]

        release.set()
        await blocked
        assert finished == [7, USER_ID]
