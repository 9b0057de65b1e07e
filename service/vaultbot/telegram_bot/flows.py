"""
Step handlers for every conversation flow.

Each handler receives the StepContext and the user's text and returns a
Transition. Handlers only touch the chat, the store and the probe engine
through the context, so a superseded step is discarded at its next
suspension point.

Flows:
- add account:    login -> password -> games -> confirmation
- edit account:   one of login / password / games -> confirmation
- find account:   login -> record with edit menu
- check account:  login -> password -> result
- mass check:     "login:password" lines -> results
- submit request: request text
- search:         game name -> first working account
"""

from vaultbot.config import Settings
from vaultbot.services.games import find_accounts_with_game
from vaultbot.services.probe import LoginCheck, interpret_login_probe
from vaultbot.storage import AccountRecord, RequestRecord, find_account
from . import keyboards as kb
from .context import Draft, ExtraKind, Flow, Step
from .conversation import StepContext, StepHandler, Transition
from .logging_config import bot_logger as logger

YES_ANSWERS = {"yes", "y", "save", "ok"}
NO_ANSWERS = {"no", "n", "cancel"}
MORE_GAMES_ANSWER = "more"


def can_edit_account(user_id: int, account: AccountRecord, settings: Settings) -> bool:
    """Admins can edit everything, users only what they added."""
    return settings.is_admin(user_id) or (account.added_by is not None and account.added_by == user_id)


def parse_games(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def parse_account_list(text: str) -> list[tuple[str, str]]:
    """Parse "login:password" lines; lines without both parts are skipped."""
    pairs = []
    for line in text.splitlines():
        if ":" not in line:
            continue
        login, _, password = line.partition(":")
        login, password = login.strip(), password.strip()
        if login and password:
            pairs.append((login, password))
    return pairs


def parse_confirmation(text: str) -> bool | None:
    answer = text.strip().lower()
    if answer in YES_ANSWERS:
        return True
    if answer in NO_ANSWERS:
        return False
    return None


def format_draft(draft: Draft) -> str:
    return (
        f"Login: {draft.login}\n"
        f"Password: {draft.secret}\n"
        f"Games: {', '.join(draft.extra_data)}"
    )


async def _check_login_exists(ctx: StepContext, login: str, cancel_to: str) -> bool:
    """
    Run an identifier-existence probe. Re-prompts and returns False when
    the login is missing or Steam gave no answer.
    """
    await ctx.show(kb.CHECKING_LOGIN, kb.cancel(cancel_to))
    outcome = await ctx.probe(login)
    check = interpret_login_probe(outcome)

    if check is LoginCheck.MISSING:
        await ctx.show(f"❌ Login not found\n{kb.ENTER_LOGIN}", kb.cancel(cancel_to))
        return False
    if check is LoginCheck.INCONCLUSIVE:
        await ctx.show(f"{outcome.message}\n{kb.ENTER_LOGIN}", kb.cancel(cancel_to))
        return False
    return True


# =============================================================================
# ADD ACCOUNT
# =============================================================================

async def add_login(ctx: StepContext, text: str) -> Transition:
    login = text.strip()
    if not login:
        await ctx.show(kb.ENTER_LOGIN, kb.cancel("manage_accounts"))
        return Transition.stay()

    # Duplicates never reach Steam
    existing = find_account(ctx.read_accounts(), login)
    if existing is not None:
        await ctx.show(
            f"An account with login \"{existing.login}\" already exists!\nWhat do you want to do?",
            kb.already_exists(existing.login, can_edit_account(ctx.user_id, existing, ctx.settings))
        )
        return Transition.finish()

    if not await _check_login_exists(ctx, login, "manage_accounts"):
        return Transition.stay()

    ctx.draft.login = login
    await ctx.show(kb.ENTER_PASSWORD, kb.cancel("manage_accounts"))
    return Transition.to(Step.awaiting_password(Flow.ADD_ACCOUNT))


async def add_password(ctx: StepContext, text: str) -> Transition:
    await ctx.show(kb.CHECKING_ACCOUNT, kb.cancel("manage_accounts"))
    outcome = await ctx.probe(ctx.draft.login, text)

    if not outcome.ok:
        await ctx.show(f"{outcome.message}\nEnter the password again:", kb.cancel("manage_accounts"))
        return Transition.stay()

    ctx.draft.secret = text
    await ctx.show(f"Account works ✅\n{kb.ENTER_GAMES}", kb.cancel("manage_accounts"))
    return Transition.to(Step.awaiting_extra(Flow.ADD_ACCOUNT, ExtraKind.GAMES))


async def add_games(ctx: StepContext, text: str) -> Transition:
    games = parse_games(text)
    if not games:
        await ctx.show(kb.ENTER_GAMES, kb.cancel("manage_accounts"))
        return Transition.stay()

    # Appends: "add more games" comes back here with the earlier list in the draft
    ctx.draft.extra_data = ctx.draft.extra_data + games
    await ctx.show(f"{format_draft(ctx.draft)}\n\n{kb.CONFIRM_SAVE}", kb.confirm_save(more_games=True))
    return Transition.to(Step.awaiting_confirmation(Flow.ADD_ACCOUNT))


async def add_confirm(ctx: StepContext, text: str) -> Transition:
    if text.strip().lower() == MORE_GAMES_ANSWER:
        await ctx.show(kb.ENTER_MORE_GAMES, kb.cancel("manage_accounts"))
        return Transition.to(Step.awaiting_extra(Flow.ADD_ACCOUNT, ExtraKind.GAMES))

    answer = parse_confirmation(text)
    if answer is None:
        await ctx.show(f"Please answer yes or no.\n\n{kb.CONFIRM_SAVE}", kb.confirm_save(more_games=True))
        return Transition.stay()
    if not answer:
        await ctx.show("Account discarded.", kb.back("manage_accounts"))
        return Transition.finish()

    draft = ctx.draft
    accounts = ctx.read_accounts()
    if find_account(accounts, draft.login) is not None:
        await ctx.show(f"An account with login \"{draft.login}\" already exists!", kb.back("manage_accounts"))
        return Transition.finish()

    accounts.append(AccountRecord(
        login=draft.login,
        password=draft.secret,
        games=draft.extra_data,
        added_by=draft.added_by if draft.added_by is not None else ctx.user_id
    ))
    ctx.write_accounts(accounts)
    logger.info(f"Account {draft.login} added by user_id={ctx.user_id}")

    await ctx.show(
        f"✅ Account {draft.login} added!\n\nDo you want to add another one?",
        kb.after_save()
    )
    return Transition.finish()


# =============================================================================
# EDIT ACCOUNT (draft pre-filled from the record, draft.target = old login)
# =============================================================================

async def _ask_edit_confirmation(ctx: StepContext) -> Transition:
    await ctx.show(f"{format_draft(ctx.draft)}\n\nSave changes?", kb.confirm_save())
    return Transition.to(Step.awaiting_confirmation(Flow.EDIT_ACCOUNT))


async def edit_login(ctx: StepContext, text: str) -> Transition:
    login = text.strip()
    if not login:
        await ctx.show(kb.ENTER_NEW_LOGIN, kb.cancel())
        return Transition.stay()

    if login.lower() != (ctx.draft.target or "").lower():
        if find_account(ctx.read_accounts(), login) is not None:
            await ctx.show(f"Login \"{login}\" is already taken.\n{kb.ENTER_NEW_LOGIN}", kb.cancel())
            return Transition.stay()

    if not await _check_login_exists(ctx, login, "back_to_menu"):
        return Transition.stay()

    ctx.draft.login = login
    return await _ask_edit_confirmation(ctx)


async def edit_password(ctx: StepContext, text: str) -> Transition:
    await ctx.show(kb.CHECKING_ACCOUNT, kb.cancel())
    outcome = await ctx.probe(ctx.draft.login, text)

    if not outcome.ok:
        await ctx.show(f"{outcome.message}\nEnter the password again:", kb.cancel())
        return Transition.stay()

    ctx.draft.secret = text
    return await _ask_edit_confirmation(ctx)


async def edit_games(ctx: StepContext, text: str) -> Transition:
    games = parse_games(text)
    if not games:
        await ctx.show(kb.ENTER_GAMES, kb.cancel())
        return Transition.stay()

    ctx.draft.extra_data = games
    return await _ask_edit_confirmation(ctx)


async def edit_confirm(ctx: StepContext, text: str) -> Transition:
    answer = parse_confirmation(text)
    if answer is None:
        await ctx.show(f"Please answer yes or no.\n\n{format_draft(ctx.draft)}\n\nSave changes?", kb.confirm_save())
        return Transition.stay()
    if not answer:
        await ctx.show("Changes discarded.", kb.back())
        return Transition.finish()

    draft = ctx.draft
    accounts = ctx.read_accounts()
    for index, account in enumerate(accounts):
        if account.login == draft.target:
            accounts[index] = AccountRecord(
                login=draft.login,
                password=draft.secret,
                games=draft.extra_data,
                added_by=account.added_by
            )
            break
    else:
        await ctx.show(kb.ACCOUNT_NOT_FOUND, kb.back())
        return Transition.finish()

    ctx.write_accounts(accounts)
    logger.info(f"Account {draft.target} updated by user_id={ctx.user_id}")
    await ctx.show(f"✅ Account {draft.login} updated!", kb.back())
    return Transition.finish()


# =============================================================================
# FIND ACCOUNT FOR EDITING
# =============================================================================

async def find_for_edit(ctx: StepContext, text: str) -> Transition:
    account = find_account(ctx.read_accounts(), text)
    if account is None:
        await ctx.show(kb.ACCOUNT_NOT_FOUND, kb.back("manage_accounts"))
        return Transition.finish()

    if not can_edit_account(ctx.user_id, account, ctx.settings):
        await ctx.show(kb.NO_PERMISSION, kb.back())
        return Transition.finish()

    await ctx.show(
        f"Account found:\n{kb.format_account(account)}\n\nChoose what to edit:",
        kb.edit_menu(account.login)
    )
    return Transition.finish()


# =============================================================================
# CHECK ACCOUNT
# =============================================================================

async def check_login(ctx: StepContext, text: str) -> Transition:
    login = text.strip()
    if not login:
        await ctx.show(kb.ENTER_CHECK_LOGIN, kb.cancel())
        return Transition.stay()

    if not await _check_login_exists(ctx, login, "back_to_menu"):
        return Transition.stay()

    ctx.draft.login = login
    await ctx.show(kb.ENTER_PASSWORD, kb.cancel())
    return Transition.to(Step.awaiting_password(Flow.CHECK_ACCOUNT))


async def check_password(ctx: StepContext, text: str) -> Transition:
    await ctx.show(kb.CHECKING_ACCOUNT, kb.cancel())
    outcome = await ctx.probe(ctx.draft.login, text)
    await ctx.show(f"Login: {outcome.login}\nStatus: {outcome.message}", kb.after_check())
    return Transition.finish()


async def mass_check(ctx: StepContext, text: str) -> Transition:
    """Probe "login:password" lines one by one, editing the panel as results come in."""
    pairs = parse_account_list(text)
    if not pairs:
        await ctx.show(f"No accounts found to check.\n\n{kb.ENTER_ACCOUNT_LIST}", kb.cancel())
        return Transition.stay()

    results = "Checking accounts:\n\n"
    for login, password in pairs:
        await ctx.show(f"{results}⏳ Checking: {login}", kb.cancel())
        outcome = await ctx.probe(login, password)
        results += f"Login: {login}\nStatus: {outcome.message}\n\n"

    await ctx.show(results.rstrip(), kb.after_check("check_mass"))
    return Transition.finish()


# =============================================================================
# REQUESTS AND SEARCH
# =============================================================================

async def submit_request(ctx: StepContext, text: str) -> Transition:
    request = text.strip()
    if not request:
        await ctx.show(kb.ENTER_REQUEST, kb.cancel())
        return Transition.stay()

    requests = ctx.read_requests()
    if any(req.user_id == ctx.user_id and req.request == request for req in requests):
        await ctx.show("❌ This request already exists", kb.back())
        return Transition.finish()

    requests.append(RequestRecord(
        user=ctx.session.username or str(ctx.user_id),
        user_id=ctx.user_id,
        request=request
    ))
    ctx.write_requests(requests)
    await ctx.show(f"✅ Request accepted: {request}", kb.back())
    return Transition.finish()


async def search(ctx: StepContext, text: str) -> Transition:
    """
    Find an account that owns the requested game and still logs in.

    Candidates are probed one at a time; the first VALID one is shown.
    """
    query = text.strip()
    if not query:
        await ctx.show(kb.ENTER_SEARCH, kb.cancel())
        return Transition.stay()

    await ctx.show(kb.SEARCHING, kb.cancel())
    game, matched = find_accounts_with_game(ctx.read_accounts(), query, ctx.aliases)

    if not matched:
        await ctx.show(f"No accounts with \"{game}\" found.", kb.back())
        return Transition.finish()

    for account in matched:
        outcome = await ctx.probe(account.login, account.password)
        if outcome.ok:
            await ctx.show(
                f"Found a working account with \"{game}\":\n\n"
                f"Library: {', '.join(account.games)}\n"
                f"Login: {account.login}\n"
                f"Password: {account.password}",
                kb.back()
            )
            return Transition.finish()

    await ctx.show(f"No working accounts with \"{game}\" found.", kb.back())
    return Transition.finish()


STEP_HANDLERS: dict[tuple, StepHandler] = {
    Step.awaiting_login(Flow.ADD_ACCOUNT).key: add_login,
    Step.awaiting_password(Flow.ADD_ACCOUNT).key: add_password,
    Step.awaiting_extra(Flow.ADD_ACCOUNT, ExtraKind.GAMES).key: add_games,
    Step.awaiting_confirmation(Flow.ADD_ACCOUNT).key: add_confirm,

    Step.awaiting_login(Flow.EDIT_ACCOUNT).key: edit_login,
    Step.awaiting_password(Flow.EDIT_ACCOUNT).key: edit_password,
    Step.awaiting_extra(Flow.EDIT_ACCOUNT, ExtraKind.GAMES).key: edit_games,
    Step.awaiting_confirmation(Flow.EDIT_ACCOUNT).key: edit_confirm,

    Step.awaiting_login(Flow.FIND_ACCOUNT).key: find_for_edit,

    Step.awaiting_login(Flow.CHECK_ACCOUNT).key: check_login,
    Step.awaiting_password(Flow.CHECK_ACCOUNT).key: check_password,
    Step.awaiting_extra(Flow.MASS_CHECK, ExtraKind.ACCOUNT_LIST).key: mass_check,

    Step.awaiting_extra(Flow.SUBMIT_REQUEST, ExtraKind.REQUEST).key: submit_request,
    Step.awaiting_extra(Flow.SEARCH, ExtraKind.SEARCH_QUERY).key: search,
}
