"""
Menu (inline keyboard callback) handlers.

The dispatcher cancels the user's current flow before calling any of
these, so a menu handler always starts from an idle session. Handlers
that start a flow install its first step through MenuContext.start(),
which refuses the install if something else superseded the user in the
meantime.

Callback data:
- exact names:  back_to_menu, submit_request, add_account, ...
- prefixed:     start_edit_<login>, edit_pass_<login>, acc_page_<n>, ...
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from vaultbot.storage import find_account_by_ref
from . import keyboards as kb
from .context import Draft, ExtraKind, Flow, Step
from .conversation import ConversationEngine
from .flows import can_edit_account
from .logging_config import bot_logger as logger
from .telegram_api import TelegramTransport


@dataclass
class MenuContext:
    user_id: int
    chat_id: int
    message_id: int
    generation: int  # session generation right after the cancel
    engine: ConversationEngine
    transport: TelegramTransport

    @property
    def settings(self):
        return self.engine.settings

    @property
    def store(self):
        return self.engine.store

    @property
    def is_admin(self) -> bool:
        return self.settings.is_admin(self.user_id)

    async def edit(self, text: str, buttons: Optional[list[list[dict]]] = None) -> None:
        await self.transport.edit_text(self.chat_id, self.message_id, text, buttons)

    def start(self, step: Step, draft: Optional[Draft] = None) -> bool:
        return self.engine.start(
            self.user_id, self.chat_id, self.message_id, step, draft,
            expected_generation=self.generation
        )


MenuHandler = Callable[[MenuContext, Optional[str]], Awaitable[None]]


@dataclass(frozen=True)
class MenuRoute:
    handler: MenuHandler
    admin_only: bool = False


# =============================================================================
# MENUS
# =============================================================================

async def show_main_menu(m: MenuContext, arg: Optional[str]) -> None:
    await m.edit(kb.MAIN_MENU_TEXT, kb.main_menu(m.is_admin))


async def show_admin_panel(m: MenuContext, arg: Optional[str]) -> None:
    await m.edit(kb.ADMIN_PANEL_TEXT, kb.admin_panel())


async def show_manage_accounts(m: MenuContext, arg: Optional[str]) -> None:
    await m.edit(kb.MANAGE_ACCOUNTS_TEXT, kb.manage_accounts(m.is_admin))


async def show_accounts_page(m: MenuContext, arg: Optional[str]) -> None:
    page = _page_number(arg)
    text, buttons = kb.accounts_page(m.store.read_accounts(), page, m.is_admin, m.settings.page_size)
    await m.edit(text, buttons)


async def show_requests_page(m: MenuContext, arg: Optional[str]) -> None:
    page = _page_number(arg)
    text, buttons = kb.requests_page(m.store.read_requests(), page, m.settings.page_size)
    await m.edit(text, buttons)


def _page_number(arg: Optional[str]) -> int:
    try:
        return max(0, int(arg or 0))
    except ValueError:
        return 0


# =============================================================================
# FLOW ENTRY POINTS
# =============================================================================

async def start_submit_request(m: MenuContext, arg: Optional[str]) -> None:
    if m.start(Step.awaiting_extra(Flow.SUBMIT_REQUEST, ExtraKind.REQUEST)):
        await m.edit(kb.ENTER_REQUEST, kb.cancel())


async def start_search(m: MenuContext, arg: Optional[str]) -> None:
    if m.start(Step.awaiting_extra(Flow.SEARCH, ExtraKind.SEARCH_QUERY)):
        await m.edit(kb.ENTER_SEARCH, kb.cancel())


async def start_check(m: MenuContext, arg: Optional[str]) -> None:
    if m.start(Step.awaiting_login(Flow.CHECK_ACCOUNT)):
        await m.edit(kb.ENTER_CHECK_LOGIN, kb.cancel())


async def start_mass_check(m: MenuContext, arg: Optional[str]) -> None:
    if m.start(Step.awaiting_extra(Flow.MASS_CHECK, ExtraKind.ACCOUNT_LIST)):
        await m.edit(kb.ENTER_ACCOUNT_LIST, kb.cancel())


async def start_add_account(m: MenuContext, arg: Optional[str]) -> None:
    if m.start(Step.awaiting_login(Flow.ADD_ACCOUNT), Draft(added_by=m.user_id)):
        await m.edit(kb.ENTER_LOGIN, kb.cancel("manage_accounts"))


async def start_edit_lookup(m: MenuContext, arg: Optional[str]) -> None:
    editable = [
        account for account in m.store.read_accounts()
        if can_edit_account(m.user_id, account, m.settings)
    ]
    if not editable:
        await m.edit(kb.NO_EDITABLE_ACCOUNTS, kb.back("manage_accounts"))
        return

    if m.start(Step.awaiting_login(Flow.FIND_ACCOUNT)):
        await m.edit(kb.ENTER_EDIT_LOGIN, kb.cancel())


# =============================================================================
# EDIT / DELETE
# =============================================================================

async def _editable_account(m: MenuContext, ref: Optional[str]):
    """Look up the record by its callback ref and check permission; shows the reason and returns None on failure."""
    account = find_account_by_ref(m.store.read_accounts(), ref or "")
    if account is None:
        await m.edit(kb.ACCOUNT_NOT_FOUND, kb.back())
        return None
    if not can_edit_account(m.user_id, account, m.settings):
        await m.edit(kb.NO_PERMISSION, kb.back())
        return None
    return account


async def show_edit_menu(m: MenuContext, login: Optional[str]) -> None:
    account = await _editable_account(m, login)
    if account is None:
        return
    await m.edit(
        f"Account found:\n{kb.format_account(account)}\n\nChoose what to edit:",
        kb.edit_menu(account.login)
    )


def _edit_entry(step: Step, prompt: str) -> MenuHandler:
    async def handler(m: MenuContext, login: Optional[str]) -> None:
        account = await _editable_account(m, login)
        if account is None:
            return
        draft = Draft(
            login=account.login,
            secret=account.password,
            extra_data=list(account.games),
            added_by=account.added_by,
            target=account.login
        )
        if m.start(step, draft):
            await m.edit(prompt, kb.cancel())
    return handler


async def confirm_delete_prompt(m: MenuContext, login: Optional[str]) -> None:
    account = await _editable_account(m, login)
    if account is None:
        return
    await m.edit(f"Are you sure you want to delete account {account.login}?", kb.delete_confirm(account.login))


async def delete_account(m: MenuContext, login: Optional[str]) -> None:
    account = await _editable_account(m, login)
    if account is None:
        return
    accounts = [item for item in m.store.read_accounts() if item.login != account.login]
    m.store.write_accounts(accounts)
    logger.info(f"Account {account.login} deleted by user_id={m.user_id}")
    await m.edit("✅ Account deleted!", kb.back())


EXACT_ROUTES: dict[str, MenuRoute] = {
    "back_to_menu": MenuRoute(show_main_menu),
    "submit_request": MenuRoute(start_submit_request),
    "search_accounts": MenuRoute(start_search),
    "check_accounts": MenuRoute(start_check),
    "check_mass": MenuRoute(start_mass_check),
    "add_account": MenuRoute(start_add_account),
    "manage_accounts": MenuRoute(show_manage_accounts),
    "edit_account": MenuRoute(start_edit_lookup),
    "admin_panel": MenuRoute(show_admin_panel, admin_only=True),
    "view_accounts": MenuRoute(show_accounts_page, admin_only=True),
    "view_requests": MenuRoute(show_requests_page, admin_only=True),
}

PREFIX_ROUTES: list[tuple[str, MenuRoute]] = [
    ("start_edit_", MenuRoute(show_edit_menu)),
    ("edit_login_", MenuRoute(_edit_entry(Step.awaiting_login(Flow.EDIT_ACCOUNT), kb.ENTER_NEW_LOGIN))),
    ("edit_pass_", MenuRoute(_edit_entry(Step.awaiting_password(Flow.EDIT_ACCOUNT), kb.ENTER_NEW_PASSWORD))),
    ("edit_games_", MenuRoute(_edit_entry(Step.awaiting_extra(Flow.EDIT_ACCOUNT, ExtraKind.GAMES), kb.ENTER_GAMES))),
    ("delete_acc_", MenuRoute(confirm_delete_prompt)),
    ("confirm_delete_", MenuRoute(delete_account)),
    ("acc_page_", MenuRoute(show_accounts_page, admin_only=True)),
    ("page_", MenuRoute(show_requests_page, admin_only=True)),
]


def resolve_route(data: str) -> tuple[Optional[MenuRoute], Optional[str]]:
    """Map callback data to (route, argument)."""
    route = EXACT_ROUTES.get(data)
    if route is not None:
        return route, None
    for prefix, route in PREFIX_ROUTES:
        if data.startswith(prefix):
            return route, data[len(prefix):]
    return None, None
