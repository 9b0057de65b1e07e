"""
Bot texts and inline keyboards.

Keyboards are 2D arrays of button dicts, each with 'text' and
'callback_data' (or 'url'), as accepted by telegram_api.send_message.
"""

from math import ceil

from vaultbot.storage import AccountRecord, RequestRecord, account_ref

MAIN_MENU_TEXT = "Choose an action:"
SUBSCRIBE_TEXT = "To use the bot, please subscribe to our channel."
NOT_SUBSCRIBED_ALERT = "You are not subscribed to the channel"
ADMIN_PANEL_TEXT = "Admin panel:"
MANAGE_ACCOUNTS_TEXT = "Account management:"

ENTER_LOGIN = "Enter the account login:"
ENTER_NEW_LOGIN = "Enter the new login:"
ENTER_PASSWORD = "Enter the password:"
ENTER_NEW_PASSWORD = "Enter the new password:"
ENTER_GAMES = "Enter the list of games (one game per line):"
ENTER_MORE_GAMES = "Enter more games (one game per line):"
ENTER_CHECK_LOGIN = "Enter the login to check:"
ENTER_EDIT_LOGIN = "Enter the login of the account to edit:"
ENTER_REQUEST = "Write your request:"
ENTER_SEARCH = "Enter the game name to search for:"
ENTER_ACCOUNT_LIST = "Send accounts in the format:\nlogin1:password1\nlogin2:password2"
CHECKING_LOGIN = "⏳ Checking login..."
CHECKING_ACCOUNT = "⏳ Checking account..."
SEARCHING = "🔍 Searching accounts..."
CONFIRM_SAVE = "Save the account?"
ERROR_TEXT = "❌ Something went wrong. Please try again."
NO_EDITABLE_ACCOUNTS = "No accounts available for editing."
NO_PERMISSION = "You don't have permission to edit this account."
ACCOUNT_NOT_FOUND = "Account not found!"

PAGE_JUMP = 5


def button(text: str, callback_data: str) -> dict:
    return {"text": text, "callback_data": callback_data}


def main_menu(is_admin: bool = False) -> list[list[dict]]:
    buttons = [
        [button("Submit a request", "submit_request")],
        [button("Search accounts", "search_accounts")],
        [button("Check account", "check_accounts")],
        [button("Mass check", "check_mass")],
        [button("Add account", "add_account")],
    ]
    if is_admin:
        buttons.append([button("Admin panel", "admin_panel")])
    return buttons


def subscription(channel_url: str) -> list[list[dict]]:
    return [
        [{"text": "📢 Subscribe", "url": channel_url}],
        [button("🔄 Check subscription", "check_subscription")],
    ]


def cancel(callback_data: str = "back_to_menu") -> list[list[dict]]:
    return [[button("Cancel", callback_data)]]


def back(callback_data: str = "back_to_menu") -> list[list[dict]]:
    return [[button("Back", callback_data)]]


def confirm_save(more_games: bool = False) -> list[list[dict]]:
    buttons = [[button("Yes", "confirm_yes"), button("No", "confirm_no")]]
    if more_games:
        buttons.append([button("Add more games", "add_more_games")])
    return buttons


def after_save() -> list[list[dict]]:
    return [
        [button("Add another", "add_account")],
        [button("Back to management", "manage_accounts")],
    ]


def after_check(check_callback: str = "check_accounts") -> list[list[dict]]:
    return [
        [button("Check another", check_callback)],
        [button("Back to menu", "back_to_menu")],
    ]


def admin_panel() -> list[list[dict]]:
    return [
        [button("Accounts", "manage_accounts")],
        [button("View requests", "view_requests")],
        [button("Back to menu", "back_to_menu")],
    ]


def manage_accounts(is_admin: bool) -> list[list[dict]]:
    buttons = [[button("Add account", "add_account")]]
    if is_admin:
        buttons.append([button("Account list", "view_accounts")])
    buttons.append([button("Edit account", "edit_account")])
    buttons.append([button("Back", "admin_panel" if is_admin else "back_to_menu")])
    return buttons


def already_exists(login: str, can_edit: bool) -> list[list[dict]]:
    buttons = []
    if can_edit:
        buttons.append([button("Edit", f"start_edit_{account_ref(login)}")])
    buttons.append([button("Back", "manage_accounts")])
    return buttons


def edit_menu(login: str) -> list[list[dict]]:
    ref = account_ref(login)
    return [
        [button("Change login", f"edit_login_{ref}")],
        [button("Change password", f"edit_pass_{ref}")],
        [button("Change games", f"edit_games_{ref}")],
        [button("Delete account", f"delete_acc_{ref}")],
        [button("Back", "back_to_menu")],
    ]


def delete_confirm(login: str) -> list[list[dict]]:
    return [[button("Yes", f"confirm_delete_{account_ref(login)}"), button("No", "back_to_menu")]]


def format_account(account: AccountRecord) -> str:
    text = f"Login: {account.login}\nPassword: {account.password}\nGames: {', '.join(account.games)}"
    if account.added_by:
        text += f"\nAdded by: {account.added_by}"
    return text


def total_pages(count: int, page_size: int) -> int:
    return ceil(count / page_size) if count else 0


def navigation_row(page: int, pages: int, prefix: str) -> list[dict]:
    """
    Pagination row: << (-5), < , n/N, > , >> (+5).

    << shows from page 5 on; >> only when more than 5 pages remain.
    """
    row = []
    if page > 0:
        if page >= PAGE_JUMP:
            row.append(button("<<", f"{prefix}{page - PAGE_JUMP}"))
        row.append(button("<", f"{prefix}{page - 1}"))
    row.append(button(f"{page + 1}/{pages}", "current_page"))
    if page < pages - 1:
        row.append(button(">", f"{prefix}{page + 1}"))
        if pages - page > PAGE_JUMP:
            row.append(button(">>", f"{prefix}{page + PAGE_JUMP}"))
    return row


def accounts_page(
    accounts: list[AccountRecord],
    page: int,
    can_edit_any: bool,
    page_size: int = 5
) -> tuple[str, list[list[dict]]]:
    pages = total_pages(len(accounts), page_size)
    page = max(0, min(page, pages - 1)) if pages else 0
    chunk = accounts[page * page_size:(page + 1) * page_size]
    text = "\n\n".join(format_account(account) for account in chunk) or "No accounts"

    buttons = []
    if can_edit_any:
        buttons.append([button("Edit account", "edit_account")])
    if pages > 1:
        buttons.append(navigation_row(page, pages, "acc_page_"))
    buttons.append([button("Back", "manage_accounts")])
    return text, buttons


def requests_page(
    requests: list[RequestRecord],
    page: int,
    page_size: int = 5
) -> tuple[str, list[list[dict]]]:
    pages = total_pages(len(requests), page_size)
    page = max(0, min(page, pages - 1)) if pages else 0
    chunk = requests[page * page_size:(page + 1) * page_size]
    text = "\n\n".join(f"From: {req.user}\nRequest: {req.request}" for req in chunk) or "No requests"

    buttons = []
    if pages > 1:
        buttons.append(navigation_row(page, pages, "page_"))
    buttons.append([button("Back", "admin_panel")])
    return text, buttons
