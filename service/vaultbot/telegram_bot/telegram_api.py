"""
Telegram Bot API client.

Simple wrappers around the Bot HTTP API plus TelegramTransport, the
boundary the conversation layer talks to. Transport errors (message
already deleted, bot blocked, edit with identical text) are swallowed
and logged there; they never abort a flow.
"""

import httpx
from typing import Optional

from vaultbot.config import get_settings
from .logging_config import bot_logger as logger


class TelegramAPIError(Exception):
    """Bot API answered ok=false."""

    def __init__(self, method: str, status_code: int, description: str):
        self.method = method
        self.status_code = status_code
        self.description = description
        super().__init__(f"{method} failed ({status_code}): {description}")


async def call_api(method: str, payload: dict) -> dict:
    """
    Call a Bot API method and return its "result".

    Raises:
        TelegramAPIError: Telegram answered ok=false
        httpx.HTTPError: network failure
    """
    settings = get_settings()

    url = f"https://api.telegram.org/bot{settings.telegram_bot_token}/{method}"

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.post(url, json=payload)

    try:
        data = response.json()
    except ValueError:
        raise TelegramAPIError(method, response.status_code, response.text[:200])
    if not data.get("ok"):
        raise TelegramAPIError(method, response.status_code, data.get("description", ""))
    return data.get("result")


def _markup(buttons: Optional[list[list[dict]]]) -> dict:
    if buttons is None:
        return {}
    return {"reply_markup": {"inline_keyboard": buttons}}


async def send_message(chat_id: int, text: str, buttons: Optional[list[list[dict]]] = None) -> dict:
    """
    Send message to Telegram user.

    Args:
        chat_id: Telegram chat ID
        text: Message text
        buttons: 2D array of button dicts, each with 'text' and 'callback_data' (or 'url')

    Returns:
        Sent message dict (contains message_id)
    """
    return await call_api("sendMessage", {"chat_id": chat_id, "text": text, **_markup(buttons)})


async def edit_message_text(
    chat_id: int,
    message_id: int,
    text: str,
    buttons: Optional[list[list[dict]]] = None
) -> None:
    """Edit an existing message (text and inline keyboard)."""
    await call_api("editMessageText", {
        "chat_id": chat_id,
        "message_id": message_id,
        "text": text,
        **_markup(buttons)
    })


async def delete_message(chat_id: int, message_id: int) -> None:
    await call_api("deleteMessage", {"chat_id": chat_id, "message_id": message_id})


async def answer_callback_query(callback_query_id: str, text: Optional[str] = None, show_alert: bool = False) -> None:
    payload = {"callback_query_id": callback_query_id, "show_alert": show_alert}
    if text:
        payload["text"] = text
    await call_api("answerCallbackQuery", payload)


async def get_chat_member_status(chat_id: int | str, user_id: int) -> str:
    """Return the member status ("member", "left", "kicked", ...)."""
    result = await call_api("getChatMember", {"chat_id": chat_id, "user_id": user_id})
    return result["status"]


class TelegramTransport:
    """
    Fire-and-forget transport used by the conversation layer.

    Every method except get_channel_membership() swallows Telegram and
    network errors. get_channel_membership() propagates so the
    subscription gate can fail closed.
    """

    def __init__(self, channel_id: int | str):
        self.channel_id = channel_id

    async def send_text(self, chat_id: int, text: str, buttons: Optional[list[list[dict]]] = None) -> Optional[int]:
        """Send a message; returns its message_id, or None on failure."""
        try:
            result = await send_message(chat_id, text, buttons)
            return result["message_id"]
        except (TelegramAPIError, httpx.HTTPError) as e:
            logger.warning(f"sendMessage to chat_id={chat_id} failed: {e}")
            return None

    async def edit_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        buttons: Optional[list[list[dict]]] = None
    ) -> None:
        try:
            await edit_message_text(chat_id, message_id, text, buttons)
        except TelegramAPIError as e:
            if "message is not modified" in e.description:
                logger.debug(f"Edit no-op for message_id={message_id}")
                return
            logger.warning(f"editMessageText for message_id={message_id} failed: {e}")
        except httpx.HTTPError as e:
            logger.warning(f"editMessageText for message_id={message_id} failed: {e}")

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        try:
            await delete_message(chat_id, message_id)
        except (TelegramAPIError, httpx.HTTPError) as e:
            logger.debug(f"deleteMessage for message_id={message_id} failed: {e}")

    async def answer_callback(self, callback_query_id: str, text: Optional[str] = None, show_alert: bool = False) -> None:
        try:
            await answer_callback_query(callback_query_id, text, show_alert)
        except (TelegramAPIError, httpx.HTTPError) as e:
            logger.debug(f"answerCallbackQuery failed: {e}")

    async def get_channel_membership(self, user_id: int) -> str:
        return await get_chat_member_status(self.channel_id, user_id)
