"""
JSON record storage for accounts and requests.

Whole-collection read-modify-write over two JSON files (acc.json and
requests.json). The conversation layer reads and writes complete lists;
no partial updates or transactions.
"""

import hashlib
import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from vaultbot.config import get_settings


class AccountRecord(BaseModel):
    """A stored Steam account. Serialized with the legacy acc.json keys."""
    model_config = ConfigDict(populate_by_name=True)

    login: str
    password: str = Field(alias="pass")
    games: list[str] = Field(default_factory=list)
    added_by: Optional[int] = Field(default=None, alias="addedBy")

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class RequestRecord(BaseModel):
    """A user request for a game that is not in the vault yet."""
    model_config = ConfigDict(populate_by_name=True)

    user: str
    user_id: int = Field(alias="userId")
    request: str

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


def find_account(accounts: list[AccountRecord], login: str) -> Optional[AccountRecord]:
    """Case-insensitive lookup by login."""
    needle = login.strip().lower()
    for account in accounts:
        if account.login.lower() == needle:
            return account
    return None


# Telegram rejects callback_data longer than 64 bytes
CALLBACK_DATA_LIMIT = 64
LONGEST_ACCOUNT_PREFIX = "confirm_delete_"
HASH_REF_MARK = "#"


def account_ref(login: str) -> str:
    """
    Identifier for an account inside callback_data.

    The login itself when it fits after the longest button prefix,
    otherwise "#" plus a short sha1 of the login.
    """
    if len((LONGEST_ACCOUNT_PREFIX + login).encode("utf-8")) <= CALLBACK_DATA_LIMIT:
        return login
    return HASH_REF_MARK + hashlib.sha1(login.encode("utf-8")).hexdigest()[:16]


def find_account_by_ref(accounts: list[AccountRecord], ref: str) -> Optional[AccountRecord]:
    """Resolve an account_ref() value back to its record."""
    if ref.startswith(HASH_REF_MARK):
        for account in accounts:
            if account_ref(account.login) == ref:
                return account
        return None
    return find_account(accounts, ref)


class JsonStore:
    """File-backed store. Missing files are created as empty lists."""

    def __init__(self, accounts_path: str | Path, requests_path: str | Path):
        self.accounts_path = Path(accounts_path)
        self.requests_path = Path(requests_path)
        for path in (self.accounts_path, self.requests_path):
            if not path.exists():
                path.write_text("[]", encoding="utf-8")

    def read_accounts(self) -> list[AccountRecord]:
        return [AccountRecord.model_validate(item) for item in self._read(self.accounts_path)]

    def write_accounts(self, accounts: list[AccountRecord]) -> None:
        self._write(self.accounts_path, [account.to_json() for account in accounts])

    def read_requests(self) -> list[RequestRecord]:
        return [RequestRecord.model_validate(item) for item in self._read(self.requests_path)]

    def write_requests(self, requests: list[RequestRecord]) -> None:
        self._write(self.requests_path, [request.to_json() for request in requests])

    @staticmethod
    def _read(path: Path) -> list[dict]:
        return json.loads(path.read_text(encoding="utf-8"))

    @staticmethod
    def _write(path: Path, data: list[dict]) -> None:
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


# Global instance
_store: Optional[JsonStore] = None


def get_store() -> JsonStore:
    """Get or create the JSON store singleton."""
    global _store
    if _store is None:
        settings = get_settings()
        _store = JsonStore(settings.accounts_file, settings.requests_file)
    return _store
