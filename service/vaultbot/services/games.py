"""
Game name lookup for account search.

alias.json maps a canonical game name to its aliases:
    {"Red Dead Redemption 2": ["rdr2", "rdr 2"], ...}
"""

import json
import re
from pathlib import Path

from vaultbot.storage import AccountRecord


def load_aliases(path: str | Path) -> dict[str, list[str]]:
    """Load alias.json; a missing file means no aliases."""
    path = Path(path)
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


def find_game_by_alias(query: str, aliases: dict[str, list[str]]) -> str:
    """
    Resolve a user query to a canonical game name.

    Matches when the canonical name contains the query, or when an alias
    equals it (case-insensitive). Falls back to the query itself.
    """
    normalized = query.lower().strip()
    if not normalized:
        return query

    for game_name, game_aliases in aliases.items():
        if normalized in game_name.lower():
            return game_name
        if any(alias.lower() == normalized for alias in game_aliases):
            return game_name
    return query.strip()


def game_abbreviations(game_name: str) -> set[str]:
    """
    Common short forms of a title.

    "God of War" -> {"god of war", "gow"}
    "Red Dead Redemption 2" -> {..., "rdr2"}
    """
    clean = re.sub(r"[^\w\s]", "", game_name.lower()).strip()
    words = clean.split()
    if not words:
        return set()

    abbreviations = {clean, "".join(word[0] for word in words)}
    abbreviations.add("".join(word if any(c.isdigit() for c in word) else word[0] for word in words))
    # Drop year suffixes like "Hitman 2016"
    without_year = re.sub(r"\b\d{4}\b", "", clean).strip()
    if without_year:
        abbreviations.add(re.sub(r"\s+", " ", without_year))
    return abbreviations


def account_has_game(account: AccountRecord, game: str, aliases: dict[str, list[str]]) -> bool:
    target = game.lower()
    for owned in account.games:
        if owned.lower() == target:
            return True
        if find_game_by_alias(owned, aliases).lower() == target:
            return True
        if target in game_abbreviations(owned):
            return True
    return False


def find_accounts_with_game(
    accounts: list[AccountRecord],
    query: str,
    aliases: dict[str, list[str]]
) -> tuple[str, list[AccountRecord]]:
    """
    Resolve query and return (game_name, accounts owning it), unique by login.
    """
    game = find_game_by_alias(query, aliases)
    matched: dict[str, AccountRecord] = {}
    for account in accounts:
        if account_has_game(account, game, aliases):
            matched.setdefault(account.login, account)
    return game, list(matched.values())
