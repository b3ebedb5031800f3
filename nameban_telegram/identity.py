"""Candidate strings derived from a Telegram identity."""
from __future__ import annotations

from typing import Optional

QUOTE_CHARS = frozenset("\"'`")


def _is_stripped_space(ch: str) -> bool:
    # control characters stay so the matcher's log-injection gate sees them
    return ch.isspace() and not (ch < " " or ch == "\x7f")


def display_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    return " ".join(part for part in (first_name, last_name) if part)


def candidates_for(
    username: Optional[str],
    first_name: Optional[str],
    last_name: Optional[str],
) -> list[str]:
    """Return the lowercase strings to test for this identity, without repeats.

    Order: username, display name, display name without quotes, without
    whitespace, without both. No username and no name gives an empty list.
    """
    candidates: list[str] = []

    def add(value: str) -> None:
        if value and value not in candidates:
            candidates.append(value)

    if username:
        add(username.lower())

    name = display_name(first_name, last_name).lower()
    if name:
        no_quotes = "".join(ch for ch in name if ch not in QUOTE_CHARS)
        no_spaces = "".join(ch for ch in name if not _is_stripped_space(ch))
        bare = "".join(ch for ch in no_quotes if not _is_stripped_space(ch))
        for variant in (name, no_quotes, no_spaces, bare):
            add(variant)
    return candidates
