"""Pattern compilation.

Deterministic helpers (no network, no timers) that turn a cleaned pattern
string into a matcher. Three dialects are recognised by surface syntax, in
this order:

- regex literal: "/body/flags", e.g. "/^evil.*$/i"
- wildcard: contains "*" or "?", e.g. "*bot" (ends with), "max*" (starts
  with), "*bad*" (contains)
- plain text: anything else, matched as a case-insensitive substring
"""
from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass

from .errors import InvalidPattern

logger = logging.getLogger(__name__)

# JS-style flag letters accepted in "/body/flags". "g" and "u" have no
# equivalent in Python's re (str patterns are always unicode).
REGEX_FLAGS: dict[str, int] = {
    "i": re.IGNORECASE,
    "g": 0,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "u": 0,
}


class PatternKind(enum.Enum):
    PLAIN = "plain"
    WILDCARD = "wildcard"
    REGEX = "regex"


class Matcher:
    """Compiled form of a pattern. Only exposes a boolean test."""

    def __init__(self, regex: re.Pattern) -> None:
        self._regex = regex

    def test(self, text: str) -> bool:
        return self._regex.search(text) is not None

    def __repr__(self) -> str:
        return f"Matcher({self._regex.pattern!r})"


@dataclass(frozen=True)
class Pattern:
    """A validated pattern. Build it with `validation.create_pattern`."""

    raw: str
    kind: PatternKind
    matcher: Matcher

    def __str__(self) -> str:
        return self.raw


def _split_regex_literal(text: str) -> tuple[str, str] | None:
    """Return (body, flags) if `text` looks like "/body/flags"."""
    if not text.startswith("/") or len(text) <= 2:
        return None
    last = text.rfind("/")
    if last <= 0:
        return None
    return text[1:last], text[last + 1:]


def detect_kind(text: str) -> PatternKind:
    if _split_regex_literal(text) is not None:
        return PatternKind.REGEX
    if "*" in text or "?" in text:
        return PatternKind.WILDCARD
    return PatternKind.PLAIN


def _regex_flags(flags: str) -> int:
    value = 0
    for ch in flags:
        if ch in REGEX_FLAGS:
            value |= REGEX_FLAGS[ch]
        else:
            logger.debug("Dropping unsupported regex flag %r", ch)
    return value


def wildcard_to_regex(text: str) -> str:
    """Translate a wildcard pattern into a regex source string.

    "*" becomes ".*" and "?" becomes "."; everything else is escaped.
    A leading "*" without a trailing one anchors the end ("*bot" means
    "ends with bot"), a trailing "*" without a leading one anchors the
    start. Both or neither leave the pattern unanchored.
    """
    parts: list[str] = []
    for ch in text:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    body = "".join(parts)

    leading = text.startswith("*")
    trailing = text.endswith("*")
    if leading and not trailing:
        return body + r"\Z"
    if trailing and not leading:
        return "^" + body
    return body


def compile_pattern(text: str) -> Matcher:
    """Compile a cleaned pattern string into a Matcher.

    Raises InvalidPattern if the regex dialect body is rejected by `re`.
    """
    if not isinstance(text, str):
        raise InvalidPattern("Pattern must be a string")

    literal = _split_regex_literal(text)
    if literal is not None:
        body, flags = literal
        if not body:
            raise InvalidPattern("Invalid regex pattern: empty expression")
        try:
            regex = re.compile(body, _regex_flags(flags))
        except re.error as err:
            raise InvalidPattern(f"Invalid regex pattern: {err}") from err
    elif "*" in text or "?" in text:
        regex = re.compile(wildcard_to_regex(text), re.IGNORECASE)
    else:
        regex = re.compile(re.escape(text), re.IGNORECASE)

    matcher = Matcher(regex)
    # quick sanity run; timed samples happen in validation
    matcher.test("test")
    return matcher
