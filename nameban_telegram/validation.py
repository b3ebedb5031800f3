"""Input hygiene for raw pattern strings.

`validate_pattern` strips control characters, enforces the length limit and
proves the result compiles and survives a timed smoke test. The smoke test
feeds the matcher long repetitive samples built from the pattern's own
characters; a catastrophic-backtracking regex such as "/(a+)+$/" blows the
time budget there and is rejected as dangerous.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable

from .errors import InvalidPattern, PatternTimeout
from .matcher import SafeMatcher
from .patterns import Matcher, Pattern, compile_pattern, detect_kind

logger = logging.getLogger(__name__)

MAX_PATTERN_LENGTH = 500
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

SAMPLE_REPEAT = 30
MAX_SAMPLE_CHARS = 8
# a loaded host can blow the budget once; a dangerous pattern blows it every time
SMOKE_ATTEMPTS = 2


def clean_pattern(raw: object) -> str:
    """Strip control characters and check length. Does not compile."""
    if not isinstance(raw, str):
        raise InvalidPattern("Pattern must be a string")
    cleaned = CONTROL_CHARS.sub("", raw)
    if len(cleaned) > MAX_PATTERN_LENGTH:
        raise InvalidPattern(f"Pattern too long (max {MAX_PATTERN_LENGTH} characters)")
    if not cleaned:
        raise InvalidPattern("Pattern cannot be empty")
    return cleaned


def smoke_samples(text: str) -> list[str]:
    samples = ["test"]
    seen: list[str] = []
    for ch in text.lower():
        if ch.isalnum() and ch not in seen:
            seen.append(ch)
            if len(seen) == MAX_SAMPLE_CHARS:
                break
    # NUL never appears in a cleaned pattern, so the sample has to fail
    # at its very end and forces a full backtrack
    samples.extend(ch * SAMPLE_REPEAT + "\x00" for ch in seen)
    return samples


def _checked_matcher(raw: object, safe_matcher: SafeMatcher) -> tuple[str, Matcher]:
    cleaned = clean_pattern(raw)
    try:
        matcher = compile_pattern(cleaned)
    except InvalidPattern as err:
        raise InvalidPattern(f"Pattern validation failed: {err}") from err

    for sample in smoke_samples(cleaned):
        _run_sample(matcher, sample, safe_matcher)
    return cleaned, matcher


def _run_sample(matcher: Matcher, sample: str, safe_matcher: SafeMatcher) -> None:
    """Run one smoke sample; a timeout is retried once before rejecting."""
    for attempt in range(SMOKE_ATTEMPTS):
        try:
            safe_matcher.execute(matcher, sample)
            return
        except PatternTimeout as err:
            if attempt + 1 < SMOKE_ATTEMPTS:
                logger.debug("Smoke sample timed out, retrying: %s", err)
                continue
            raise InvalidPattern(
                f"Pattern rejected as dangerous: smoke test timed out ({err})"
            ) from err


def validate_pattern(raw: object, safe_matcher: SafeMatcher) -> str:
    """Return the cleaned pattern string or raise InvalidPattern."""
    cleaned, _ = _checked_matcher(raw, safe_matcher)
    return cleaned


def create_pattern(raw: object, safe_matcher: SafeMatcher) -> Pattern:
    cleaned, matcher = _checked_matcher(raw, safe_matcher)
    return Pattern(raw=cleaned, kind=detect_kind(cleaned), matcher=matcher)


def validate_patterns(
    raws: Iterable[object], safe_matcher: SafeMatcher
) -> tuple[list[Pattern], list[tuple[int, object, str]]]:
    """Batch variant of `create_pattern`.

    Returns (valid patterns, errors) where each error is
    (index, raw value, message). Never raises for a single bad entry.
    """
    valid: list[Pattern] = []
    errors: list[tuple[int, object, str]] = []
    for i, raw in enumerate(raws):
        try:
            valid.append(create_pattern(raw, safe_matcher))
        except InvalidPattern as err:
            errors.append((i, raw, str(err)))
    return valid, errors
