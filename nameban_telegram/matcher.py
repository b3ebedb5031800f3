"""Time-bounded matching of patterns against untrusted identity strings.

Two layers:

- `screen_candidate` decides what part of a candidate string may be matched
  at all. Empty input, bracketed log tags such as "[SOLANA]" and strings
  carrying control characters are refused, so a crafted name cannot
  smuggle fake log lines or newline tricks past a filter. The one exception
  is a control character directly followed by a log marker ("[INFO]",
  "[ERROR]", ...): the clean prefix before it is still screened.
- `SafeMatcher` runs the compiled matcher in a worker process and gives up
  after `timeout` seconds. CPython's `re` keeps the GIL while matching, so
  a thread cannot be used to bound it. Each call checks out a warmed
  worker of its own, so the clock never includes waiting behind another
  caller. On timeout only that worker is terminated, which also stops the
  runaway match; other callers' matches are unaffected.
"""
from __future__ import annotations

import logging
import multiprocessing
import re
import threading
from typing import Iterable, Optional

from .errors import PatternTimeout
from .patterns import Matcher, Pattern

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 0.1  # seconds
WARM_UP_TIMEOUT = 30.0

CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
BRACKETED = re.compile(r"\[.*\]")
LOG_MARKERS = ("[INFO]", "[DEBUG]", "[ERROR]", "[WARN]", "[LOG]")
_MARKER_WINDOW = max(len(m) for m in LOG_MARKERS)


def screen_candidate(candidate: object) -> Optional[str]:
    """Return the text that may be matched for `candidate`, or None to refuse."""
    if not isinstance(candidate, str) or not candidate:
        return None
    if BRACKETED.fullmatch(candidate.strip()):
        return None

    controls = list(CONTROL_CHARS.finditer(candidate))
    if not controls:
        return candidate

    for m in controls:
        following = candidate[m.end():m.end() + _MARKER_WINDOW].upper()
        if not following.startswith(LOG_MARKERS):
            return None

    prefix = candidate[:controls[0].start()]
    trimmed = prefix.strip()
    if not trimmed or BRACKETED.fullmatch(trimmed):
        return None
    return prefix


def _run_test(matcher: Matcher, text: str) -> bool:
    return matcher.test(text)


def _ping() -> bool:
    return True


class SafeMatcher:
    """Runs pattern matches under a wall-clock bound.

    Thread-safe. Every call gets a single-process worker to itself; up to
    `max_idle` warmed workers are kept between calls. Use as a context
    manager or call `close()` to stop the idle workers.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, max_idle: int = 2) -> None:
        self.timeout = timeout
        self._max_idle = max_idle
        self._idle: list = []
        self._closed = False
        self._lock = threading.Lock()

    def __enter__(self) -> "SafeMatcher":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _spawn_worker(self):
        pool = multiprocessing.get_context("spawn").Pool(1)
        try:
            # do not let worker start-up eat into the timed call
            pool.apply_async(_ping).get(WARM_UP_TIMEOUT)
        except Exception:
            pool.terminate()
            raise
        return pool

    def _checkout(self):
        with self._lock:
            if self._idle:
                return self._idle.pop()
        return self._spawn_worker()

    def _checkin(self, pool) -> None:
        with self._lock:
            if not self._closed and len(self._idle) < self._max_idle:
                self._idle.append(pool)
                return
        pool.terminate()

    def close(self) -> None:
        with self._lock:
            idle, self._idle = self._idle, []
            self._closed = True
        for pool in idle:
            pool.terminate()
            pool.join()

    def execute(self, matcher: Matcher, text: str) -> bool:
        """Run `matcher` on `text` unscreened. Raises PatternTimeout."""
        pool = self._checkout()
        result = pool.apply_async(_run_test, (matcher, text))
        try:
            value = result.get(self.timeout)
        except multiprocessing.TimeoutError:
            # only this caller's worker is running the overrunning match
            pool.terminate()
            raise PatternTimeout(
                f"Pattern matching timed out after {self.timeout * 1000:.0f} ms"
            ) from None
        except Exception:
            self._checkin(pool)
            raise
        self._checkin(pool)
        return bool(value)

    def matches(self, pattern: Pattern, candidate: object) -> bool:
        """Return True if `pattern` matches `candidate`. Never raises."""
        text = screen_candidate(candidate)
        if text is None:
            return False
        try:
            return self.execute(pattern.matcher, text)
        except PatternTimeout:
            logger.warning("Pattern %r timed out on candidate %r", pattern.raw, text[:64])
            return False
        except Exception:
            logger.exception("Pattern %r failed while matching", pattern.raw)
            return False

    def is_banned_against(self, pattern: Pattern, candidates: Iterable[str]) -> bool:
        return any(self.matches(pattern, c) for c in candidates)
