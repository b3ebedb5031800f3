"""Per-group filter lists and the ban check built on them.

`GroupPatternStore` keeps an ordered list of validated patterns for every
group, persists a group after each change when it has a database path, and
answers "does this identity hit any filter of this group?".

Writers take a per-group lock; readers copy the list under the same lock
and match outside of it, so a running check never sees half of an add or
remove.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

from . import storage
from .errors import CapacityExceeded, DuplicatePattern
from .identity import candidates_for
from .matcher import SafeMatcher
from .patterns import Pattern
from .validation import create_pattern, validate_patterns

logger = logging.getLogger(__name__)

MAX_PATTERNS_PER_GROUP = 100


class GroupPatternStore:
    def __init__(self, safe_matcher: SafeMatcher, db_path: Optional[str] = None) -> None:
        self._matcher = safe_matcher
        self._db_path = db_path
        self._groups: dict[int, list[Pattern]] = {}
        self._locks: dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def _group(self, chat_id: int) -> tuple[threading.Lock, list[Pattern]]:
        with self._guard:
            patterns = self._groups.setdefault(chat_id, [])
            lock = self._locks.setdefault(chat_id, threading.Lock())
        return lock, patterns

    def _snapshot(self, chat_id: int) -> tuple[Pattern, ...]:
        with self._guard:
            if chat_id not in self._groups:
                return ()
        lock, patterns = self._group(chat_id)
        with lock:
            return tuple(patterns)

    def _persist(self, chat_id: int, patterns: list[Pattern]) -> None:
        if self._db_path is None:
            return
        storage.save_patterns(chat_id, [p.raw for p in patterns], self._db_path)

    def load(self) -> int:
        """Load every group from the database, revalidating each entry.

        Entries that no longer validate, repeat an earlier entry or exceed
        the group limit are dropped with a warning. Returns the number of
        patterns loaded.
        """
        if self._db_path is None:
            return 0
        loaded = 0
        for chat_id, raws in storage.load_patterns(self._db_path).items():
            valid, errors = validate_patterns(raws, self._matcher)
            for index, raw, message in errors:
                logger.warning("Dropping stored pattern %r for chat %s (#%s): %s", raw, chat_id, index, message)

            kept: list[Pattern] = []
            for pattern in valid:
                if any(p.raw == pattern.raw for p in kept):
                    logger.warning("Dropping duplicate stored pattern %r for chat %s", pattern.raw, chat_id)
                elif len(kept) >= MAX_PATTERNS_PER_GROUP:
                    logger.warning("Dropping stored pattern %r for chat %s: group is full", pattern.raw, chat_id)
                else:
                    kept.append(pattern)

            lock, patterns = self._group(chat_id)
            with lock:
                patterns[:] = kept
            loaded += len(kept)
        logger.info("Loaded %s filter patterns from %s", loaded, self._db_path)
        return loaded

    def add_pattern(self, chat_id: int, raw: object) -> Pattern:
        """Validate `raw` and append it to the group's list.

        Raises CapacityExceeded, InvalidPattern or DuplicatePattern.
        """
        lock, patterns = self._group(chat_id)
        with lock:
            if len(patterns) >= MAX_PATTERNS_PER_GROUP:
                raise CapacityExceeded(
                    f"Filter limit reached ({MAX_PATTERNS_PER_GROUP} patterns per group)"
                )
            pattern = create_pattern(raw, self._matcher)
            if any(p.raw == pattern.raw for p in patterns):
                raise DuplicatePattern(f'Pattern "{pattern.raw}" is already in the filter list')
            updated = patterns + [pattern]
            self._persist(chat_id, updated)
            patterns.append(pattern)
        logger.info("Added %s pattern %r to chat %s", pattern.kind.value, pattern.raw, chat_id)
        return pattern

    def remove_pattern(self, chat_id: int, raw: object) -> bool:
        """Remove the pattern whose raw text equals `raw`. False if absent."""
        lock, patterns = self._group(chat_id)
        with lock:
            for index, pattern in enumerate(patterns):
                if pattern.raw == raw:
                    break
            else:
                return False
            updated = patterns[:index] + patterns[index + 1:]
            self._persist(chat_id, updated)
            del patterns[index]
        logger.info("Removed pattern %r from chat %s", raw, chat_id)
        return True

    def list_patterns(self, chat_id: int) -> list[Pattern]:
        return list(self._snapshot(chat_id))

    def find_match(
        self,
        chat_id: int,
        username: Optional[str],
        first_name: Optional[str],
        last_name: Optional[str],
    ) -> Optional[Pattern]:
        """Return the first pattern (insertion order) hit by this identity."""
        patterns = self._snapshot(chat_id)
        if not patterns:
            return None
        candidates = candidates_for(username, first_name, last_name)
        if not candidates:
            return None
        for pattern in patterns:
            if self._matcher.is_banned_against(pattern, candidates):
                logger.info("Identity %r matched pattern %r in chat %s", candidates[0], pattern.raw, chat_id)
                return pattern
        return None

    def is_banned(
        self,
        chat_id: int,
        username: Optional[str],
        first_name: Optional[str],
        last_name: Optional[str],
    ) -> bool:
        return self.find_match(chat_id, username, first_name, last_name) is not None

    def test_pattern(self, raw: object, candidate: object) -> bool:
        """Try a pattern against one string without storing it.

        Raises InvalidPattern when `raw` would be rejected by `add_pattern`.
        """
        pattern = create_pattern(raw, self._matcher)
        return self._matcher.matches(pattern, candidate)
