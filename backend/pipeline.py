"""
Journal entry submission: session -> analysis -> insert -> verify -> invalidate.

The pipeline never raises to its caller. Every terminal failure comes back
as a ``SubmitResult`` with a ``FailureReason`` and a message that is safe to
show the user; the details go to the log.
"""

import itertools
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from errors import FAILURE_RESPONSES, FailureReason, JournalError

logger = logging.getLogger("emojournal.pipeline")


@dataclass
class SubmitResult:
    success: bool
    entry: Optional[dict] = None
    reason: Optional[FailureReason] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, entry):
        return cls(success=True, entry=entry)

    @classmethod
    def failed(cls, reason):
        return cls(success=False, reason=reason, error=FAILURE_RESPONSES[reason][1])

    @property
    def status_code(self):
        return 200 if self.success else FAILURE_RESPONSES[self.reason][0]

    def to_dict(self):
        if self.success:
            return {"success": True, "entry": self.entry}
        return {"success": False, "error": self.error, "reason": self.reason.value}


class TimelineCache:
    """
    Per-process LRU cache of each user's serialized timeline.

    Readers take ``version(user_id)`` before querying and hand it back to
    ``put``; a fill is dropped when ``invalidate`` ran in between, so a
    snapshot read before a submit never overwrites the newer state.
    Entries also expire after ``ttl`` seconds so inserts made by other
    worker processes show up eventually.
    """

    def __init__(self, max_users=1024, ttl=30.0, clock=time.monotonic):
        self.max_users = max_users
        self.ttl = ttl
        self.clock = clock
        self._timelines = OrderedDict()  # user_id -> (stored_at, entries)
        self._versions = OrderedDict()   # user_id -> last invalidation stamp
        self._stamps = itertools.count(1)
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._timelines)

    def version(self, user_id):
        with self._lock:
            return self._versions.get(user_id, 0)

    def get(self, user_id):
        with self._lock:
            cached = self._timelines.get(user_id)
            if cached is None:
                return None
            stored_at, entries = cached
            if self.clock() - stored_at > self.ttl:
                del self._timelines[user_id]
                return None
            self._timelines.move_to_end(user_id)
            return entries

    def put(self, user_id, entries, version=None):
        """Store ``entries`` unless the timeline was invalidated since ``version``."""
        with self._lock:
            if version is not None and self._versions.get(user_id, 0) != version:
                return False
            self._timelines[user_id] = (self.clock(), entries)
            self._timelines.move_to_end(user_id)
            while len(self._timelines) > self.max_users:
                self._timelines.popitem(last=False)
            return True

    def invalidate(self, user_id):
        """Signal that ``user_id``'s timeline changed."""
        with self._lock:
            self._timelines.pop(user_id, None)
            # stamps only grow, so an evicted version can never match again
            self._versions[user_id] = next(self._stamps)
            self._versions.move_to_end(user_id)
            while len(self._versions) > self.max_users:
                self._versions.popitem(last=False)


class EntryPipeline:
    def __init__(self, sessions, analyzer, entries, cache=None, timeline_limit=50):
        self.sessions = sessions
        self.analyzer = analyzer
        self.entries = entries
        self.cache = cache if cache is not None else TimelineCache()
        self.timeline_limit = timeline_limit

    def submit_entry(self, token, text) -> SubmitResult:
        user = self.sessions.current_user(token)
        if user is None:
            return SubmitResult.failed(FailureReason.NOT_AUTHENTICATED)

        if text is None:
            text = ""
        if not isinstance(text, str):
            return SubmitResult.failed(FailureReason.INVALID_ENTRY)
        if not text.strip():
            return SubmitResult.failed(FailureReason.EMPTY_ENTRY)

        logger.info("Saving journal entry for user id=%s, content length %d", user.id, len(text))
        analysis = self.analyzer.analyze(text)

        try:
            entry = self.entries.insert(
                user.id, text, analysis.summary, analysis.mood, analysis.score
            )
        except JournalError:
            logger.exception("Journal entry insert failed for user id=%s", user.id)
            return SubmitResult.failed(FailureReason.STORE_ERROR)
        if entry is None:
            logger.error("Journal entry insert returned nothing for user id=%s", user.id)
            return SubmitResult.failed(FailureReason.INSERT_RETURNED_EMPTY)

        entry_id = entry.id
        # A row may exist even if the read-back below fails.
        self.cache.invalidate(user.id)

        try:
            saved = self.entries.verify(entry_id, user.id)
        except JournalError:
            logger.exception("Could not read back entry id=%s", entry_id)
            saved = None
        if saved is None:
            logger.error("Entry id=%s not found for user id=%s after insert", entry_id, user.id)
            return SubmitResult.failed(FailureReason.VERIFICATION_MISMATCH)

        logger.info("Saved entry id=%s (mood=%s, via %s)", saved.id, saved.mood, analysis.source)
        return SubmitResult.ok(saved.to_dict())

    def list_entries(self, token):
        user = self.sessions.current_user(token)
        if user is None:
            return []

        cached = self.cache.get(user.id)
        if cached is not None:
            return cached

        version = self.cache.version(user.id)

        try:
            rows = self.entries.list_by_user(user.id, limit=self.timeline_limit)
        except JournalError:
            logger.exception("Error fetching journal entries for user id=%s", user.id)
            return []

        timeline = [row.to_dict() for row in rows]
        if timeline:
            # an empty list may be a retry fallback, so it is never cached
            self.cache.put(user.id, timeline, version)
        logger.debug("Fetched %d entries for user id=%s", len(timeline), user.id)
        return timeline
