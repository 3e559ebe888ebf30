"""
Two-tier summary cache.

Holds the most recent Summary in process memory and mirrors it to a JSON
file so that a fresh summary survives process restarts.
"""

import json
import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from .models import Summary, SummaryQuery
from .serializers import summary_from_dict, summary_to_dict

logger = logging.getLogger(__name__)

SUMMARY_CACHE_FILENAME = "token-monitor-summary.json"
SUMMARY_CACHE_TTL_MS = 60_000

Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class CacheEntry:
    """A cached summary, the query it answers and the time it was produced."""
    summary: Summary
    updated_at: int
    query: SummaryQuery

    def is_fresh(self, now: int, ttl_ms: int) -> bool:
        return now - self.updated_at < ttl_ms


class SummaryCache:
    """Cache of the latest aggregation result.

    Lookups try the in-process entry first, then the persisted entry, and
    only regenerate when both are stale. An entry only answers the query it
    was generated for.

    ``invalidate`` never touches disk. It drops the in-process entry and
    remembers when it happened, so a persisted entry written before the
    invalidation is not adopted again by this process.
    """

    def __init__(
        self,
        path: Union[str, Path],
        clock: Clock = now_ms,
        ttl_ms: int = SUMMARY_CACHE_TTL_MS,
    ):
        """Initialize the cache.

        Args:
            path: Path of the persisted summary file
            clock: Millisecond clock used for freshness checks
            ttl_ms: Time after which an entry is stale
        """
        self.path = Path(path)
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entry: Optional[CacheEntry] = None
        self._invalidated_at: Optional[int] = None

    @property
    def entry(self) -> Optional[CacheEntry]:
        """The in-process entry, if any."""
        return self._entry

    def load(
        self,
        query: Optional[SummaryQuery],
        generate: Callable[[], Summary],
        force_refresh: bool = False,
    ) -> Summary:
        """Return a fresh summary for ``query``, regenerating if needed.

        Args:
            query: Query the summary must have been generated for
            generate: Callable performing a full aggregation
            force_refresh: Skip both cache tiers

        Returns:
            The cached or newly generated summary
        """
        query = query or SummaryQuery()
        now = self._clock()

        if not force_refresh:
            entry = self._entry
            if entry is not None and entry.query == query and entry.is_fresh(now, self.ttl_ms):
                logger.debug("Summary cache hit (memory)")
                return entry.summary

            persisted = self.read_persisted()
            if persisted is not None and self._adoptable(persisted, query, now):
                logger.debug("Summary cache hit (disk)")
                self._entry = persisted
                return persisted.summary

        logger.debug("Summary cache miss, regenerating")
        summary = generate()
        self.store(summary, query)
        return summary

    def store(self, summary: Summary, query: Optional[SummaryQuery] = None) -> None:
        """Store a newly generated summary in both tiers.

        The entry is keyed by ``query``, falling back to the query recorded
        on the summary itself.
        """
        query = query or summary.query
        self._entry = CacheEntry(summary=summary, updated_at=summary.updated_at, query=query)
        self.write_persisted(summary, query)

    def invalidate(self) -> None:
        """Drop the in-process entry. Does not touch disk."""
        self._entry = None
        self._invalidated_at = self._clock()

    def clear(self) -> None:
        """Drop the in-process entry and delete the persisted file.

        Raises:
            OSError: If the persisted file exists but cannot be removed
        """
        self.invalidate()
        self.path.unlink(missing_ok=True)

    def read_persisted(self) -> Optional[CacheEntry]:
        """Read the persisted entry.

        Returns:
            The decoded entry, or None if absent or unreadable
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Failed to read summary cache %s: %s", self.path, e)
            return None

        try:
            summary = summary_from_dict(json.loads(raw))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Failed to decode summary cache %s: %s", self.path, e)
            return None
        return CacheEntry(summary=summary, updated_at=summary.updated_at, query=summary.query)

    def write_persisted(self, summary: Summary, query: Optional[SummaryQuery] = None) -> None:
        """Replace the persisted entry. Failures are logged and swallowed."""
        tmp_path = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex}.tmp")
        try:
            data = summary_to_dict(summary)
            data["query"] = (query or summary.query).to_dict()
            payload = json.dumps(data, indent=2, ensure_ascii=False)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to save summary cache %s: %s", self.path, e)
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass

    def _adoptable(self, entry: CacheEntry, query: SummaryQuery, now: int) -> bool:
        if entry.query != query:
            return False
        if not entry.is_fresh(now, self.ttl_ms):
            return False
        if self._invalidated_at is not None and entry.updated_at <= self._invalidated_at:
            return False
        return True
