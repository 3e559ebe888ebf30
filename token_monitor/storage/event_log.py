"""
Append-only usage event log.

Stores one JSON-encoded UsageEvent per line and reads them back lazily.
"""

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Iterator, Optional, Union

from .models import SummaryQuery, UsageEvent

logger = logging.getLogger(__name__)

EVENT_LOG_FILENAME = "token-monitor.jsonl"


def encode_event(event: UsageEvent) -> bytes:
    """Encode an event as one self-contained, newline-terminated line."""
    line = json.dumps(event.to_dict(), separators=(",", ":"), ensure_ascii=False)
    return (line + "\n").encode("utf-8")


def decode_event(raw: bytes) -> UsageEvent:
    """Decode one log line.

    Raises:
        ValueError: If the line is not valid UTF-8 JSON (JSONDecodeError and
            UnicodeDecodeError are both ValueError subclasses)
        KeyError, TypeError: If the record is missing fields or malformed
    """
    return UsageEvent.from_dict(json.loads(raw.decode("utf-8")))


class EventStore:
    """Append-only log of usage events backed by a single JSONL file.

    Each event is written with one ``os.write`` call on a descriptor opened
    in append mode, so independent processes appending to the same log
    interleave at line granularity. There is no locking: ``trim`` and
    ``clear`` must not run concurrently with readers or writers.
    """

    def __init__(self, path: Union[str, Path]):
        """Initialize the store with the log file path.

        Args:
            path: Path to the JSONL log file (created on first append)
        """
        self.path = Path(path)

    def append(self, event: UsageEvent) -> bool:
        """Append a single event to the log.

        Failures are logged and swallowed so that usage tracking never
        aborts the operation being tracked.

        Args:
            event: The usage event to record

        Returns:
            True if the event was written, False otherwise
        """
        try:
            payload = encode_event(event)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(self.path), os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
            try:
                written = os.write(fd, payload)
            finally:
                os.close(fd)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to append usage event to %s: %s", self.path, e)
            return False
        if written != len(payload):
            logger.warning(
                "Short write appending usage event to %s: %d of %d bytes",
                self.path, written, len(payload)
            )
            return False
        return True

    def read(self, query: Optional[SummaryQuery] = None) -> Iterator[UsageEvent]:
        """Lazily read events from the log in append order.

        Every call opens the file afresh and stops at the size the file had
        when it was opened. Lines that fail to decode are logged and skipped.
        The file handle is closed when the iterator is exhausted or closed.

        Args:
            query: Optional filter applied before events are yielded

        Yields:
            Matching usage events
        """
        try:
            handle = open(self.path, "rb")
        except FileNotFoundError:
            return

        with handle:
            limit = os.fstat(handle.fileno()).st_size
            consumed = 0
            line_number = 0
            while consumed < limit:
                raw = handle.readline()
                if not raw:
                    break
                consumed += len(raw)
                line_number += 1
                if not raw.strip():
                    continue
                try:
                    event = decode_event(raw)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(
                        "Skipping malformed usage event at %s:%d: %s",
                        self.path, line_number, e
                    )
                    continue
                if query is None or query.matches(event):
                    yield event

    def trim(self, cutoff: int) -> int:
        """Rewrite the log keeping only events with ``timestamp >= cutoff``.

        The kept events are written to a temporary sibling file that then
        atomically replaces the log, so a half-written log is never visible
        under the original name.

        Args:
            cutoff: Inclusive lower bound in milliseconds since the epoch

        Returns:
            Number of events kept

        Raises:
            OSError: If the temporary file cannot be written or renamed
        """
        if not self.path.exists():
            return 0

        tmp_path = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex}.tmp")
        kept = 0
        try:
            with open(tmp_path, "wb") as out:
                for event in self.read(SummaryQuery(since=cutoff)):
                    out.write(encode_event(event))
                    kept += 1
                out.flush()
                os.fsync(out.fileno())
            os.replace(tmp_path, self.path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise
        return kept

    def clear(self) -> None:
        """Delete the log entirely.

        Raises:
            OSError: If the log exists but cannot be removed
        """
        self.path.unlink(missing_ok=True)
