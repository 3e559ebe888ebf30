"""
Unit tests for storage layer.

Tests event log appends, filtered reads, trimming and clearing.
"""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from token_monitor.storage.event_log import EventStore, decode_event, encode_event
from token_monitor.storage.models import NormalizedUsage, SummaryQuery, UsageEvent


def make_event(timestamp=1_000, provider="anthropic", model="claude-3-opus", **usage):
    usage = usage or {"input": 100, "output": 50, "total": 150}
    return UsageEvent(
        timestamp=timestamp,
        provider=provider,
        model=model,
        usage=NormalizedUsage(**usage),
        cost=0.25
    )


class StoreTestCase:
    """Creates a store in a fresh temporary directory."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "data" / "token-monitor.jsonl"
        self.store = EventStore(self.path)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestEventEncoding:
    """Test event line encoding."""

    def test_encoded_event_is_single_line(self):
        """Each event encodes to exactly one newline-terminated line."""
        line = encode_event(make_event())
        assert line.endswith(b"\n")
        assert line.count(b"\n") == 1

    def test_encoding_uses_log_field_names(self):
        event = UsageEvent(
            timestamp=5,
            provider="openai",
            model="gpt-4",
            usage=NormalizedUsage(input=1, cache_read=2, cache_write=3),
            session_id="s-1",
            agent_id="a-1"
        )
        data = json.loads(encode_event(event))
        assert data == {
            "timestamp": 5,
            "provider": "openai",
            "model": "gpt-4",
            "usage": {"input": 1, "output": 0, "cacheRead": 2, "cacheWrite": 3},
            "sessionId": "s-1",
            "agentId": "a-1",
        }

    def test_decode_missing_usage_fields_default_to_zero(self):
        event = decode_event(b'{"timestamp": 1, "provider": "p", "model": "m", "usage": {"input": 7}}')
        assert event.usage == NormalizedUsage(input=7)
        assert event.cost is None


class TestAppendAndRead(StoreTestCase):
    """Test appending and reading events."""

    def test_round_trip(self):
        """An appended event reads back unchanged."""
        event = make_event(input=100, output=50, cache_read=10, cache_write=5, total=165)

        assert self.store.append(event) is True

        events = list(self.store.read())
        assert len(events) == 1
        assert events[0].provider == "anthropic"
        assert events[0].model == "claude-3-opus"
        assert events[0].usage.input == 100
        assert events[0].usage.output == 50
        assert events[0].usage.cache_read == 10
        assert events[0].usage.cache_write == 5
        assert events[0].usage.total == 165
        assert events[0] == event

    def test_append_creates_directory(self):
        assert not self.path.parent.exists()
        self.store.append(make_event())
        assert self.path.exists()

    def test_append_is_single_write(self):
        """Each append issues one write call containing one full line."""
        with patch("token_monitor.storage.event_log.os.write", wraps=os.write) as mock_write:
            self.store.append(make_event())

        assert mock_write.call_count == 1
        payload = mock_write.call_args[0][1]
        assert payload.endswith(b"\n")
        assert payload.count(b"\n") == 1

    def test_events_read_in_append_order(self):
        """Log order is append order, not timestamp order."""
        for ts in (3_000, 1_000, 2_000):
            self.store.append(make_event(timestamp=ts))

        assert [e.timestamp for e in self.store.read()] == [3_000, 1_000, 2_000]

    def test_append_failure_is_swallowed(self, caplog):
        """A write failure is logged and reported, never raised."""
        blocker = Path(self.temp_dir) / "blocker"
        blocker.write_text("not a directory")
        store = EventStore(blocker / "token-monitor.jsonl")

        with caplog.at_level(logging.WARNING):
            assert store.append(make_event()) is False

        assert "Failed to append usage event" in caplog.text

    def test_short_write_is_reported(self, caplog):
        """A partial write is logged and reported as a failed append."""
        with patch("token_monitor.storage.event_log.os.write", return_value=5):
            with caplog.at_level(logging.WARNING):
                assert self.store.append(make_event()) is False

        assert "Short write appending usage event" in caplog.text

    def test_read_missing_log_is_empty(self):
        assert list(self.store.read()) == []

    def test_read_is_restartable(self):
        """Each read call starts from the beginning of the log."""
        self.store.append(make_event(timestamp=1))
        self.store.append(make_event(timestamp=2))

        assert len(list(self.store.read())) == 2
        assert len(list(self.store.read())) == 2

    def test_read_is_bounded_by_size_at_open(self):
        """Events appended after a read has started are not yielded by it."""
        self.store.append(make_event(timestamp=1))
        self.store.append(make_event(timestamp=2))

        reader = self.store.read()
        first = next(reader)
        self.store.append(make_event(timestamp=3))
        rest = list(reader)

        assert first.timestamp == 1
        assert [e.timestamp for e in rest] == [2]
        assert len(list(self.store.read())) == 3

    def test_abandoned_reader_can_be_closed(self):
        self.store.append(make_event(timestamp=1))
        self.store.append(make_event(timestamp=2))

        reader = self.store.read()
        next(reader)
        reader.close()

        with pytest.raises(StopIteration):
            next(reader)

    def test_malformed_lines_are_skipped(self, caplog):
        """Corrupt lines are logged individually and the scan continues."""
        self.path.parent.mkdir(parents=True)
        with open(self.path, "wb") as f:
            f.write(encode_event(make_event(timestamp=1)))
            f.write(b"this is not json\n")
            f.write(b'{"timestamp": 2}\n')
            f.write(b"\n")
            f.write(b'["a", "list"]\n')
            f.write(encode_event(make_event(timestamp=3)))

        with caplog.at_level(logging.WARNING):
            events = list(self.store.read())

        assert [e.timestamp for e in events] == [1, 3]
        assert caplog.text.count("Skipping malformed usage event") == 3

    @pytest.mark.parametrize("line", [
        b'{"timestamp": 2, "provider": "p", "model": "m", "usage": {"input": 1}, "cost": NaN}\n',
        b'{"timestamp": 2, "provider": "p", "model": "m", "usage": {"input": 1}, "cost": Infinity}\n',
        b'{"timestamp": 2, "provider": "p", "model": "m", "usage": {"input": 1}, "cost": "0.5"}\n',
        b'{"timestamp": 2, "provider": null, "model": "m", "usage": {"input": 1}}\n',
        b'{"timestamp": 2, "provider": "p", "model": 4, "usage": {"input": 1}}\n',
        b'{"timestamp": 2, "provider": "p", "model": "m", "usage": {"input": 1.9}}\n',
        b'{"timestamp": 2, "provider": "p", "model": "m", "usage": {"output": true}}\n',
        b'{"timestamp": 2, "provider": "p", "model": "m", "usage": {"total": -3}}\n',
        b'{"timestamp": 2.5, "provider": "p", "model": "m", "usage": {"input": 1}}\n',
        b'{"timestamp": 2, "provider": "p", "model": "m", "usage": {}, "sessionId": 7}\n',
    ])
    def test_invalid_field_values_are_skipped(self, line, caplog):
        """Lines with wrongly typed or non-finite values never reach callers."""
        self.store.append(make_event(timestamp=1))
        with open(self.path, "ab") as f:
            f.write(line)
        self.store.append(make_event(timestamp=3))

        with caplog.at_level(logging.WARNING):
            events = list(self.store.read())

        assert [e.timestamp for e in events] == [1, 3]
        assert "Skipping malformed usage event" in caplog.text

    def test_trailing_partial_line_is_decoded(self):
        """A final line without a newline is still read as an event."""
        self.store.append(make_event(timestamp=1))
        with open(self.path, "ab") as f:
            f.write(encode_event(make_event(timestamp=2)).rstrip(b"\n"))

        assert [e.timestamp for e in self.store.read()] == [1, 2]


class TestFilteredRead(StoreTestCase):
    """Test filter predicates applied while reading."""

    def setup_method(self):
        super().setup_method()
        self.store.append(make_event(timestamp=1_000, provider="anthropic", model="claude-3-opus"))
        self.store.append(make_event(timestamp=2_000, provider="openai", model="gpt-4"))
        self.store.append(make_event(timestamp=3_000, provider="anthropic", model="claude-3-haiku"))
        self.store.append(make_event(timestamp=4_000, provider="openai", model="gpt-4o"))

    def test_filter_by_provider(self):
        events = list(self.store.read(SummaryQuery(provider="anthropic")))
        assert len(events) == 2
        assert all(e.provider == "anthropic" for e in events)

    def test_filter_by_model(self):
        events = list(self.store.read(SummaryQuery(model="gpt-4")))
        assert [e.timestamp for e in events] == [2_000]

    def test_time_bounds_are_inclusive(self):
        events = list(self.store.read(SummaryQuery(since=2_000, until=3_000)))
        assert [e.timestamp for e in events] == [2_000, 3_000]

    def test_zero_since_is_a_bound(self):
        events = list(self.store.read(SummaryQuery(since=0)))
        assert len(events) == 4

    def test_combined_filters(self):
        query = SummaryQuery(since=1_500, provider="openai", model="gpt-4o")
        assert [e.timestamp for e in self.store.read(query)] == [4_000]


class TestTrimAndClear(StoreTestCase):
    """Test destructive log operations."""

    def _leftover_temp_files(self):
        return [p for p in self.path.parent.iterdir() if p.name.endswith(".tmp")]

    def test_trim_keeps_events_at_or_after_cutoff(self):
        for ts in (1_000, 2_000, 3_000):
            self.store.append(make_event(timestamp=ts))

        kept = self.store.trim(2_000)

        assert kept == 2
        assert [e.timestamp for e in self.store.read()] == [2_000, 3_000]
        assert self._leftover_temp_files() == []

    def test_trim_drops_malformed_lines(self):
        self.store.append(make_event(timestamp=5_000))
        with open(self.path, "ab") as f:
            f.write(b"garbage\n")

        assert self.store.trim(0) == 1
        assert b"garbage" not in self.path.read_bytes()

    def test_trim_missing_log(self):
        assert self.store.trim(1_000) == 0
        assert not self.path.exists()

    def test_trim_failure_propagates_and_keeps_log(self):
        """A failed rename leaves the original log untouched."""
        for ts in (1_000, 2_000):
            self.store.append(make_event(timestamp=ts))
        original = self.path.read_bytes()

        with patch("token_monitor.storage.event_log.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError, match="disk full"):
                self.store.trim(2_000)

        assert self.path.read_bytes() == original
        assert self._leftover_temp_files() == []

    def test_clear_removes_log(self):
        self.store.append(make_event())
        self.store.clear()

        assert not self.path.exists()
        assert list(self.store.read()) == []

    def test_clear_missing_log(self):
        self.store.clear()
        assert not self.path.exists()
