"""
Tests for the token monitor service.

Covers recording, summaries, cache coherence and reset.
"""
import logging
from unittest.mock import patch

import pytest

from conftest import NOW, FakeClock

from token_monitor.config.loader import MonitorConfig
from token_monitor.core.aggregation import day_key, hour_key
from token_monitor.core.monitor import DAY_MS, TokenMonitor
from token_monitor.core.pricing import CostRates, CostRateTable
from token_monitor.storage.models import NormalizedUsage, SummaryQuery, UsageEvent


class TestRecordUsage:
    """Test recording usage events."""

    def test_record_and_read_back(self, monitor):
        usage = NormalizedUsage(input=100, output=50, cache_read=10, cache_write=5, total=165)

        recorded = monitor.record_usage("anthropic", "claude-3-opus", usage, session_id="s-1", agent_id="main")

        events = list(monitor.read_events())
        assert events == [recorded]
        assert events[0].timestamp == NOW
        assert events[0].provider == "anthropic"
        assert events[0].model == "claude-3-opus"
        assert events[0].usage.input == 100
        assert events[0].usage.output == 50
        assert events[0].session_id == "s-1"
        assert events[0].agent_id == "main"

    def test_raw_provider_usage_is_normalized(self, monitor):
        recorded = monitor.record_usage(
            "anthropic",
            "claude-3-opus",
            {"input_tokens": 10, "output_tokens": 5, "cache_read_input_tokens": 2}
        )

        assert recorded.usage == NormalizedUsage(input=10, output=5, cache_read=2)

    def test_cost_estimated_from_configured_rates(self, tmp_path, clock):
        config = MonitorConfig(cost_rates=CostRateTable({
            "anthropic/claude-3-opus": CostRates(input=15, output=75),
        }))
        monitor = TokenMonitor(tmp_path, config=config, clock=clock)

        recorded = monitor.record_usage("anthropic", "claude-3-opus", NormalizedUsage(input=100, output=50, total=150))

        # (100 * 15 + 50 * 75) / 1M
        assert recorded.cost == pytest.approx(0.00525)

    def test_explicit_rates_override_configured(self, monitor):
        recorded = monitor.record_usage(
            "openai",
            "gpt-4",
            NormalizedUsage(input=1_000_000),
            rates=CostRates(input=30)
        )

        assert recorded.cost == pytest.approx(30.0)

    def test_unpriced_model_costs_zero(self, monitor):
        recorded = monitor.record_usage("openai", "gpt-4", NormalizedUsage(input=100))
        assert recorded.cost == 0.0

    def test_disabled_monitor_records_nothing(self, tmp_path, clock):
        monitor = TokenMonitor(tmp_path, config=MonitorConfig(enabled=False), clock=clock)

        assert monitor.record_usage("openai", "gpt-4", NormalizedUsage(input=1)) is None
        assert not monitor.store.path.exists()

    def test_storage_failure_never_raises(self, tmp_path, clock, caplog):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        monitor = TokenMonitor(blocker, clock=clock)

        with caplog.at_level(logging.WARNING):
            assert monitor.record_usage("openai", "gpt-4", NormalizedUsage(input=1)) is None

        assert "Failed to append usage event" in caplog.text


class TestSummaries:
    """Test summary generation through the monitor."""

    def test_two_provider_scenario(self, monitor):
        monitor.record_usage("anthropic", "claude-3-opus", NormalizedUsage(input=100, output=50, total=150))
        monitor.record_usage("openai", "gpt-4", NormalizedUsage(input=200, output=100, total=300))

        summary = monitor.generate_summary()

        assert summary.total.input == 300
        assert summary.total.output == 150
        assert summary.total.request_count == 2
        assert len(summary.by_provider) == 2
        assert "anthropic" in summary.by_provider
        assert "openai" in summary.by_provider
        # Ranked by total tokens, descending
        assert [m.model for m in summary.top_models] == ["gpt-4", "claude-3-opus"]

    def test_top_models(self, monitor):
        monitor.record_usage("anthropic", "claude-3-opus", NormalizedUsage(input=1000, output=500, total=1500))
        monitor.record_usage("openai", "gpt-4", NormalizedUsage(input=100, output=50, total=150))

        summary = monitor.generate_summary()

        assert len(summary.top_models) == 2
        assert summary.top_models[0].model == "claude-3-opus"
        assert summary.top_models[1].model == "gpt-4"

    def test_recorded_event_is_bucketed(self, monitor):
        monitor.record_usage("anthropic", "claude-3-opus", NormalizedUsage(input=100, output=50, total=150))

        summary = monitor.generate_summary()

        assert summary.by_hour[hour_key(NOW)].total == 150
        assert summary.by_day[day_key(NOW)].total == 150

    def test_filtered_summary(self, monitor):
        monitor.record_usage("anthropic", "claude-3-opus", NormalizedUsage(input=1))
        monitor.record_usage("openai", "gpt-4", NormalizedUsage(input=2))

        summary = monitor.generate_summary(SummaryQuery(provider="openai"))

        assert list(summary.by_provider) == ["openai"]
        assert summary.total.input == 2

    def test_generate_summary_does_not_touch_cache(self, monitor):
        monitor.record_usage("openai", "gpt-4", NormalizedUsage(input=2))

        monitor.generate_summary()

        assert monitor.cache.entry is None
        assert not monitor.cache.path.exists()


class TestCacheCoherence:
    """Test that cached summaries stay consistent with recorded events."""

    def test_repeated_load_does_not_rescan(self, monitor, clock):
        monitor.record_usage("openai", "gpt-4", NormalizedUsage(input=2))
        first = monitor.load_summary()

        clock.advance(30_000)
        with patch.object(monitor.store, "read", wraps=monitor.store.read) as mock_read:
            second = monitor.load_summary()

        assert mock_read.call_count == 0
        assert second == first

    def test_record_invalidates_cached_summary(self, monitor, clock):
        monitor.record_usage("openai", "gpt-4", NormalizedUsage(input=2))
        assert monitor.load_summary().total.request_count == 1

        clock.advance(1_000)
        monitor.record_usage("anthropic", "claude-3-opus", NormalizedUsage(input=3))
        clock.advance(1_000)
        summary = monitor.load_summary()

        assert summary.total.request_count == 2
        assert summary.total.input == 5

    def test_summary_reused_by_new_monitor_within_ttl(self, tmp_path):
        clock = FakeClock()
        writer = TokenMonitor(tmp_path, clock=clock)
        writer.record_usage("openai", "gpt-4", NormalizedUsage(input=2))
        summary = writer.load_summary()

        clock.advance(1_000)
        reader = TokenMonitor(tmp_path, clock=clock)
        with patch.object(reader.store, "read", wraps=reader.store.read) as mock_read:
            assert reader.load_summary() == summary
        assert mock_read.call_count == 0

    def test_force_refresh_rescans(self, monitor):
        monitor.record_usage("openai", "gpt-4", NormalizedUsage(input=2))
        monitor.load_summary()

        # Appended behind the monitor's back, so the cache is not invalidated
        monitor.store.append(UsageEvent(NOW, "openai", "gpt-4", NormalizedUsage(input=40)))

        assert monitor.load_summary().total.input == 2
        assert monitor.load_summary(force_refresh=True).total.input == 42


class TestReset:
    """Test full and age-based reset."""

    def _seed(self, monitor, ages_in_days):
        for age in ages_in_days:
            monitor.store.append(
                UsageEvent(NOW - int(age * DAY_MS), "openai", "gpt-4", NormalizedUsage(input=1))
            )

    def test_reset_keep_days(self, monitor):
        self._seed(monitor, [10, 5, 3.5, 2.9, 1, 0])

        monitor.reset(keep_days=3)

        cutoff = NOW - 3 * DAY_MS
        remaining = list(monitor.read_events())
        assert len(remaining) == 3
        assert all(e.timestamp >= cutoff for e in remaining)

    def test_reset_keep_days_keeps_event_on_cutoff(self, monitor):
        monitor.store.append(UsageEvent(NOW - 3 * DAY_MS, "openai", "gpt-4", NormalizedUsage(input=1)))

        monitor.reset(keep_days=3)

        assert len(list(monitor.read_events())) == 1

    def test_reset_keep_days_discards_cached_summary(self, monitor):
        self._seed(monitor, [10, 0])
        assert monitor.load_summary().total.request_count == 2

        monitor.reset(keep_days=3)

        assert monitor.load_summary().total.request_count == 1

    def test_full_reset(self, monitor):
        monitor.record_usage("openai", "gpt-4", NormalizedUsage(input=2))
        monitor.load_summary()

        monitor.reset()

        assert list(monitor.read_events()) == []
        assert not monitor.store.path.exists()
        assert not monitor.cache.path.exists()
        assert monitor.load_summary().total.request_count == 0

    def test_reset_failure_propagates(self, monitor):
        self._seed(monitor, [10, 0])

        with patch("token_monitor.storage.event_log.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(OSError, match="read-only"):
                monitor.reset(keep_days=3)

        assert len(list(monitor.read_events())) == 2
