"""
Token usage monitor.

Records usage events and answers summary, event and limit queries on top
of the event log and the summary cache.
"""

import logging
from pathlib import Path
from typing import Any, Iterator, List, Optional, Union

from token_monitor.config.loader import MonitorConfig, resolve_data_dir
from token_monitor.storage.event_log import EVENT_LOG_FILENAME, EventStore
from token_monitor.storage.models import Summary, SummaryQuery, UsageEvent
from token_monitor.storage.summary_cache import (
    SUMMARY_CACHE_FILENAME,
    SUMMARY_CACHE_TTL_MS,
    Clock,
    SummaryCache,
    now_ms,
)
from .aggregation import aggregate_events
from .limits import LimitConfig, LimitStatus, check_limits, usage_report
from .pricing import CostRates, estimate_cost
from .usage import normalize_usage

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


class TokenMonitor:
    """Records model usage and serves aggregated views of it.

    Recording and querying are best effort: storage failures are logged and
    never raised to the caller. Resetting is destructive and user initiated,
    so its failures propagate.
    """

    def __init__(
        self,
        data_dir: Union[str, Path],
        config: Optional[MonitorConfig] = None,
        clock: Clock = now_ms,
        ttl_ms: int = SUMMARY_CACHE_TTL_MS,
    ):
        """Initialize the monitor.

        Args:
            data_dir: Directory holding the event log and summary cache
            config: Monitor configuration (limits, cost rates)
            clock: Millisecond clock for event timestamps and cache freshness
            ttl_ms: Summary cache time-to-live
        """
        self.data_dir = Path(data_dir)
        self.config = config or MonitorConfig()
        self._clock = clock
        self.store = EventStore(self.data_dir / EVENT_LOG_FILENAME)
        self.cache = SummaryCache(self.data_dir / SUMMARY_CACHE_FILENAME, clock=clock, ttl_ms=ttl_ms)

    def now(self) -> int:
        return self._clock()

    def record_usage(
        self,
        provider: str,
        model: str,
        usage: Any,
        session_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        rates: Optional[CostRates] = None,
    ) -> Optional[UsageEvent]:
        """Record usage of one model request.

        Cost is estimated from ``rates`` when given, otherwise from the
        configured cost-rate table; unpriced models cost zero.

        Args:
            provider: Provider identifier
            model: Model identifier
            usage: NormalizedUsage or raw provider usage payload
            session_id: Optional session correlation id
            agent_id: Optional agent correlation id
            rates: Optional explicit cost rates

        Returns:
            The recorded event, or None if the monitor is disabled or the
            event could not be written
        """
        if not self.config.enabled:
            return None

        normalized = normalize_usage(usage)
        if rates is None:
            rates = self.config.cost_rates.resolve(provider, model)

        event = UsageEvent(
            timestamp=self._clock(),
            provider=provider,
            model=model,
            usage=normalized,
            cost=estimate_cost(normalized, rates),
            session_id=session_id,
            agent_id=agent_id
        )

        if not self.store.append(event):
            return None

        self.cache.invalidate()
        return event

    def read_events(self, query: Optional[SummaryQuery] = None) -> Iterator[UsageEvent]:
        """Lazily read raw events matching ``query``."""
        return self.store.read(query)

    def generate_summary(self, query: Optional[SummaryQuery] = None) -> Summary:
        """Aggregate the event log from scratch. The cache is not consulted."""
        return aggregate_events(self.store.read(query), query=query, now=self._clock())

    def load_summary(
        self,
        query: Optional[SummaryQuery] = None,
        force_refresh: bool = False,
    ) -> Summary:
        """Return a summary for ``query``, served from the cache when fresh."""
        return self.cache.load(
            query,
            lambda: self.generate_summary(query),
            force_refresh=force_refresh
        )

    def check_limits(self, limits: Optional[LimitConfig] = None) -> Optional[LimitStatus]:
        """Check limits, defaulting to the configured ones."""
        if limits is None:
            limits = self.config.limits
        return check_limits(self, limits)

    def limit_usage(self, limits: Optional[LimitConfig] = None) -> List[LimitStatus]:
        """Usage against every configured threshold, exceeded or not."""
        if limits is None:
            limits = self.config.limits
        if limits is None:
            return []
        return usage_report(self, limits)

    def reset(self, keep_days: Optional[int] = None) -> None:
        """Delete recorded usage.

        Args:
            keep_days: Keep events from the last ``keep_days`` days; delete
                everything when None or 0

        Raises:
            OSError: If the log or cache cannot be rewritten or removed
        """
        if keep_days:
            cutoff = self._clock() - keep_days * DAY_MS
            kept = self.store.trim(cutoff)
            self.cache.clear()
            logger.info("Token monitor data cleared (kept last %d days, %d events)", keep_days, kept)
        else:
            self.store.clear()
            self.cache.clear()
            logger.info("Token monitor data cleared")


# Global monitor instance
_default_monitor: Optional[TokenMonitor] = None


def get_monitor(config: Optional[MonitorConfig] = None) -> TokenMonitor:
    """Get the process-wide monitor instance.

    The instance is created on first call, using the data directory from
    ``config`` or the environment.

    Args:
        config: Configuration used when the instance is first created

    Returns:
        The shared TokenMonitor
    """
    global _default_monitor
    if _default_monitor is None:
        config = config or MonitorConfig()
        _default_monitor = TokenMonitor(resolve_data_dir(config.data_dir), config=config)
    return _default_monitor
