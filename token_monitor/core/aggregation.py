"""
Usage aggregation.

Folds a stream of usage events into a multi-dimensional Summary in a single
pass: overall, per provider, per provider and model, per hour and per day.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from token_monitor.storage.models import (
    Aggregation,
    ModelUsage,
    ProviderStats,
    Summary,
    SummaryQuery,
    UsageEvent,
)
from token_monitor.storage.summary_cache import now_ms

TOP_MODELS_LIMIT = 10


def hour_key(timestamp: int) -> str:
    """Local-time hour bucket key, ``YYYY-MM-DD HH:00``."""
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:00")


def day_key(timestamp: int) -> str:
    """Local-time day bucket key, ``YYYY-MM-DD``."""
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d")


def _bucket(buckets: Dict[str, Aggregation], key: str) -> Aggregation:
    agg = buckets.get(key)
    if agg is None:
        agg = Aggregation()
        buckets[key] = agg
    return agg


def aggregate_events(
    events: Iterable[UsageEvent],
    query: Optional[SummaryQuery] = None,
    now: Optional[int] = None,
) -> Summary:
    """Aggregate events into a Summary in one streaming pass.

    The reported period starts at the query bounds (or ``now`` when a bound
    is absent) and is widened to the earliest and latest timestamps seen.
    When no events match, the period is therefore the query bounds.

    Top models are ranked by total tokens, descending. Ties are ordered by
    provider first-seen order, then by model first-seen order within each
    provider.

    Args:
        events: Events to aggregate, typically already filtered by ``query``
        query: The query the events were read with
        now: Generation time in milliseconds (defaults to the wall clock)

    Returns:
        Complete Summary for the events
    """
    query = query or SummaryQuery()
    if now is None:
        now = now_ms()

    total = Aggregation()
    by_provider: Dict[str, ProviderStats] = {}
    by_hour: Dict[str, Aggregation] = {}
    by_day: Dict[str, Aggregation] = {}

    period_start = query.since if query.since is not None else now
    period_end = query.until if query.until is not None else now

    for event in events:
        if event.timestamp < period_start:
            period_start = event.timestamp
        if event.timestamp > period_end:
            period_end = event.timestamp

        usage, cost = event.usage, event.cost
        total.add(usage, cost)

        provider_stats = by_provider.get(event.provider)
        if provider_stats is None:
            provider_stats = ProviderStats(provider=event.provider)
            by_provider[event.provider] = provider_stats
        provider_stats.add(usage, cost)
        provider_stats.model_stats(event.model).add(usage, cost)

        _bucket(by_hour, hour_key(event.timestamp)).add(usage, cost)
        _bucket(by_day, day_key(event.timestamp)).add(usage, cost)

    return Summary(
        updated_at=now,
        period_start=period_start,
        period_end=period_end,
        total=total,
        by_provider=by_provider,
        by_hour=by_hour,
        by_day=by_day,
        top_models=rank_models(by_provider),
        query=query,
    )


def rank_models(
    by_provider: Dict[str, ProviderStats],
    limit: int = TOP_MODELS_LIMIT,
) -> List[ModelUsage]:
    """Flatten per-model stats and return the ``limit`` largest by total tokens."""
    entries = [
        ModelUsage(provider=provider, model=model, usage=usage)
        for provider, stats in by_provider.items()
        for model, usage in stats.models.items()
    ]
    # sorted() is stable: equal totals stay grouped by provider, then model
    entries = sorted(entries, key=lambda entry: entry.usage.total, reverse=True)
    return entries[:limit]
