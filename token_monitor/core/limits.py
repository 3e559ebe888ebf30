"""
Usage limits evaluation.

Checks configured hourly, daily and monthly thresholds against aggregated
usage.

Evaluation Order:
1. Hourly - bucket for the current hour of the cached summary
2. Daily - bucket for the current day of the cached summary
3. Monthly - fresh aggregation from the start of the current month

Within a period the token threshold is checked before the cost threshold.
The first exceeded threshold is reported.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from token_monitor.storage.models import Aggregation, SummaryQuery
from .aggregation import day_key, hour_key

if TYPE_CHECKING:
    from .monitor import TokenMonitor


class LimitType(Enum):
    """Period a limit applies to."""
    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"


class LimitField(Enum):
    """Quantity a limit is expressed in."""
    TOKENS = "tokens"
    COST = "cost"


class AlertLevel(Enum):
    """Display severity of a usage percentage."""
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


@dataclass(frozen=True)
class LimitThreshold:
    """Token and/or cost ceiling for one period."""
    max_tokens: Optional[int] = None
    max_cost: Optional[float] = None

    def __post_init__(self):
        """Validate thresholds are positive."""
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if self.max_cost is not None and self.max_cost <= 0:
            raise ValueError("max_cost must be > 0")

    @property
    def is_configured(self) -> bool:
        return self.max_tokens is not None or self.max_cost is not None


@dataclass(frozen=True)
class LimitConfig:
    """Limits for each period. Unset periods are not checked."""
    hourly: Optional[LimitThreshold] = None
    daily: Optional[LimitThreshold] = None
    monthly: Optional[LimitThreshold] = None

    @property
    def is_configured(self) -> bool:
        return any(
            threshold is not None and threshold.is_configured
            for threshold in (self.hourly, self.daily, self.monthly)
        )


@dataclass(frozen=True)
class AlertThresholds:
    """Percentages at which usage is reported as warning or critical."""
    warning: float = 80.0
    critical: float = 95.0

    def __post_init__(self):
        """Validate threshold ordering."""
        if not 0 < self.warning <= self.critical:
            raise ValueError("alert thresholds must satisfy 0 < warning <= critical")

    def classify(self, percentage: float) -> AlertLevel:
        if percentage >= 100:
            return AlertLevel.EXCEEDED
        if percentage >= self.critical:
            return AlertLevel.CRITICAL
        if percentage >= self.warning:
            return AlertLevel.WARNING
        return AlertLevel.OK


@dataclass(frozen=True)
class LimitStatus:
    """Result of a limit check."""
    is_limit_exceeded: bool
    current: float
    limit: float
    percentage: float
    limit_type: Optional[LimitType] = None
    limit_field: Optional[LimitField] = None


NOT_EXCEEDED = LimitStatus(is_limit_exceeded=False, current=0, limit=0, percentage=0)


def check_limits(
    monitor: "TokenMonitor",
    limits: Optional[LimitConfig],
    now: Optional[int] = None,
) -> Optional[LimitStatus]:
    """Check configured limits against recorded usage.

    Hourly and daily limits read the current bucket of the cached summary.
    Monthly limits run a fresh aggregation scoped to the current month,
    since no running monthly bucket is kept.

    Args:
        monitor: Monitor providing summaries
        limits: Limits to evaluate
        now: Evaluation time in milliseconds (defaults to the monitor clock)

    Returns:
        None if no limits are configured, otherwise the first exceeded
        limit or a zeroed not-exceeded status
    """
    if limits is None or not limits.is_configured:
        return None

    if now is None:
        now = monitor.now()

    if limits.hourly is not None or limits.daily is not None:
        summary = monitor.load_summary()

        if limits.hourly is not None:
            bucket = summary.by_hour.get(hour_key(now))
            status = _evaluate(LimitType.HOURLY, limits.hourly, bucket)
            if status is not None:
                return status

        if limits.daily is not None:
            bucket = summary.by_day.get(day_key(now))
            status = _evaluate(LimitType.DAILY, limits.daily, bucket)
            if status is not None:
                return status

    if limits.monthly is not None:
        month_summary = monitor.generate_summary(
            SummaryQuery(since=month_start(now), until=now)
        )
        status = _evaluate(LimitType.MONTHLY, limits.monthly, month_summary.total)
        if status is not None:
            return status

    return NOT_EXCEEDED


def usage_report(
    monitor: "TokenMonitor",
    limits: LimitConfig,
    now: Optional[int] = None,
) -> List[LimitStatus]:
    """Measure current usage against every configured threshold.

    Unlike check_limits this does not stop at the first exceeded limit, so
    callers can show how close each period is to its ceiling.
    """
    if now is None:
        now = monitor.now()

    report: List[LimitStatus] = []
    if limits.hourly is not None or limits.daily is not None:
        summary = monitor.load_summary()
        if limits.hourly is not None:
            bucket = summary.by_hour.get(hour_key(now)) or Aggregation()
            report.extend(_measure(LimitType.HOURLY, limits.hourly, bucket))
        if limits.daily is not None:
            bucket = summary.by_day.get(day_key(now)) or Aggregation()
            report.extend(_measure(LimitType.DAILY, limits.daily, bucket))

    if limits.monthly is not None:
        month_summary = monitor.generate_summary(
            SummaryQuery(since=month_start(now), until=now)
        )
        report.extend(_measure(LimitType.MONTHLY, limits.monthly, month_summary.total))

    return report


def month_start(now: int) -> int:
    """Local midnight on the first day of the month containing ``now``."""
    current = datetime.fromtimestamp(now / 1000)
    start = current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return int(start.timestamp() * 1000)


def _evaluate(
    limit_type: LimitType,
    threshold: LimitThreshold,
    bucket: Optional[Aggregation],
) -> Optional[LimitStatus]:
    if bucket is None:
        return None

    for status in _measure(limit_type, threshold, bucket):
        if status.is_limit_exceeded:
            return status
    return None


def _measure(
    limit_type: LimitType,
    threshold: LimitThreshold,
    bucket: Aggregation,
) -> List[LimitStatus]:
    measured = []
    if threshold.max_tokens is not None:
        measured.append((LimitField.TOKENS, bucket.total, threshold.max_tokens))
    if threshold.max_cost is not None:
        measured.append((LimitField.COST, bucket.cost, threshold.max_cost))

    return [
        LimitStatus(
            is_limit_exceeded=current >= limit,
            limit_type=limit_type,
            limit_field=limit_field,
            current=current,
            limit=limit,
            percentage=current / limit * 100,
        )
        for limit_field, current, limit in measured
    ]

