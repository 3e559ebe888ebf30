"""
Data models for storage layer.

Defines usage events, aggregation accumulators and summaries.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class NormalizedUsage:
    """Token counts reported for a single request.

    Counts are provider independent. ``total`` is optional: when a provider
    reports its own total it is kept as-is, otherwise it is derived from the
    four counters.
    """
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    total: Optional[int] = None

    def __post_init__(self):
        """Validate counts are non-negative."""
        for name in ("input", "output", "cache_read", "cache_write"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.total is not None and self.total < 0:
            raise ValueError("total cannot be negative")

    def resolved_total(self) -> int:
        """Reported total, or the sum of the four counters when absent."""
        if self.total is not None:
            return self.total
        return self.input + self.output + self.cache_read + self.cache_write

    def to_dict(self) -> Dict[str, int]:
        data = {
            "input": self.input,
            "output": self.output,
            "cacheRead": self.cache_read,
            "cacheWrite": self.cache_write,
        }
        if self.total is not None:
            data["total"] = self.total
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NormalizedUsage":
        """Decode on-disk counts. Missing or null counters are zero.

        Raises:
            ValueError: If a count is not a non-negative integer
        """
        return cls(
            input=_count(data, "input") or 0,
            output=_count(data, "output") or 0,
            cache_read=_count(data, "cacheRead") or 0,
            cache_write=_count(data, "cacheWrite") or 0,
            total=_count(data, "total"),
        )


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one model request.

    Events are appended to the log once and never modified or reordered.
    ``timestamp`` is milliseconds since the epoch, assigned at write time.
    """
    timestamp: int
    provider: str
    model: str
    usage: NormalizedUsage
    cost: Optional[float] = None
    session_id: Optional[str] = None
    agent_id: Optional[str] = None

    def __post_init__(self):
        if self.cost is not None and not (math.isfinite(self.cost) and self.cost >= 0):
            raise ValueError("cost must be a finite, non-negative number")

    def to_dict(self) -> Dict[str, Any]:
        """Encode using the on-disk field names. Absent optionals are omitted."""
        data: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "provider": self.provider,
            "model": self.model,
            "usage": self.usage.to_dict(),
        }
        if self.cost is not None:
            data["cost"] = self.cost
        if self.session_id is not None:
            data["sessionId"] = self.session_id
        if self.agent_id is not None:
            data["agentId"] = self.agent_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageEvent":
        """Decode an on-disk record.

        Raises:
            KeyError: If a required field is missing
            TypeError, ValueError: If a field has the wrong shape
        """
        if not isinstance(data, dict):
            raise TypeError(f"expected an object, got {type(data).__name__}")
        usage = data["usage"]
        if not isinstance(usage, dict):
            raise TypeError("usage must be an object")
        timestamp = data["timestamp"]
        if not _is_int(timestamp):
            raise ValueError("timestamp must be an integer")
        for name in ("provider", "model"):
            if not isinstance(data[name], str):
                raise ValueError(f"{name} must be a string")
        for name in ("sessionId", "agentId"):
            if data.get(name) is not None and not isinstance(data[name], str):
                raise ValueError(f"{name} must be a string")

        cost = data.get("cost")
        if cost is not None and (isinstance(cost, bool) or not isinstance(cost, (int, float))):
            raise ValueError("cost must be a number")
        return cls(
            timestamp=timestamp,
            provider=data["provider"],
            model=data["model"],
            usage=NormalizedUsage.from_dict(usage),
            cost=float(cost) if cost is not None else None,
            session_id=data.get("sessionId"),
            agent_id=data.get("agentId"),
        )


@dataclass
class Aggregation:
    """Running totals for one bucket of events."""
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    total: int = 0
    cost: float = 0.0
    request_count: int = 0

    def add(self, usage: NormalizedUsage, cost: Optional[float] = None) -> None:
        """Fold one event's usage into this aggregation in place."""
        self.input += usage.input
        self.output += usage.output
        self.cache_read += usage.cache_read
        self.cache_write += usage.cache_write
        self.total += usage.resolved_total()
        self.cost += cost or 0.0
        self.request_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input": self.input,
            "output": self.output,
            "cacheRead": self.cache_read,
            "cacheWrite": self.cache_write,
            "total": self.total,
            "cost": self.cost,
            "requestCount": self.request_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Aggregation":
        return cls(**aggregation_kwargs(data))


@dataclass
class ProviderStats(Aggregation):
    """Aggregation for one provider with a nested per-model breakdown."""
    provider: str = ""
    models: Dict[str, Aggregation] = field(default_factory=dict)

    def model_stats(self, model: str) -> Aggregation:
        """Return the aggregation for ``model``, creating it on first sight."""
        stats = self.models.get(model)
        if stats is None:
            stats = Aggregation()
            self.models[model] = stats
        return stats


@dataclass(frozen=True)
class ModelUsage:
    """One ranked (provider, model) entry of a summary."""
    provider: str
    model: str
    usage: Aggregation


@dataclass(frozen=True)
class SummaryQuery:
    """Filter applied to events before they are yielded or aggregated.

    ``since`` and ``until`` are inclusive millisecond bounds.
    """
    since: Optional[int] = None
    until: Optional[int] = None
    provider: Optional[str] = None
    model: Optional[str] = None

    def matches(self, event: UsageEvent) -> bool:
        if self.since is not None and event.timestamp < self.since:
            return False
        if self.until is not None and event.timestamp > self.until:
            return False
        if self.provider is not None and event.provider != self.provider:
            return False
        if self.model is not None and event.model != self.model:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "since": self.since,
            "until": self.until,
            "provider": self.provider,
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SummaryQuery":
        data = data or {}
        return cls(
            since=data.get("since"),
            until=data.get("until"),
            provider=data.get("provider"),
            model=data.get("model"),
        )


@dataclass
class Summary:
    """Point-in-time aggregated view of the usage log.

    ``period_start``/``period_end`` start at the query bounds (or the
    generation time) and are widened to the timestamps actually observed.
    """
    updated_at: int
    period_start: int
    period_end: int
    total: Aggregation
    by_provider: Dict[str, ProviderStats] = field(default_factory=dict)
    by_hour: Dict[str, Aggregation] = field(default_factory=dict)
    by_day: Dict[str, Aggregation] = field(default_factory=dict)
    top_models: List[ModelUsage] = field(default_factory=list)
    query: SummaryQuery = field(default_factory=SummaryQuery)


def aggregation_kwargs(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "input": int(data.get("input", 0)),
        "output": int(data.get("output", 0)),
        "cache_read": int(data.get("cacheRead", 0)),
        "cache_write": int(data.get("cacheWrite", 0)),
        "total": int(data.get("total", 0)),
        "cost": float(data.get("cost", 0.0)),
        "request_count": int(data.get("requestCount", 0)),
    }


def _is_int(value: Any) -> bool:
    # bool is an int subclass
    return isinstance(value, int) and not isinstance(value, bool)


def _count(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if not _is_int(value) or value < 0:
        raise ValueError(f"{key} must be a non-negative integer")
    return value
