"""
Summary serialization utilities.

Converts Summary objects to and from plain dictionaries for the persisted
summary cache. Every dictionary keyed by a dynamic string (provider, model,
hour, day) is flattened one level at a time; keys are kept verbatim.
"""

from typing import Any, Dict

from .models import (
    Aggregation,
    ModelUsage,
    ProviderStats,
    Summary,
    SummaryQuery,
    aggregation_kwargs,
)


def summary_to_dict(summary: Summary) -> Dict[str, Any]:
    """
    Convert a Summary to a JSON-serializable dictionary.

    Args:
        summary: The summary to serialize

    Returns:
        Dictionary with nested dictionaries flattened to plain objects
    """
    return {
        "updatedAt": summary.updated_at,
        "period": {
            "start": summary.period_start,
            "end": summary.period_end,
        },
        "query": summary.query.to_dict(),
        "total": summary.total.to_dict(),
        "byProvider": {
            provider: _provider_to_dict(stats)
            for provider, stats in summary.by_provider.items()
        },
        "byHour": {key: agg.to_dict() for key, agg in summary.by_hour.items()},
        "byDay": {key: agg.to_dict() for key, agg in summary.by_day.items()},
        "topModels": [
            {"provider": entry.provider, "model": entry.model, "usage": entry.usage.to_dict()}
            for entry in summary.top_models
        ],
    }


def summary_from_dict(data: Dict[str, Any]) -> Summary:
    """
    Rebuild a Summary from its persisted dictionary form.

    Top-model entries share their Aggregation with the matching
    ``by_provider`` model entry, as they do in a freshly generated summary.

    Args:
        data: Dictionary produced by summary_to_dict

    Returns:
        Reconstructed Summary

    Raises:
        KeyError, TypeError, ValueError: If the dictionary is malformed
    """
    by_provider = {
        provider: _provider_from_dict(provider, stats)
        for provider, stats in data["byProvider"].items()
    }

    top_models = []
    for entry in data.get("topModels", []):
        provider, model = entry["provider"], entry["model"]
        usage = None
        if provider in by_provider:
            usage = by_provider[provider].models.get(model)
        if usage is None:
            usage = Aggregation.from_dict(entry["usage"])
        top_models.append(ModelUsage(provider=provider, model=model, usage=usage))

    return Summary(
        updated_at=int(data["updatedAt"]),
        period_start=int(data["period"]["start"]),
        period_end=int(data["period"]["end"]),
        total=Aggregation.from_dict(data["total"]),
        by_provider=by_provider,
        by_hour={key: Aggregation.from_dict(agg) for key, agg in data["byHour"].items()},
        by_day={key: Aggregation.from_dict(agg) for key, agg in data["byDay"].items()},
        top_models=top_models,
        query=SummaryQuery.from_dict(data.get("query")),
    )


def _provider_to_dict(stats: ProviderStats) -> Dict[str, Any]:
    data = stats.to_dict()
    data["provider"] = stats.provider
    data["models"] = {model: agg.to_dict() for model, agg in stats.models.items()}
    return data


def _provider_from_dict(provider: str, data: Dict[str, Any]) -> ProviderStats:
    return ProviderStats(
        provider=data.get("provider", provider),
        models={model: Aggregation.from_dict(agg) for model, agg in data["models"].items()},
        **aggregation_kwargs(data)
    )


__all__ = ["summary_to_dict", "summary_from_dict"]
