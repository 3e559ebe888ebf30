"""
Token usage normalization.

Maps the usage payloads of different providers onto NormalizedUsage.
"""

from typing import Any, Optional, Sequence

from token_monitor.storage.models import NormalizedUsage

# Field spellings seen across provider SDKs, checked in order
INPUT_FIELDS = ("input", "input_tokens", "prompt_tokens", "inputTokens", "promptTokens")
OUTPUT_FIELDS = ("output", "output_tokens", "completion_tokens", "outputTokens", "completionTokens")
CACHE_READ_FIELDS = ("cacheRead", "cache_read", "cache_read_input_tokens", "cached_tokens")
CACHE_WRITE_FIELDS = ("cacheWrite", "cache_write", "cache_creation_input_tokens")
TOTAL_FIELDS = ("total", "total_tokens", "totalTokens")


def normalize_usage(raw: Any) -> NormalizedUsage:
    """Build a NormalizedUsage from a provider usage payload.

    Accepts either a mapping or an object exposing the counts as attributes
    (for example an SDK response ``usage`` object). Values that are not
    non-negative integers are treated as absent.

    Args:
        raw: Provider usage payload, a NormalizedUsage, or None

    Returns:
        NormalizedUsage with missing counters set to zero
    """
    if isinstance(raw, NormalizedUsage):
        return raw
    if raw is None:
        return NormalizedUsage()

    return NormalizedUsage(
        input=_first_count(raw, INPUT_FIELDS) or 0,
        output=_first_count(raw, OUTPUT_FIELDS) or 0,
        cache_read=_first_count(raw, CACHE_READ_FIELDS) or 0,
        cache_write=_first_count(raw, CACHE_WRITE_FIELDS) or 0,
        total=_first_count(raw, TOTAL_FIELDS),
    )


def _first_count(raw: Any, names: Sequence[str]) -> Optional[int]:
    for name in names:
        if isinstance(raw, dict):
            value = raw.get(name)
        else:
            value = getattr(raw, name, None)
        # bool is an int subclass
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value
    return None
