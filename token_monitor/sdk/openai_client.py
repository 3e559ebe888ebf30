"""
Monitored OpenAI client wrapper.

Records token usage events without modifying behavior.
"""

from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..core.monitor import TokenMonitor, get_monitor
from ..storage.models import NormalizedUsage, UsageEvent


class MonitoredOpenAI:
    """OpenAI client wrapper that records usage events.

    Wraps OpenAI chat completions and appends one usage event per
    successful call. Recording is best effort and never masks the response;
    OpenAI API errors propagate unchanged.
    """

    def __init__(
        self,
        model: str,
        provider: str = "openai",
        monitor: Optional[TokenMonitor] = None,
        session_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ):
        """Initialize monitored OpenAI client.

        Args:
            model: OpenAI model name (required)
            provider: Provider label recorded with each event
            monitor: Monitor to record into (defaults to the shared monitor)
            session_id: Optional session correlation id
            agent_id: Optional agent correlation id

        Raises:
            ValueError: If model or provider is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not provider or not provider.strip():
            raise ValueError("provider is required and cannot be empty")

        self.model = model
        self.provider = provider
        self.monitor = monitor or get_monitor()
        self.session_id = session_id
        self.agent_id = agent_id
        self.client = OpenAI()
        self.last_event: Optional[UsageEvent] = None

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create chat completion with usage recording.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty
            OpenAI API errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )

        usage = getattr(response, "usage", None)
        if usage is not None:
            self.last_event = self.monitor.record_usage(
                provider=self.provider,
                model=self.model,
                usage=usage_from_openai(usage),
                session_id=self.session_id,
                agent_id=self.agent_id
            )

        return response


def usage_from_openai(usage: Any) -> NormalizedUsage:
    """Convert an OpenAI ``CompletionUsage`` object to NormalizedUsage.

    OpenAI counts cached prompt tokens inside ``prompt_tokens``; they are
    split out into ``cache_read`` so that input and cache reads do not
    overlap.
    """
    prompt_tokens = _count(getattr(usage, "prompt_tokens", None))
    completion_tokens = _count(getattr(usage, "completion_tokens", None))
    total_tokens = getattr(usage, "total_tokens", None)

    details = getattr(usage, "prompt_tokens_details", None)
    cached_tokens = min(_count(getattr(details, "cached_tokens", None)), prompt_tokens)

    return NormalizedUsage(
        input=prompt_tokens - cached_tokens,
        output=completion_tokens,
        cache_read=cached_tokens,
        total=_count(total_tokens) if _is_count(total_tokens) else None
    )


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _count(value: Any) -> int:
    return value if _is_count(value) else 0
