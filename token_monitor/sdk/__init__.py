"""
SDK for Token Monitor.

Provides client wrappers that record token usage automatically.
"""

from .openai_client import MonitoredOpenAI

__all__ = ["MonitoredOpenAI"]
