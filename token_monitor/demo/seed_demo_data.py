# token_monitor/demo/seed_demo_data.py

from token_monitor.core.monitor import get_monitor
from token_monitor.core.pricing import CostRates
from token_monitor.storage.models import NormalizedUsage

monitor = get_monitor()

opus_rates = CostRates(input=15, output=75, cache_read=1.5, cache_write=18.75)

usages = [
    ("anthropic", "claude-3-opus", NormalizedUsage(input=1200, output=300, cache_read=4000), opus_rates),
    ("anthropic", "claude-3-opus", NormalizedUsage(input=4000, output=1000, cache_write=2000), opus_rates),
    ("openai", "gpt-4", NormalizedUsage(input=800, output=200, total=1000), None),
    ("openai", "gpt-3.5-turbo", NormalizedUsage(input=2500, output=600), None),
]

for provider, model, usage, rates in usages:
    monitor.record_usage(provider, model, usage, session_id="demo", rates=rates)

print(f"Demo usage data written to {monitor.store.path}")
