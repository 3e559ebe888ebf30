"""
Core modules for Token Monitor.

This package contains usage normalization, aggregation, pricing,
limit evaluation and the monitor service.
"""
