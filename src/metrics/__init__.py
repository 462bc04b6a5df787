"""
Metrics Module
==============

Bounded Context for live operational metrics over recent triage runs.

Responsibilities:
- Keep the most recent run records in a bounded in-memory buffer
- Summarise them on demand (validation rate, retries, latency percentiles,
  model usage)
- Expose the summary and the raw runs over HTTP

The buffer lives for the lifetime of the serving process and is never
persisted.
"""

__version__ = "1.0.0"
