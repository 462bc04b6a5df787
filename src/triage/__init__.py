"""
Triage Module
=============

Bounded Context for support-ticket triage.

Responsibilities:
- Optionally ground the ticket in retrieved knowledge-base passages
- Obtain a verdict from the direct engine (orchestrated model calls) or the
  delegated engine (remote pipeline service)
- Validate the verdict against the triage schema and keep only citations of
  sources that were actually supplied
- Record one run summary per invocation into the metrics buffer
"""

__version__ = "1.0.0"
