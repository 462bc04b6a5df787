"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded contexts
(Ticket Triage and Run Metrics).

Architecture Pattern: Modular Monolith
- Each module (triage, metrics) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add triage or metrics business logic to the shared kernel.
"""

__version__ = "1.0.0"
