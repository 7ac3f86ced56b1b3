"""
SHAGHAF - Sessions Module

The orchestrator that applies ledger changes together with stock,
invoice and snapshot persistence, all or nothing.
"""

from .orchestrator import (
    SessionOrchestrator,
    SessionOutcome,
    SessionResult,
    SessionStats,
    ExitReceipt,
    CompletionReceipt,
)

__all__ = [
    "SessionOrchestrator",
    "SessionOutcome",
    "SessionResult",
    "SessionStats",
    "ExitReceipt",
    "CompletionReceipt",
]
