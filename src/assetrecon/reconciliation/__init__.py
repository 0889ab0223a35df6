"""Reconciliation of legacy ERP rows against the asset catalog.

This module provides the job engine, the job state machine, the greedy
auto-matcher and the request/response models of the reconciliation API.
"""

from assetrecon.reconciliation.engine import ReconciliationJobEngine
from assetrecon.reconciliation.matcher import PlannedMatch, RowCandidates, plan_auto_matches
from assetrecon.reconciliation.state_machine import (
    VALID_TRANSITIONS,
    InvalidTransitionError,
    validate_transition,
)

__all__ = [
    "ReconciliationJobEngine",
    "PlannedMatch",
    "RowCandidates",
    "plan_auto_matches",
    "VALID_TRANSITIONS",
    "InvalidTransitionError",
    "validate_transition",
]
