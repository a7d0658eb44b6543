"""
Follow-up workflow engine.

Reason classification, the per-record call-back state machine, report
categorization, role-scoped visibility and consistency auto-heal.
"""

from .categorize import Bucket, Categorization, Categorizer, parse_record_date
from .exceptions import (
    ChurnError,
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from .heal import HealReport, heal, heal_and_persist, heal_record
from .service import ChurnService, get_churn_service
from .state_machine import AttemptOutcome, FollowUpStateMachine, ReasonUpdate
from .taxonomy import DEFAULT_TAXONOMY, ReasonClass, ReasonTaxonomy, get_taxonomy
from .visibility import UNRESTRICTED, Caller, Role, VisibilityResolver

__all__ = [
    "Bucket",
    "Categorization",
    "Categorizer",
    "parse_record_date",
    "ChurnError",
    "ConflictError",
    "ForbiddenError",
    "InvalidInputError",
    "NotFoundError",
    "HealReport",
    "heal",
    "heal_and_persist",
    "heal_record",
    "ChurnService",
    "get_churn_service",
    "AttemptOutcome",
    "FollowUpStateMachine",
    "ReasonUpdate",
    "DEFAULT_TAXONOMY",
    "ReasonClass",
    "ReasonTaxonomy",
    "get_taxonomy",
    "UNRESTRICTED",
    "Caller",
    "Role",
    "VisibilityResolver",
]
