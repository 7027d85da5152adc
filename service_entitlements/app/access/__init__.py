"""
Module access evaluation.

``models`` is importable on its own; the evaluator, platform-admin check
and FastAPI dependencies live in their own modules.
"""

from .models import (
    AccessDecision, AccessDecisionResponse, DecisionReason, EvaluateOptions, Requester
)

__all__ = [
    "AccessDecision",
    "AccessDecisionResponse",
    "DecisionReason",
    "EvaluateOptions",
    "Requester",
]
