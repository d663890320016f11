"""
Routing functions for LangGraph conditional edges.

Each function inspects the current state dict and returns the name
of the next node to execute.
"""

from __future__ import annotations

from typing import Any

from resume_automation.config import get_settings
from resume_automation.models.enums import ValidationRecommendation


def _recommendation(value: Any) -> str:
    if isinstance(value, dict):
        value = value.get("recommendation", "")
    else:
        value = getattr(value, "recommendation", "")
    return value.value if isinstance(value, ValidationRecommendation) else str(value)


# ── After ASSESSMENT ─────────────────────────────────────

def route_after_assessment(state: dict[str, Any]) -> str:
    """
    No sections to write → end.
    Otherwise → BUILD.
    """
    inputs = state.get("inputs") or {}
    sections = inputs.get("sections") if isinstance(inputs, dict) else getattr(inputs, "sections", [])
    if not sections:
        return "end_no_content"
    return "build"


# ── After REVIEW ─────────────────────────────────────────

def route_after_review(state: dict[str, Any]) -> str:
    """
    Rejected sections and builds left → loop back to BUILD.
    Rejected sections and retries exhausted → escalate to human review.
    Nothing rejected → FINALIZE.
    """
    settings = get_settings()
    sections = state.get("sections") or {}
    validation = state.get("validation") or {}
    attempts = state.get("build_attempts", 0)

    rejected = [
        name for name, result in validation.items()
        if name in sections and _recommendation(result) == ValidationRecommendation.REJECT.value
    ]
    if not rejected:
        return "finalize"
    # The first build is not a retry
    if attempts - 1 < settings.max_build_retries:
        return "build"
    return "escalate_review"
