"""Scoring — pure, deterministic ranking, matching and quality functions."""

from resume_automation.scoring.evidence_ranker import rank_evidence
from resume_automation.scoring.grounding_rules import check_grounding, resolve_span
from resume_automation.scoring.quality_scorer import score_section
from resume_automation.scoring.requirement_matcher import (
    build_evidence_matrix,
    evidence_match_score,
)
from resume_automation.scoring.rules_config import RulesConfigStore, get_rules_store

__all__ = [
    "RulesConfigStore",
    "build_evidence_matrix",
    "check_grounding",
    "evidence_match_score",
    "get_rules_store",
    "rank_evidence",
    "resolve_span",
    "score_section",
]
