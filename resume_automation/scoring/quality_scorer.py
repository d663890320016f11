"""
Quality Scorer — deterministic section scoring.

    ats      = critical share × 50 + important share × 30 + 20
    coverage = addressed requirements share × 100   (80 with no requirements)
    strength = 20 + 40 (quantified metric) + 40 (strong action verb)
    overall  = ats × 0.4 + coverage × 0.3 + strength × 0.3

All weights come from QualityConfig.  Rounding is half-up throughout.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Sequence, Union

from resume_automation.models.schemas import AtsKeywords, QualityScore, Requirement
from resume_automation.scoring.rules_config import QualityConfig, get_rules_store
from resume_automation.utils.text import contains_phrase, round_half_up, significant_tokens

logger = logging.getLogger(__name__)

RequirementLike = Union[Requirement, str]


def _requirement_text(requirement: RequirementLike) -> str:
    return requirement.text if isinstance(requirement, Requirement) else str(requirement)


def _share_term(keywords: Sequence[str], text: str, weight: float) -> tuple[float, list[str]]:
    if not keywords:
        return 0.0, []
    matched = [kw for kw in keywords if contains_phrase(text, kw)]
    return len(matched) / len(keywords) * weight, matched


def requirement_addressed(text: str, requirement: str, token_share: float) -> bool:
    if contains_phrase(text, requirement):
        return True
    req_tokens = significant_tokens(requirement)
    if not req_tokens:
        return False
    found = req_tokens & significant_tokens(text)
    return len(found) / len(req_tokens) >= token_share


def has_metric(text: str, config: QualityConfig) -> bool:
    return re.search(config.metric_pattern, text) is not None


def has_action_verb(text: str, config: QualityConfig) -> bool:
    lowered = text.lower()
    return any(
        re.search(rf"\b{re.escape(verb.lower())}\b", lowered) for verb in config.action_verbs
    )


def score_section(
    text: str,
    ats_keywords: Optional[AtsKeywords],
    requirements: Sequence[RequirementLike],
    *,
    config: Optional[QualityConfig] = None,
) -> QualityScore:
    config = config or get_rules_store().get_quality_config()
    ats_keywords = ats_keywords or AtsKeywords()
    text = text or ""

    critical_term, critical_hits = _share_term(ats_keywords.critical, text, config.critical_weight)
    important_term, important_hits = _share_term(
        ats_keywords.important, text, config.important_weight
    )
    nice_hits = [kw for kw in ats_keywords.nice_to_have if contains_phrase(text, kw)]
    ats_score = round_half_up(critical_term + important_term + config.ats_base)

    req_texts = [_requirement_text(r) for r in requirements if _requirement_text(r).strip()]
    addressed = [
        r for r in req_texts
        if requirement_addressed(text, r, config.requirement_token_share)
    ]
    if req_texts:
        coverage = round_half_up(len(addressed) / len(req_texts) * 100)
    else:
        coverage = config.default_requirements_coverage

    strength_raw = config.strength_base
    if has_metric(text, config):
        strength_raw += config.metric_points
    if has_action_verb(text, config):
        strength_raw += config.action_verb_points
    competitive = min(5, max(1, round_half_up(strength_raw / 20)))

    overall = round_half_up(
        ats_score * config.ats_weight
        + coverage * config.coverage_weight
        + strength_raw * config.strength_weight
    )
    overall = min(100, max(0, overall))

    logger.debug(
        f"[QUALITY] overall={overall} ats={ats_score} coverage={coverage} "
        f"strength={strength_raw}"
    )
    return QualityScore(
        overall=overall,
        ats_match_percentage=ats_score,
        requirements_coverage=coverage,
        competitive_strength=competitive,
        keywords_matched=critical_hits + important_hits + nice_hits,
        requirements_addressed=addressed,
    )
