"""
Requirement Matcher — builds the evidence matrix.

For each requirement the evidence items are ranked against the requirement's
own text and the best available item (relevance > 0) is selected.  With the
one-to-one policy an item claimed by a higher-priority requirement is no
longer available; otherwise one item may back any number of requirements.

Pure: no I/O, no mutation of its inputs.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from resume_automation.exceptions import InputError
from resume_automation.models.enums import CoverageStatus
from resume_automation.models.schemas import (
    EvidenceItem,
    EvidenceMatrix,
    EvidenceMatrixRow,
    Requirement,
)
from resume_automation.scoring.evidence_ranker import rank_evidence, validate_evidence_items
from resume_automation.scoring.rules_config import MatchingConfig, get_rules_store
from resume_automation.utils.text import contains_phrase, round_half_up, significant_tokens

logger = logging.getLogger(__name__)


def evidence_match_score(
    requirement_text: str,
    item: EvidenceItem,
    config: Optional[MatchingConfig] = None,
) -> int:
    """
    0–100 strength of *item* as evidence for one requirement.

    token coverage = share of the requirement's significant tokens found in
    the item text or keywords; keyword hit = share of the item's keywords
    contained in the requirement.  The score never drops below plain token
    coverage.
    """
    config = config or get_rules_store().get_matching_config()
    req_tokens = significant_tokens(requirement_text)
    if not req_tokens:
        return 0

    item_tokens = significant_tokens(item.text)
    for keyword in item.keywords:
        item_tokens |= significant_tokens(keyword)
    coverage = len(req_tokens & item_tokens) / len(req_tokens)

    if not item.keywords:
        return min(100, round_half_up(100 * coverage))

    hits = sum(1 for kw in item.keywords if contains_phrase(requirement_text, kw))
    keyword_hit = hits / len(item.keywords)
    blended = config.keyword_weight * keyword_hit + config.overlap_weight * coverage
    return min(100, round_half_up(100 * max(coverage, blended)))


def status_for_score(score: int, config: MatchingConfig) -> CoverageStatus:
    if score >= config.covered_threshold:
        return CoverageStatus.COVERED
    if score >= config.partial_threshold:
        return CoverageStatus.PARTIAL
    return CoverageStatus.WEAK


def _allocation_order(requirements: Sequence[Requirement]) -> list[int]:
    def key(idx: int) -> tuple[int, int, int]:
        req = requirements[idx]
        position = req.source_position if req.source_position is not None else idx
        return (req.priority.rank, position, idx)

    return sorted(range(len(requirements)), key=key)


def build_evidence_matrix(
    requirements: Sequence[Requirement],
    items: Sequence[EvidenceItem],
    *,
    one_to_one: bool = False,
    config: Optional[MatchingConfig] = None,
) -> EvidenceMatrix:
    """Return one row per requirement (input order) plus coverage counts."""
    for position, req in enumerate(requirements):
        if not req.text or not req.text.strip():
            raise InputError("requirement text is blank", field=f"requirements[{position}].text")
    validate_evidence_items(items)
    config = config or get_rules_store().get_matching_config()

    consumed: set[str] = set()
    rows: dict[int, EvidenceMatrixRow] = {}

    order = _allocation_order(requirements) if one_to_one else range(len(requirements))
    for idx in order:
        req = requirements[idx]
        ranking = rank_evidence(req.text, items)
        selected: Optional[EvidenceItem] = None
        for ranked in ranking.items:
            if ranked.relevance_score <= 0:
                break
            if one_to_one and ranked.id in consumed:
                continue
            selected = EvidenceItem(**ranked.model_dump(include=set(EvidenceItem.model_fields)))
            break

        if selected is None:
            rows[idx] = EvidenceMatrixRow(requirement=req)
            continue

        if one_to_one:
            consumed.add(selected.id)
        score = evidence_match_score(req.text, selected, config)
        rows[idx] = EvidenceMatrixRow(
            requirement=req,
            selected_evidence=selected,
            match_score=score,
            status=status_for_score(score, config),
        )

    ordered = [rows[i] for i in range(len(requirements))]
    counts = {status: 0 for status in CoverageStatus}
    for row in ordered:
        counts[row.status] += 1

    total = len(ordered)
    coverage: Optional[int] = None
    if total:
        backed = counts[CoverageStatus.COVERED] + counts[CoverageStatus.PARTIAL]
        coverage = round_half_up(backed / total * 100)

    logger.info(
        f"[MATRIX] {total} requirements, coverage="
        f"{'undefined' if coverage is None else f'{coverage}%'} "
        f"(covered={counts[CoverageStatus.COVERED]}, partial={counts[CoverageStatus.PARTIAL]}, "
        f"weak={counts[CoverageStatus.WEAK]}, uncovered={counts[CoverageStatus.UNCOVERED]})"
    )
    return EvidenceMatrix(
        rows=ordered,
        coverage_percent=coverage,
        coverage_defined=coverage is not None,
        covered_count=counts[CoverageStatus.COVERED],
        partial_count=counts[CoverageStatus.PARTIAL],
        weak_count=counts[CoverageStatus.WEAK],
        uncovered_count=counts[CoverageStatus.UNCOVERED],
        one_to_one=one_to_one,
    )
