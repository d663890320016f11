"""
Evidence Ranker — lexical relevance of evidence items to a target text.

relevance = keyword_weight × (evidence keywords contained in the target)
          + token_weight   × (distinct significant item tokens in the target)

Results are sorted by descending relevance; equal scores keep their input
order.  Required items always survive trimming by `limit` / `min_score`.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from resume_automation.exceptions import InputError
from resume_automation.models.schemas import EvidenceItem, RankedItem, RankingResult
from resume_automation.scoring.rules_config import RankingConfig, get_rules_store
from resume_automation.utils.text import contains_phrase, significant_tokens

logger = logging.getLogger(__name__)


def validate_evidence_items(items: Sequence[EvidenceItem]) -> None:
    for position, item in enumerate(items):
        if not item.id or not item.id.strip():
            raise InputError("evidence item has a blank id", field=f"items[{position}].id")
        if not item.text or not item.text.strip():
            raise InputError(
                f"evidence item {item.id!r} has blank text", field=f"items[{position}].text"
            )


def _score_item(
    item: EvidenceItem,
    target_text: str,
    target_tokens: set[str],
    config: RankingConfig,
) -> RankedItem:
    matched = [kw for kw in item.keywords if contains_phrase(target_text, kw)]
    overlap = significant_tokens(item.text) & target_tokens
    score = config.keyword_weight * len(matched) + config.token_weight * len(overlap)
    return RankedItem(
        **item.model_dump(exclude={"relevance_score"}),
        relevance_score=score,
        matched_keywords=matched,
    )


def rank_evidence(
    target_text: str,
    items: Sequence[EvidenceItem],
    *,
    limit: Optional[int] = None,
    min_score: int = 0,
    config: Optional[RankingConfig] = None,
) -> RankingResult:
    """
    Rank *items* against *target_text*.

    A blank target yields every score 0 in the original order with
    ``has_context=False``; nothing is fabricated.
    """
    validate_evidence_items(items)
    if limit is not None and limit < 0:
        raise InputError("limit must not be negative", field="limit")
    config = config or get_rules_store().get_ranking_config()

    if not target_text or not target_text.strip():
        logger.debug("[RANK] Blank target, no ranking context")
        ranked = [
            RankedItem(**item.model_dump(exclude={"relevance_score"}), relevance_score=0)
            for item in items
        ]
        return RankingResult(items=ranked, has_context=False)

    target_tokens = significant_tokens(target_text)
    scored = [_score_item(item, target_text, target_tokens, config) for item in items]
    # sorted() is stable: equal scores keep input order
    scored = sorted(scored, key=lambda r: r.relevance_score, reverse=True)

    kept: list[RankedItem] = []
    ranked_count = 0
    for ranked in scored:
        within_limit = limit is None or ranked_count < limit
        if ranked.relevance_score >= min_score and within_limit:
            kept.append(ranked)
            ranked_count += 1
        elif ranked.required_flag:
            ranked.surfaced_as_required = True
            kept.append(ranked)

    logger.debug(
        f"[RANK] {len(items)} items → {len(kept)} kept "
        f"(top={kept[0].relevance_score if kept else 0})"
    )
    return RankingResult(items=kept, has_context=True)
