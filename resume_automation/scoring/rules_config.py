"""
Rules Config Store — heuristic scoring constants with record-store overrides.

Weights, thresholds and word lists used by the scoring functions live in
these models instead of as literals, so they can be recalibrated without a
code change.  Overrides are read from the `rules_config` table of the
record store (MongoDB in production); the defaults apply when no override
exists.  Loaded configs are cached for the lifetime of the store instance.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from resume_automation.config import get_settings
from resume_automation.exceptions import StoreFailure
from resume_automation.persistence.record_store import RecordStore, get_record_store

logger = logging.getLogger(__name__)


# ── Config models ────────────────────────────────────────

class RankingConfig(BaseModel):
    """Evidence ranking weights."""
    keyword_weight: int = 3  # points per matched evidence keyword
    token_weight: int = 1  # points per overlapping significant token


class MatchingConfig(BaseModel):
    """Requirement-to-evidence match scoring."""
    keyword_weight: float = 0.6
    overlap_weight: float = 0.4
    covered_threshold: int = 80
    partial_threshold: int = 60


class QualityConfig(BaseModel):
    """Section quality scoring."""
    critical_weight: float = 50.0
    important_weight: float = 30.0
    ats_base: float = 20.0
    default_requirements_coverage: int = 80
    requirement_token_share: float = 0.6
    ats_weight: float = 0.4
    coverage_weight: float = 0.3
    strength_weight: float = 0.3
    strength_base: int = 20
    metric_points: int = 40
    action_verb_points: int = 40
    action_verbs: list[str] = [
        "led",
        "managed",
        "developed",
        "achieved",
        "increased",
        "created",
        "delivered",
    ]
    metric_pattern: str = r"\$\d|\d+[%$KkMm+]"


class ArbitrationConfig(BaseModel):
    """Ideal vs personalized variant arbitration."""
    min_evidence_strength: int = 40
    score_margin: int = 10
    default_item_strength: int = 50  # used when there is no text to match against


class GroundingConfig(BaseModel):
    """Deterministic rewrite grounding checks."""
    inflation_phrases: list[str] = [
        "world-class",
        "world class",
        "industry-leading",
        "best-in-class",
        "single-handedly",
        "singlehandedly",
        "revolutionized",
        "unprecedented",
        "guaranteed",
        "top 1%",
        "award-winning",
        "visionary",
    ]
    low_confidence_threshold: float = 0.5
    acronym_max_length: int = 5
    # Capitalised words that are never treated as new named entities
    common_capitalized: list[str] = [
        "I", "Senior", "Junior", "Lead", "Principal", "Staff", "Team",
        "Engineer", "Manager", "Director", "Responsible", "Proven",
        "Experienced", "Skilled", "Results", "Summary", "Skills",
    ]
    # Words that open a sentence or bullet without naming anything.  Other
    # sentence-initial capitalised words are checked like any other name.
    sentence_openers: list[str] = [
        "my", "our", "each", "every", "over", "across", "through", "after",
        "during", "also", "then", "while", "when", "since", "both", "all",
        "led", "built", "ran", "grew", "drove", "won", "made", "wrote", "cut",
        "set", "took", "began", "brought", "taught", "sold", "kept", "held",
        "oversaw", "rebuilt", "shipped", "own", "owned", "spearheaded",
        "designed", "developed", "managed", "created", "delivered", "achieved",
        "increased", "reduced", "improved", "launched", "mentored", "migrated",
        "automated", "implemented", "architected", "scaled", "partnered",
    ]
    verb_suffixes: list[str] = ["ed", "ing", "ly"]
    # A short all-caps word right after one of these names an organisation
    organization_cues: list[str] = [
        "at", "joined", "for", "from", "client", "clients", "employer", "partnered",
        "acquired", "consulted",
    ]


# ── Store class ──────────────────────────────────────────

class RulesConfigStore:
    """
    Loads rule configs from the record store.  Falls back to defaults when
    no override exists or the store is unreachable.
    """

    def __init__(self, store: Optional[RecordStore] = None):
        self.settings = get_settings()
        self._store = store
        self._cache: dict[str, BaseModel] = {}

    def _get_store(self) -> RecordStore:
        if self._store is None:
            self._store = get_record_store()
        return self._store

    def _load_config(self, rule_type: str, model_cls: type[BaseModel]) -> BaseModel:
        """Load from the store or return defaults."""
        if rule_type in self._cache:
            return self._cache[rule_type]

        try:
            docs = self._get_store().get(self.settings.rules_table, {"rule_type": rule_type})
            if docs and "config" in docs[0]:
                config = model_cls(**docs[0]["config"])
                self._cache[rule_type] = config
                logger.debug(f"[RULES] Loaded {rule_type} override")
                return config
        except (StoreFailure, ValidationError) as e:
            logger.warning(f"Failed loading {rule_type} rules, using defaults: {e}")

        config = model_cls()
        self._cache[rule_type] = config
        return config

    def get_ranking_config(self) -> RankingConfig:
        return self._load_config("ranking", RankingConfig)  # type: ignore[return-value]

    def get_matching_config(self) -> MatchingConfig:
        return self._load_config("matching", MatchingConfig)  # type: ignore[return-value]

    def get_quality_config(self) -> QualityConfig:
        return self._load_config("quality", QualityConfig)  # type: ignore[return-value]

    def get_arbitration_config(self) -> ArbitrationConfig:
        return self._load_config("arbitration", ArbitrationConfig)  # type: ignore[return-value]

    def get_grounding_config(self) -> GroundingConfig:
        return self._load_config("grounding", GroundingConfig)  # type: ignore[return-value]

    def update_config(self, rule_type: str, config_dict: dict[str, Any]) -> bool:
        """Admin: save/update a rule config in the store."""
        try:
            self._get_store().upsert(
                self.settings.rules_table,
                {"rule_type": rule_type, "config": config_dict},
            )
        except StoreFailure as e:
            logger.error(f"Cannot update {rule_type} config: {e}")
            return False

        # Invalidate cache
        self._cache.pop(rule_type, None)
        logger.info(f"Updated {rule_type} config")
        return True


_rules_instance: Optional[RulesConfigStore] = None


def get_rules_store() -> RulesConfigStore:
    global _rules_instance
    if _rules_instance is None:
        _rules_instance = RulesConfigStore()
    return _rules_instance


def reset_rules_store() -> None:
    global _rules_instance
    _rules_instance = None
