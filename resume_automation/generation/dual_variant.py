"""
Dual Variant Generator — ideal vs personalized section content.

Two generation calls per section run concurrently:
  ideal         no candidate evidence, an industry-standard composition
  personalized  only the supplied evidence items, no fabrication

Both are scored with the quality scorer and arbitrated:
  no evidence or evidence strength < 40      → ideal
  personalized beats ideal by more than 10   → personalized
  ideal beats personalized by more than 10   → ideal
  otherwise                                  → blend

When blending is recommended a third call weaves the two texts together.
A failed call never discards the other variant.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Optional, Sequence

from resume_automation.config import Settings, get_settings
from resume_automation.exceptions import GenerationFailure
from resume_automation.models.enums import ErrorKind, Recommendation, VariantStrategy
from resume_automation.models.schemas import (
    DualVariantResult,
    EvidenceItem,
    GenerationRequest,
    OperationResult,
    SectionSpec,
    SectionVariant,
    VariantComparison,
)
from resume_automation.scoring.evidence_ranker import validate_evidence_items
from resume_automation.scoring.quality_scorer import score_section
from resume_automation.scoring.requirement_matcher import evidence_match_score
from resume_automation.scoring.rules_config import (
    ArbitrationConfig,
    QualityConfig,
    get_rules_store,
)
from resume_automation.services.llm_service import GenerationCapability, get_generation_service
from resume_automation.utils.text import round_half_up, significant_tokens

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_IDEAL_PROMPT = _PROMPTS_DIR / "ideal_variant_prompt.txt"
_PERSONALIZED_PROMPT = _PROMPTS_DIR / "personalized_variant_prompt.txt"
_BLEND_PROMPT = _PROMPTS_DIR / "blend_variant_prompt.txt"

_SKILLS_SECTIONS = {"skills", "technical_skills", "core_competencies", "key_skills"}
_SKILLS_FORMAT_RULES = (
    "\nFORMAT: return ONLY a simple comma-separated list of skills. "
    "No descriptions, categories or bullet points.\n"
    'Example: "Python, AWS, Team Leadership, Project Management"\n'
)
_BULLET_PREFIX = re.compile(r"^[-•*\d.)\s]+")
_MAX_REQUIREMENTS_IN_PROMPT = 10


def is_skills_section(spec: SectionSpec) -> bool:
    return spec.kind.replace(" ", "_") in _SKILLS_SECTIONS


def clean_skills_format(content: str) -> str:
    """Normalise model output for a skills section to 'A, B, C'."""
    skills: list[str] = []
    seen: set[str] = set()
    for line in content.splitlines():
        line = _BULLET_PREFIX.sub("", line).strip()
        if not line:
            continue
        for part in line.split(","):
            name = part.split(" - ")[0].split(":")[0].strip().strip("*").strip()
            if name and name.lower() not in seen:
                seen.add(name.lower())
                skills.append(name)
    return ", ".join(skills)


def _item_strength(item: EvidenceItem, spec: SectionSpec, config: ArbitrationConfig) -> int:
    if spec.requirements:
        return max(evidence_match_score(r.text, item) for r in spec.requirements)
    if spec.job_description.strip():
        item_tokens = significant_tokens(item.text)
        for keyword in item.keywords:
            item_tokens |= significant_tokens(keyword)
        if not item_tokens:
            return 0
        found = item_tokens & significant_tokens(spec.job_description)
        return round_half_up(len(found) / len(item_tokens) * 100)
    return config.default_item_strength


def evidence_strength(
    spec: SectionSpec,
    items: Sequence[EvidenceItem],
    config: Optional[ArbitrationConfig] = None,
) -> int:
    """Mean per-item match score (0–100); 0 when no items are supplied."""
    if not items:
        return 0
    config = config or get_rules_store().get_arbitration_config()
    scores = [_item_strength(item, spec, config) for item in items]
    return round_half_up(sum(scores) / len(scores))


def arbitrate(
    ideal_score: int,
    personalized_score: int,
    evidence_count: int,
    strength: int,
    config: ArbitrationConfig,
) -> tuple[Recommendation, str]:
    if evidence_count == 0:
        return Recommendation.IDEAL, "No evidence items were available"
    if strength < config.min_evidence_strength:
        return (
            Recommendation.IDEAL,
            f"Evidence strength {strength} is below {config.min_evidence_strength}",
        )
    difference = personalized_score - ideal_score
    if difference > config.score_margin:
        return (
            Recommendation.PERSONALIZED,
            f"Personalized version scores {difference} points higher",
        )
    if -difference > config.score_margin:
        return Recommendation.IDEAL, f"Industry standard version scores {-difference} points higher"
    return Recommendation.BLEND, "Both versions are close; combine their strengths"


def _failure(exc: GenerationFailure, subject: str) -> OperationResult:
    return OperationResult(
        success=False,
        error_kind=ErrorKind.GENERATION,
        message=exc.message,
        subject=subject,
        status_code=exc.status_code,
    )


class DualVariantGenerator:
    """Generates, scores and arbitrates the variants of one section."""

    def __init__(
        self,
        service: Optional[GenerationCapability] = None,
        *,
        settings: Optional[Settings] = None,
        arbitration: Optional[ArbitrationConfig] = None,
        quality: Optional[QualityConfig] = None,
        generate_blend: Optional[bool] = None,
    ):
        self.service = service or get_generation_service()
        self.settings = settings or get_settings()
        self.arbitration = arbitration or get_rules_store().get_arbitration_config()
        self.quality = quality or get_rules_store().get_quality_config()
        self.generate_blend_variant = (
            self.settings.generate_blend_variant if generate_blend is None else generate_blend
        )

    # ── Prompts ──────────────────────────────────────────

    def _fill_common(self, template: str, spec: SectionSpec) -> str:
        requirements = spec.requirements[:_MAX_REQUIREMENTS_IN_PROMPT]
        return (
            template
            .replace("{section_type}", spec.kind)
            .replace("{seniority}", spec.seniority or "mid-level")
            .replace("{job_title}", spec.job_title or "professional")
            .replace("{industry}", spec.industry or "their industry")
            .replace("{job_description}", spec.job_description[:8_000] or "(not provided)")
            .replace("{section_guidance}", spec.guidance or "(none)")
            .replace("{critical_keywords}", ", ".join(spec.ats_keywords.critical) or "(none)")
            .replace("{important_keywords}", ", ".join(spec.ats_keywords.important) or "(none)")
            .replace("{requirements}", "\n".join(f"- {r.text}" for r in requirements) or "(none)")
            .replace("{format_rules}", _SKILLS_FORMAT_RULES if is_skills_section(spec) else "")
        )

    def build_ideal_request(self, spec: SectionSpec) -> GenerationRequest:
        prompt = self._fill_common(_IDEAL_PROMPT.read_text(encoding="utf-8"), spec)
        return GenerationRequest(
            prompt=prompt,
            temperature=self.settings.ideal_temperature,
            max_output_tokens=self.settings.variant_max_output_tokens,
        )

    def build_personalized_request(
        self, spec: SectionSpec, items: Sequence[EvidenceItem]
    ) -> GenerationRequest:
        evidence = "\n".join(
            f"- [{item.id}] {item.text}"
            + (f" (keywords: {', '.join(item.keywords)})" if item.keywords else "")
            for item in items
        )
        template = _PERSONALIZED_PROMPT.read_text(encoding="utf-8")
        prompt = self._fill_common(
            template.replace("{evidence}", evidence or "(no evidence supplied)"), spec
        )
        return GenerationRequest(
            prompt=prompt,
            temperature=self.settings.personalized_temperature,
            max_output_tokens=self.settings.variant_max_output_tokens,
        )

    # ── Calls ────────────────────────────────────────────

    async def _call(self, request: GenerationRequest, variant: str) -> str:
        try:
            response = await self.service.generate(request)
        except GenerationFailure as exc:
            exc.variant = variant
            raise
        return response.text.strip()

    def _variant(
        self,
        strategy: VariantStrategy,
        content: str,
        spec: SectionSpec,
        items: Sequence[EvidenceItem],
    ) -> SectionVariant:
        if is_skills_section(spec):
            content = clean_skills_format(content)
        quality = score_section(
            content, spec.ats_keywords, spec.requirements, config=self.quality
        )
        return SectionVariant(
            strategy=strategy,
            content=content,
            quality=quality,
            evidence_items_used=list(items),
        )

    async def generate(
        self,
        spec: SectionSpec,
        evidence_items: Sequence[EvidenceItem],
    ) -> DualVariantResult:
        validate_evidence_items(evidence_items)
        items = list(evidence_items)
        logger.info(f"[DUAL] Generating '{spec.section_name}' with {len(items)} evidence items")

        outcomes = await asyncio.gather(
            self._call(self.build_ideal_request(spec), "ideal"),
            self._call(self.build_personalized_request(spec, items), "personalized"),
            return_exceptions=True,
        )

        result = DualVariantResult(section_name=spec.section_name)
        for strategy, outcome in zip(
            (VariantStrategy.IDEAL, VariantStrategy.PERSONALIZED), outcomes
        ):
            if isinstance(outcome, GenerationFailure):
                logger.warning(f"[DUAL] {strategy.value} variant failed: {outcome.message}")
                result.errors.append(_failure(outcome, strategy.value))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                used = items if strategy == VariantStrategy.PERSONALIZED else []
                variant = self._variant(strategy, outcome, spec, used)
                if strategy == VariantStrategy.IDEAL:
                    result.ideal = variant
                else:
                    result.personalized = variant

        strength = evidence_strength(spec, items, self.arbitration)
        result.comparison = self._compare(result, len(items), strength)

        if (
            self.generate_blend_variant
            and result.complete
            and result.comparison.recommendation == Recommendation.BLEND
        ):
            try:
                result.blend = await self.generate_blend(spec, result, items)
            except GenerationFailure as exc:
                logger.warning(f"[DUAL] blend variant failed: {exc.message}")
                result.errors.append(_failure(exc, VariantStrategy.BLEND.value))

        logger.info(
            f"[DUAL] '{spec.section_name}' → "
            f"{result.comparison.recommendation.value if result.comparison else 'none'} "
            f"(strength={strength}, errors={len(result.errors)})"
        )
        return result

    def _compare(
        self, result: DualVariantResult, evidence_count: int, strength: int
    ) -> Optional[VariantComparison]:
        if result.complete:
            recommendation, reason = arbitrate(
                result.ideal.quality.overall,
                result.personalized.quality.overall,
                evidence_count,
                strength,
                self.arbitration,
            )
            return VariantComparison(
                recommendation=recommendation,
                reason=reason,
                score_difference=result.personalized.quality.overall - result.ideal.quality.overall,
                evidence_strength=strength,
            )
        if result.ideal is not None:
            return VariantComparison(
                recommendation=Recommendation.IDEAL,
                reason="Only the industry standard version was generated",
                evidence_strength=strength,
            )
        if result.personalized is not None:
            return VariantComparison(
                recommendation=Recommendation.PERSONALIZED,
                reason="Only the personalized version was generated",
                evidence_strength=strength,
            )
        return None

    async def generate_blend(
        self,
        spec: SectionSpec,
        result: DualVariantResult,
        items: Sequence[EvidenceItem],
    ) -> SectionVariant:
        """Weave the ideal and personalized texts into a third variant."""
        if result.ideal is None or result.personalized is None:
            raise GenerationFailure("blend needs both variants", variant="blend")
        prompt = (
            _BLEND_PROMPT.read_text(encoding="utf-8")
            .replace("{section_type}", spec.kind)
            .replace("{ideal_content}", result.ideal.content)
            .replace("{personalized_content}", result.personalized.content)
            .replace("{critical_keywords}", ", ".join(spec.ats_keywords.critical) or "(none)")
            .replace("{format_rules}", _SKILLS_FORMAT_RULES if is_skills_section(spec) else "")
        )
        request = GenerationRequest(
            prompt=prompt,
            temperature=self.settings.blend_temperature,
            max_output_tokens=self.settings.variant_max_output_tokens,
        )
        content = await self._call(request, VariantStrategy.BLEND.value)
        return self._variant(VariantStrategy.BLEND, content, spec, items)
