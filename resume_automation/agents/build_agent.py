"""
Build Agent
Responsibility: generate ideal and personalized variants for every section,
                pick the content each section starts from, and on a retry
                regenerate only the sections review rejected.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from resume_automation.agents.base_agent import BaseAgent
from resume_automation.exceptions import GenerationFailure, InputError
from resume_automation.generation.dual_variant import DualVariantGenerator
from resume_automation.models.enums import (
    AgentName,
    BuilderStep,
    PipelineStatus,
    Recommendation,
    ValidationRecommendation,
    VariantStrategy,
)
from resume_automation.models.schemas import (
    DualVariantResult,
    EvidenceItem,
    SectionDraft,
    SectionSpec,
)
from resume_automation.models.state import BuilderSession
from resume_automation.scoring.evidence_ranker import rank_evidence

logger = logging.getLogger(__name__)

_MAX_ITEMS_PER_SECTION = 8


def rejected_sections(session: BuilderSession) -> list[str]:
    return [
        name for name, result in session.validation.items()
        if result.recommendation == ValidationRecommendation.REJECT and name in session.sections
    ]


def section_evidence(spec: SectionSpec, items: list[EvidenceItem]) -> list[EvidenceItem]:
    """Evidence relevant to one section: ranked hits plus required items."""
    target = "\n".join([spec.job_description] + [r.text for r in spec.requirements])
    ranking = rank_evidence(target, items, limit=_MAX_ITEMS_PER_SECTION, min_score=1)
    if not ranking.has_context:
        return list(items)
    fields = set(EvidenceItem.model_fields)
    return [EvidenceItem(**ranked.model_dump(include=fields)) for ranked in ranking.items]


def draft_from_result(result: DualVariantResult, previous: Optional[SectionDraft]) -> Optional[SectionDraft]:
    """The draft a section starts from, following the comparison's recommendation."""
    if result.comparison is None:
        return None
    chosen = result.variant(VariantStrategy(result.comparison.recommendation.value))
    if chosen is None and result.comparison.recommendation == Recommendation.BLEND:
        # No blend text: take the stronger of the two, personalized on a tie
        ideal, personalized = result.ideal, result.personalized
        chosen = ideal if ideal.quality.overall > personalized.quality.overall else personalized
    if chosen is None:
        return None
    draft = SectionDraft(
        section_name=result.section_name,
        strategy=chosen.strategy,
        content=chosen.content,
    )
    if previous is not None:
        draft.rewrites = previous.rewrites
        draft.next_version = previous.next_version
    return draft


class BuildAgent(BaseAgent):
    name = AgentName.BUILD
    step = BuilderStep.BUILD

    def __init__(self, generator: Optional[DualVariantGenerator] = None):
        self._generator = generator

    @property
    def generator(self) -> DualVariantGenerator:
        if self._generator is None:
            self._generator = DualVariantGenerator()
        return self._generator

    async def _real_process(self, session: BuilderSession) -> BuilderSession:
        inputs = session.inputs
        if inputs is None or session.matrix is None:
            raise InputError("assessment step must run first", field="matrix")
        if not inputs.sections:
            raise InputError("there are no sections to build", field="sections")

        # ── 1. Which sections ───────────────────────────
        retry = rejected_sections(session) if session.build_attempts else []
        specs = [s for s in inputs.sections if not retry or s.section_name in retry]
        if retry:
            logger.info(f"[BUILD] Retry {session.build_attempts}: rebuilding {', '.join(retry)}")

        # ── 2. Generate all sections concurrently ───────
        results = await asyncio.gather(*(
            self.generator.generate(spec, section_evidence(spec, inputs.evidence_items))
            for spec in specs
        ))

        # ── 3. Adopt results ────────────────────────────
        built = 0
        for spec, result in zip(specs, results):
            name = spec.section_name
            session.variants[name] = result
            draft = draft_from_result(result, session.sections.get(name))
            if draft is None:
                logger.warning(f"[BUILD] '{name}' produced no variant")
                continue
            session.sections[name] = draft
            session.validation.pop(name, None)
            built += 1

        session.build_attempts += 1
        if built == 0:
            raise GenerationFailure("no section could be generated", variant="build")

        session.status = PipelineStatus.BUILT
        logger.info(f"[BUILD] {built}/{len(specs)} sections built (attempt {session.build_attempts})")
        return session
