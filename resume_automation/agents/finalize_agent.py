"""
Finalize Agent
Responsibility: assemble the final document from the current section
                content with its quality scores, coverage and any sections
                that still need attention.
"""

from __future__ import annotations

import logging

from resume_automation.agents.base_agent import BaseAgent
from resume_automation.exceptions import InputError
from resume_automation.models.enums import (
    AgentName,
    BuilderStep,
    PipelineStatus,
    ValidationRecommendation,
)
from resume_automation.models.schemas import FinalDocument, FinalSection
from resume_automation.models.state import BuilderSession
from resume_automation.scoring.quality_scorer import score_section
from resume_automation.utils.text import round_half_up

logger = logging.getLogger(__name__)


class FinalizeAgent(BaseAgent):
    name = AgentName.FINALIZE
    step = BuilderStep.FINALIZE

    async def _real_process(self, session: BuilderSession) -> BuilderSession:
        inputs = session.inputs
        if inputs is None or not session.sections:
            raise InputError("there is no built content to finalize", field="sections")

        sections: list[FinalSection] = []
        unresolved: list[str] = []
        for spec in inputs.sections:
            draft = session.sections.get(spec.section_name)
            if draft is None:
                unresolved.append(spec.section_name)
                continue
            validation = session.validation.get(spec.section_name)
            if validation and validation.recommendation == ValidationRecommendation.REJECT:
                unresolved.append(spec.section_name)
            sections.append(FinalSection(
                section_name=spec.section_name,
                strategy=draft.strategy,
                content=draft.content,
                quality=score_section(draft.content, spec.ats_keywords, spec.requirements),
                validation=validation.recommendation if validation else None,
            ))

        average = None
        if sections:
            average = round_half_up(sum(s.quality.overall for s in sections) / len(sections))

        session.final_document = FinalDocument(
            job_title=inputs.job_title,
            company=inputs.company,
            sections=sections,
            coverage_percent=session.matrix.coverage_percent if session.matrix else None,
            average_quality=average,
            unresolved_sections=unresolved,
        )
        session.status = PipelineStatus.FINALIZED
        logger.info(
            f"[FINALIZE] {len(sections)} sections, average quality={average}, "
            f"unresolved={unresolved or 'none'}"
        )
        return session
