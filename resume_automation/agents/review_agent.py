"""
Review Agent
Responsibility: validate the evidence-based content of each built section
                against the evidence it was generated from.  Industry
                standard (ideal) content makes no claims about the candidate
                and is not validated.
"""

from __future__ import annotations

import logging
from typing import Optional

from resume_automation.agents.base_agent import BaseAgent
from resume_automation.exceptions import InputError
from resume_automation.generation.validator import RewriteValidator
from resume_automation.models.enums import AgentName, BuilderStep, PipelineStatus, VariantStrategy
from resume_automation.models.schemas import EvidenceClaim, TargetInputs
from resume_automation.models.state import BuilderSession

logger = logging.getLogger(__name__)


def allowed_terms_for(inputs: TargetInputs) -> list[str]:
    """Job-side vocabulary a section may use without candidate evidence."""
    ats = inputs.ats_keywords
    terms = [inputs.job_title, inputs.company, inputs.industry, inputs.job_description]
    terms += ats.critical + ats.important + ats.nice_to_have + inputs.approved_keywords
    terms += [r.text for r in inputs.requirements]
    return [t for t in terms if t]


def claims_for_section(session: BuilderSession, section_name: str) -> list[EvidenceClaim]:
    result = session.variants.get(section_name)
    items = []
    if result is not None:
        for variant in (result.personalized, result.blend):
            if variant is not None:
                items.extend(variant.evidence_items_used)
    if not items and session.inputs is not None:
        items = session.inputs.evidence_items
    seen: set[str] = set()
    claims = []
    for item in items:
        if item.id not in seen:
            seen.add(item.id)
            claims.append(EvidenceClaim.from_item(item))
    return claims


class ReviewAgent(BaseAgent):
    name = AgentName.REVIEW
    step = BuilderStep.REVIEW

    def __init__(self, validator: Optional[RewriteValidator] = None):
        self._validator = validator

    @property
    def validator(self) -> RewriteValidator:
        if self._validator is None:
            self._validator = RewriteValidator()
        return self._validator

    async def _real_process(self, session: BuilderSession) -> BuilderSession:
        if not session.sections or session.inputs is None:
            raise InputError("build step must run first", field="sections")

        allowed = allowed_terms_for(session.inputs)
        pending = [
            draft for name, draft in session.sections.items()
            if draft.strategy != VariantStrategy.IDEAL and name not in session.validation
        ]
        for draft in pending:
            session.validation[draft.section_name] = await self.validator.validate(
                "",
                draft.content,
                claims_for_section(session, draft.section_name),
                draft.section_name,
                allowed_terms=allowed,
            )

        session.status = PipelineStatus.REVIEWED
        verdicts = {name: v.recommendation.value for name, v in session.validation.items()}
        logger.info(f"[REVIEW] {len(pending)} sections validated: {verdicts}")
        return session
