"""
Target Agent
Responsibility: validate the target job and evidence inputs, fill the
                job-level context into each section spec, and fingerprint
                the job so a changed target clears stale artifacts.
"""

from __future__ import annotations

import logging

from resume_automation.agents.base_agent import BaseAgent
from resume_automation.exceptions import InputError
from resume_automation.models.enums import AgentName, BuilderStep, PipelineStatus
from resume_automation.models.schemas import SectionSpec, TargetInputs
from resume_automation.models.state import BuilderSession
from resume_automation.scoring.evidence_ranker import validate_evidence_items
from resume_automation.utils.hashing import job_fingerprint

logger = logging.getLogger(__name__)

DEFAULT_SECTIONS = ("summary", "experience", "skills")


def _with_job_context(spec: SectionSpec, inputs: TargetInputs, refresh: bool = False) -> SectionSpec:
    """Fill job-level fields the spec leaves blank.  *refresh* drops the old ones first."""
    if refresh:
        spec = SectionSpec(
            section_name=spec.section_name,
            section_type=spec.section_type,
            guidance=spec.guidance,
        )
    filled = spec.model_copy(deep=True)
    filled.job_title = filled.job_title or inputs.job_title
    filled.industry = filled.industry or inputs.industry
    filled.seniority = filled.seniority or inputs.seniority
    filled.job_description = filled.job_description or inputs.job_description
    if not filled.requirements:
        filled.requirements = list(inputs.requirements)
    ats = filled.ats_keywords
    if not (ats.critical or ats.important or ats.nice_to_have):
        filled.ats_keywords = inputs.ats_keywords.model_copy()
    return filled


class TargetAgent(BaseAgent):
    name = AgentName.TARGET
    step = BuilderStep.TARGET

    async def _real_process(self, session: BuilderSession) -> BuilderSession:
        inputs = session.inputs
        if inputs is None:
            raise InputError("no target inputs on the session", field="inputs")

        # ── 1. Validate ─────────────────────────────────
        for position, req in enumerate(inputs.requirements):
            if not req.text.strip():
                raise InputError("requirement text is blank", field=f"requirements[{position}].text")
        validate_evidence_items(inputs.evidence_items)
        ids = [item.id for item in inputs.evidence_items]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise InputError(f"duplicate evidence ids: {', '.join(duplicates)}", field="evidence_items")
        names = [s.section_name for s in inputs.sections]
        if len(names) != len(set(names)):
            raise InputError("section names must be unique", field="sections")

        # ── 2. Job identity ─────────────────────────────
        job_id = job_fingerprint(
            f"{inputs.job_title}\n{inputs.company}\n{inputs.job_description}"
        )
        changed = bool(session.job_id) and session.job_id != job_id

        # ── 3. Sections with job context ────────────────
        sections = list(inputs.sections)
        if not sections and (inputs.requirements or inputs.evidence_items):
            sections = [SectionSpec(section_name=name) for name in DEFAULT_SECTIONS]
            logger.info(f"[TARGET] No sections given, using {', '.join(DEFAULT_SECTIONS)}")
        inputs.sections = [_with_job_context(spec, inputs, refresh=changed) for spec in sections]

        if changed:
            logger.info(f"[TARGET] Target changed ({session.job_id} → {job_id}), clearing artifacts")
            session.ranking = None
            session.matrix = None
            session.variants = {}
            session.sections = {}
            session.validation = {}
            session.final_document = None
            session.build_attempts = 0
        session.job_id = job_id
        session.status = PipelineStatus.TARGET_SET

        logger.info(
            f"[TARGET] {inputs.job_title or 'untitled role'}: "
            f"{len(inputs.requirements)} requirements, {len(inputs.evidence_items)} evidence items, "
            f"{len(inputs.sections)} sections"
        )
        return session
