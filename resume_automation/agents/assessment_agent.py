"""
Assessment Agent
Responsibility: rank the candidate's evidence against the job and build
                the requirement-by-requirement evidence matrix.
"""

from __future__ import annotations

import logging

from resume_automation.agents.base_agent import BaseAgent
from resume_automation.exceptions import InputError
from resume_automation.models.enums import AgentName, BuilderStep, PipelineStatus
from resume_automation.models.state import BuilderSession
from resume_automation.scoring.evidence_ranker import rank_evidence
from resume_automation.scoring.requirement_matcher import build_evidence_matrix

logger = logging.getLogger(__name__)


class AssessmentAgent(BaseAgent):
    name = AgentName.ASSESSMENT
    step = BuilderStep.ASSESSMENT

    async def _real_process(self, session: BuilderSession) -> BuilderSession:
        inputs = session.inputs
        if inputs is None or not session.job_id:
            raise InputError("target step must run first", field="inputs")

        session.ranking = rank_evidence(inputs.job_description, inputs.evidence_items)
        session.matrix = build_evidence_matrix(
            inputs.requirements,
            inputs.evidence_items,
            one_to_one=inputs.one_to_one_allocation,
        )
        session.status = PipelineStatus.ASSESSED

        matrix = session.matrix
        logger.info(
            f"[ASSESS] coverage="
            f"{matrix.coverage_percent if matrix.coverage_defined else 'undefined'} "
            f"ranking_context={session.ranking.has_context}"
        )
        return session
