"""
API routes — thin HTTP layer that delegates to the builder state machine.

Routes:
  GET  /health                                         → API health check
  POST /api/sessions                                   → Start a session from target inputs
  GET  /api/sessions/{id}                              → Full session (loads from the store if needed)
  GET  /api/sessions/{id}/active                       → Advisory expiry check
  POST /api/sessions/{id}/steps/{step}                 → Complete a step
  POST /api/sessions/{id}/goto/{step}                  → Navigate to a step
  POST /api/sessions/{id}/sections/{name}/rewrite      → Rewrite a section
  POST /api/sessions/{id}/sections/{name}/variant/{s}  → Switch a section's variant
  GET  /api/sessions/{id}/sections/{name}/validation   → Latest validation of a section
  POST /api/sessions/{id}/revert/{version_id}          → Restore a version
  POST /api/sessions/{id}/save                         → Save now
  POST /api/rank | /api/matrix | /api/score            → Stateless scoring
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from resume_automation.config import get_settings
from resume_automation.models.enums import ActionSource, BuilderStep, VariantStrategy
from resume_automation.models.schemas import (
    AtsKeywords,
    EvidenceItem,
    EvidenceMatrix,
    QualityScore,
    RankingResult,
    Requirement,
    RewriteOutcome,
    StepOutcome,
    TargetInputs,
)
from resume_automation.orchestration.state_machine import BuilderStateMachine
from resume_automation.scoring.evidence_ranker import rank_evidence
from resume_automation.scoring.quality_scorer import score_section
from resume_automation.scoring.requirement_matcher import build_evidence_matrix

logger = logging.getLogger(__name__)

# ── Routers ──────────────────────────────────────────────
health_router = APIRouter()
session_router = APIRouter()
scoring_router = APIRouter()

# ── Live sessions in this process ────────────────────────
_machines: dict[str, BuilderStateMachine] = {}


def reset_sessions() -> None:
    _machines.clear()


def _machine(session_id: str) -> BuilderStateMachine:
    machine = _machines.get(session_id)
    if machine is not None:
        return machine
    machine = BuilderStateMachine()
    if machine.restore(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    _machines[session_id] = machine
    return machine


# ── Request / response schemas ───────────────────────────
class SessionResponse(BaseModel):
    session_id: str
    current_step: BuilderStep
    status: str
    version_count: int
    active_version_id: Optional[str] = None


class ActiveResponse(BaseModel):
    session_id: str
    active: bool
    last_saved_at: Optional[datetime] = None


class RewriteBody(BaseModel):
    action_source: ActionSource = ActionSource.CONSERVATIVE
    instruction: str = ""
    selected_text: str = ""
    text: str = ""  # manual edits only
    skip_validation: bool = False


class SaveResponse(BaseModel):
    session_id: str
    saved_at: datetime


class RankBody(BaseModel):
    target_text: str
    items: list[EvidenceItem]
    limit: Optional[int] = None
    min_score: int = 0


class MatrixBody(BaseModel):
    requirements: list[Requirement]
    evidence_items: list[EvidenceItem]
    one_to_one: bool = False


class ScoreBody(BaseModel):
    text: str
    ats_keywords: AtsKeywords = AtsKeywords()
    requirements: list[Requirement] = []


def _summary(machine: BuilderStateMachine) -> SessionResponse:
    session = machine.session
    return SessionResponse(
        session_id=session.session_id,
        current_step=session.current_step,
        status=session.status.value,
        version_count=len(session.version_history),
        active_version_id=session.active_version_id,
    )


# ── Health ───────────────────────────────────────────────

@health_router.get("/health")
async def health_check():
    settings = get_settings()
    return {
        "status": "ok",
        "app": settings.app_name,
        "store": settings.store_backend,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ── Sessions ─────────────────────────────────────────────

@session_router.post("", response_model=SessionResponse, status_code=201)
async def create_session(inputs: TargetInputs):
    machine = BuilderStateMachine()
    session = machine.start(inputs)
    _machines[session.session_id] = machine
    logger.info(f"Created session {session.session_id}")
    return _summary(machine)


@session_router.get("/{session_id}")
async def get_session(session_id: str) -> dict[str, Any]:
    return _machine(session_id).session.model_dump(mode="json")


@session_router.get("/{session_id}/active", response_model=ActiveResponse)
async def session_active(session_id: str):
    machine = _machine(session_id)
    return ActiveResponse(
        session_id=session_id,
        active=machine.has_active_session(),
        last_saved_at=machine.session.last_saved_at,
    )


@session_router.post("/{session_id}/steps/{step}", response_model=StepOutcome)
async def complete_step(session_id: str, step: BuilderStep):
    return await _machine(session_id).complete_step(step)


@session_router.post("/{session_id}/goto/{step}", response_model=StepOutcome)
async def go_to_step(session_id: str, step: BuilderStep):
    return _machine(session_id).go_to(step)


@session_router.post("/{session_id}/sections/{section_name}/rewrite", response_model=RewriteOutcome)
async def rewrite_section(session_id: str, section_name: str, body: RewriteBody):
    return await _machine(session_id).rewrite_section(
        section_name,
        body.action_source,
        body.instruction,
        selected_text=body.selected_text,
        text=body.text,
        skip_validation=body.skip_validation,
    )


@session_router.post("/{session_id}/sections/{section_name}/variant/{strategy}")
async def select_variant(session_id: str, section_name: str, strategy: VariantStrategy):
    draft = _machine(session_id).select_variant(section_name, strategy)
    return draft.model_dump(mode="json")


@session_router.get("/{session_id}/sections/{section_name}/validation")
async def section_validation(session_id: str, section_name: str):
    result = _machine(session_id).session.validation.get(section_name)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No validation for {section_name}")
    return result.model_dump(mode="json")


@session_router.post("/{session_id}/revert/{version_id}", response_model=StepOutcome)
async def revert_version(session_id: str, version_id: str):
    return _machine(session_id).revert(version_id)


@session_router.post("/{session_id}/save", response_model=SaveResponse)
async def save_session(session_id: str):
    saved_at = _machine(session_id).save()
    return SaveResponse(session_id=session_id, saved_at=saved_at)


# ── Stateless scoring ────────────────────────────────────

@scoring_router.post("/rank", response_model=RankingResult)
async def rank(body: RankBody):
    return rank_evidence(body.target_text, body.items, limit=body.limit, min_score=body.min_score)


@scoring_router.post("/matrix", response_model=EvidenceMatrix)
async def matrix(body: MatrixBody):
    return build_evidence_matrix(body.requirements, body.evidence_items, one_to_one=body.one_to_one)


@scoring_router.post("/score", response_model=QualityScore)
async def score(body: ScoreBody):
    return score_section(body.text, body.ats_keywords, body.requirements)
