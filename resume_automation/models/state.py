"""
Builder session — the single object that flows through every step.

Design rules:
  1. Each artifact field is "owned" by one step agent (see comments).
  2. Agents may READ any field but should only WRITE to their owned fields.
  3. Every completed step appends a VersionHistoryEntry; the history is a
     bounded ring whose first entry (the origin baseline) is never evicted.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from resume_automation.utils.hashing import sha256_hash

from .enums import BuilderStep, PipelineStatus
from .schemas import (
    AuditEntry,
    DualVariantResult,
    EvidenceMatrix,
    FinalDocument,
    RankingResult,
    SectionDraft,
    TargetInputs,
    ValidationResult,
)

SESSION_SCHEMA_VERSION = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionSnapshot(BaseModel):
    """The restorable slice of a session."""
    current_step: BuilderStep = BuilderStep.TARGET
    job_id: str = ""
    inputs: Optional[TargetInputs] = None
    ranking: Optional[RankingResult] = None
    matrix: Optional[EvidenceMatrix] = None
    variants: dict[str, DualVariantResult] = {}
    sections: dict[str, SectionDraft] = {}
    validation: dict[str, ValidationResult] = {}
    final_document: Optional[FinalDocument] = None

    def fingerprint(self) -> str:
        payload = self.model_dump(mode="json")
        return sha256_hash(json.dumps(payload, sort_keys=True, default=str))


class VersionHistoryEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: datetime = Field(default_factory=_utcnow)
    step_completed: BuilderStep
    label: str = ""
    snapshot: SessionSnapshot


def append_pinned(
    history: list[VersionHistoryEntry],
    entry: VersionHistoryEntry,
    capacity: int,
    keep: Iterable[str] = (),
) -> list[VersionHistoryEntry]:
    """
    Append to a bounded history, evicting the oldest entries from index 1
    onward.  Index 0 is the origin baseline and always survives, as do the
    entries whose ids are in *keep*.
    """
    keep = set(keep) | {entry.id}
    if capacity < 1 + len(keep):
        raise ValueError("version history capacity is too small")
    history.append(entry)
    while len(history) > capacity:
        victim = next(i for i in range(1, len(history)) if history[i].id not in keep)
        del history[victim]
    return history


class BuilderSession(BaseModel):
    """Mutable, long-lived state of one resume-building session."""

    # ── Identity & control ───────────────────────────────
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    schema_version: int = SESSION_SCHEMA_VERSION
    status: PipelineStatus = PipelineStatus.RECEIVED
    current_step: BuilderStep = BuilderStep.TARGET
    job_id: str = ""  # hash of the job description, detects a changed target
    error_message: str = ""
    state_version: int = 0
    build_attempts: int = 0

    # ── TARGET (owner: TargetAgent) ──────────────────────
    inputs: Optional[TargetInputs] = None

    # ── ASSESSMENT (owner: AssessmentAgent) ──────────────
    ranking: Optional[RankingResult] = None
    matrix: Optional[EvidenceMatrix] = None

    # ── BUILD (owner: BuildAgent) ────────────────────────
    variants: dict[str, DualVariantResult] = {}
    sections: dict[str, SectionDraft] = {}

    # ── REVIEW (owner: ReviewAgent, rewrite validations) ─
    validation: dict[str, ValidationResult] = {}

    # ── FINALIZE (owner: FinalizeAgent) ──────────────────
    final_document: Optional[FinalDocument] = None

    # ── History & persistence ────────────────────────────
    version_history: list[VersionHistoryEntry] = []
    active_version_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    last_saved_at: Optional[datetime] = None

    # ── Audit trail (append-only) ────────────────────────
    audit_trail: list[AuditEntry] = []

    # ── Snapshots ────────────────────────────────────────

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            current_step=self.current_step,
            job_id=self.job_id,
            inputs=self.inputs,
            ranking=self.ranking,
            matrix=self.matrix,
            variants=self.variants,
            sections=self.sections,
            validation=self.validation,
            final_document=self.final_document,
        ).model_copy(deep=True)

    def apply_snapshot(self, snapshot: SessionSnapshot) -> None:
        restored = snapshot.model_copy(deep=True)
        self.current_step = restored.current_step
        self.job_id = restored.job_id
        self.inputs = restored.inputs
        self.ranking = restored.ranking
        self.matrix = restored.matrix
        self.variants = restored.variants
        self.sections = restored.sections
        self.validation = restored.validation
        self.final_document = restored.final_document

    def record_version(
        self,
        step: BuilderStep,
        capacity: int,
        label: str = "",
        keep: Iterable[str] = (),
    ) -> VersionHistoryEntry:
        entry = VersionHistoryEntry(
            step_completed=step,
            label=label or f"{step.value} completed",
            snapshot=self.snapshot(),
        )
        append_pinned(self.version_history, entry, capacity, keep)
        self.active_version_id = entry.id
        return entry

    def find_version(self, version_id: str) -> Optional[VersionHistoryEntry]:
        for entry in self.version_history:
            if entry.id == version_id:
                return entry
        return None

    # ── Expiry ───────────────────────────────────────────

    def is_expired(self, expiry_hours: int, now: Optional[datetime] = None) -> bool:
        """
        Advisory only: a session idle for longer than *expiry_hours* since it
        was last saved should be offered for a fresh start.  Never-saved
        sessions are measured from creation.
        """
        now = now or _utcnow()
        reference = self.last_saved_at or self.created_at
        return now - reference >= timedelta(hours=expiry_hours)

    # ── Helpers ──────────────────────────────────────────

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def add_audit(self, agent: str, action: str, details: str = "") -> None:
        self.state_version += 1
        self.audit_trail.append(
            AuditEntry(
                agent=agent,
                action=action,
                details=details,
                state_version=self.state_version,
            )
        )
