"""
Builder State Machine — one user's interactive resume-building session.

    target → assessment → build → review → finalize

  - Backward navigation is always allowed; forward navigation only when the
    target step's prerequisite artifacts exist.
  - A step handler runs on a copy of the session.  On success its fields
    are merged back; a section edited while the step ran keeps the edit.
    A failed step never touches the session.
  - Every completed step appends a version entry.  Restoring a version is
    a pointer move: later entries stay selectable.
  - Saving never appends history.  Auto-save runs on a timer and only
    writes when something changed; a failed write is retried next tick.
  - Rewrite validation runs in the background.  A per-section request
    counter decides which validation result is current; older results
    are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from resume_automation.agents.base_agent import BaseAgent
from resume_automation.agents.review_agent import allowed_terms_for, claims_for_section
from resume_automation.config import Settings, get_settings
from resume_automation.exceptions import (
    GenerationFailure,
    InputError,
    PipelineError,
    StoreFailure,
)
from resume_automation.generation.rewriter import SectionRewriter
from resume_automation.generation.validator import RewriteValidator, inconclusive_issue
from resume_automation.models.enums import (
    STEP_ORDER,
    ActionSource,
    BuilderStep,
    ErrorKind,
    VariantStrategy,
)
from resume_automation.models.schemas import (
    EvidenceClaim,
    RewriteOutcome,
    RewriteRequest,
    RewriteResult,
    SectionDraft,
    StepOutcome,
    TargetInputs,
    ValidationResult,
)
from resume_automation.models.state import BuilderSession
from resume_automation.persistence.session_repository import SessionRepository

logger = logging.getLogger(__name__)


def missing_prerequisite(session: BuilderSession, step: BuilderStep) -> Optional[str]:
    """Name of the first earlier step whose output *step* needs, else None."""
    if step.position >= BuilderStep.ASSESSMENT.position and not session.job_id:
        return BuilderStep.TARGET.value
    if step.position >= BuilderStep.BUILD.position and session.matrix is None:
        return BuilderStep.ASSESSMENT.value
    if step.position >= BuilderStep.REVIEW.position and not session.sections:
        return BuilderStep.BUILD.value
    if step == BuilderStep.FINALIZE:
        unreviewed = [
            name for name, draft in session.sections.items()
            if draft.strategy != VariantStrategy.IDEAL and name not in session.validation
        ]
        if unreviewed:
            return BuilderStep.REVIEW.value
    return None


def next_step(step: BuilderStep) -> BuilderStep:
    position = min(step.position + 1, len(STEP_ORDER) - 1)
    return STEP_ORDER[position]


# Written by step agents as a whole
_STEP_FIELDS = (
    "status", "job_id", "build_attempts", "error_message", "state_version",
    "inputs", "ranking", "matrix", "final_document", "audit_trail", "updated_at",
)
# Keyed by section name and also edited between steps
_SECTION_FIELDS = ("variants", "sections", "validation")


def merge_step_result(
    live: BuilderSession,
    base: BuilderSession,
    result: BuilderSession,
) -> list[str]:
    """
    Fold a step's *result* into the *live* session field by field.

    *base* is the state the step started from.  A section whose draft was
    edited on the live session while the step ran keeps the live edit, and
    the step's draft, variants and validation for it are dropped.  Returns
    the names of those sections.
    """
    for name in _STEP_FIELDS:
        setattr(live, name, getattr(result, name))

    edited = sorted(
        key for key in set(base.sections) | set(live.sections)
        if live.sections.get(key) != base.sections.get(key)
    )
    for name in _SECTION_FIELDS:
        before, after, current = getattr(base, name), getattr(result, name), getattr(live, name)
        for key in set(before) | set(after):
            if key in edited or before.get(key) == after.get(key):
                continue
            if key in after:
                current[key] = after[key]
            else:
                current.pop(key, None)
    return edited


class BuilderStateMachine:
    """Owns one BuilderSession and every operation on it."""

    def __init__(
        self,
        session: Optional[BuilderSession] = None,
        *,
        repository: Optional[SessionRepository] = None,
        agents: Optional[dict[BuilderStep, BaseAgent]] = None,
        rewriter: Optional[SectionRewriter] = None,
        validator: Optional[RewriteValidator] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.session = session
        self.repository = repository or SessionRepository()
        self._agents = agents
        self._rewriter = rewriter
        self._validator = validator
        self.dirty = session is not None
        self._latest_request: dict[str, int] = {}
        self._validation_tasks: set[asyncio.Task] = set()
        self._autosave_task: Optional[asyncio.Task] = None

    # ── Collaborators (lazy) ─────────────────────────────

    @property
    def agents(self) -> dict[BuilderStep, BaseAgent]:
        if self._agents is None:
            from resume_automation.orchestration.graph import default_agents

            self._agents = default_agents()
        return self._agents

    @property
    def rewriter(self) -> SectionRewriter:
        if self._rewriter is None:
            self._rewriter = SectionRewriter()
        return self._rewriter

    @property
    def validator(self) -> RewriteValidator:
        if self._validator is None:
            self._validator = RewriteValidator()
        return self._validator

    def _require_session(self) -> BuilderSession:
        if self.session is None:
            raise InputError("no active session")
        return self.session

    # ── Session lifecycle ────────────────────────────────

    def start(self, inputs: TargetInputs) -> BuilderSession:
        """Begin a new session for *inputs*."""
        self._invalidate_all_validations()
        self.session = BuilderSession(inputs=inputs)
        self.dirty = True
        logger.info(f"[SESSION] Started {self.session.session_id}")
        return self.session

    def start_fresh(self, inputs: Optional[TargetInputs] = None) -> BuilderSession:
        """Discard the in-memory session.  The stored record is left as is."""
        previous = self.session.session_id if self.session else None
        session = self.start(inputs or TargetInputs())
        logger.info(f"[SESSION] Fresh start (discarded {previous})")
        return session

    def has_active_session(self, now: Optional[datetime] = None) -> bool:
        """False when there is no session or it has been idle past the expiry."""
        if self.session is None:
            return False
        return not self.session.is_expired(self.settings.session_expiry_hours, now)

    # ── Navigation ───────────────────────────────────────

    def can_go_to(self, step: BuilderStep) -> bool:
        session = self._require_session()
        if step.position <= session.current_step.position:
            return True
        return missing_prerequisite(session, step) is None

    def go_to(self, step: BuilderStep) -> StepOutcome:
        session = self._require_session()
        if not self.can_go_to(step):
            missing = missing_prerequisite(session, step)
            raise InputError(f"cannot enter {step.value} before completing {missing}", field="step")
        session.current_step = step
        session.touch()
        self.dirty = True
        logger.info(f"[SESSION] Navigated to {step.value}")
        return StepOutcome(step=step, version_id=session.active_version_id)

    async def complete_step(self, step: Optional[BuilderStep] = None) -> StepOutcome:
        """
        Run *step* (default: the current step) and adopt its output.

        InputError propagates.  Generation and store failures come back
        as an unsuccessful StepOutcome with the session untouched.
        """
        session = self._require_session()
        step = step or session.current_step
        missing = missing_prerequisite(session, step)
        if missing is not None:
            raise InputError(f"cannot complete {step.value} before {missing}", field="step")

        base = session.model_copy(deep=True)
        working = session.model_copy(deep=True)
        try:
            working = await self.agents[step].run(working)
        except InputError:
            raise
        except PipelineError as exc:
            logger.warning(f"[SESSION] Step {step.value} failed: {exc.message}")
            return StepOutcome(
                success=False,
                error_kind=exc.kind,
                message=exc.message,
                subject=step.value,
                status_code=getattr(exc, "status_code", None),
                step=step,
                version_id=session.active_version_id,
            )

        if self.session is not session:
            raise InputError(f"session was replaced while {step.value} was running", field="session")

        edited = merge_step_result(session, base, working)
        if edited:
            logger.info(
                f"[SESSION] Kept edits made during {step.value}: {', '.join(edited)}"
            )
        session.current_step = next_step(step)
        entry = session.record_version(step, self.settings.version_history_limit)
        if step in (BuilderStep.TARGET, BuilderStep.BUILD):
            self._invalidate_all_validations()
        self.dirty = True
        logger.info(
            f"[SESSION] Completed {step.value} → {session.current_step.value} "
            f"(version {entry.id}, {len(session.version_history)} in history)"
        )
        return StepOutcome(step=step, version_id=entry.id)

    # ── Version history ──────────────────────────────────

    def restore_version(self, version_id: str) -> StepOutcome:
        """
        Apply a history entry's snapshot without dropping later entries.

        When the live state differs from the active entry it is checkpointed
        first; `previous_version_id` names the entry that reproduces the
        state as it was before this call.
        """
        session = self._require_session()
        entry = session.find_version(version_id)
        if entry is None:
            raise InputError(f"unknown version {version_id}", field="version_id")
        target = entry.snapshot.model_copy(deep=True)

        current = session.snapshot()
        active = session.find_version(session.active_version_id or "")
        if active is not None and active.snapshot.fingerprint() == current.fingerprint():
            previous_id = active.id
        else:
            checkpoint = session.record_version(
                session.current_step,
                self.settings.version_history_limit,
                label="before restore",
                keep=[version_id],
            )
            previous_id = checkpoint.id

        session.apply_snapshot(target)
        session.active_version_id = version_id if session.find_version(version_id) else None
        session.touch()
        self._invalidate_all_validations()
        self.dirty = True
        logger.info(f"[SESSION] Restored version {version_id} (previous {previous_id})")
        return StepOutcome(
            step=session.current_step,
            version_id=version_id,
            previous_version_id=previous_id,
        )

    def revert(self, version_id: str) -> StepOutcome:
        return self.restore_version(version_id)

    # ── Persistence ──────────────────────────────────────

    def save(self) -> datetime:
        """Write the session.  Never adds a version entry."""
        session = self._require_session()
        saved_at = self.repository.save_session(session)
        self.dirty = False
        return saved_at

    def restore(self, session_id: str) -> Optional[BuilderSession]:
        """Load a stored session.  None when missing or from an older schema."""
        session = self.repository.load_session(session_id)
        if session is None:
            return None
        self._invalidate_all_validations()
        self.session = session
        self.dirty = False
        logger.info(f"[SESSION] Restored session {session_id} at {session.current_step.value}")
        return session

    def autosave_tick(self) -> bool:
        """Save when there are unsaved changes.  True when a write happened."""
        if self.session is None or not self.dirty:
            return False
        try:
            self.save()
        except StoreFailure as exc:
            logger.warning(f"[SESSION] Auto-save failed, retrying next tick: {exc.message}")
            return False
        return True

    async def _autosave_loop(self) -> None:
        interval = self.settings.autosave_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.autosave_tick()

    def start_autosave(self) -> None:
        if self._autosave_task is None or self._autosave_task.done():
            self._autosave_task = asyncio.create_task(self._autosave_loop())
            logger.debug("[SESSION] Auto-save started")

    async def stop_autosave(self) -> None:
        task, self._autosave_task = self._autosave_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("[SESSION] Auto-save stopped")

    # ── Section content ──────────────────────────────────

    def _next_request_id(self, section_name: str) -> int:
        request_id = self._latest_request.get(section_name, 0) + 1
        self._latest_request[section_name] = request_id
        return request_id

    def _invalidate_all_validations(self) -> None:
        for name in list(self._latest_request):
            self._next_request_id(name)

    def _draft(self, section_name: str) -> SectionDraft:
        session = self._require_session()
        draft = session.sections.get(section_name)
        if draft is None:
            raise InputError(f"section {section_name!r} has not been built", field="section_name")
        return draft

    def _record_rewrite(self, draft: SectionDraft, result: RewriteResult) -> None:
        session = self._require_session()
        draft.content = result.text
        draft.rewrites.append(result)
        limit = self.settings.max_section_rewrites
        if len(draft.rewrites) > limit:
            del draft.rewrites[: len(draft.rewrites) - limit]
        draft.next_version = result.version_number + 1
        session.validation.pop(draft.section_name, None)
        session.touch()
        self.dirty = True

    def _keyword_lists(self) -> tuple[list[str], list[str]]:
        inputs = self._require_session().inputs or TargetInputs()
        suppressed = list(inputs.suppressed_keywords)
        approved = list(inputs.approved_keywords) or (
            inputs.ats_keywords.critical + inputs.ats_keywords.important
        )
        blocked = {kw.lower() for kw in suppressed}
        return [kw for kw in approved if kw.lower() not in blocked], suppressed

    async def rewrite_section(
        self,
        section_name: str,
        action_source: ActionSource,
        instruction: str = "",
        *,
        selected_text: str = "",
        text: str = "",
        skip_validation: bool = False,
    ) -> RewriteOutcome:
        """
        Rewrite one section and return as soon as the rewrite exists.
        Validation, when it runs, finishes later in the background.
        """
        if action_source == ActionSource.MANUAL:
            return self.apply_manual_edit(section_name, text)

        session = self._require_session()
        draft = self._draft(section_name)
        spec = next(
            (s for s in (session.inputs.sections if session.inputs else []) if s.section_name == section_name),
            None,
        )
        claims = claims_for_section(session, section_name)
        approved, suppressed = self._keyword_lists()
        request = RewriteRequest(
            section_name=section_name,
            section_text=draft.content,
            instruction=instruction,
            action_source=action_source,
            evidence_claims=claims,
            requirements=[r.text for r in spec.requirements] if spec else [],
            approved_keywords=approved,
            suppressed_keywords=suppressed,
            selected_text=selected_text,
        )

        try:
            result = await self.rewriter.rewrite(request, version_number=draft.next_version)
        except GenerationFailure as exc:
            logger.warning(f"[SESSION] Rewrite of '{section_name}' failed: {exc.message}")
            return RewriteOutcome(
                success=False,
                error_kind=ErrorKind.GENERATION,
                message=exc.message,
                subject=section_name,
                status_code=exc.status_code,
            )

        # The session may have been replaced while the rewrite was in flight
        draft = self._draft(section_name)
        original = draft.content
        self._record_rewrite(draft, result)
        request_id = self._next_request_id(section_name)

        if skip_validation:
            return RewriteOutcome(result=result, subject=section_name)

        task = asyncio.create_task(
            self._validate_in_background(
                section_name,
                request_id,
                original,
                result.text,
                claims,
                allowed_terms_for(session.inputs) if session.inputs else [],
            )
        )
        self._validation_tasks.add(task)
        task.add_done_callback(self._validation_tasks.discard)
        return RewriteOutcome(result=result, subject=section_name, validation_request_id=request_id)

    async def _validate_in_background(
        self,
        section_name: str,
        request_id: int,
        original: str,
        rewritten: str,
        claims: list[EvidenceClaim],
        allowed_terms: list[str],
    ) -> bool:
        try:
            result = await self.validator.validate(
                original, rewritten, claims, section_name, allowed_terms=allowed_terms
            )
        except PipelineError as exc:
            result = ValidationResult.from_issues(
                [inconclusive_issue(exc.message)], confidence=0.0, summary="Validation was inconclusive"
            )
        return self.apply_validation_result(section_name, request_id, result)

    def apply_validation_result(
        self, section_name: str, request_id: int, result: ValidationResult
    ) -> bool:
        """Store *result* only if it answers the section's latest request."""
        latest = self._latest_request.get(section_name)
        if latest != request_id or self.session is None:
            logger.info(
                f"[SESSION] Discarding stale validation for '{section_name}' "
                f"(request {request_id}, latest {latest})"
            )
            return False
        self.session.validation[section_name] = result
        self.session.touch()
        self.dirty = True
        logger.info(f"[SESSION] '{section_name}' validation: {result.recommendation.value}")
        return True

    def apply_manual_edit(self, section_name: str, text: str) -> RewriteOutcome:
        """Record the user's own edit.  It is never validated."""
        if not text or not text.strip():
            raise InputError("manual edit text is blank", field="text")
        draft = self._draft(section_name)
        result = RewriteResult(
            text=text,
            version_number=draft.next_version,
            action_source=ActionSource.MANUAL,
        )
        self._record_rewrite(draft, result)
        self._next_request_id(section_name)
        logger.info(f"[SESSION] Manual edit of '{section_name}' (v{result.version_number})")
        return RewriteOutcome(result=result, subject=section_name)

    def select_variant(self, section_name: str, strategy: VariantStrategy) -> SectionDraft:
        """Switch a section to another generated variant."""
        session = self._require_session()
        result = session.variants.get(section_name)
        variant = result.variant(strategy) if result else None
        if variant is None:
            raise InputError(
                f"section {section_name!r} has no {strategy.value} variant", field="strategy"
            )
        previous = session.sections.get(section_name)
        draft = SectionDraft(section_name=section_name, strategy=strategy, content=variant.content)
        if previous is not None:
            draft.rewrites = previous.rewrites
            draft.next_version = previous.next_version
        session.sections[section_name] = draft
        session.validation.pop(section_name, None)
        self._next_request_id(section_name)
        session.touch()
        self.dirty = True
        return draft

    async def wait_for_validations(self) -> None:
        """Wait for every in-flight background validation."""
        while self._validation_tasks:
            await asyncio.gather(*list(self._validation_tasks))
