"""
Tests: the interactive builder session — navigation, step completion,
version history, persistence, auto-save and background validation.

Run with:
    pytest resume_automation/tests/test_state_machine.py -v
"""

import asyncio
from datetime import timedelta

import pytest

from resume_automation.agents import (
    AssessmentAgent,
    BuildAgent,
    FinalizeAgent,
    ReviewAgent,
    TargetAgent,
)
from resume_automation.config import Settings
from resume_automation.exceptions import GenerationFailure, InputError, StoreFailure
from resume_automation.generation.dual_variant import DualVariantGenerator
from resume_automation.generation.validator import RewriteValidator
from resume_automation.models.enums import (
    ActionSource,
    BuilderStep,
    ErrorKind,
    PipelineStatus,
    ValidationRecommendation,
    VariantStrategy,
)
from resume_automation.models.schemas import EvidenceItem, RewriteResult, ValidationResult
from resume_automation.orchestration.state_machine import BuilderStateMachine
from resume_automation.persistence.record_store import InMemoryRecordStore
from resume_automation.persistence.session_repository import SessionRepository

IDEAL_TEXT = "Team player."
GROUNDED_TEXT = "Built Python services on AWS for payments."
APPROVE = (
    '{"is_valid": true, "confidence_score": 90, "issues": [], '
    '"summary": "Grounded", "recommendation": "approve"}'
)
TABLE = "sessions"


class FakeRewriter:
    def __init__(self, fail=False):
        self.fail = fail
        self.requests = []

    async def rewrite(self, request, version_number=0):
        self.requests.append(request)
        if self.fail:
            raise GenerationFailure("model down", status_code=503, variant="rewrite")
        return RewriteResult(
            text=f"{request.section_text} (v{version_number})",
            version_number=version_number,
            action_source=request.action_source,
        )


class DelayedValidator:
    """Answers each call after the next delay in *delays*."""

    def __init__(self, delays=()):
        self.delays = list(delays)
        self.calls = []

    async def validate(self, original, rewritten, claims, section_name, *, allowed_terms=()):
        self.calls.append(rewritten)
        await asyncio.sleep(self.delays.pop(0) if self.delays else 0)
        return ValidationResult.from_issues([], confidence=0.9, summary=rewritten)


class FlakyStore(InMemoryRecordStore):
    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def upsert(self, table, record):
        if self.failures:
            self.failures -= 1
            raise StoreFailure("connection reset", table=table)
        return super().upsert(table, record)


def make_machine(
    scripted,
    inputs,
    *,
    ideal=IDEAL_TEXT,
    personalized=GROUNDED_TEXT,
    store=None,
    rewriter=None,
    validator=None,
    settings=None,
):
    service = scripted(ideal=ideal, personalized=personalized, validate=APPROVE)
    agents = {
        BuilderStep.TARGET: TargetAgent(),
        BuilderStep.ASSESSMENT: AssessmentAgent(),
        BuilderStep.BUILD: BuildAgent(DualVariantGenerator(service, generate_blend=False)),
        BuilderStep.REVIEW: ReviewAgent(RewriteValidator(service)),
        BuilderStep.FINALIZE: FinalizeAgent(),
    }
    machine = BuilderStateMachine(
        repository=SessionRepository(store or InMemoryRecordStore(), table=TABLE),
        agents=agents,
        rewriter=rewriter or FakeRewriter(),
        validator=validator or DelayedValidator(),
        settings=settings,
    )
    machine.start(inputs)
    return machine


async def complete(machine, *steps):
    outcomes = []
    for step in steps:
        outcome = await machine.complete_step(step)
        assert outcome.success, outcome.message
        outcomes.append(outcome)
    return outcomes


UP_TO_BUILD = (BuilderStep.TARGET, BuilderStep.ASSESSMENT, BuilderStep.BUILD)


# ═══════════════════════════════════════════════════════════
#  Steps and navigation
# ═══════════════════════════════════════════════════════════


class TestStepFlow:
    def test_full_walkthrough(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        asyncio.run(complete(machine, *BuilderStep))

        session = machine.session
        assert session.status == PipelineStatus.FINALIZED
        assert session.current_step == BuilderStep.FINALIZE
        assert len(session.version_history) == 5
        assert session.sections["summary"].strategy == VariantStrategy.PERSONALIZED
        assert session.validation["summary"].recommendation == ValidationRecommendation.APPROVE
        document = session.final_document
        assert [s.section_name for s in document.sections] == ["summary"]
        assert document.coverage_percent == 100
        assert document.unresolved_sections == []

    def test_forward_navigation_needs_prerequisites(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        assert machine.can_go_to(BuilderStep.ASSESSMENT) is False
        with pytest.raises(InputError):
            machine.go_to(BuilderStep.BUILD)

        asyncio.run(complete(machine, BuilderStep.TARGET))
        assert machine.can_go_to(BuilderStep.ASSESSMENT) is True
        assert machine.can_go_to(BuilderStep.BUILD) is False

    def test_backward_navigation_is_always_allowed(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        asyncio.run(complete(machine, BuilderStep.TARGET, BuilderStep.ASSESSMENT))

        machine.go_to(BuilderStep.TARGET)
        assert machine.session.current_step == BuilderStep.TARGET
        # Artifacts are kept, so moving forward again is allowed
        machine.go_to(BuilderStep.BUILD)
        assert machine.session.current_step == BuilderStep.BUILD

    def test_completing_a_step_early_raises(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        with pytest.raises(InputError):
            asyncio.run(machine.complete_step(BuilderStep.BUILD))

    def test_invalid_inputs_raise(self, scripted, target_inputs):
        target_inputs.evidence_items.append(EvidenceItem(id="e1", text="Duplicate id"))
        machine = make_machine(scripted, target_inputs)
        with pytest.raises(InputError):
            asyncio.run(machine.complete_step(BuilderStep.TARGET))
        assert machine.session.version_history == []

    def test_failed_step_leaves_session_untouched(self, scripted, target_inputs):
        failure = GenerationFailure("service unavailable", status_code=503)
        machine = make_machine(scripted, target_inputs, ideal=failure, personalized=failure)
        asyncio.run(complete(machine, BuilderStep.TARGET, BuilderStep.ASSESSMENT))

        outcome = asyncio.run(machine.complete_step(BuilderStep.BUILD))

        assert outcome.success is False
        assert outcome.error_kind == ErrorKind.GENERATION
        assert outcome.step == BuilderStep.BUILD
        session = machine.session
        assert session.sections == {}
        assert session.build_attempts == 0
        assert len(session.version_history) == 2
        assert session.current_step == BuilderStep.BUILD

    def test_changed_target_clears_artifacts(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        asyncio.run(complete(machine, *UP_TO_BUILD))
        assert machine.session.sections

        machine.session.inputs.job_description = "Data Engineer building Spark pipelines."
        asyncio.run(complete(machine, BuilderStep.TARGET))

        session = machine.session
        assert session.sections == {}
        assert session.matrix is None
        assert session.build_attempts == 0
        assert session.inputs.sections[0].job_description == "Data Engineer building Spark pipelines."
        assert machine.can_go_to(BuilderStep.BUILD) is False

    def test_ideal_sections_skip_review(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        asyncio.run(complete(machine, *UP_TO_BUILD))
        assert machine.can_go_to(BuilderStep.FINALIZE) is False

        draft = machine.select_variant("summary", VariantStrategy.IDEAL)

        assert draft.content == IDEAL_TEXT
        assert machine.can_go_to(BuilderStep.FINALIZE) is True
        asyncio.run(complete(machine, BuilderStep.FINALIZE))
        assert machine.session.final_document.sections[0].strategy == VariantStrategy.IDEAL

    def test_missing_variant_cannot_be_selected(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        asyncio.run(complete(machine, *UP_TO_BUILD))
        with pytest.raises(InputError):
            machine.select_variant("summary", VariantStrategy.BLEND)


# ═══════════════════════════════════════════════════════════
#  Version history
# ═══════════════════════════════════════════════════════════


class TestVersionHistory:
    def test_history_is_bounded_and_keeps_the_first_entry(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        outcomes = asyncio.run(complete(machine, *([BuilderStep.TARGET] * 21)))

        history = machine.session.version_history
        assert len(history) == 20
        assert history[0].id == outcomes[0].version_id
        assert history[-1].id == outcomes[-1].version_id
        assert outcomes[1].version_id not in {entry.id for entry in history}
        assert machine.session.active_version_id == outcomes[-1].version_id

    def test_restore_is_a_pointer_move(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        v1, v2, v3 = (o.version_id for o in asyncio.run(complete(machine, *UP_TO_BUILD)))
        before = machine.session.snapshot().fingerprint()

        outcome = machine.restore_version(v1)

        session = machine.session
        assert outcome.previous_version_id == v3
        assert session.sections == {}
        assert session.matrix is None
        assert session.current_step == BuilderStep.ASSESSMENT
        assert session.active_version_id == v1
        assert [e.id for e in session.version_history] == [v1, v2, v3]

        machine.restore_version(outcome.previous_version_id)
        assert machine.session.snapshot().fingerprint() == before
        assert machine.session.active_version_id == v3

    def test_unsaved_changes_are_checkpointed(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        v1 = asyncio.run(complete(machine, *UP_TO_BUILD))[0].version_id
        machine.apply_manual_edit("summary", "Edited by hand.")

        outcome = machine.restore_version(v1)

        assert len(machine.session.version_history) == 4
        assert outcome.previous_version_id == machine.session.version_history[-1].id
        machine.restore_version(outcome.previous_version_id)
        assert machine.session.sections["summary"].content == "Edited by hand."

    def test_restore_keeps_its_target_when_history_is_full(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        asyncio.run(complete(machine, *([BuilderStep.TARGET] * 20)))
        before = [entry.id for entry in machine.session.version_history]
        assert len(before) == 20
        machine.go_to(BuilderStep.TARGET)

        outcome = machine.restore_version(before[1])

        after = [entry.id for entry in machine.session.version_history]
        assert len(after) == 20
        assert after[:2] == before[:2]
        assert before[2] not in after
        assert machine.session.active_version_id == before[1]
        assert outcome.previous_version_id == after[-1]

        machine.restore_version(outcome.previous_version_id)
        assert machine.session.current_step == BuilderStep.TARGET
        assert machine.session.active_version_id == after[-1]

    def test_unknown_version(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        with pytest.raises(InputError):
            machine.restore_version("missing")


# ═══════════════════════════════════════════════════════════
#  Persistence
# ═══════════════════════════════════════════════════════════


class TestPersistence:
    def test_save_never_adds_history(self, scripted, target_inputs):
        store = InMemoryRecordStore()
        machine = make_machine(scripted, target_inputs, store=store)
        asyncio.run(complete(machine, BuilderStep.TARGET))

        machine.save()
        machine.save()

        assert len(machine.session.version_history) == 1
        assert len(store.get(TABLE, {"session_id": machine.session.session_id})) == 1
        assert machine.dirty is False
        assert machine.session.last_saved_at is not None

    def test_restore_in_a_new_machine(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        asyncio.run(complete(machine, *UP_TO_BUILD))
        machine.save()

        other = BuilderStateMachine(repository=machine.repository)
        session = other.restore(machine.session.session_id)

        assert session is not None
        assert session.current_step == BuilderStep.REVIEW
        assert session.sections["summary"].content == GROUNDED_TEXT
        assert len(session.version_history) == 3
        assert other.dirty is False

    def test_outdated_or_missing_records(self, scripted, target_inputs):
        store = InMemoryRecordStore()
        store.upsert(TABLE, {"session_id": "old", "schema_version": 1})
        machine = make_machine(scripted, target_inputs, store=store)

        assert machine.restore("old") is None
        assert machine.restore("never-saved") is None
        assert len(store.get(TABLE, {"session_id": "old"})) == 1

    def test_autosave_only_writes_changes(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        assert machine.autosave_tick() is True
        assert machine.autosave_tick() is False

    def test_failed_autosave_is_retried(self, scripted, target_inputs):
        store = FlakyStore(failures=1)
        machine = make_machine(scripted, target_inputs, store=store)

        assert machine.autosave_tick() is False
        assert machine.dirty is True
        assert machine.autosave_tick() is True
        assert machine.dirty is False
        assert store.get(TABLE, {"session_id": machine.session.session_id})

    def test_autosave_timer(self, scripted, target_inputs):
        store = InMemoryRecordStore()
        settings = Settings(autosave_interval_seconds=0.01)
        machine = make_machine(scripted, target_inputs, store=store, settings=settings)

        async def scenario():
            machine.start_autosave()
            await asyncio.sleep(0.1)
            await machine.stop_autosave()

        asyncio.run(scenario())
        assert machine.dirty is False
        assert store.get(TABLE, {"session_id": machine.session.session_id})

    def test_expiry_is_measured_from_last_save(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        created = machine.session.created_at
        assert machine.has_active_session(now=created + timedelta(hours=1)) is True
        assert machine.has_active_session(now=created + timedelta(hours=25)) is False

        saved_at = machine.save()
        assert machine.has_active_session(now=saved_at + timedelta(hours=23)) is True

    def test_start_fresh_keeps_the_stored_record(self, scripted, target_inputs):
        store = InMemoryRecordStore()
        machine = make_machine(scripted, target_inputs, store=store)
        first_id = machine.session.session_id
        machine.save()

        machine.start_fresh()

        assert machine.session.session_id != first_id
        assert store.get(TABLE, {"session_id": first_id})


# ═══════════════════════════════════════════════════════════
#  Rewrites and background validation
# ═══════════════════════════════════════════════════════════


class TestRewrites:
    def test_rewrite_returns_before_validation(self, scripted, target_inputs):
        async def scenario():
            gate = asyncio.Event()

            class GatedValidator(DelayedValidator):
                async def validate(self, *args, **kwargs):
                    await gate.wait()
                    return await super().validate(*args, **kwargs)

            machine = make_machine(scripted, target_inputs, validator=GatedValidator())
            await complete(machine, *UP_TO_BUILD)

            outcome = await machine.rewrite_section("summary", ActionSource.TIGHTEN)
            pending = "summary" in machine.session.validation
            gate.set()
            await machine.wait_for_validations()
            return machine, outcome, pending

        machine, outcome, pending = asyncio.run(scenario())
        assert outcome.success is True
        assert outcome.validation_request_id is not None
        assert pending is False
        assert machine.session.sections["summary"].content == outcome.result.text
        assert machine.session.validation["summary"].summary == outcome.result.text

    def test_stale_validation_is_discarded(self, scripted, target_inputs):
        async def scenario():
            validator = DelayedValidator(delays=[0.05, 0])
            machine = make_machine(scripted, target_inputs, validator=validator)
            await complete(machine, *UP_TO_BUILD)

            first = await machine.rewrite_section("summary", ActionSource.TIGHTEN)
            second = await machine.rewrite_section("summary", ActionSource.EXECUTIVE)
            await machine.wait_for_validations()
            return machine, first, second, validator

        machine, first, second, validator = asyncio.run(scenario())
        assert first.validation_request_id < second.validation_request_id
        assert len(validator.calls) == 2
        # The slower, older validation finished last and was dropped
        assert machine.session.validation["summary"].summary == second.result.text

    def test_manual_edit_is_not_validated(self, scripted, target_inputs):
        async def scenario():
            validator = DelayedValidator(delays=[0.05])
            machine = make_machine(scripted, target_inputs, validator=validator)
            await complete(machine, *UP_TO_BUILD)

            await machine.rewrite_section("summary", ActionSource.TIGHTEN)
            manual = await machine.rewrite_section(
                "summary", ActionSource.MANUAL, text="My own words."
            )
            await machine.wait_for_validations()
            return machine, manual, validator

        machine, manual, validator = asyncio.run(scenario())
        assert manual.validation_request_id is None
        assert manual.result.action_source == ActionSource.MANUAL
        assert machine.session.sections["summary"].content == "My own words."
        assert "summary" not in machine.session.validation
        assert len(validator.calls) == 1

    def test_skip_validation(self, scripted, target_inputs):
        async def scenario():
            validator = DelayedValidator()
            machine = make_machine(scripted, target_inputs, validator=validator)
            await complete(machine, *UP_TO_BUILD)
            outcome = await machine.rewrite_section(
                "summary", ActionSource.SPECIFIC, skip_validation=True
            )
            await machine.wait_for_validations()
            return outcome, validator

        outcome, validator = asyncio.run(scenario())
        assert outcome.validation_request_id is None
        assert validator.calls == []

    def test_rewrite_request_carries_evidence_and_keywords(self, scripted, target_inputs):
        rewriter = FakeRewriter()
        target_inputs.suppressed_keywords = ["AWS"]
        machine = make_machine(scripted, target_inputs, rewriter=rewriter)

        async def scenario():
            await complete(machine, *UP_TO_BUILD)
            await machine.rewrite_section("summary", ActionSource.MATCH_JD, "Mention payments")
            await machine.wait_for_validations()

        asyncio.run(scenario())
        request = rewriter.requests[0]
        assert [c.evidence_id for c in request.evidence_claims] == ["e1"]
        assert request.approved_keywords == ["Python"]
        assert request.suppressed_keywords == ["AWS"]
        assert request.requirements == ["Python", "AWS"]
        assert request.instruction == "Mention payments"

    def test_failed_rewrite_keeps_content(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs, rewriter=FakeRewriter(fail=True))
        asyncio.run(complete(machine, *UP_TO_BUILD))

        outcome = asyncio.run(machine.rewrite_section("summary", ActionSource.TIGHTEN))

        assert outcome.success is False
        assert outcome.status_code == 503
        assert machine.session.sections["summary"].content == GROUNDED_TEXT
        assert machine.session.sections["summary"].rewrites == []

    def test_rewrite_history_is_bounded(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        asyncio.run(complete(machine, *UP_TO_BUILD))

        for n in range(12):
            machine.apply_manual_edit("summary", f"Edit {n}")

        draft = machine.session.sections["summary"]
        assert len(draft.rewrites) == 10
        assert draft.rewrites[0].version_number == 3
        assert draft.rewrites[-1].version_number == 12
        assert draft.next_version == 13

    def test_unknown_section(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        with pytest.raises(InputError):
            asyncio.run(machine.rewrite_section("summary", ActionSource.TIGHTEN))

    def test_blank_manual_edit(self, scripted, target_inputs):
        machine = make_machine(scripted, target_inputs)
        asyncio.run(complete(machine, *UP_TO_BUILD))
        with pytest.raises(InputError):
            machine.apply_manual_edit("summary", "   ")


# ═══════════════════════════════════════════════════════════
#  Edits while a step is running
# ═══════════════════════════════════════════════════════════


def slow_review(machine, delay=0.05):
    machine.agents[BuilderStep.REVIEW] = ReviewAgent(DelayedValidator(delays=[delay]))


class TestEditsDuringSteps:
    def test_rewrite_during_review_is_kept(self, scripted, target_inputs):
        async def scenario():
            machine = make_machine(scripted, target_inputs)
            await complete(machine, *UP_TO_BUILD)
            slow_review(machine)

            step = asyncio.create_task(machine.complete_step(BuilderStep.REVIEW))
            await asyncio.sleep(0)
            rewrite = await machine.rewrite_section("summary", ActionSource.TIGHTEN)
            outcome = await step
            await machine.wait_for_validations()
            return machine, rewrite, outcome

        machine, rewrite, outcome = asyncio.run(scenario())
        session = machine.session
        assert outcome.success is True
        assert session.current_step == BuilderStep.FINALIZE
        assert session.sections["summary"].content == rewrite.result.text
        assert session.sections["summary"].rewrites[-1].action_source == ActionSource.TIGHTEN
        # The review of the old text does not stand in for the new one
        assert session.validation["summary"].summary == rewrite.result.text
        assert session.version_history[-1].snapshot.sections["summary"].content == rewrite.result.text
        assert session.audit_trail[-1].agent == "REVIEW"

    def test_manual_edit_during_review_is_kept(self, scripted, target_inputs):
        async def scenario():
            machine = make_machine(scripted, target_inputs)
            await complete(machine, *UP_TO_BUILD)
            slow_review(machine)

            step = asyncio.create_task(machine.complete_step(BuilderStep.REVIEW))
            await asyncio.sleep(0)
            machine.apply_manual_edit("summary", "My own words.")
            await step
            return machine

        session = asyncio.run(scenario()).session
        assert session.sections["summary"].content == "My own words."
        assert "summary" not in session.validation

    def test_untouched_sections_take_the_step_result(self, scripted, target_inputs):
        async def scenario():
            machine = make_machine(scripted, target_inputs)
            await complete(machine, *UP_TO_BUILD)
            slow_review(machine)
            await machine.complete_step(BuilderStep.REVIEW)
            return machine

        session = asyncio.run(scenario()).session
        assert session.sections["summary"].content == GROUNDED_TEXT
        assert session.validation["summary"].summary == GROUNDED_TEXT

    def test_fresh_start_during_a_step_refuses_its_result(self, scripted, target_inputs):
        async def scenario():
            machine = make_machine(scripted, target_inputs)
            await complete(machine, *UP_TO_BUILD)
            slow_review(machine)

            step = asyncio.create_task(machine.complete_step(BuilderStep.REVIEW))
            await asyncio.sleep(0)
            fresh = machine.start_fresh()
            with pytest.raises(InputError):
                await step
            return machine, fresh

        machine, fresh = asyncio.run(scenario())
        assert machine.session is fresh
        assert machine.session.version_history == []
