"""
Tests: step agents, routing and the end-to-end LangGraph pipeline.

Run with:
    pytest resume_automation/tests/test_pipeline.py -v
"""

import asyncio

import pytest

from resume_automation.agents import (
    AssessmentAgent,
    BuildAgent,
    FinalizeAgent,
    ReviewAgent,
    TargetAgent,
)
from resume_automation.agents.build_agent import draft_from_result
from resume_automation.agents.review_agent import allowed_terms_for
from resume_automation.exceptions import InputError
from resume_automation.generation.dual_variant import DualVariantGenerator
from resume_automation.generation.validator import RewriteValidator
from resume_automation.models.enums import (
    BuilderStep,
    PipelineStatus,
    Recommendation,
    Severity,
    ValidationIssueKind,
    ValidationRecommendation,
    VariantStrategy,
)
from resume_automation.models.schemas import (
    DualVariantResult,
    QualityScore,
    Requirement,
    SectionDraft,
    SectionSpec,
    SectionVariant,
    TargetInputs,
    ValidationIssue,
    ValidationResult,
    VariantComparison,
)
from resume_automation.models.state import BuilderSession
from resume_automation.orchestration.graph import run_pipeline
from resume_automation.orchestration.transitions import (
    route_after_assessment,
    route_after_review,
)

GROUNDED_TEXT = "Built Python services on AWS for payments."
UNGROUNDED_TEXT = "Built Python services on AWS for Globex Corporation."
APPROVE = (
    '{"is_valid": true, "confidence_score": 90, "issues": [], '
    '"summary": "Grounded", "recommendation": "approve"}'
)


def make_agents(service):
    return {
        BuilderStep.TARGET: TargetAgent(),
        BuilderStep.ASSESSMENT: AssessmentAgent(),
        BuilderStep.BUILD: BuildAgent(DualVariantGenerator(service, generate_blend=False)),
        BuilderStep.REVIEW: ReviewAgent(RewriteValidator(service)),
        BuilderStep.FINALIZE: FinalizeAgent(),
    }


def _variant(strategy, overall, content="text"):
    quality = QualityScore(
        overall=overall,
        ats_match_percentage=overall,
        requirements_coverage=overall,
        competitive_strength=1,
    )
    return SectionVariant(strategy=strategy, content=content, quality=quality)


def _reject():
    issue = ValidationIssue(
        kind=ValidationIssueKind.HALLUCINATION,
        severity=Severity.CRITICAL,
        problematic_text="Globex",
    )
    return ValidationResult.from_issues([issue], confidence=0.9)


# ═══════════════════════════════════════════════════════════
#  Agents
# ═══════════════════════════════════════════════════════════


class TestTargetAgent:
    def test_default_sections_inherit_job_context(self):
        inputs = TargetInputs(
            job_title="Backend Engineer",
            job_description="Python services",
            requirements=[Requirement(text="Python")],
        )
        session = asyncio.run(TargetAgent().run(BuilderSession(inputs=inputs)))

        specs = session.inputs.sections
        assert [s.section_name for s in specs] == ["summary", "experience", "skills"]
        assert all(s.job_title == "Backend Engineer" for s in specs)
        assert specs[0].requirements[0].text == "Python"
        assert specs[0].seniority == "mid-level"
        assert session.job_id
        assert session.status == PipelineStatus.TARGET_SET

    def test_section_overrides_are_kept(self):
        inputs = TargetInputs(
            job_title="Backend Engineer",
            sections=[SectionSpec(section_name="summary", job_title="Staff Engineer")],
        )
        session = asyncio.run(TargetAgent().run(BuilderSession(inputs=inputs)))
        assert session.inputs.sections[0].job_title == "Staff Engineer"

    def test_blank_requirement(self):
        inputs = TargetInputs(requirements=[Requirement(text=" ")])
        session = BuilderSession(inputs=inputs)
        with pytest.raises(InputError):
            asyncio.run(TargetAgent().run(session))
        assert session.error_message.startswith("[TARGET]")
        assert session.audit_trail[-1].action == "error"

    def test_duplicate_section_names(self):
        inputs = TargetInputs(
            sections=[SectionSpec(section_name="summary"), SectionSpec(section_name="summary")],
        )
        with pytest.raises(InputError):
            asyncio.run(TargetAgent().run(BuilderSession(inputs=inputs)))


class TestBuildAgent:
    def test_retry_rebuilds_only_rejected_sections(self, scripted, target_inputs):
        target_inputs.sections.append(SectionSpec(section_name="experience"))
        service = scripted(ideal="Team player.", personalized=GROUNDED_TEXT)
        build = BuildAgent(DualVariantGenerator(service, generate_blend=False))

        async def scenario():
            session = BuilderSession(inputs=target_inputs)
            session = await TargetAgent().run(session)
            session = await AssessmentAgent().run(session)
            session = await build.run(session)
            session.validation["summary"] = _reject()
            session.validation["experience"] = ValidationResult.from_issues([], confidence=0.9)
            return await build.run(session)

        session = asyncio.run(scenario())
        assert len(service.prompts("ideal")) == 3
        assert session.build_attempts == 2
        assert "summary" not in session.validation
        assert "experience" in session.validation

    def test_blend_without_text_takes_the_stronger_variant(self):
        result = DualVariantResult(
            section_name="summary",
            ideal=_variant(VariantStrategy.IDEAL, 70),
            personalized=_variant(VariantStrategy.PERSONALIZED, 70),
            comparison=VariantComparison(recommendation=Recommendation.BLEND, reason="close"),
        )
        draft = draft_from_result(result, None)
        assert draft.strategy == VariantStrategy.PERSONALIZED

        result.ideal = _variant(VariantStrategy.IDEAL, 75)
        assert draft_from_result(result, None).strategy == VariantStrategy.IDEAL

    def test_rebuilt_draft_keeps_rewrite_numbering(self):
        result = DualVariantResult(
            section_name="summary",
            personalized=_variant(VariantStrategy.PERSONALIZED, 60, content="New"),
            comparison=VariantComparison(recommendation=Recommendation.PERSONALIZED, reason="only"),
        )
        previous = SectionDraft(
            section_name="summary", strategy=VariantStrategy.IDEAL, content="Old", next_version=4,
        )
        draft = draft_from_result(result, previous)
        assert draft.content == "New"
        assert draft.next_version == 4


class TestReviewAndFinalize:
    def test_allowed_terms_cover_the_job_side(self, target_inputs):
        terms = allowed_terms_for(target_inputs)
        assert "Initech" in terms
        assert "Python" in terms

    def test_rejected_sections_are_unresolved(self, target_inputs):
        target_inputs.sections.append(SectionSpec(section_name="experience"))
        session = BuilderSession(inputs=target_inputs)
        session.sections["summary"] = SectionDraft(
            section_name="summary", strategy=VariantStrategy.PERSONALIZED, content=UNGROUNDED_TEXT,
        )
        session.validation["summary"] = _reject()

        session = asyncio.run(FinalizeAgent().run(session))

        document = session.final_document
        assert document.unresolved_sections == ["summary", "experience"]
        assert [s.section_name for s in document.sections] == ["summary"]
        assert document.sections[0].validation == ValidationRecommendation.REJECT
        assert document.coverage_percent is None


# ═══════════════════════════════════════════════════════════
#  Routing
# ═══════════════════════════════════════════════════════════


class TestRouting:
    def test_no_sections_ends_the_run(self):
        assert route_after_assessment({"inputs": {"sections": []}}) == "end_no_content"
        assert route_after_assessment({"inputs": {"sections": [{"section_name": "s"}]}}) == "build"

    def test_rejections_loop_back_until_retries_run_out(self):
        state = {
            "sections": {"summary": {}},
            "validation": {"summary": {"recommendation": ValidationRecommendation.REJECT}},
        }
        assert route_after_review({**state, "build_attempts": 1}) == "build"
        assert route_after_review({**state, "build_attempts": 2}) == "build"
        assert route_after_review({**state, "build_attempts": 3}) == "escalate_review"

    def test_approved_sections_finalize(self):
        state = {
            "sections": {"summary": {}},
            "validation": {"summary": {"recommendation": "revise"}},
            "build_attempts": 1,
        }
        assert route_after_review(state) == "finalize"


# ═══════════════════════════════════════════════════════════
#  End to end
# ═══════════════════════════════════════════════════════════


class TestRunPipeline:
    def test_grounded_run_finalizes(self, scripted, target_inputs):
        service = scripted(ideal="Team player.", personalized=GROUNDED_TEXT, validate=APPROVE)
        session = asyncio.run(run_pipeline(target_inputs, make_agents(service)))

        assert session.status == PipelineStatus.FINALIZED
        assert session.build_attempts == 1
        assert session.final_document.sections[0].content == GROUNDED_TEXT
        assert [e.agent for e in session.audit_trail] == [
            "TARGET", "ASSESSMENT", "BUILD", "REVIEW", "FINALIZE",
        ]

    def test_persistent_rejection_escalates(self, scripted, target_inputs):
        service = scripted(ideal="Team player.", personalized=UNGROUNDED_TEXT, validate=APPROVE)
        session = asyncio.run(run_pipeline(target_inputs, make_agents(service)))

        assert session.status == PipelineStatus.ESCALATED
        assert session.build_attempts == 3
        assert session.error_message
        assert session.final_document is None

    def test_nothing_to_build(self, scripted):
        service = scripted()
        session = asyncio.run(run_pipeline({}, make_agents(service)))

        assert session.status == PipelineStatus.NO_CONTENT
        assert session.sections == {}
        assert service.requests == []
