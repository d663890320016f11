"""
Shared fixtures: fresh process-wide singletons for every test and a
scripted generation capability that answers by prompt kind.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Union

import pytest

from resume_automation.api.routes import reset_sessions
from resume_automation.models.enums import RequirementPriority
from resume_automation.models.schemas import (
    AtsKeywords,
    EvidenceItem,
    GenerationRequest,
    GenerationResponse,
    Requirement,
    SectionSpec,
    TargetInputs,
)
from resume_automation.persistence.record_store import reset_record_store
from resume_automation.scoring.rules_config import reset_rules_store
from resume_automation.services.llm_service import set_generation_service

# Prompt markers, most specific first
_PROMPT_KINDS = (
    ("validate", "strict resume fact-checker"),
    ("rewrite", "strict anti-hallucination controls"),
    ("blend", "Combine the two versions"),
    ("personalized", "Write a PERSONALIZED"),
    ("ideal", "Write the INDUSTRY STANDARD version"),
)

Reply = Union[str, Exception, Callable[[GenerationRequest], Any]]


class ScriptedGenerator:
    """GenerationCapability that replies per prompt kind and records requests."""

    def __init__(self, **replies: Reply):
        self.replies = replies
        self.requests: list[tuple[str, GenerationRequest]] = []

    @staticmethod
    def kind_of(prompt: str) -> str:
        for kind, marker in _PROMPT_KINDS:
            if marker in prompt:
                return kind
        raise AssertionError(f"unrecognised prompt: {prompt[:80]!r}")

    def prompts(self, kind: str) -> list[GenerationRequest]:
        return [req for k, req in self.requests if k == kind]

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        kind = self.kind_of(request.prompt)
        self.requests.append((kind, request))
        reply = self.replies.get(kind)
        if reply is None:
            raise AssertionError(f"no scripted reply for {kind}")
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(request)
            if inspect.isawaitable(reply):
                reply = await reply
        return GenerationResponse(text=reply)


APPROVE_VERDICT = (
    '{"is_valid": true, "confidence_score": 90, "issues": [], '
    '"summary": "Grounded in the evidence", "recommendation": "approve"}'
)


@pytest.fixture(autouse=True)
def fresh_singletons():
    reset_record_store()
    reset_rules_store()
    set_generation_service(None)
    reset_sessions()
    yield
    reset_record_store()
    reset_rules_store()
    set_generation_service(None)
    reset_sessions()


@pytest.fixture
def scripted():
    return ScriptedGenerator


@pytest.fixture
def evidence():
    return [
        EvidenceItem(
            id="e1",
            text="Built Python services on AWS for payments",
            keywords=["python", "aws"],
        ),
    ]


@pytest.fixture
def target_inputs(evidence):
    return TargetInputs(
        job_title="Backend Engineer",
        company="Initech",
        industry="fintech",
        job_description="Backend Engineer building Python services on AWS.",
        requirements=[
            Requirement(text="Python", priority=RequirementPriority.REQUIRED),
            Requirement(text="AWS", priority=RequirementPriority.PREFERRED),
        ],
        evidence_items=evidence,
        ats_keywords=AtsKeywords(critical=["Python", "AWS"]),
        sections=[SectionSpec(section_name="summary")],
    )


@pytest.fixture
def summary_spec():
    return SectionSpec(
        section_name="summary",
        job_title="Backend Engineer",
        industry="fintech",
        job_description="Backend Engineer building Python services on AWS.",
        ats_keywords=AtsKeywords(critical=["Python", "AWS"]),
        requirements=[Requirement(text="Python"), Requirement(text="AWS")],
    )
