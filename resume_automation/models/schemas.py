"""
Reusable data schemas for the records that flow through the pipeline.
Each schema represents a clearly-bounded data object produced by one
component (ranker, matcher, scorer, generator, validator, builder).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .enums import (
    ActionSource,
    BuilderStep,
    CoverageStatus,
    ErrorKind,
    Recommendation,
    RequirementPriority,
    Severity,
    ValidationIssueKind,
    ValidationRecommendation,
    VariantStrategy,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Evidence ─────────────────────────────────────────────


class EvidenceItem(BaseModel):
    """A single verifiable fact from the candidate's career history."""
    id: str
    text: str
    category: str = "general"
    required_flag: bool = False
    keywords: list[str] = []
    relevance_score: Optional[int] = None  # transient, set per ranking call
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class RankedItem(EvidenceItem):
    """An evidence item annotated by one ranking call."""
    relevance_score: int = 0
    matched_keywords: list[str] = []
    surfaced_as_required: bool = False  # kept only because required_flag is set


class RankingResult(BaseModel):
    items: list[RankedItem] = []
    has_context: bool = True  # False when the target text was blank


# ── Requirements & evidence matrix ───────────────────────


class Requirement(BaseModel):
    """One discrete qualification extracted from the target job."""
    text: str
    priority: RequirementPriority = RequirementPriority.REQUIRED
    source_position: Optional[int] = None


class EvidenceMatrixRow(BaseModel):
    requirement: Requirement
    selected_evidence: Optional[EvidenceItem] = None
    match_score: int = Field(default=0, ge=0, le=100)
    status: CoverageStatus = CoverageStatus.UNCOVERED

    @model_validator(mode="after")
    def _evidence_matches_status(self) -> "EvidenceMatrixRow":
        uncovered = self.status == CoverageStatus.UNCOVERED
        if uncovered != (self.selected_evidence is None):
            raise ValueError(
                "selected_evidence must be empty exactly when status is uncovered"
            )
        return self


class EvidenceMatrix(BaseModel):
    rows: list[EvidenceMatrixRow] = []
    coverage_percent: Optional[int] = None  # None when there are no requirements
    coverage_defined: bool = False
    covered_count: int = 0
    partial_count: int = 0
    weak_count: int = 0
    uncovered_count: int = 0
    one_to_one: bool = False


# ── Quality scoring ──────────────────────────────────────


class AtsKeywords(BaseModel):
    critical: list[str] = []
    important: list[str] = []
    nice_to_have: list[str] = []


class QualityScore(BaseModel):
    overall: int = Field(ge=0, le=100)
    ats_match_percentage: int
    requirements_coverage: int
    competitive_strength: int = Field(ge=1, le=5)
    keywords_matched: list[str] = []
    requirements_addressed: list[str] = []


# ── Section generation ───────────────────────────────────


class SectionSpec(BaseModel):
    """Everything the generator needs to compose one resume section."""
    section_name: str
    section_type: str = ""  # summary, experience, skills, ...
    guidance: str = ""
    job_title: str = ""
    industry: str = ""
    seniority: str = ""
    job_description: str = ""
    ats_keywords: AtsKeywords = Field(default_factory=AtsKeywords)
    requirements: list[Requirement] = []

    @property
    def kind(self) -> str:
        return (self.section_type or self.section_name).strip().lower()


class SectionVariant(BaseModel):
    strategy: VariantStrategy
    content: str
    quality: QualityScore
    evidence_items_used: list[EvidenceItem] = []


class VariantComparison(BaseModel):
    recommendation: Recommendation
    reason: str
    score_difference: int = 0  # personalized overall minus ideal overall
    evidence_strength: int = Field(default=0, ge=0, le=100)


class OperationResult(BaseModel):
    """Typed outcome of a recoverable operation."""
    success: bool = True
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    subject: str = ""  # which variant / section / step failed
    status_code: Optional[int] = None


class DualVariantResult(BaseModel):
    section_name: str
    ideal: Optional[SectionVariant] = None
    personalized: Optional[SectionVariant] = None
    blend: Optional[SectionVariant] = None
    comparison: Optional[VariantComparison] = None
    errors: list[OperationResult] = []

    @property
    def success(self) -> bool:
        return self.ideal is not None or self.personalized is not None

    @property
    def complete(self) -> bool:
        return self.ideal is not None and self.personalized is not None

    def variant(self, strategy: VariantStrategy) -> Optional[SectionVariant]:
        return {
            VariantStrategy.IDEAL: self.ideal,
            VariantStrategy.PERSONALIZED: self.personalized,
            VariantStrategy.BLEND: self.blend,
        }[strategy]


# ── Rewrite ──────────────────────────────────────────────


class EvidenceClaim(BaseModel):
    """A literal evidence claim a rewrite may rely on."""
    claim_text: str
    evidence_quote: str = ""
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    evidence_id: str = ""

    @classmethod
    def from_item(cls, item: EvidenceItem) -> "EvidenceClaim":
        return cls(
            claim_text=item.text,
            confidence=item.confidence,
            evidence_id=item.id,
        )


class RewriteRequest(BaseModel):
    section_name: str
    section_text: str
    instruction: str = ""
    action_source: ActionSource = ActionSource.CONSERVATIVE
    evidence_claims: list[EvidenceClaim] = []
    requirements: list[str] = []
    approved_keywords: list[str] = []
    suppressed_keywords: list[str] = []
    selected_text: str = ""  # micro_edit only


class RewriteResult(BaseModel):
    text: str
    keywords_added: list[str] = []
    evidence_used: list[str] = []
    open_questions: list[str] = []
    version_number: int = 0
    action_source: ActionSource = ActionSource.CONSERVATIVE
    created_at: datetime = Field(default_factory=_utcnow)


# ── Validation ───────────────────────────────────────────


class ValidationIssue(BaseModel):
    kind: ValidationIssueKind
    severity: Severity
    problematic_text: str = ""
    suggestion: str = ""
    description: str = ""


def recommend_from_issues(issues: list[ValidationIssue]) -> ValidationRecommendation:
    """reject iff any critical, revise iff only warnings, else approve."""
    severities = {issue.severity for issue in issues}
    if Severity.CRITICAL in severities:
        return ValidationRecommendation.REJECT
    if Severity.WARNING in severities:
        return ValidationRecommendation.REVISE
    return ValidationRecommendation.APPROVE


class ValidationResult(BaseModel):
    valid: bool
    confidence: float = Field(ge=0.0, le=1.0)
    issues: list[ValidationIssue] = []
    recommendation: ValidationRecommendation
    summary: str = ""

    @classmethod
    def from_issues(
        cls,
        issues: list[ValidationIssue],
        confidence: float,
        summary: str = "",
    ) -> "ValidationResult":
        recommendation = recommend_from_issues(issues)
        return cls(
            valid=recommendation == ValidationRecommendation.APPROVE,
            confidence=min(1.0, max(0.0, confidence)),
            issues=issues,
            recommendation=recommendation,
            summary=summary,
        )


# ── Generation capability contract ───────────────────────


class GenerationRequest(BaseModel):
    prompt: str
    temperature: float = 0.3
    max_output_tokens: int = 1500


class GenerationResponse(BaseModel):
    text: str


# ── Builder session content ──────────────────────────────


class SectionDraft(BaseModel):
    """The content currently chosen for one section, plus its rewrites."""
    section_name: str
    strategy: VariantStrategy
    content: str
    rewrites: list[RewriteResult] = []
    next_version: int = 1


class TargetInputs(BaseModel):
    job_title: str = ""
    company: str = ""
    industry: str = ""
    seniority: str = "mid-level"
    job_description: str = ""
    requirements: list[Requirement] = []
    evidence_items: list[EvidenceItem] = []
    ats_keywords: AtsKeywords = Field(default_factory=AtsKeywords)
    approved_keywords: list[str] = []
    suppressed_keywords: list[str] = []  # never written into a rewrite
    sections: list[SectionSpec] = []
    one_to_one_allocation: bool = False


class FinalSection(BaseModel):
    section_name: str
    strategy: VariantStrategy
    content: str
    quality: Optional[QualityScore] = None
    validation: Optional[ValidationRecommendation] = None


class FinalDocument(BaseModel):
    job_title: str = ""
    company: str = ""
    sections: list[FinalSection] = []
    coverage_percent: Optional[int] = None
    average_quality: Optional[int] = None
    unresolved_sections: list[str] = []
    finalized_at: datetime = Field(default_factory=_utcnow)


# ── State machine outcomes ───────────────────────────────


class StepOutcome(OperationResult):
    step: BuilderStep
    version_id: Optional[str] = None
    previous_version_id: Optional[str] = None  # re-select this to undo a restore


class RewriteOutcome(OperationResult):
    result: Optional[RewriteResult] = None
    validation_request_id: Optional[int] = None  # None when validation was skipped


# ── Audit Trail ──────────────────────────────────────────


class AuditEntry(BaseModel):
    timestamp: datetime = Field(default_factory=_utcnow)
    agent: str
    action: str
    details: str = ""
    state_version: int = 0
