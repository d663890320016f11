from enum import Enum


class RequirementPriority(str, Enum):
    REQUIRED = "required"
    PREFERRED = "preferred"
    NICE_TO_HAVE = "nice-to-have"

    @property
    def rank(self) -> int:
        """Allocation order: lower ranks claim evidence first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    RequirementPriority.REQUIRED: 0,
    RequirementPriority.PREFERRED: 1,
    RequirementPriority.NICE_TO_HAVE: 2,
}


class CoverageStatus(str, Enum):
    COVERED = "covered"
    PARTIAL = "partial"
    WEAK = "weak"
    UNCOVERED = "uncovered"


class VariantStrategy(str, Enum):
    IDEAL = "ideal"
    PERSONALIZED = "personalized"
    BLEND = "blend"


class Recommendation(str, Enum):
    IDEAL = "ideal"
    PERSONALIZED = "personalized"
    BLEND = "blend"


class ValidationIssueKind(str, Enum):
    HALLUCINATION = "hallucination"
    EXAGGERATION = "exaggeration"
    UNSUPPORTED_CLAIM = "unsupported_claim"
    MISSING_EVIDENCE = "missing_evidence"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class ValidationRecommendation(str, Enum):
    APPROVE = "approve"
    REVISE = "revise"
    REJECT = "reject"


class BuilderStep(str, Enum):
    TARGET = "target"
    ASSESSMENT = "assessment"
    BUILD = "build"
    REVIEW = "review"
    FINALIZE = "finalize"

    @property
    def position(self) -> int:
        return STEP_ORDER.index(self)


STEP_ORDER = [
    BuilderStep.TARGET,
    BuilderStep.ASSESSMENT,
    BuilderStep.BUILD,
    BuilderStep.REVIEW,
    BuilderStep.FINALIZE,
]


class ActionSource(str, Enum):
    INITIAL = "initial"
    TIGHTEN = "tighten"
    EXECUTIVE = "executive"
    SPECIFIC = "specific"
    REDUCE_BUZZWORDS = "reduce_buzzwords"
    MATCH_JD = "match_jd"
    CONSERVATIVE = "conservative"
    TRY_ANOTHER = "try_another"
    MICRO_EDIT = "micro_edit"
    MANUAL = "manual"


class ErrorKind(str, Enum):
    INPUT = "input"
    GENERATION = "generation"
    VALIDATION_INCONCLUSIVE = "validation_inconclusive"
    STORE = "store"


class AgentName(str, Enum):
    TARGET = "TARGET"
    ASSESSMENT = "ASSESSMENT"
    BUILD = "BUILD"
    REVIEW = "REVIEW"
    FINALIZE = "FINALIZE"


class PipelineStatus(str, Enum):
    RECEIVED = "RECEIVED"
    TARGET_SET = "TARGET_SET"
    ASSESSED = "ASSESSED"
    BUILT = "BUILT"
    REVIEWED = "REVIEWED"
    FINALIZED = "FINALIZED"
    NO_CONTENT = "NO_CONTENT"
    ESCALATED = "ESCALATED"
