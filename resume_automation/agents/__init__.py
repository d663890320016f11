from .base_agent import BaseAgent
from .target_agent import TargetAgent
from .assessment_agent import AssessmentAgent
from .build_agent import BuildAgent
from .review_agent import ReviewAgent
from .finalize_agent import FinalizeAgent

__all__ = [
    "BaseAgent",
    "TargetAgent",
    "AssessmentAgent",
    "BuildAgent",
    "ReviewAgent",
    "FinalizeAgent",
]
