"""Generation — dual variants, section rewrites and rewrite validation."""

from resume_automation.generation.dual_variant import DualVariantGenerator, clean_skills_format
from resume_automation.generation.rewriter import SectionRewriter
from resume_automation.generation.validator import RewriteValidator

__all__ = [
    "DualVariantGenerator",
    "RewriteValidator",
    "SectionRewriter",
    "clean_skills_format",
]
