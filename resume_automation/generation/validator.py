"""
Rewrite Validator — checks a rewrite against the literal evidence claims.

Two passes are merged:
  1. deterministic grounding rules (entities, metrics, inflated language)
  2. a constrained model call that lists offending spans verbatim

The recommendation is always recomputed from issue severities.  When the
model call fails or its verdict cannot be parsed the result is `revise`
with an explicit warning; it is never upgraded to `approve`.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence

from resume_automation.config import Settings, get_settings
from resume_automation.exceptions import GenerationFailure, ValidationInconclusive
from resume_automation.models.enums import Severity, ValidationIssueKind
from resume_automation.models.schemas import (
    EvidenceClaim,
    GenerationRequest,
    ValidationIssue,
    ValidationResult,
)
from resume_automation.scoring.grounding_rules import check_grounding, resolve_span
from resume_automation.scoring.rules_config import GroundingConfig, get_rules_store
from resume_automation.services.llm_service import (
    GenerationCapability,
    get_generation_service,
    parse_json_object,
)

logger = logging.getLogger(__name__)

_PROMPT_PATH = Path(__file__).resolve().parent.parent / "prompts" / "validate_rewrite_prompt.txt"


def merge_issues(*groups: Iterable[ValidationIssue]) -> list[ValidationIssue]:
    """Concatenate issue lists, dropping repeats of the same kind and span."""
    merged: list[ValidationIssue] = []
    seen: set[tuple[str, str]] = set()
    for group in groups:
        for issue in group:
            key = (issue.kind.value, issue.problematic_text.strip().lower())
            if issue.problematic_text and key in seen:
                continue
            seen.add(key)
            merged.append(issue)
    return merged


def normalise_confidence(value: object) -> float:
    """Confidence on a 0-1 scale.  Values above 1 are read as percentages."""
    score = float(value)
    if score > 1.0:
        score /= 100.0
    return min(max(score, 0.0), 1.0)


def inconclusive_issue(reason: str) -> ValidationIssue:
    return ValidationIssue(
        kind=ValidationIssueKind.UNSUPPORTED_CLAIM,
        severity=Severity.WARNING,
        problematic_text="",
        suggestion="Review this rewrite against your evidence before accepting it.",
        description=f"Automatic validation was inconclusive: {reason}",
    )


class RewriteValidator:
    def __init__(
        self,
        service: Optional[GenerationCapability] = None,
        settings: Optional[Settings] = None,
        grounding: Optional[GroundingConfig] = None,
    ):
        self.service = service or get_generation_service()
        self.settings = settings or get_settings()
        self.grounding = grounding or get_rules_store().get_grounding_config()

    def build_request(
        self,
        original: str,
        rewritten: str,
        claims: Sequence[EvidenceClaim],
        section_name: str,
    ) -> GenerationRequest:
        evidence = json.dumps(
            [
                {"claim": c.claim_text, "quote": c.evidence_quote, "confidence": c.confidence}
                for c in claims
            ],
            indent=2,
        )
        prompt = (
            _PROMPT_PATH.read_text(encoding="utf-8")
            .replace("{section_name}", section_name)
            .replace("{original_text}", original)
            .replace("{rewritten_text}", rewritten)
            .replace("{evidence}", evidence)
        )
        return GenerationRequest(
            prompt=prompt,
            temperature=self.settings.validation_temperature,
            max_output_tokens=self.settings.validation_max_output_tokens,
        )

    async def _model_verdict(
        self,
        original: str,
        rewritten: str,
        claims: Sequence[EvidenceClaim],
        section_name: str,
    ) -> tuple[list[ValidationIssue], float, str]:
        request = self.build_request(original, rewritten, claims, section_name)
        try:
            response = await self.service.generate(request)
        except GenerationFailure as exc:
            raise ValidationInconclusive(f"validation call failed: {exc.message}") from exc

        try:
            data = parse_json_object(response.text)
        except ValueError as exc:
            raise ValidationInconclusive(f"unparseable verdict: {exc}") from exc

        raw_issues = data.get("issues", [])
        if not isinstance(raw_issues, list):
            raise ValidationInconclusive("verdict has no issue list")
        try:
            confidence = normalise_confidence(data.get("confidence_score"))
        except (TypeError, ValueError) as exc:
            raise ValidationInconclusive("verdict has no confidence score") from exc

        issues: list[ValidationIssue] = []
        for raw in raw_issues:
            if not isinstance(raw, dict):
                continue
            try:
                kind = ValidationIssueKind(str(raw.get("type", "")).lower())
                severity = Severity(str(raw.get("severity", "")).lower())
            except ValueError:
                logger.debug(f"[VALIDATE] Skipping malformed issue: {raw}")
                continue
            issues.append(ValidationIssue(
                kind=kind,
                severity=severity,
                problematic_text=resolve_span(rewritten, str(raw.get("problematic_text") or "")),
                suggestion=str(raw.get("suggestion") or ""),
                description=str(raw.get("description") or ""),
            ))
        return issues, confidence, str(data.get("summary") or "")

    async def validate(
        self,
        original: str,
        rewritten: str,
        evidence_claims: Sequence[EvidenceClaim],
        section_name: str,
        *,
        allowed_terms: Iterable[str] = (),
    ) -> ValidationResult:
        if rewritten.strip() == original.strip():
            return ValidationResult.from_issues([], confidence=1.0, summary="No changes to validate")

        deterministic = check_grounding(
            original,
            rewritten,
            evidence_claims,
            allowed_terms=list(allowed_terms),
            config=self.grounding,
        )

        try:
            model_issues, confidence, summary = await self._model_verdict(
                original, rewritten, evidence_claims, section_name
            )
        except ValidationInconclusive as exc:
            logger.warning(f"[VALIDATE] '{section_name}' inconclusive: {exc.message}")
            issues = merge_issues(deterministic, [inconclusive_issue(exc.message)])
            return ValidationResult.from_issues(
                issues, confidence=0.0, summary="Validation was inconclusive"
            )

        result = ValidationResult.from_issues(
            merge_issues(deterministic, model_issues), confidence=confidence, summary=summary
        )
        logger.info(
            f"[VALIDATE] '{section_name}' → {result.recommendation.value} "
            f"({len(result.issues)} issues, confidence={result.confidence:.2f})"
        )
        return result
