"""
Grounding rules — deterministic checks of a rewrite against its evidence.

Every issue carries a span copied verbatim out of the rewritten text so the
caller can highlight it.  The reference corpus for a rewrite is the original
section text, the evidence claims (text and quotes) and any allowed terms
such as the target job's ATS keywords.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Sequence

from resume_automation.models.enums import Severity, ValidationIssueKind
from resume_automation.models.schemas import EvidenceClaim, ValidationIssue
from resume_automation.scoring.rules_config import GroundingConfig, get_rules_store
from resume_automation.utils.text import STOP_WORDS, significant_tokens, tokenize

logger = logging.getLogger(__name__)

_CAPITALIZED_RUN = re.compile(r"[A-Z][\w&'\-]*(?:[ \t]+[A-Z][\w&'\-]*)*")
_SENTENCE_BREAK = re.compile(r"(^\s*|[.!?:;\n•\-–]\s*|\(\s*)$")
_NUMBER = re.compile(r"\$?\d[\d,]*(?:\.\d+)?(?:%|\+|[KkMmBb]\b)?")
_SENTENCE = re.compile(r"[^.!?\n]+[.!?]?")
_LEADING_WORD = re.compile(r"\S+[ \t]*")


def _reference_text(
    original: str,
    claims: Sequence[EvidenceClaim],
    allowed_terms: Iterable[str],
) -> str:
    parts = [original]
    for claim in claims:
        parts.append(claim.claim_text)
        parts.append(claim.evidence_quote)
    parts.extend(allowed_terms)
    return "\n".join(p for p in parts if p)


def _is_sentence_initial(text: str, start: int) -> bool:
    return _SENTENCE_BREAK.search(text[:start]) is not None


def _is_common_opener(word: str, config: GroundingConfig) -> bool:
    """Ordinary words that are capitalised only because they open a sentence."""
    lowered = word.lower()
    if lowered in STOP_WORDS:
        return True
    if lowered in {w.lower() for w in config.common_capitalized + config.sentence_openers}:
        return True
    if lowered in {p.lower() for p in config.inflation_phrases}:
        return True
    return len(lowered) > 4 and lowered.endswith(tuple(config.verb_suffixes))


def _preceding_word(text: str, start: int) -> str:
    words = text[:start].split()
    return words[-1].lower().strip(",;:(") if words else ""


# ── Named entities ───────────────────────────────────────


def _entity_issues(
    rewritten: str,
    reference_tokens: set[str],
    config: GroundingConfig,
) -> list[ValidationIssue]:
    common = {w.lower() for w in config.common_capitalized}
    cues = {w.lower() for w in config.organization_cues}
    issues: list[ValidationIssue] = []

    for match in _CAPITALIZED_RUN.finditer(rewritten):
        start = match.start()
        span = match.group().rstrip(".'-")
        if _is_sentence_initial(rewritten, start) and _is_common_opener(span.split()[0], config):
            head = _LEADING_WORD.match(span)
            start += head.end()
            span = span[head.end():]
            if not span:
                continue
        words = span.split()

        candidates = [
            w for w in words
            if w.lower() not in STOP_WORDS and w.lower() not in common
        ]
        unsupported = [
            w for w in candidates
            if any(tok not in reference_tokens for tok in tokenize(w) if len(tok) > 1)
        ]
        if not unsupported:
            continue

        is_acronym = (
            len(words) == 1
            and words[0].isupper()
            and len(words[0]) <= config.acronym_max_length
        )
        names_employer = _preceding_word(rewritten, start) in cues
        if is_acronym and not names_employer:
            issues.append(ValidationIssue(
                kind=ValidationIssueKind.UNSUPPORTED_CLAIM,
                severity=Severity.WARNING,
                problematic_text=span,
                suggestion=f"Confirm '{span}' appears in your experience or remove it.",
                description=f"'{span}' does not appear in the original text or evidence.",
            ))
        else:
            issues.append(ValidationIssue(
                kind=ValidationIssueKind.HALLUCINATION,
                severity=Severity.CRITICAL,
                problematic_text=span,
                suggestion=f"Remove '{span}' or add evidence that supports it.",
                description=f"Named entity '{span}' is not present in any evidence claim.",
            ))
    return issues


# ── Metrics ──────────────────────────────────────────────


def _parse_number(token: str) -> tuple[str, float]:
    unit = "%" if token.endswith("%") else "$" if token.startswith("$") else ""
    suffix = token[-1].lower() if token[-1].lower() in "kmb" else ""
    digits = token.strip("$%+").rstrip("KkMmBb").replace(",", "")
    value = float(digits) if digits else 0.0
    value *= {"k": 1e3, "m": 1e6, "b": 1e9}.get(suffix, 1)
    return unit, value


def _metric_issues(rewritten: str, reference: str) -> list[ValidationIssue]:
    reference_numbers = [_parse_number(m.group()) for m in _NUMBER.finditer(reference)]
    known = set(reference_numbers)
    issues: list[ValidationIssue] = []
    seen: set[str] = set()

    for match in _NUMBER.finditer(rewritten):
        token = match.group()
        parsed = _parse_number(token)
        if parsed in known or token in seen:
            continue
        seen.add(token)
        unit, value = parsed
        inflated = [v for u, v in reference_numbers if u == unit and v < value]
        if inflated:
            issues.append(ValidationIssue(
                kind=ValidationIssueKind.EXAGGERATION,
                severity=Severity.WARNING,
                problematic_text=token,
                suggestion="Use the figure stated in your evidence.",
                description=f"'{token}' is larger than the figure in the evidence.",
            ))
        else:
            issues.append(ValidationIssue(
                kind=ValidationIssueKind.UNSUPPORTED_CLAIM,
                severity=Severity.WARNING,
                problematic_text=token,
                suggestion="Remove the number or add evidence that states it.",
                description=f"Metric '{token}' is not supported by any evidence claim.",
            ))
    return issues


# ── Inflated language ────────────────────────────────────


def _inflation_issues(rewritten: str, original: str, config: GroundingConfig) -> list[ValidationIssue]:
    lowered = rewritten.lower()
    original_lowered = original.lower()
    issues: list[ValidationIssue] = []
    for phrase in config.inflation_phrases:
        needle = phrase.lower()
        idx = lowered.find(needle)
        if idx < 0 or needle in original_lowered:
            continue
        issues.append(ValidationIssue(
            kind=ValidationIssueKind.EXAGGERATION,
            severity=Severity.WARNING,
            problematic_text=rewritten[idx: idx + len(needle)],
            suggestion="Replace with a concrete, evidenced outcome.",
            description=f"'{phrase}' overstates the evidence.",
        ))
    return issues


# ── Low-confidence evidence ──────────────────────────────


def best_matching_sentence(text: str, target: str) -> str:
    """The sentence of *text* sharing most significant tokens with *target*."""
    target_tokens = significant_tokens(target)
    best, best_overlap = "", 0
    for match in _SENTENCE.finditer(text):
        sentence = match.group().strip()
        overlap = len(significant_tokens(sentence) & target_tokens)
        if overlap > best_overlap:
            best, best_overlap = sentence, overlap
    return best


def _low_confidence_issues(
    rewritten: str,
    claims: Sequence[EvidenceClaim],
    config: GroundingConfig,
) -> list[ValidationIssue]:
    rewritten_tokens = significant_tokens(rewritten)
    issues: list[ValidationIssue] = []
    for claim in claims:
        if claim.confidence >= config.low_confidence_threshold:
            continue
        claim_tokens = significant_tokens(claim.claim_text)
        if not claim_tokens:
            continue
        if len(claim_tokens & rewritten_tokens) / len(claim_tokens) < 0.5:
            continue
        span = best_matching_sentence(rewritten, claim.claim_text)
        issues.append(ValidationIssue(
            kind=ValidationIssueKind.MISSING_EVIDENCE,
            severity=Severity.INFO,
            problematic_text=span,
            suggestion="Add supporting detail or soften the wording.",
            description=(
                f"Relies on a low-confidence claim ({claim.confidence:.2f}): "
                f"{claim.claim_text}"
            ),
        ))
    return issues


# ── Public API ───────────────────────────────────────────


def resolve_span(rewritten: str, span: str) -> str:
    """Map a reported span onto the verbatim text of the rewrite ('' if absent)."""
    span = (span or "").strip().strip('"')
    if not span:
        return ""
    if span in rewritten:
        return span
    idx = rewritten.lower().find(span.lower())
    if idx >= 0:
        return rewritten[idx: idx + len(span)]
    return best_matching_sentence(rewritten, span)


def check_grounding(
    original: str,
    rewritten: str,
    claims: Sequence[EvidenceClaim],
    *,
    allowed_terms: Iterable[str] = (),
    config: Optional[GroundingConfig] = None,
) -> list[ValidationIssue]:
    """Run every deterministic grounding check on *rewritten*."""
    config = config or get_rules_store().get_grounding_config()
    reference = _reference_text(original, claims, allowed_terms)
    reference_tokens = set(tokenize(reference))

    issues = (
        _entity_issues(rewritten, reference_tokens, config)
        + _metric_issues(rewritten, reference)
        + _inflation_issues(rewritten, original, config)
        + _low_confidence_issues(rewritten, claims, config)
    )
    logger.debug(f"[GROUNDING] {len(issues)} deterministic issues")
    return issues
