"""
Section Rewriter — evidence-constrained rewrites of one resume section.

Each ActionSource maps to a tone preset.  The model answers with JSON
({rewritten_text, keywords_added, evidence_used, questions}); anything else
is a GenerationFailure.  Manual edits never reach the model.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from resume_automation.config import Settings, get_settings
from resume_automation.exceptions import GenerationFailure, InputError
from resume_automation.models.enums import ActionSource
from resume_automation.models.schemas import GenerationRequest, RewriteRequest, RewriteResult
from resume_automation.services.llm_service import (
    GenerationCapability,
    get_generation_service,
    parse_json_object,
)
from resume_automation.utils.text import contains_phrase

logger = logging.getLogger(__name__)

_PROMPT_PATH = Path(__file__).resolve().parent.parent / "prompts" / "rewrite_section_prompt.txt"

TONE_PRESETS: dict[ActionSource, str] = {
    ActionSource.TIGHTEN: (
        "Make the writing more concise. Remove filler words, redundant phrases and "
        "needless qualifiers while keeping every substantive point."
    ),
    ActionSource.EXECUTIVE: (
        "Raise the language to executive level. Use stronger action verbs and frame "
        "achievements as business outcomes, keeping the same facts."
    ),
    ActionSource.SPECIFIC: (
        "Replace vague language with concrete details, numbers or outcomes from the "
        "evidence. Where the details are missing, ask for them instead of inventing them."
    ),
    ActionSource.REDUCE_BUZZWORDS: (
        "Remove overused corporate buzzwords and jargon in favour of clear, direct "
        "language. Keep technical terms that carry real meaning."
    ),
    ActionSource.MATCH_JD: (
        "Align the section with the job requirements. Work in relevant terms naturally "
        "where the evidence supports them."
    ),
    ActionSource.CONSERVATIVE: (
        "Make minimal changes. Fix only grammar, awkward phrasing or unclear statements "
        "and preserve the candidate's voice and structure."
    ),
    ActionSource.TRY_ANOTHER: (
        "Write an alternative version with a different approach. Vary structure and "
        "emphasis while keeping the same facts."
    ),
    ActionSource.MICRO_EDIT: (
        "Make a targeted edit to the selected text following the instruction, and keep "
        "the rest of the section unchanged."
    ),
    ActionSource.INITIAL: "Create the first polished version from the current content.",
}

_EXPLORATORY_TEMPERATURE = 0.7
_DEFAULT_TEMPERATURE = 0.3


def temperature_for(action_source: ActionSource) -> float:
    if action_source == ActionSource.TRY_ANOTHER:
        return _EXPLORATORY_TEMPERATURE
    return _DEFAULT_TEMPERATURE


def _as_str_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


class SectionRewriter:
    def __init__(
        self,
        service: Optional[GenerationCapability] = None,
        settings: Optional[Settings] = None,
    ):
        self.service = service or get_generation_service()
        self.settings = settings or get_settings()

    def build_request(self, request: RewriteRequest) -> GenerationRequest:
        evidence = json.dumps(
            [
                {"claim": c.claim_text, "quote": c.evidence_quote, "confidence": c.confidence}
                for c in request.evidence_claims
            ],
            indent=2,
        )
        selected = ""
        if request.action_source == ActionSource.MICRO_EDIT:
            selected = f'\nSELECTED TEXT TO EDIT:\n"{request.selected_text}"\n'
        instruction = f"\nUSER INSTRUCTION: {request.instruction}\n" if request.instruction else ""

        prompt = (
            _PROMPT_PATH.read_text(encoding="utf-8")
            .replace("{tone_instruction}", TONE_PRESETS[request.action_source])
            .replace("{instruction}", instruction)
            .replace("{section_name}", request.section_name)
            .replace("{section_text}", request.section_text)
            .replace("{selected_text}", selected)
            .replace("{evidence}", evidence)
            .replace("{requirements}", json.dumps(request.requirements))
            .replace("{approved_keywords}", json.dumps(request.approved_keywords))
            .replace("{suppressed_keywords}", json.dumps(request.suppressed_keywords))
        )
        return GenerationRequest(
            prompt=prompt,
            temperature=temperature_for(request.action_source),
            max_output_tokens=self.settings.rewrite_max_output_tokens,
        )

    async def rewrite(self, request: RewriteRequest, version_number: int = 0) -> RewriteResult:
        if not request.section_text.strip():
            raise InputError("section text is blank", field="section_text")

        if request.action_source == ActionSource.MANUAL:
            raise InputError("manual edits are applied directly, not generated", field="action_source")

        if request.action_source == ActionSource.MICRO_EDIT:
            if not request.selected_text.strip():
                raise InputError("micro edits need the selected text", field="selected_text")
            if request.selected_text not in request.section_text:
                raise InputError("selected text is not part of the section", field="selected_text")

        logger.info(
            f"[REWRITE] '{request.section_name}' via {request.action_source.value} "
            f"({len(request.evidence_claims)} claims)"
        )
        response = await self.service.generate(self.build_request(request))

        try:
            data = parse_json_object(response.text)
        except ValueError as exc:
            raise GenerationFailure(f"rewrite response was not JSON: {exc}", variant="rewrite") from exc

        text = str(data.get("rewritten_text") or "").strip()
        if not text:
            raise GenerationFailure("rewrite response has no rewritten_text", variant="rewrite")

        leaked = [
            kw for kw in request.suppressed_keywords
            if contains_phrase(text, kw) and not contains_phrase(request.section_text, kw)
        ]
        if leaked:
            raise GenerationFailure(
                f"rewrite used suppressed keywords: {', '.join(leaked)}", variant="rewrite"
            )

        suppressed = {kw.lower() for kw in request.suppressed_keywords}
        keywords_added = [
            kw for kw in _as_str_list(data.get("keywords_added")) if kw.lower() not in suppressed
        ]

        result = RewriteResult(
            text=text,
            keywords_added=keywords_added,
            evidence_used=_as_str_list(data.get("evidence_used")),
            open_questions=_as_str_list(data.get("questions")),
            version_number=version_number,
            action_source=request.action_source,
        )
        logger.info(
            f"[REWRITE] '{request.section_name}' v{version_number} ready "
            f"(+{len(result.keywords_added)} keywords, {len(result.open_questions)} questions)"
        )
        return result
