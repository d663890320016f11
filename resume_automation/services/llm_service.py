"""
LLM Service — the generation capability behind every prompt.

    GenerationCapability     → protocol: async generate(request) -> response
    GroqGenerationService    → default implementation on langchain-groq ChatGroq
    get_llm()                → configured ChatGroq singleton
    get_generation_service() → process-wide GenerationCapability
    parse_json_object()      → parse the JSON object in a model reply

Any transport error, timeout or empty completion becomes a
GenerationFailure carrying the HTTP-style status when one is known.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from typing import Any, Optional, Protocol

from resume_automation.config import get_settings
from resume_automation.exceptions import GenerationFailure
from resume_automation.models.schemas import GenerationRequest, GenerationResponse

logger = logging.getLogger(__name__)

_llm_instance = None


class GenerationCapability(Protocol):
    async def generate(self, request: GenerationRequest) -> GenerationResponse: ...


def get_llm():
    """
    Return a configured Groq LLM client (singleton).
    Uses langchain-groq's ChatGroq.
    """
    global _llm_instance
    if _llm_instance is not None:
        return _llm_instance

    settings = get_settings()

    if not settings.groq_api_key:
        raise GenerationFailure("GROQ_API_KEY is not set in environment / .env file")

    from langchain_groq import ChatGroq

    _llm_instance = ChatGroq(
        api_key=settings.groq_api_key,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
    )
    logger.info(f"Initialized Groq LLM: {settings.llm_model}")
    return _llm_instance


class GroqGenerationService:
    """GenerationCapability backed by ChatGroq."""

    def __init__(self, llm: Any = None, timeout_seconds: Optional[float] = None):
        self._llm = llm
        self.timeout_seconds = timeout_seconds or get_settings().llm_timeout_seconds

    @property
    def llm(self):
        if self._llm is None:
            self._llm = get_llm()
        return self._llm

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        logger.debug(
            f"[LLM] Prompt length: {len(request.prompt)} chars | "
            f"temperature={request.temperature} max_tokens={request.max_output_tokens}"
        )
        bound = self.llm.bind(
            temperature=request.temperature,
            max_tokens=request.max_output_tokens,
        )

        t0 = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                bound.ainvoke(request.prompt), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise GenerationFailure(
                f"generation timed out after {self.timeout_seconds:.0f}s", status_code=504
            ) from exc
        except GenerationFailure:
            raise
        except Exception as exc:
            # Groq SDK errors carry status_code; anything else has none
            raise GenerationFailure(
                f"generation call failed: {exc}",
                status_code=getattr(exc, "status_code", None),
            ) from exc
        elapsed = time.perf_counter() - t0

        content = response.content if isinstance(response.content, str) else ""
        meta = getattr(response, "response_metadata", {}) or {}
        logger.info(
            f"[LLM] Response received in {elapsed:.2f}s | "
            f"Response length: {len(content)} chars | "
            f"finish_reason={meta.get('finish_reason', 'unknown')}"
        )
        if not content.strip():
            raise GenerationFailure("generation returned empty text")
        return GenerationResponse(text=content)


_service_instance: Optional[GenerationCapability] = None


def get_generation_service() -> GenerationCapability:
    global _service_instance
    if _service_instance is None:
        _service_instance = GroqGenerationService()
    return _service_instance


def set_generation_service(service: Optional[GenerationCapability]) -> None:
    """Install a different capability (tests, alternative providers)."""
    global _service_instance
    _service_instance = service


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Parse a model reply into a JSON object.
    Raises ValueError when no object can be recovered.
    """
    # Strip markdown fencing
    cleaned = text.strip()
    cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned)
    cleaned = re.sub(r"\s*```$", "", cleaned)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        # Fallback: first { ... } block
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            raise ValueError("no JSON object in response")
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError as exc:
            raise ValueError(f"unparseable JSON in response: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError("response JSON is not an object")
    return data
