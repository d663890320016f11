from resume_automation.services.llm_service import (
    GenerationCapability,
    GroqGenerationService,
    get_generation_service,
    parse_json_object,
    set_generation_service,
)

__all__ = [
    "GenerationCapability",
    "GroqGenerationService",
    "get_generation_service",
    "parse_json_object",
    "set_generation_service",
]
