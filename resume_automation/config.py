"""
Application configuration using Pydantic Settings.
All environment-specific values are centralized here.

Heuristic scoring constants (weights, thresholds, verb lists) are not here:
they live in scoring/rules_config.py so they can be overridden per company
from the record store.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── App ──────────────────────────────────────────────
    app_name: str = "Resume Builder Pipeline"
    debug: bool = False

    # ── LLM (generation capability) ──────────────────────
    groq_api_key: str = ""
    llm_model: str = "llama-3.3-70b-versatile"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 4096
    llm_timeout_seconds: float = 60.0

    # ── Record store ─────────────────────────────────────
    store_backend: str = "memory"  # "memory" | "mongo"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "resume_automation"
    sessions_table: str = "builder_sessions"
    rules_table: str = "rules_config"

    # ── Builder session ──────────────────────────────────
    autosave_interval_seconds: float = 30.0
    session_expiry_hours: int = 24
    version_history_limit: int = 20
    max_section_rewrites: int = 10
    max_build_retries: int = 2

    # ── Variant generation ───────────────────────────────
    ideal_temperature: float = 0.6
    personalized_temperature: float = 0.5
    blend_temperature: float = 0.6
    variant_max_output_tokens: int = 1500
    generate_blend_variant: bool = True
    validation_temperature: float = 0.1
    validation_max_output_tokens: int = 2000
    rewrite_max_output_tokens: int = 2000

    # ── Logging ──────────────────────────────────────────
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
