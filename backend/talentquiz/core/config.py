"""
Centralized application configuration.

Uses pydantic BaseSettings for automatic env-var loading and validation.
Import the singleton ``settings`` instance throughout the app.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

_DEFAULT_FALLBACK_MODELS = [
    "llama-3.3-70b-versatile",
    "llama-3.1-8b-instant",
    "gemma2-9b-it",
]


class Settings(BaseSettings):
    """Application settings, validated from environment variables."""

    # ── Environment ────────────────────────────────────────
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = False
    LOG_DIR: str = "logs"

    # ── CORS ──────────────────────────────────────────────
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v):
        if isinstance(v, str):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v

    # ── LLM ───────────────────────────────────────────────
    LLM_PROVIDER: str = "GROQ"  # GROQ, GOOGLE, OLLAMA
    GROQ_API_KEY: str = ""
    GOOGLE_API_KEY: str = ""
    OLLAMA_BASE_URL: str = "http://localhost:11434"

    # ── Per-task models ──────────────────────────────────
    QUIZ_GENERATION_MODEL: str = "llama-3.3-70b-versatile"
    QUESTION_GENERATION_MODEL: str = "llama-3.1-8b-instant"
    EVALUATION_MODEL: str = "deepseek-r1-distill-llama-70b"
    OVERALL_EVALUATION_MODEL: str = "llama-3.3-70b-versatile"
    SIMPLE_TASK_MODEL: str = "llama-3.1-8b-instant"

    # ── LLM Generation Control ───────────────────────────
    LLM_TEMPERATURE_GENERATION: float = 0.7
    LLM_TEMPERATURE_EVALUATION: float = 0.2
    LLM_MAX_TOKENS: int = 8000
    LLM_NATIVE_STRUCTURED_OUTPUT: bool = True

    # ── Resilience ───────────────────────────────────────
    AI_MAX_RETRIES: int = 3
    AI_RETRY_DELAY_SECONDS: float = 1.0
    AI_TIMEOUT_SECONDS: float = 60.0
    AI_FALLBACK_MODELS: List[str] = list(_DEFAULT_FALLBACK_MODELS)

    @field_validator("AI_FALLBACK_MODELS", mode="before")
    @classmethod
    def _parse_fallbacks(cls, v):
        if isinstance(v, str):
            return [m.strip() for m in v.split(",") if m.strip()]
        return v

    # ── Content ──────────────────────────────────────────
    CONTENT_LOCALE: str = "it"

    @field_validator("CONTENT_LOCALE", mode="after")
    @classmethod
    def _validate_locale(cls, v: str) -> str:
        v = v.lower()
        if v not in {"it", "en"}:
            raise ValueError(f"CONTENT_LOCALE must be 'it' or 'en', got {v!r}")
        return v

    @field_validator("LLM_PROVIDER", mode="after")
    @classmethod
    def _uppercase_provider(cls, v: str) -> str:
        v = v.upper()
        valid = {"GROQ", "GOOGLE", "OLLAMA"}
        if v not in valid:
            raise ValueError(f"LLM_PROVIDER must be one of {valid}, got {v!r}")
        return v

    @model_validator(mode="after")
    def _cross_validate(self):
        """Warn when the active provider has no API key configured."""
        _log = logging.getLogger("config")
        if self.LLM_PROVIDER == "GROQ" and not self.GROQ_API_KEY:
            _log.warning("LLM_PROVIDER is GROQ but GROQ_API_KEY is empty")
        if self.LLM_PROVIDER == "GOOGLE" and not self.GOOGLE_API_KEY:
            _log.warning("LLM_PROVIDER is GOOGLE but GOOGLE_API_KEY is empty")
        return self

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
