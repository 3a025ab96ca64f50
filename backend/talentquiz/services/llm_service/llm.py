"""LLM provider factory and task-based model selection.

Usage:
    from talentquiz.services.llm_service.llm import get_llm_structured, get_optimal_model

    model = get_optimal_model("quiz_generation")
    llm = get_llm_structured(model)
    response = await llm.ainvoke(messages)

Provider-side retries are disabled: the generation executor owns retry
and backoff.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Literal, Optional

from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_groq import ChatGroq
from langchain_ollama import ChatOllama

from talentquiz.core.config import settings

logger = logging.getLogger(__name__)

LLMTaskType = Literal[
    "quiz_generation",
    "question_generation",
    "evaluation",
    "overall_evaluation",
    "simple_task",
]

# ── Provider registry ─────────────────────────────────────────

_PROVIDERS: Dict[str, Callable[..., Any]] = {}

# ── LLM instance cache (keyed on frozen kwargs) ───────────────
_llm_cache: Dict[tuple, Any] = {}
_LLM_CACHE_MAX = 16


def _register_providers():
    """Build the provider map lazily (called once on first ``get_llm_structured``)."""
    if _PROVIDERS:
        return

    _PROVIDERS["GROQ"] = _build_groq
    _PROVIDERS["GOOGLE"] = _build_google
    _PROVIDERS["OLLAMA"] = _build_ollama


# ── Builder functions ─────────────────────────────────────────


def _build_groq(model: str, temperature: float, max_tokens: int):
    return ChatGroq(
        model=model,
        api_key=settings.GROQ_API_KEY or None,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=0,
    )


def _build_google(model: str, temperature: float, max_tokens: int):
    return ChatGoogleGenerativeAI(
        model=model,
        google_api_key=settings.GOOGLE_API_KEY or None,
        temperature=temperature,
        max_output_tokens=max_tokens,
        max_retries=0,
    )


def _build_ollama(model: str, temperature: float, max_tokens: int):
    return ChatOllama(
        model=model,
        base_url=settings.OLLAMA_BASE_URL,
        temperature=temperature,
        num_predict=max_tokens,
    )


# ── Public API ────────────────────────────────────────────────


def get_optimal_model(task: LLMTaskType, specific_model: Optional[str] = None) -> str:
    """Return the model to use for *task*, honouring an explicit override.

    Quiz generation and overall evaluation need the high-capability model,
    single questions and simple tasks the fast one, answer evaluation the
    reasoning one.
    """
    if specific_model:
        return specific_model

    task_models = {
        "quiz_generation": settings.QUIZ_GENERATION_MODEL,
        "question_generation": settings.QUESTION_GENERATION_MODEL,
        "evaluation": settings.EVALUATION_MODEL,
        "overall_evaluation": settings.OVERALL_EVALUATION_MODEL,
        "simple_task": settings.SIMPLE_TASK_MODEL,
    }
    return task_models.get(task, settings.QUIZ_GENERATION_MODEL)


def get_llm_structured(
    model: str,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    provider: Optional[str] = None,
):
    """Return a LangChain chat model for structured generation.

    Args:
        model: Provider model identifier.
        temperature: Generation temperature (default: LLM_TEMPERATURE_GENERATION).
        max_tokens: Max tokens to generate (default: LLM_MAX_TOKENS).
        provider: Ignore global config and use a specific provider.

    Returns:
        Cached chat model instance.
    """
    _register_providers()

    temp = temperature if temperature is not None else settings.LLM_TEMPERATURE_GENERATION
    tokens = max_tokens if max_tokens is not None else settings.LLM_MAX_TOKENS
    active_provider = (provider or settings.LLM_PROVIDER).upper()

    builder = _PROVIDERS.get(active_provider)
    if builder is None:
        logger.warning(f"Unknown LLM_PROVIDER '{active_provider}', falling back to GROQ")
        active_provider = "GROQ"
        builder = _PROVIDERS["GROQ"]

    cache_key = ("structured", active_provider, model, temp, tokens)
    cached = _llm_cache.get(cache_key)
    if cached is not None:
        return cached

    instance = builder(model=model, temperature=temp, max_tokens=tokens)
    if len(_llm_cache) >= _LLM_CACHE_MAX:
        _llm_cache.pop(next(iter(_llm_cache)))
    _llm_cache[cache_key] = instance
    return instance


def clear_llm_cache() -> None:
    _llm_cache.clear()
