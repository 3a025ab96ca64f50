"""Health check endpoints."""

from __future__ import annotations

import logging
from fastapi import APIRouter

from talentquiz.core.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()

_PROVIDER_KEYS = {
    "GROQ": "GROQ_API_KEY",
    "GOOGLE": "GOOGLE_API_KEY",
}


@router.get("/health")
async def health_check():
    """Report configuration readiness of the LLM provider.

    Remote providers cannot be probed without spending a call, so a
    configured API key counts as ``ok``; Ollama is assumed reachable.
    """
    key_name = _PROVIDER_KEYS.get(settings.LLM_PROVIDER)
    llm_status = "ok" if key_name is None or getattr(settings, key_name) else "warning"
    if llm_status != "ok":
        logger.warning(f"Health check: {key_name} is not configured")

    return {
        "overall": "healthy" if llm_status == "ok" else "degraded",
        "llm": llm_status,
        "provider": settings.LLM_PROVIDER,
        "locale": settings.CONTENT_LOCALE,
    }


@router.get("/health/simple")
async def simple_health_check():
    """Simple health check - just returns 200 OK."""
    return {"status": "ok"}
