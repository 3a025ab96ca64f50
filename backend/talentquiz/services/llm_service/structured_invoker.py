"""Structured LLM completion with robust JSON parsing.

The generation executor talks to the model through a single capability::

    await completer.complete(model, system_prompt, user_prompt, schema, temperature)

which returns the parsed object (a plain dict) or ``None`` when the model
produced nothing usable.  :class:`LangChainStructuredCompleter` implements it
on top of the provider factory in :mod:`llm`, either with native
schema-constrained decoding (``with_structured_output``) or by parsing the
raw completion text with :func:`parse_json_robust`.

Provider exceptions propagate unchanged; the executor classifies them.
Parse and schema failures surface as ``INVALID_RESPONSE``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Type

import json_repair
from langchain_core.exceptions import OutputParserException
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, ValidationError

from talentquiz.core.config import settings
from talentquiz.services.llm_service.llm import get_llm_structured
from talentquiz.services.quiz.errors import AIErrorCode, AIGenerationError

logger = logging.getLogger(__name__)

# ── JSON Extraction Patterns ──────────────────────────────────

_CODE_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?|```\s*", re.DOTALL)
_THINK_TAG_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_PREAMBLE_RE = re.compile(r"^(Here's|Here is|The JSON|Output:|Response:)\s*:?\s*", re.IGNORECASE)


# ── JSON Auto-Repair ──────────────────────────────────────────


def _clean_json_text(text: str) -> str:
    """Remove reasoning tags, markdown fences and a leading preamble."""
    text = _THINK_TAG_RE.sub("", text).strip()
    text = _CODE_FENCE_RE.sub("", text).strip()
    return _PREAMBLE_RE.sub("", text).strip()


def _extract_json_block(text: str) -> str:
    """Extract the outermost {...} or [...] block, whichever opens first."""
    start_brace = text.find("{")
    start_bracket = text.find("[")

    if start_brace == -1 and start_bracket == -1:
        raise ValueError("No JSON block found")

    if start_bracket == -1 or (start_brace != -1 and start_brace < start_bracket):
        start, end = start_brace, text.rfind("}")
    else:
        start, end = start_bracket, text.rfind("]")

    if end <= start:
        raise ValueError("Could not extract complete JSON block")
    return text[start:end + 1]


def _repair_json(text: str) -> str:
    """Apply common JSON repair heuristics.

    - Single-quoted keys and values become double-quoted
    - Missing commas between adjacent string lines are inserted
    - Trailing commas before closing brackets are removed
    """
    text = re.sub(r"'([^']*)'(?=\s*[:,\}\]])", r'"\1"', text)
    text = re.sub(r'"\s*\n\s*"', '",\n"', text)
    return re.sub(r",(\s*[}\]])", r"\1", text)


def parse_json_robust(text: str) -> Any:
    """Extract and parse JSON from LLM output with aggressive repair.

    Attempts, in order: direct parse, parse after cleaning, parse of the
    extracted block, parse after repair heuristics, ``json_repair``.

    Raises:
        ValueError: If JSON cannot be extracted after all attempts
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    cleaned = _clean_json_text(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    candidate = cleaned
    try:
        candidate = _extract_json_block(cleaned)
        return json.loads(candidate)
    except (ValueError, json.JSONDecodeError):
        pass

    try:
        return json.loads(_repair_json(candidate))
    except json.JSONDecodeError:
        pass

    repaired = json_repair.loads(candidate)
    # json_repair returns "" when nothing resembling JSON was found
    if repaired in ("", None):
        logger.error("All JSON parsing attempts failed")
        raise ValueError(
            f"Cannot extract valid JSON from LLM response. First 500 chars: {text[:500]}"
        )
    return repaired


def _message_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        # Gemini may return a list of content parts
        content = "".join(
            part.get("text", "") if isinstance(part, dict) else str(part) for part in content
        )
    return str(content or "").strip()


# ── Completion capability ─────────────────────────────────────


class StructuredCompleter(Protocol):
    async def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        schema: Type[BaseModel],
        temperature: float,
    ) -> Optional[Dict[str, Any]]:
        ...


class LangChainStructuredCompleter:
    """Schema-constrained completion through LangChain chat models."""

    def __init__(
        self,
        *,
        native: Optional[bool] = None,
        provider: Optional[str] = None,
        llm_factory: Callable[..., Any] = get_llm_structured,
    ):
        self.native = settings.LLM_NATIVE_STRUCTURED_OUTPUT if native is None else native
        self.provider = provider
        self._llm_factory = llm_factory

    async def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        schema: Type[BaseModel],
        temperature: float,
    ) -> Optional[Dict[str, Any]]:
        llm = self._llm_factory(model, temperature=temperature, provider=self.provider)
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]

        if self.native:
            try:
                parsed = await llm.with_structured_output(schema).ainvoke(messages)
            except (OutputParserException, ValidationError) as exc:
                raise _invalid_output(model, schema, exc) from exc
        else:
            response = await llm.ainvoke(messages)
            try:
                parsed = self._validate_text(_message_text(response), schema)
            except ValueError as exc:
                raise _invalid_output(model, schema, exc) from exc

        if parsed is None:
            return None
        if isinstance(parsed, BaseModel):
            return parsed.model_dump(by_alias=True, exclude_none=True)
        return parsed

    @staticmethod
    def _validate_text(text: str, schema: Type[BaseModel]) -> Optional[BaseModel]:
        if not text:
            return None
        data = parse_json_robust(text)
        # Some models emit the bare payload instead of the wrapper
        if isinstance(data, list) and "questions" in schema.model_fields:
            data = {"questions": data}
        elif (
            isinstance(data, dict)
            and "question" in schema.model_fields
            and not isinstance(data.get("question"), Mapping)
        ):
            data = {"question": data}
        return schema.model_validate(data)


def _invalid_output(model: str, schema: Type[BaseModel], exc: Exception) -> AIGenerationError:
    logger.warning(
        f"Structured output from {model} failed validation: "
        f"{type(exc).__name__}: {str(exc)[:200]}"
    )
    return AIGenerationError(
        "AI model returned output that does not match the schema",
        AIErrorCode.INVALID_RESPONSE,
        {"model": model, "schema": schema.__name__, "original_error": str(exc)[:500]},
    )
