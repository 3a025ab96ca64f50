"""Prompt-injection filtering for caller-supplied free text.

Known injection phrases are replaced with a visible ``[filtered]`` marker
rather than deleted, so a tampered field stays recognisable in the prompt.
"""

from __future__ import annotations

import re
from typing import Any, List, Pattern

FILTERED_MARKER = "[filtered]"
MAX_INPUT_LENGTH = 2000

# Order matters: role prefixes are replaced before the <script ...> pattern,
# whose [^>]* body may span an earlier replacement.
_DANGEROUS_PATTERNS: List[Pattern[str]] = [
    re.compile(r"ignore\s+previous\s+instructions", re.IGNORECASE),
    re.compile(r"forget\s+everything\s+above", re.IGNORECASE),
    re.compile(r"you\s+are\s+now", re.IGNORECASE),
    re.compile(r"new\s+instructions", re.IGNORECASE),
    re.compile(r"system\s*:", re.IGNORECASE),
    re.compile(r"assistant\s*:", re.IGNORECASE),
    re.compile(r"user\s*:", re.IGNORECASE),
    re.compile(r"<\s*script[^>]*>", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"data\s*:", re.IGNORECASE),
]


def sanitize_input(text: Any, max_length: int = MAX_INPUT_LENGTH) -> str:
    """Neutralise injection patterns and bound the length of *text*.

    Never raises: non-string or empty input yields ``""``.
    """
    if not text or not isinstance(text, str):
        return ""

    sanitized = text
    for pattern in _DANGEROUS_PATTERNS:
        sanitized = pattern.sub(FILTERED_MARKER, sanitized)

    return sanitized[:max_length]


def sanitize_list(values: Any, max_length: int = MAX_INPUT_LENGTH) -> List[str]:
    """Sanitize every entry of a list of strings, dropping the empty ones."""
    if not values:
        return []
    cleaned = (sanitize_input(v, max_length) for v in values)
    return [v for v in cleaned if v.strip()]
