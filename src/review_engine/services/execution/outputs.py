"""Helpers for comparing program output and reading test case values."""

from __future__ import annotations

import json
import re
from typing import Any

_CPP_PATTERNS = (
    re.compile(r"#include\s+<"),
    re.compile(r"\bint\s+main\s*\("),
    re.compile(r"\busing\s+namespace\s+std\b"),
)
_PYTHON_PATTERNS = (
    re.compile(r"\bdef\s+\w+\s*\("),
    re.compile(r"\bprint\s*\("),
    re.compile(r"\bimport\s+\w+"),
)
_JAVA_PATTERN = re.compile(r"\bpublic\s+class\s+\w+")


def normalize_output(value: Any) -> str:
    """Canonical text of a program output or an expected output.

    Surrounding whitespace is ignored and JSON text is re-serialized
    compactly, so ``"[3, 2, 1]\\n"`` and ``"[3,2,1]"`` compare equal.
    """
    if value is None:
        return ""
    text = value if isinstance(value, str) else json.dumps(value)
    text = text.strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        return text
    return json.dumps(parsed, separators=(",", ":"), sort_keys=True)


def parse_array(value: Any) -> list | None:
    """Parse a JSON array from text (or pass a list through); None otherwise."""
    if isinstance(value, list):
        return value
    if not isinstance(value, str):
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        return None
    return parsed if isinstance(parsed, list) else None


def detect_language(code: str | None, default: str = "javascript") -> str:
    """Guess the language of a reference solution from its source text."""
    source = code or ""
    if any(p.search(source) for p in _CPP_PATTERNS):
        return "cpp"
    if any(p.search(source) for p in _PYTHON_PATTERNS):
        return "python"
    if _JAVA_PATTERN.search(source):
        return "java"
    return default
