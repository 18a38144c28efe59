"""Helpers for preparing model input and reading model output."""

from __future__ import annotations

import json
import re
from typing import Any, Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_ANGLE_BRACKETS = re.compile(r"[<>]")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def sanitize_input(text: Optional[str]) -> str:
    """Strip control characters and angle brackets from untrusted text."""
    if not text:
        return ""
    return _ANGLE_BRACKETS.sub("", _CONTROL_CHARS.sub("", str(text))).strip()


def safe_slice(text: Optional[str], limit: int) -> str:
    """Truncate to `limit` code units without leaving half a surrogate pair."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    sliced = text[:limit]
    if sliced and 0xD800 <= ord(sliced[-1]) <= 0xDBFF:
        sliced = sliced[:-1]
    return sliced


def clean_model_text(raw: Optional[str]) -> str:
    """Remove code fences and keep the outermost JSON object if there is one."""
    if not raw:
        return ""
    text = re.sub(r"```json", "", raw, flags=re.IGNORECASE)
    text = text.replace("```", "").replace("`", "").strip()
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text


def try_parse_json(text: Optional[str]) -> Optional[Any]:
    """Parse JSON leniently; None when nothing usable is found."""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        match = _JSON_OBJECT.search(text)
        if not match:
            return None
        try:
            return json.loads(match.group(0))
        except ValueError:
            return None


def ensure_string_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]
