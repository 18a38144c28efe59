"""Log redaction for credentials and repository text bodies.

Enrichment logs carry model keys, GitHub tokens and whole README or prompt
bodies in their `extra=` payloads. Keys are masked and long text bodies are
replaced by their size before a record reaches a handler.
"""

from __future__ import annotations

import re
from typing import Any, Optional

REDACTED = "[redacted]"

# Field names whose values are never logged.
CREDENTIAL_FIELDS = frozenset({"authorization", "token", "api_key", "apikey", "key", "keys", "secret", "password"})
CREDENTIAL_MARKERS = ("token", "secret", "password", "api_key")

# Field names holding repository or model text; logged as a length only.
TEXT_BODY_MARKERS = (
    "readme",
    "contributing",
    "code_of_conduct",
    "prompt",
    "raw",
    "body",
    "response",
    "issue_samples",
)

_SECRET_PATTERNS = (
    # Google API keys used for model calls
    (re.compile(r"AIza[0-9A-Za-z_\-]{20,}"), REDACTED),
    # GitHub classic and fine-grained tokens
    (re.compile(r"gh[pousr]_[0-9A-Za-z]{20,}"), REDACTED),
    (re.compile(r"github_pat_[0-9A-Za-z_]{20,}"), REDACTED),
    (re.compile(r"(?i)\b(bearer)\s+[^\s,;]+"), rf"\1 {REDACTED}"),
    (re.compile(r"(?i)([?&](?:key|access_token)=)[^&\s]+"), rf"\1{REDACTED}"),
    (re.compile(r"(?i)\b(token|api[_-]?key|secret)(\s*[=:]\s*)[^\s,;]+"), rf"\1\2{REDACTED}"),
)


def _is_credential_field(name: str) -> bool:
    lowered = name.lower()
    return lowered in CREDENTIAL_FIELDS or any(marker in lowered for marker in CREDENTIAL_MARKERS)


def _is_text_body_field(name: Optional[str]) -> bool:
    if not name:
        return False
    lowered = name.lower()
    return any(marker in lowered for marker in TEXT_BODY_MARKERS)


def scrub_secrets(text: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def describe_text_body(text: str) -> str:
    if not text.strip():
        return ""
    return f"<{len(text)} chars omitted>"


def sanitize_for_log(value: Any, *, key: Optional[str] = None) -> Any:
    """Copy of `value` with credentials removed and text bodies summarised.

    Mappings are walked field by field so nested `extra=` payloads (stats
    dicts, failed-record reports) are covered too.
    """

    if isinstance(value, dict):
        cleaned: dict[str, Any] = {}
        for raw_name, item in value.items():
            name = str(raw_name)
            cleaned[name] = REDACTED if _is_credential_field(name) else sanitize_for_log(item, key=name)
        return cleaned

    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_log(item, key=key) for item in value]

    if isinstance(value, str):
        if _is_text_body_field(key):
            return describe_text_body(value)
        return scrub_secrets(value)

    return value


def sanitize_log_extra(**fields: Any) -> dict[str, Any]:
    """`extra=` payload for logger calls."""
    return {name: sanitize_for_log(item, key=name) for name, item in fields.items()}


def mask_key(key: str) -> str:
    """Label for a model key in logs: its last four characters."""
    if not key:
        return "<none>"
    if len(key) <= 8:
        return "***"
    return f"...{key[-4:]}"
