"""Model-call error taxonomy."""

from __future__ import annotations

from typing import Optional

from google.genai import errors as genai_errors

_RATE_LIMIT_MARKERS = ("429", "quota", "resource_exhausted", "rate limit")
_FATAL_MARKERS = ("invalid", "authentication", "api key not valid", "permission_denied", "unauthenticated")


class ModelCallError(Exception):
    """Base class for failures of a single model call attempt."""


class ModelRateLimitError(ModelCallError):
    """Provider rejected the call for quota/rate reasons; the key should cool down."""


class ModelTransientError(ModelCallError):
    """Timeouts, 5xx and other failures worth retrying."""


class ModelResponseError(ModelTransientError):
    """Empty or schema-invalid response."""


class ModelFatalError(ModelCallError):
    """Credential or request errors that will not succeed on retry."""


def classify_model_error(exc: BaseException) -> ModelCallError:
    """Map provider/SDK exceptions onto the taxonomy."""

    if isinstance(exc, ModelCallError):
        return exc

    code: Optional[int] = None
    if isinstance(exc, genai_errors.APIError):
        code = getattr(exc, "code", None)

    message = str(exc)
    lowered = message.lower()

    if code == 429 or any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return ModelRateLimitError(message)
    if code in (400, 401, 403) or any(marker in lowered for marker in _FATAL_MARKERS):
        return ModelFatalError(message)
    return ModelTransientError(message or exc.__class__.__name__)
