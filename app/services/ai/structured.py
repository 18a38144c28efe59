"""Schema-conformant model calls that fail closed to None."""

from __future__ import annotations

import logging
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

from app.config.settings import settings
from app.services.ai.errors import ModelCallError
from app.services.ai.gateway import CallOptions, RetryingModelCaller
from app.services.log_sanitizer import sanitize_log_extra

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def structured_options(**overrides) -> CallOptions:
    options = CallOptions(model=settings.GEMINI_STRUCTURED_MODEL)
    for name, value in overrides.items():
        setattr(options, name, value)
    return options


class StructuredCallWrapper(RetryingModelCaller):
    """Requests native JSON output for `schema`; validation failures count as call failures."""

    async def call(
        self,
        prompt: str,
        schema: Type[SchemaT],
        options: Optional[CallOptions] = None,
        *,
        label: Optional[str] = None,
    ) -> Optional[SchemaT]:
        opts = options or structured_options()
        call_label = label or schema.__name__
        try:
            return await self._call_with_retries(
                call_label,
                opts,
                lambda key: self._transport.generate_structured(
                    key=key,
                    model=opts.model,
                    prompt=prompt,
                    schema=schema,
                    max_tokens=opts.max_tokens,
                    temperature=opts.temperature,
                ),
            )
        except ModelCallError as exc:
            logger.error(
                "Structured model call gave up",
                extra=sanitize_log_extra(call=call_label, model=opts.model, error_type=exc.__class__.__name__, error=str(exc)),
            )
            return None
