"""Free-text model gateway with key rotation, call budget, timeout and backoff."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from app.config.settings import settings
from app.services.ai.errors import (
    ModelCallError,
    ModelFatalError,
    ModelRateLimitError,
    ModelTransientError,
    classify_model_error,
)
from app.services.ai.keys import KeyPool
from app.services.ai.text_utils import clean_model_text
from app.services.ai.transport import GeminiTransport
from app.services.log_sanitizer import mask_key, sanitize_log_extra
from app.services.scheduling.queues import CallBudgetQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class CallOptions:
    model: str = field(default_factory=lambda: settings.GEMINI_MODEL)
    max_tokens: int = 800
    temperature: float = 0.0
    retries: int = field(default_factory=lambda: settings.AI_CALL_RETRIES)
    timeout_seconds: float = field(default_factory=lambda: settings.AI_CALL_TIMEOUT_SECONDS)


class RetryingModelCaller:
    """Shared attempt loop for gateway and structured calls.

    Each attempt waits for admission on the shared call queue, picks a key,
    then races the provider call against the timeout. Rate limits cool the
    key down and back off from a long base; other transient failures back
    off from a short base; fatal errors stop immediately.
    """

    def __init__(
        self,
        *,
        key_pool: KeyPool,
        call_queue: CallBudgetQueue,
        transport: Optional[GeminiTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
        rate_limit_backoff_seconds: Optional[float] = None,
        backoff_base_seconds: Optional[float] = None,
        key_cooldown_seconds: Optional[float] = None,
    ) -> None:
        self._keys = key_pool
        self._queue = call_queue
        self._transport = transport or GeminiTransport()
        self._sleep = sleep
        self._jitter = jitter
        self._rate_limit_backoff = (
            rate_limit_backoff_seconds
            if rate_limit_backoff_seconds is not None
            else settings.AI_RATE_LIMIT_BACKOFF_SECONDS
        )
        self._backoff_base = backoff_base_seconds if backoff_base_seconds is not None else settings.AI_BACKOFF_BASE_SECONDS
        self._key_cooldown = key_cooldown_seconds if key_cooldown_seconds is not None else settings.AI_KEY_COOLDOWN_SECONDS

    def backoff_seconds(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        base = self._rate_limit_backoff if isinstance(exc, ModelRateLimitError) else self._backoff_base
        return base * (2 ** (retry_state.attempt_number - 1)) + self._jitter(0.0, 1.0)

    async def _call_with_retries(
        self,
        label: str,
        options: CallOptions,
        attempt_fn: Callable[[str], Awaitable[T]],
    ) -> T:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(0, options.retries) + 1),
            wait=self.backoff_seconds,
            retry=retry_if_exception_type((ModelRateLimitError, ModelTransientError)),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                if not len(self._keys):
                    raise ModelFatalError("No model API keys configured")
                key = ""
                try:
                    async with self._queue.slot():
                        # picked after admission so a key that cooled during the wait is skipped
                        key = self._keys.next_key()
                        return await asyncio.wait_for(attempt_fn(key), timeout=options.timeout_seconds)
                except asyncio.TimeoutError as exc:
                    logger.warning(
                        "Model call timed out",
                        extra=sanitize_log_extra(call=label, model=options.model, timeout_seconds=options.timeout_seconds),
                    )
                    raise ModelTransientError(f"Model call timed out after {options.timeout_seconds}s") from exc
                except Exception as exc:
                    classified = classify_model_error(exc)
                    if isinstance(classified, ModelRateLimitError):
                        self._keys.mark_rate_limited(key, self._key_cooldown)
                    logger.warning(
                        "Model call attempt failed",
                        extra=sanitize_log_extra(
                            call=label,
                            model=options.model,
                            key_label=mask_key(key),
                            attempt=attempt.retry_state.attempt_number,
                            error_type=classified.__class__.__name__,
                            error=str(classified),
                        ),
                    )
                    if classified is exc:
                        raise
                    raise classified from exc
        raise ModelTransientError(f"{label} exhausted retries")


class ModelGateway(RetryingModelCaller):
    """Returns cleaned model text, or an empty string when the call cannot succeed."""

    async def call(self, prompt: str, options: Optional[CallOptions] = None, *, label: str = "model-call") -> str:
        opts = options or CallOptions()
        try:
            raw = await self._call_with_retries(
                label,
                opts,
                lambda key: self._transport.generate_text(
                    key=key,
                    model=opts.model,
                    prompt=prompt,
                    max_tokens=opts.max_tokens,
                    temperature=opts.temperature,
                ),
            )
        except ModelCallError as exc:
            logger.error(
                "Model call gave up",
                extra=sanitize_log_extra(call=label, model=opts.model, error_type=exc.__class__.__name__, error=str(exc)),
            )
            return ""
        return clean_model_text(raw)
