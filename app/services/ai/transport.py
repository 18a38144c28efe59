"""google-genai transport used by the gateway and the structured wrapper."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Type, TypeVar

from google import genai
from google.genai import types
from pydantic import BaseModel, ValidationError

from app.services.ai.errors import ModelResponseError
from app.services.ai.text_utils import clean_model_text

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class GeminiTransport:
    """Thin async wrapper over `genai.Client`, one client per API key.

    A client's async connection pool belongs to the event loop that first
    used it, so the cache is dropped whenever the running loop changes.
    """

    def __init__(self, client_factory: Optional[Callable[[str], Any]] = None) -> None:
        self._client_factory = client_factory or (lambda key: genai.Client(api_key=key))
        self._clients: dict[str, Any] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _client(self, key: str) -> Any:
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            if self._clients:
                logger.debug("Event loop changed, rebuilding model clients", extra={"clients": len(self._clients)})
            self._loop = loop
            self._clients = {}
        client = self._clients.get(key)
        if client is None:
            client = self._client_factory(key)
            self._clients[key] = client
        return client

    async def generate_text(
        self,
        *,
        key: str,
        model: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        response = await self._client(key).aio.models.generate_content(
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=temperature,
                max_output_tokens=max_tokens,
            ),
        )
        text = getattr(response, "text", None) or ""
        if not text.strip():
            raise ModelResponseError("Model returned an empty response")
        return text

    async def generate_structured(
        self,
        *,
        key: str,
        model: str,
        prompt: str,
        schema: Type[SchemaT],
        max_tokens: int,
        temperature: float,
    ) -> SchemaT:
        response = await self._client(key).aio.models.generate_content(
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=temperature,
                max_output_tokens=max_tokens,
                response_mime_type="application/json",
                response_schema=schema,
            ),
        )

        parsed = getattr(response, "parsed", None)
        if isinstance(parsed, schema):
            return parsed

        text = getattr(response, "text", None) or ""
        if not text.strip():
            raise ModelResponseError("Model returned an empty structured response")
        try:
            return schema.model_validate_json(clean_model_text(text))
        except ValidationError as exc:
            raise ModelResponseError(f"Response failed {schema.__name__} validation: {exc.error_count()} errors") from exc
