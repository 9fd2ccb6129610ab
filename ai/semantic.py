"""Structured-text analyzer: the single seam to the external semantic service.

Callers pass a prompt plus a pydantic schema and get back a validated value
of that schema. Every failure (transport, empty reply, non-JSON, schema
violation) surfaces as ``SemanticServiceError`` so components can swap in
their local fallback at one place.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Protocol, TypeVar

from google import genai
from google.genai import types
from pydantic import TypeAdapter, ValidationError

from hub.config import GeminiSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SemanticServiceError(Exception):
    """Raised when the semantic service is unavailable or its reply is unusable."""
    pass


class StructuredTextAnalyzer(Protocol):
    """Anything that turns a prompt into a schema-conforming value."""

    async def analyze(
        self,
        prompt: str,
        schema: Any,
        *,
        system_instruction: str | None = None,
        temperature: float | None = None,
        model: str | None = None,
    ) -> Any: ...


def parse_structured(raw_text: str | None, schema: Any) -> Any:
    """Parse and validate a JSON reply against ``schema``.

    Args:
        raw_text: Raw text returned by the service
        schema: A pydantic model class or any type ``TypeAdapter`` accepts

    Returns:
        The validated value

    Raises:
        SemanticServiceError: If the reply is empty, not JSON or off-schema
    """
    if not raw_text or not raw_text.strip():
        raise SemanticServiceError("Empty response from semantic service")
    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as e:
        raise SemanticServiceError(f"Response is not valid JSON: {e}") from e
    try:
        return TypeAdapter(schema).validate_python(payload)
    except ValidationError as e:
        raise SemanticServiceError(f"Response violates schema: {e.error_count()} errors") from e


class GeminiAnalyzer:
    """Gemini implementation using google.genai with JSON response schemas."""

    def __init__(self, config: GeminiSettings, client: genai.Client | None = None) -> None:
        self.config = config
        self.client = client or genai.Client(api_key=config.api_key)

    async def analyze(
        self,
        prompt: str,
        schema: Any,
        *,
        system_instruction: str | None = None,
        temperature: float | None = None,
        model: str | None = None,
    ) -> Any:
        model_name = model or self.config.model
        generate_config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            response_mime_type="application/json",
            response_schema=schema,
            temperature=self.config.temperature if temperature is None else temperature,
        )
        try:
            response = await self.client.aio.models.generate_content(
                model=model_name,
                contents=prompt,
                config=generate_config,
            )
        except Exception as e:
            raise SemanticServiceError(f"Gemini request failed: {e}") from e

        return parse_structured(response.text, schema)


class UnavailableAnalyzer:
    """Used when no API key is configured: every call fails fast."""

    async def analyze(self, prompt: str, schema: Any, **kwargs: Any) -> Any:
        raise SemanticServiceError("Semantic service is not configured")


def build_analyzer(config: GeminiSettings) -> StructuredTextAnalyzer:
    """Build the analyzer for the given settings."""
    if not config.api_key:
        logger.warning("GEMINI_API_KEY not set - analysis will use local fallbacks")
        return UnavailableAnalyzer()

    logger.info(f"Gemini analyzer initialized (model={config.model})")
    return GeminiAnalyzer(config)
