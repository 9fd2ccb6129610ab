"""Text classifier: summary, keywords and category for a problem statement.

One external call per invocation. On any failure a deterministic local
analysis is returned so a problem is never left half-enriched.
"""
from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, field_validator

from hub.config import ClassifierSettings
from hub.models import Category, ProblemOrigin

from .semantic import SemanticServiceError, StructuredTextAnalyzer

logger = logging.getLogger(__name__)

_CATEGORY_BY_NAME = {c.value.lower(): c for c in Category}


class ProblemAnalysis(BaseModel):
    """Enrichment fields for a problem; all three are always populated."""
    summary: str = Field(min_length=1)
    keywords: list[str] = Field(default_factory=list, max_length=5)
    category: Category

    @field_validator("summary", mode="before")
    @classmethod
    def strip_summary(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("keywords", mode="before")
    @classmethod
    def drop_blank_keywords(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [k.strip() for k in v if isinstance(k, str) and k.strip()]
        return v

    @field_validator("category", mode="before")
    @classmethod
    def canonical_category(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _CATEGORY_BY_NAME.get(v.strip().lower(), v)
        return v


SYSTEM_PROMPT = """Analyze this problem and provide a summary, keywords, and category.

Instructions:
- Summarize the problem in 3 sentences or less, focusing on the core issue
- Extract 3-5 relevant keywords that capture the essence of the problem
- Categorize into one of: {categories}
- Consider the source context (external feed vs direct user submission)

Respond with JSON in this exact format:
{{"summary": "string", "keywords": ["string"], "category": "string"}}"""


def fallback_analysis(text: str, summary_length: int = 200) -> ProblemAnalysis:
    """Local analysis used whenever the semantic service cannot be used."""
    summary = text[:summary_length] + "..." if len(text) > summary_length else text
    # Bypass validators: the summary is the raw prefix, untouched
    return ProblemAnalysis.model_construct(summary=summary, keywords=[], category=Category.OTHER)


class TextClassifier:
    """Enriches raw problem text through a structured-text analyzer."""

    def __init__(self, analyzer: StructuredTextAnalyzer, config: ClassifierSettings | None = None) -> None:
        self.analyzer = analyzer
        self.config = config or ClassifierSettings()
        self.system_prompt = SYSTEM_PROMPT.format(
            categories=", ".join(c.value for c in Category),
        )

    async def classify(self, text: str, origin: ProblemOrigin | str) -> ProblemAnalysis:
        """Summarize, tag and categorize a problem.

        Args:
            text: Raw problem text (non-empty)
            origin: Origin tag, given to the model as context

        Returns:
            ProblemAnalysis, from the service or the local fallback

        Raises:
            ValueError: If text is blank
        """
        if not text or not text.strip():
            raise ValueError("Problem text must not be empty")

        origin_value = origin.value if isinstance(origin, ProblemOrigin) else str(origin)
        prompt = f'Problem text: "{text}"\nSource: {origin_value}'

        try:
            analysis = await self.analyzer.analyze(
                prompt,
                ProblemAnalysis,
                system_instruction=self.system_prompt,
            )
        except SemanticServiceError as e:
            logger.warning(f"Classification failed, using fallback: {e}")
            return fallback_analysis(text, self.config.summary_fallback_length)

        if len(analysis.keywords) > self.config.max_keywords:
            logger.warning(
                f"Classifier returned {len(analysis.keywords)} keywords "
                f"(max {self.config.max_keywords}), using fallback"
            )
            return fallback_analysis(text, self.config.summary_fallback_length)

        return analysis
