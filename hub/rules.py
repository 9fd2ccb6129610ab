"""Rule engine for config-driven expert match scoring.

Each rule is one independent signal between a problem and an expert. A rule
that fires contributes a score delta and one human-readable reason; every
evaluation leaves an audit trace.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import MatchingSettings

logger = logging.getLogger(__name__)


class RuleType(str, Enum):
    """Rule types."""
    CATEGORY_MATCH = "category_match"
    KEYWORD_EXPERTISE = "keyword_expertise"
    DESCRIPTION_CATEGORY = "description_category"
    DESCRIPTION_KEYWORDS = "description_keywords"


class RuleStatus(str, Enum):
    """Rule evaluation status."""
    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"


@dataclass
class RuleTrace:
    """Audit trace for a single rule evaluation."""
    rule_id: str
    name: str
    status: RuleStatus
    reason: str
    evidence: list[str] = field(default_factory=list)
    score_delta: float = 0.0

    @property
    def fired(self) -> bool:
        return self.status == RuleStatus.PASS and self.score_delta > 0


@dataclass
class RuleConfig:
    """Configuration for a single rule."""
    id: str
    name: str
    type: RuleType
    weight: float


def load_rules_config(config: MatchingSettings | None = None) -> list[RuleConfig]:
    """Build the default scoring rules from matching weights."""
    config = config or MatchingSettings()
    return [
        RuleConfig(
            id="category_in_expertise",
            name="Category is an expertise area",
            type=RuleType.CATEGORY_MATCH,
            weight=config.category_weight,
        ),
        RuleConfig(
            id="keyword_expertise_overlap",
            name="Keywords overlap expertise",
            type=RuleType.KEYWORD_EXPERTISE,
            weight=config.keyword_tag_weight,
        ),
        RuleConfig(
            id="description_mentions_category",
            name="Description mentions category",
            type=RuleType.DESCRIPTION_CATEGORY,
            weight=config.description_category_weight,
        ),
        RuleConfig(
            id="description_mentions_keywords",
            name="Description mentions keywords",
            type=RuleType.DESCRIPTION_KEYWORDS,
            weight=config.description_keyword_weight,
        ),
    ]


def _plural(count: int, word: str, plural: str | None = None) -> str:
    return word if count == 1 else (plural or f"{word}s")


class RuleEngine:
    """Additive rule engine for expert scoring.

    Problem data carries ``category`` (str | None) and ``keywords``
    (list[str]); expert data carries ``expertise`` (list[str]) and
    ``description`` (str).
    """

    def __init__(self, rules: list[RuleConfig]):
        self.rules = rules
        logger.debug(f"Initialized rule engine with {len(rules)} rules")

    def score(
        self,
        problem_data: dict[str, Any],
        expert_data: dict[str, Any],
    ) -> tuple[float, list[RuleTrace]]:
        """Evaluate every rule and sum the deltas of those that fired.

        Returns:
            Tuple of (total_score, rule_traces)
        """
        traces = [self._evaluate_rule(rule, problem_data, expert_data) for rule in self.rules]
        total = sum(t.score_delta for t in traces if t.fired)
        return total, traces

    def _evaluate_rule(
        self,
        rule: RuleConfig,
        problem_data: dict[str, Any],
        expert_data: dict[str, Any],
    ) -> RuleTrace:
        """Evaluate a single rule."""
        if rule.type == RuleType.CATEGORY_MATCH:
            return self._eval_category_match(rule, problem_data, expert_data)
        elif rule.type == RuleType.KEYWORD_EXPERTISE:
            return self._eval_keyword_expertise(rule, problem_data, expert_data)
        elif rule.type == RuleType.DESCRIPTION_CATEGORY:
            return self._eval_description_category(rule, problem_data, expert_data)
        elif rule.type == RuleType.DESCRIPTION_KEYWORDS:
            return self._eval_description_keywords(rule, problem_data, expert_data)
        else:
            logger.warning(f"Unknown rule type: {rule.type}")
            return RuleTrace(
                rule_id=rule.id,
                name=rule.name,
                status=RuleStatus.SKIP,
                reason=f"Unknown rule type: {rule.type}",
            )

    def _eval_category_match(self, rule, problem_data, expert_data) -> RuleTrace:
        """Category appears verbatim among the expertise tags."""
        category = problem_data.get("category")
        if not category:
            return RuleTrace(rule.id, rule.name, RuleStatus.SKIP, "Problem has no category")

        if category not in expert_data.get("expertise", []):
            return RuleTrace(rule.id, rule.name, RuleStatus.FAIL, f"No expertise in {category}")

        return RuleTrace(
            rule_id=rule.id,
            name=rule.name,
            status=RuleStatus.PASS,
            reason=f"Expert in {category}",
            evidence=[category],
            score_delta=rule.weight,
        )

    def _eval_keyword_expertise(self, rule, problem_data, expert_data) -> RuleTrace:
        """Count keywords that are a substring of a tag, or contain one."""
        tags = [t.lower() for t in expert_data.get("expertise", []) if t.strip()]
        matched = []
        for keyword in _clean_keywords(problem_data):
            kw = keyword.lower()
            if any(kw in tag or tag in kw for tag in tags):
                matched.append(keyword)

        if not matched:
            return RuleTrace(rule.id, rule.name, RuleStatus.FAIL, "No keyword overlaps expertise")

        count = len(matched)
        return RuleTrace(
            rule_id=rule.id,
            name=rule.name,
            status=RuleStatus.PASS,
            reason=f"{count} matching expertise {_plural(count, 'area')}",
            evidence=matched,
            score_delta=count * rule.weight,
        )

    def _eval_description_category(self, rule, problem_data, expert_data) -> RuleTrace:
        """Description mentions the category."""
        category = problem_data.get("category")
        if not category:
            return RuleTrace(rule.id, rule.name, RuleStatus.SKIP, "Problem has no category")

        if category.lower() not in expert_data.get("description", "").lower():
            return RuleTrace(rule.id, rule.name, RuleStatus.FAIL, f"Description does not mention {category}")

        return RuleTrace(
            rule_id=rule.id,
            name=rule.name,
            status=RuleStatus.PASS,
            reason=f"Experience with {category} problems",
            evidence=[category],
            score_delta=rule.weight,
        )

    def _eval_description_keywords(self, rule, problem_data, expert_data) -> RuleTrace:
        """Count keywords mentioned in the description."""
        description = expert_data.get("description", "").lower()
        matched = [k for k in _clean_keywords(problem_data) if k.lower() in description]

        if not matched:
            return RuleTrace(rule.id, rule.name, RuleStatus.FAIL, "Description mentions no keywords")

        count = len(matched)
        return RuleTrace(
            rule_id=rule.id,
            name=rule.name,
            status=RuleStatus.PASS,
            reason=f"Mentions {count} relevant {_plural(count, 'keyword')}",
            evidence=matched,
            score_delta=count * rule.weight,
        )


def _clean_keywords(problem_data: dict[str, Any]) -> list[str]:
    # A blank keyword is a substring of everything
    return [k.strip() for k in problem_data.get("keywords") or [] if k and k.strip()]
