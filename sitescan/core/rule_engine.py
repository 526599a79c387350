"""
Rule Engine - Drives the per-page SEO checks from JSON rule definitions.

Design:
- Rules are loaded from JSON files at startup
- Rules declare conditions as expression trees over PageAnalysis fields
- Each rule aggregates over the crawled pages into one site-wide SEOIssue
- Category scores are derived from the aggregated issues
- New rules added without code changes
"""

from __future__ import annotations

import json
import operator
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Iterable, Literal

import structlog
from pydantic import BaseModel, Field, field_validator

from sitescan.engines.base import (
    Impact,
    IssueType,
    PageAnalysis,
    ScoreCategory,
    SEOIssue,
)

logger = structlog.get_logger(__name__)

RULES_DIR = Path(__file__).parent.parent / "rules" / "definitions"

# ─────────────────────────────────────────────
# Rule Schema
# ─────────────────────────────────────────────

class RuleCondition(BaseModel):
    """A single condition to evaluate against page data."""
    field: str           # Dot-notation path: "title_length", "core_web_vitals.lcp_ms", etc.
    operator: str        # eq, ne, lt, gt, lte, gte, contains, not_contains, matches, exists, not_exists
    value: Any = None    # Expected value (None for exists/not_exists)
    transform: str | None = None  # len, lower, upper, strip, count


class Rule(BaseModel):
    """
    Complete rule definition loaded from JSON.

    `suggestion` may reference {count}. `count_field` switches the issue count
    from "number of matching pages" to "sum of that field over them".
    """
    id: str
    issue: str
    suggestion: str
    category: ScoreCategory
    type: IssueType
    impact: Impact
    conditions: list[RuleCondition]
    condition_logic: Literal["AND", "OR"] = "AND"
    applies_to: Literal["successful", "all"] = "successful"
    count_field: str | None = None
    enabled: bool = True
    tags: list[str] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not re.match(r"^[a-z][a-z0-9_-]{2,63}$", v):
            raise ValueError(f"Rule ID '{v}' must be lowercase alphanumeric with hyphens/underscores")
        return v


# ─────────────────────────────────────────────
# Operator Registry
# ─────────────────────────────────────────────

OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "lt": operator.lt,
    "gt": operator.gt,
    "lte": operator.le,
    "gte": operator.ge,
    "contains": lambda a, b: b in a if a else False,
    "not_contains": lambda a, b: b not in a if a else True,
    "matches": lambda a, b: bool(re.search(b, str(a))) if a else False,
    "not_matches": lambda a, b: not bool(re.search(b, str(a))) if a else True,
    "exists": lambda a, _: a is not None and a != "" and a != [],
    "not_exists": lambda a, _: a is None or a == "" or a == [],
    "in": lambda a, b: a in b if b else False,
    "not_in": lambda a, b: a not in b if b else True,
}

TRANSFORMS: dict[str, Callable[[Any], Any]] = {
    "len": lambda x: len(x) if x else 0,
    "lower": lambda x: x.lower() if isinstance(x, str) else x,
    "upper": lambda x: x.upper() if isinstance(x, str) else x,
    "strip": lambda x: x.strip() if isinstance(x, str) else x,
    "count": lambda x: len(x) if hasattr(x, "__len__") else 0,
    "bool": bool,
}


# ─────────────────────────────────────────────
# Data Accessor
# ─────────────────────────────────────────────

def get_nested_value(data: dict[str, Any], path: str) -> Any:
    """
    Extract a value from nested dict using dot notation.
    Example: get_nested_value(page, "core_web_vitals.lcp_ms") -> 412.0
    """
    current: Any = data
    for key in path.split("."):
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.isdigit():
            try:
                current = current[int(key)]
            except IndexError:
                return None
        else:
            return None
    return current


def apply_transform(value: Any, transform: str | None) -> Any:
    """Apply optional transformation to extracted value."""
    if transform is None:
        return value
    fn = TRANSFORMS.get(transform)
    if fn is None:
        logger.warning("Unknown transform", transform=transform)
        return value
    try:
        return fn(value)
    except (TypeError, ValueError):
        return value


# ─────────────────────────────────────────────
# Rule Evaluator
# ─────────────────────────────────────────────

class RuleEvaluator:
    """Evaluates rules against page data."""

    def evaluate_condition(self, condition: RuleCondition, page_data: dict[str, Any]) -> bool:
        raw_value = get_nested_value(page_data, condition.field)
        value = apply_transform(raw_value, condition.transform)

        op_fn = OPERATORS.get(condition.operator)
        if op_fn is None:
            logger.warning("Unknown operator", operator=condition.operator)
            return False

        try:
            return op_fn(value, condition.value)
        except (TypeError, AttributeError) as e:
            logger.debug(
                "Condition evaluation error",
                field=condition.field,
                operator=condition.operator,
                value=value,
                error=str(e),
            )
            return False

    def evaluate_rule(self, rule: Rule, page_data: dict[str, Any]) -> bool:
        """
        Evaluate all conditions of a rule.
        Returns True if the rule FAILS (i.e., issue is detected).
        """
        results = [self.evaluate_condition(cond, page_data) for cond in rule.conditions]
        if rule.condition_logic == "AND":
            return all(results)
        return any(results)

    def aggregate(self, rule: Rule, pages: Iterable[PageAnalysis]) -> SEOIssue | None:
        """Run a rule over every eligible page; one SEOIssue or None when nothing matched."""
        affected: list[str] = []
        count = 0
        for page in pages:
            if rule.applies_to == "successful" and not page.is_success:
                continue
            data = page.model_dump(mode="json")
            if not self.evaluate_rule(rule, data):
                continue
            if rule.count_field:
                contribution = get_nested_value(data, rule.count_field) or 0
                if not contribution:
                    continue
                count += int(contribution)
            else:
                count += 1
            affected.append(page.url)

        if count == 0:
            return None

        return SEOIssue(
            rule_id=rule.id,
            type=rule.type,
            category=rule.category,
            issue=rule.issue,
            suggestion=rule.suggestion.format(count=count),
            impact=rule.impact,
            count=count,
            affected_urls=affected,
        )


# ─────────────────────────────────────────────
# Rule Registry
# ─────────────────────────────────────────────

class RuleRegistry:
    """
    Loads and manages all rule definitions.
    Rules are loaded from JSON files organized by category.
    """

    def __init__(self, rules_dir: Path = RULES_DIR):
        self.rules_dir = rules_dir
        self._rules: dict[str, Rule] = {}
        self._loaded = False

    def load(self) -> None:
        """Load all rule JSON files from the rules directory, in path order."""
        files = sorted(self.rules_dir.glob("**/*.json"))
        count = 0
        for json_file in files:
            try:
                with open(json_file, encoding="utf-8") as f:
                    data = json.load(f)

                rules_data = data if isinstance(data, list) else [data]
                for rule_data in rules_data:
                    rule = Rule.model_validate(rule_data)
                    if rule.enabled:
                        self._rules[rule.id] = rule
                        count += 1

            except (OSError, ValueError) as e:
                logger.error("Failed to load rule file", file=str(json_file), error=str(e))

        self._loaded = True
        logger.info("Rules loaded", total=count, files=len(files))

    def get_by_category(self, category: ScoreCategory) -> list[Rule]:
        return [r for r in self._rules.values() if r.category == category]

    def get_by_id(self, rule_id: str) -> Rule | None:
        return self._rules.get(rule_id)

    def get_all(self) -> list[Rule]:
        return list(self._rules.values())

    @property
    def loaded(self) -> bool:
        return self._loaded


# ─────────────────────────────────────────────
# Score Calculator
# ─────────────────────────────────────────────

IMPACT_WEIGHTS: dict[Impact, float] = {
    Impact.CRITICAL: 25.0,
    Impact.HIGH: 15.0,
    Impact.MEDIUM: 8.0,
    Impact.LOW: 3.0,
}

DEDUCTING_TYPES = frozenset({IssueType.ERROR, IssueType.WARNING})
MAX_COUNT_FACTOR = 1.5


def issue_penalty(issue: SEOIssue) -> float:
    """impact weight × min(count × 0.1, 1.5); info/success findings cost nothing."""
    if issue.type not in DEDUCTING_TYPES:
        return 0.0
    return IMPACT_WEIGHTS[issue.impact] * min(issue.count * 0.1, MAX_COUNT_FACTOR)


def calculate_category_score(issues: Iterable[SEOIssue], category: ScoreCategory) -> float:
    """
    Calculate a category score from 0-100.

    Formula:
    - Start at 100
    - Deduct impact_weight × min(count × 0.1, 1.5) per error/warning issue
    - Floor at 0
    """
    penalty = sum(issue_penalty(issue) for issue in issues if issue.category == category)
    return round(max(0.0, 100.0 - penalty), 2)


# ─────────────────────────────────────────────
# Global Registry Instance
# ─────────────────────────────────────────────

@lru_cache
def get_rule_registry() -> RuleRegistry:
    registry = RuleRegistry(RULES_DIR)
    registry.load()
    return registry
