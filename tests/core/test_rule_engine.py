"""Tests for the JSON rule engine and category score calculator."""

import json

import pytest

from sitescan.core.rule_engine import (
    Rule,
    RuleCondition,
    RuleEvaluator,
    RuleRegistry,
    calculate_category_score,
    get_nested_value,
    get_rule_registry,
)
from sitescan.engines.base import Impact, IssueType, PageAnalysis, ScoreCategory, SEOIssue


def make_rule(**overrides) -> Rule:
    data = {
        "id": "test-rule",
        "issue": "Test issue",
        "suggestion": "{count} pages matched.",
        "category": "content",
        "type": "warning",
        "impact": "medium",
        "conditions": [{"field": "word_count", "operator": "lt", "value": 300}],
    }
    data.update(overrides)
    return Rule.model_validate(data)


def issue(category=ScoreCategory.CONTENT, type=IssueType.WARNING, impact=Impact.MEDIUM, count=1) -> SEOIssue:
    return SEOIssue(
        rule_id="x-issue",
        type=type,
        category=category,
        issue="x",
        suggestion="x",
        impact=impact,
        count=count,
    )


class TestRuleEvaluator:

    def test_nested_value(self):
        data = {"core_web_vitals": {"lcp_ms": 412.0}, "h1_text": ["a", "b"]}
        assert get_nested_value(data, "core_web_vitals.lcp_ms") == 412.0
        assert get_nested_value(data, "h1_text.1") == "b"
        assert get_nested_value(data, "missing.path") is None

    def test_condition_with_transform(self):
        evaluator = RuleEvaluator()
        condition = RuleCondition(field="h1_text", operator="gt", value=1, transform="count")
        assert evaluator.evaluate_condition(condition, {"h1_text": ["a", "b"]})
        assert not evaluator.evaluate_condition(condition, {"h1_text": ["a"]})

    def test_unknown_operator_never_matches(self):
        condition = RuleCondition(field="word_count", operator="bogus", value=1)
        assert not RuleEvaluator().evaluate_condition(condition, {"word_count": 5})

    def test_or_logic(self):
        rule = make_rule(
            condition_logic="OR",
            conditions=[
                {"field": "word_count", "operator": "lt", "value": 10},
                {"field": "h1_count", "operator": "eq", "value": 0},
            ],
        )
        assert RuleEvaluator().evaluate_rule(rule, {"word_count": 500, "h1_count": 0})

    def test_aggregate_counts_successful_pages_only(self):
        pages = [
            PageAnalysis(url="https://example.com/a", status_code=200, word_count=50),
            PageAnalysis(url="https://example.com/b", status_code=200, word_count=800),
            PageAnalysis(url="https://example.com/c", status_code=404, word_count=0),
        ]

        result = RuleEvaluator().aggregate(make_rule(), pages)

        assert result.count == 1
        assert result.affected_urls == ["https://example.com/a"]
        assert result.suggestion == "1 pages matched."

    def test_aggregate_count_field(self):
        rule = make_rule(
            count_field="images_without_alt",
            conditions=[{"field": "images_without_alt", "operator": "gt", "value": 0}],
        )
        pages = [
            PageAnalysis(url="https://example.com/a", status_code=200, images_without_alt=2),
            PageAnalysis(url="https://example.com/b", status_code=200, images_without_alt=3),
        ]
        assert RuleEvaluator().aggregate(rule, pages).count == 5

    def test_aggregate_no_match(self):
        pages = [PageAnalysis(url="https://example.com/a", status_code=200, word_count=900)]
        assert RuleEvaluator().aggregate(make_rule(), pages) is None

    def test_invalid_rule_id(self):
        with pytest.raises(ValueError):
            make_rule(id="Bad ID")


class TestRuleRegistry:

    def test_bundled_rules_load(self):
        registry = get_rule_registry()
        assert registry.loaded
        assert registry.get_by_id("tech-missing-meta-description").impact == Impact.HIGH
        assert registry.get_by_id("tech-missing-meta-description").type == IssueType.ERROR
        assert registry.get_by_id("content-multiple-h1").type == IssueType.ERROR
        for category in ScoreCategory:
            assert registry.get_by_category(category), category

    def test_bad_file_is_skipped(self, tmp_path):
        (tmp_path / "good.json").write_text(json.dumps([make_rule().model_dump(mode="json")]))
        (tmp_path / "bad.json").write_text("{not json")

        registry = RuleRegistry(tmp_path)
        registry.load()

        assert [r.id for r in registry.get_all()] == ["test-rule"]

    def test_disabled_rules_are_ignored(self, tmp_path):
        (tmp_path / "rules.json").write_text(json.dumps(make_rule(enabled=False).model_dump(mode="json")))
        registry = RuleRegistry(tmp_path)
        registry.load()
        assert registry.get_all() == []


class TestCategoryScore:

    @pytest.mark.parametrize("impact,count,expected", [
        (Impact.CRITICAL, 1, 97.5),
        (Impact.HIGH, 5, 92.5),
        (Impact.MEDIUM, 20, 88.0),
        (Impact.LOW, 100, 95.5),
    ])
    def test_single_issue(self, impact, count, expected):
        assert calculate_category_score([issue(impact=impact, count=count)], ScoreCategory.CONTENT) == expected

    def test_other_categories_ignored(self):
        assert calculate_category_score([issue(category=ScoreCategory.SOCIAL)], ScoreCategory.CONTENT) == 100.0

    def test_info_and_success_do_not_deduct(self):
        issues = [issue(type=IssueType.INFO, count=50), issue(type=IssueType.SUCCESS, count=50)]
        assert calculate_category_score(issues, ScoreCategory.CONTENT) == 100.0

    def test_floored_at_zero(self):
        issues = [issue(impact=Impact.CRITICAL, count=100) for _ in range(5)]
        assert calculate_category_score(issues, ScoreCategory.CONTENT) == 0.0
