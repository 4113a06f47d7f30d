"""Tests for the budgeted AI categorization fallback."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from ledgerlink.categorize.ai_fallback import (
    SERVICE_NAME,
    SYSTEM_PROMPT,
    AiCategorizer,
    parse_response,
)
from ledgerlink.database.models import Category
from ledgerlink.parsers.base import ImportRow
from ledgerlink.parsers.canonical import canonicalize
from tests.conftest import USER

CATEGORIES = [
    Category(user_id=USER, name="Supermercado", id="cat-super"),
    Category(user_id=USER, name="Lazer", id="cat-lazer"),
]


def _row():
    return canonicalize(ImportRow(posted_at="2024-01-15", amount=-42.5, description="MYSTERY MERCHANT"))


def _reply(category="Lazer", confidence=0.8) -> str:
    return json.dumps({"category": category, "confidence": confidence})


class TestParseResponse:
    def test_valid_json(self):
        result = parse_response(_reply(), CATEGORIES)
        assert result.category_id == "cat-lazer"
        assert result.confidence == 0.8

    def test_markdown_fences(self):
        text = "```json\n" + _reply("supermercado") + "\n```"
        result = parse_response(text, CATEGORIES)
        assert result.category_id == "cat-super"

    def test_unknown_category(self):
        assert parse_response(_reply("Viagem"), CATEGORIES) is None

    def test_null_category(self):
        assert parse_response('{"category": null, "confidence": 0.1}', CATEGORIES) is None

    def test_not_json(self):
        assert parse_response("I think it's groceries", CATEGORIES) is None

    def test_confidence_clamped(self):
        assert parse_response(_reply(confidence=1.7), CATEGORIES).confidence == 1.0

    def test_bad_confidence_defaults(self):
        text = '{"category": "Lazer", "confidence": "high"}'
        assert parse_response(text, CATEGORIES).confidence == 0.5


class TestAiCategorizer:
    def test_calls_model_and_records_usage(self, repo):
        claude_fn = MagicMock(return_value=_reply())
        ai = AiCategorizer(repo, claude_fn, monthly_budget_cents=10, cost_per_call_cents=2)

        result = ai.categorize(_row(), CATEGORIES)

        assert result.category_id == "cat-lazer"
        system, prompt = claude_fn.call_args.args
        assert system == SYSTEM_PROMPT
        assert "MYSTERY MERCHANT" in prompt
        assert "Supermercado, Lazer" in prompt
        assert repo.get_monthly_cost("2024-01") == 2

    def test_budget_exhausted(self, repo):
        repo.increment_api_usage("2024-01", SERVICE_NAME, cost_cents=10)
        claude_fn = MagicMock(return_value=_reply())
        ai = AiCategorizer(repo, claude_fn, monthly_budget_cents=10)

        assert ai.categorize(_row(), CATEGORIES) is None
        claude_fn.assert_not_called()

    def test_other_month_budget_unaffected(self, repo):
        repo.increment_api_usage("2023-12", SERVICE_NAME, cost_cents=10)
        ai = AiCategorizer(repo, MagicMock(return_value=_reply()), monthly_budget_cents=10)
        assert ai.categorize(_row(), CATEGORIES) is not None

    def test_call_failure_returns_none(self, repo):
        claude_fn = MagicMock(side_effect=RuntimeError("API down"))
        ai = AiCategorizer(repo, claude_fn)

        assert ai.categorize(_row(), CATEGORIES) is None
        assert repo.get_monthly_cost("2024-01") == 0

    def test_no_categories_skips_call(self, repo):
        claude_fn = MagicMock()
        assert AiCategorizer(repo, claude_fn).categorize(_row(), []) is None
        claude_fn.assert_not_called()

    @pytest.mark.parametrize("reply", ["", "not json", '{"category": "Viagem"}'])
    def test_unusable_reply_still_billed(self, repo, reply):
        ai = AiCategorizer(repo, MagicMock(return_value=reply), cost_per_call_cents=3)
        assert ai.categorize(_row(), CATEGORIES) is None
        assert repo.get_monthly_cost("2024-01") == 3
