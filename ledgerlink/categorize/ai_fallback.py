"""Optional AI categorization for rows the deterministic chain left empty.

Runs only when the caller supplies a claude_fn callback
(system: str, prompt: str) -> str. The model picks one of the user's
category names; anything it returns that is not one of them is ignored.

Monthly budget cap tracked via api_usage table.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from ledgerlink.database.models import Category
from ledgerlink.database.repository import Repository
from ledgerlink.parsers.canonical import CanonicalRow

logger = logging.getLogger(__name__)

SERVICE_NAME = "claude_categorize"

SYSTEM_PROMPT = (
    "You are a personal finance categorizer. Given a bank transaction, "
    "assign it to the most appropriate category from the list provided. "
    "Return ONLY a JSON object with these fields:\n"
    '  - "category": the exact name of the best matching category\n'
    '  - "confidence": your confidence from 0.0 to 1.0\n'
    'If no category fits, set "category" to null.\n'
    "Return ONLY the JSON object, no other text."
)


@dataclass
class AiCategorizationResult:
    category_id: str
    confidence: float


class AiCategorizer:
    """Budgeted wrapper around a claude_fn callback."""

    def __init__(
        self,
        repo: Repository,
        claude_fn: Callable[[str, str], str],
        monthly_budget_cents: int = 500,
        cost_per_call_cents: int = 2,
    ):
        self.repo = repo
        self.claude_fn = claude_fn
        self.monthly_budget_cents = monthly_budget_cents
        self.cost_per_call_cents = cost_per_call_cents

    def categorize(
        self, row: CanonicalRow, categories: Sequence[Category]
    ) -> AiCategorizationResult | None:
        if not categories:
            return None

        month = row.posted_date[:7]
        current_cost = self.repo.get_monthly_cost(month)
        if current_cost >= self.monthly_budget_cents:
            logger.warning(
                "Monthly AI budget exceeded (%d/%d cents), skipping categorization",
                current_cost, self.monthly_budget_cents,
            )
            return None

        names = ", ".join(c.name for c in categories)
        prompt = (
            f"Transaction: {row.description}\n"
            f"Amount: {abs(row.amount):.2f} ({row.direction})\n"
            f"Date: {row.posted_date}\n\n"
            f"Available categories: {names}"
        )

        try:
            response = self.claude_fn(SYSTEM_PROMPT, prompt)
            self.repo.increment_api_usage(
                month, SERVICE_NAME, requests=1, cost_cents=self.cost_per_call_cents,
            )
        except Exception:
            logger.exception("AI categorization call failed")
            return None
        return parse_response(response, categories)


def parse_response(
    response: str, categories: Sequence[Category]
) -> AiCategorizationResult | None:
    """Parse the model's JSON reply into a result for a known category."""
    text = (response or "").strip()
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
        text = "\n".join(lines)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.error("Failed to parse AI categorization response: %s", text[:200])
        return None
    if not isinstance(data, dict):
        return None

    name = data.get("category")
    if not name or not isinstance(name, str):
        return None
    by_name = {c.name.strip().lower(): c for c in categories}
    category = by_name.get(name.strip().lower())
    if category is None:
        logger.warning("AI returned unknown category '%s'", name)
        return None

    try:
        confidence = float(data.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    return AiCategorizationResult(
        category_id=category.id,
        confidence=max(0.0, min(1.0, confidence)),
    )
