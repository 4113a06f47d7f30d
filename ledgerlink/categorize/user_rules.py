"""User-defined category rules.

Rules are evaluated in ascending priority; disabled rules are ignored.
A rule matches when its pattern matches the row text and the optional
account scope and amount range also hold.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Iterable

from ledgerlink.database.models import CategoryRule
from ledgerlink.parsers.canonical import CanonicalRow
from ledgerlink.text.normalizer import normalize_for_match

logger = logging.getLogger(__name__)


@lru_cache(maxsize=256)
def compile_rule_pattern(pattern: str) -> re.Pattern | None:
    """Compile a user regex. Invalid patterns never match."""
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning("Ignoring invalid rule regex %r: %s", pattern, e)
        return None


def row_text(row: CanonicalRow) -> str:
    parts = [row.description, row.transaction_kind_raw, row.counterparty_raw]
    return " ".join(p for p in parts if p)


def rule_matches(rule: CategoryRule, row: CanonicalRow, account_id: str | None) -> bool:
    if not rule.enabled or not rule.pattern:
        return False
    if rule.account_id and rule.account_id != account_id:
        return False

    magnitude = abs(row.amount)
    if rule.min_amount is not None and magnitude < rule.min_amount:
        return False
    if rule.max_amount is not None and magnitude > rule.max_amount:
        return False

    raw = row_text(row)
    normalized = normalize_for_match(raw)
    if rule.match_type == "regex":
        regex = compile_rule_pattern(rule.pattern)
        if regex is None:
            return False
        return bool(regex.search(raw) or regex.search(normalized))

    needle = normalize_for_match(rule.pattern)
    return bool(needle) and needle in normalized


def match_user_rules(
    rules: Iterable[CategoryRule],
    row: CanonicalRow,
    account_id: str | None,
) -> CategoryRule | None:
    """Return the first matching rule by priority (ties keep input order)."""
    for rule in sorted(rules, key=lambda r: r.priority):
        if rule_matches(rule, row, account_id):
            return rule
    return None
