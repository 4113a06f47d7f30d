"""Deterministic categorization chain.

Steps (first match wins):
1. User rules - ascending priority, see user_rules.py
2. Built-in rules - keyword regex over kind + counterparty, resolved to
   one of the user's categories by alias
3. Fallback - fee/interest/fine keywords, resolved by alias

Every result reports the step that produced it and the rule identity.
A fallback keyword hit with no matching category is reported as
"no_category", which is different from no rule firing at all.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Sequence

from ledgerlink.database.models import Category, CategoryRule
from ledgerlink.parsers.canonical import CanonicalRow
from ledgerlink.text.normalizer import (
    DEFAULT_TABLES,
    TextTables,
    looks_like_person_name,
    normalize_for_match,
)

from .user_rules import match_user_rules, row_text

logger = logging.getLogger(__name__)

SOURCE_USER_RULE = "user_rule"
SOURCE_BUILTIN_RULE = "builtin_rule"
SOURCE_FALLBACK = "fallback"
SOURCE_NONE = "none"


@dataclass(frozen=True)
class BuiltinRule:
    id: str
    name: str
    pattern: str
    category_aliases: tuple[str, ...]
    requires_person_name: bool = False


@dataclass(frozen=True)
class FallbackRule:
    id: str
    name: str
    pattern: str
    category_aliases: tuple[str, ...]


DEFAULT_BUILTIN_RULES = (
    BuiltinRule(
        id="builtin_supermercado",
        name="Supermercado",
        pattern=r"\b(SUPERMERCADO|MERCADINHO|PAGUE)\b",
        category_aliases=("SUPERMERCADO", "MERCADO", "MERCADINHO"),
    ),
    BuiltinRule(
        id="builtin_alimentacao",
        name="Alimentacao",
        pattern=r"\b(PADARIA|LANCHES|ACAI|RESTAURANTE|IFOOD)\b",
        category_aliases=("ALIMENTACAO", "RESTAURANTES", "RESTAURANTE"),
    ),
    BuiltinRule(
        id="builtin_combustivel_transporte",
        name="Combustivel e transporte",
        pattern=r"\b(POSTO|IPIRANGA|COMBUST\w*|UBER|99APP)\b",
        category_aliases=("COMBUSTIVEL", "TRANSPORTE"),
    ),
    BuiltinRule(
        id="builtin_pix_pessoa",
        name="PIX para pessoa",
        pattern=r"\bPIX\b",
        category_aliases=("TRANSFERENCIAS", "PESSOAS"),
        requires_person_name=True,
    ),
)

DEFAULT_FALLBACK_RULE = FallbackRule(
    id="fallback_taxas",
    name="Taxas e encargos",
    pattern=r"\b(TARIFA|JUROS|IOF|MULTA|MORA)\b",
    category_aliases=("TAXAS", "ENCARGOS", "TARIFA", "MULTA", "JUROS"),
)


@dataclass
class CategorizationResult:
    """Outcome of categorizing one row."""
    category_id: str | None
    source: str                    # user_rule / builtin_rule / fallback / none
    rule_id: str | None = None
    rule_name: str | None = None
    reason: str | None = None      # for source "none": no_match / no_category

    @property
    def matched(self) -> bool:
        return self.category_id is not None


@lru_cache(maxsize=64)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


def resolve_category_alias(
    categories: Sequence[Category],
    aliases: Sequence[str],
    tables: TextTables = DEFAULT_TABLES,
) -> Category | None:
    """First category whose name contains an alias, or is contained in one."""
    normalized_aliases = [a for a in (normalize_for_match(x, tables) for x in aliases) if a]
    for category in categories:
        name = normalize_for_match(category.name, tables)
        if not name:
            continue
        if any(alias in name or name in alias for alias in normalized_aliases):
            return category
    return None


class DeterministicCategorizer:
    """Evaluates user rules, built-in rules and the fallback in order.

    Rule tables are injected so configuration and tests can replace them.
    """

    def __init__(
        self,
        builtin_rules: Sequence[BuiltinRule] = DEFAULT_BUILTIN_RULES,
        fallback_rule: FallbackRule | None = DEFAULT_FALLBACK_RULE,
        tables: TextTables = DEFAULT_TABLES,
    ):
        self.builtin_rules = tuple(builtin_rules)
        self.fallback_rule = fallback_rule
        self.tables = tables
        self._steps: tuple[Callable[..., CategorizationResult | None], ...] = (
            self._user_rule_step,
            self._builtin_step,
            self._fallback_step,
        )

    def categorize(
        self,
        row: CanonicalRow,
        user_rules: Sequence[CategoryRule],
        categories: Sequence[Category],
        account_id: str | None = None,
    ) -> CategorizationResult:
        for step in self._steps:
            result = step(row, user_rules, categories, account_id)
            if result is not None:
                return result
        return CategorizationResult(category_id=None, source=SOURCE_NONE, reason="no_match")

    def _user_rule_step(self, row, user_rules, categories, account_id):
        rule = match_user_rules(user_rules, row, account_id)
        if rule is None:
            return None
        return CategorizationResult(
            category_id=rule.category_id,
            source=SOURCE_USER_RULE,
            rule_id=rule.id,
            rule_name=rule.name,
        )

    def _builtin_step(self, row, user_rules, categories, account_id):
        text = normalize_for_match(row.match_text, self.tables)
        for rule in self.builtin_rules:
            if not _compile(rule.pattern).search(text):
                continue
            if rule.requires_person_name and not looks_like_person_name(
                row.counterparty_raw, self.tables
            ):
                continue
            category = resolve_category_alias(categories, rule.category_aliases, self.tables)
            if category is None:
                # Rule fires only when the user has a matching category.
                continue
            return CategorizationResult(
                category_id=category.id,
                source=SOURCE_BUILTIN_RULE,
                rule_id=rule.id,
                rule_name=rule.name,
            )
        return None

    def _fallback_step(self, row, user_rules, categories, account_id):
        rule = self.fallback_rule
        if rule is None:
            return None
        text = normalize_for_match(row_text(row), self.tables)
        if not _compile(rule.pattern).search(text):
            return None
        category = resolve_category_alias(categories, rule.category_aliases, self.tables)
        if category is None:
            logger.debug("Fallback keyword matched but no alias category exists")
            return CategorizationResult(
                category_id=None,
                source=SOURCE_NONE,
                rule_id=rule.id,
                rule_name=rule.name,
                reason="no_category",
            )
        return CategorizationResult(
            category_id=category.id,
            source=SOURCE_FALLBACK,
            rule_id=rule.id,
            rule_name=rule.name,
        )
