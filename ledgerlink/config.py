"""YAML configuration loader for ledgerlink.

Loads the seed config files from the config/ directory:
  rules.yaml     built-in categorization rules, fallback rule,
                 card payment phrases
  settings.yaml  import limits, transfer matching policy, AI budget
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from ledgerlink.categorize.deterministic import BuiltinRule, FallbackRule
from ledgerlink.ledger.fingerprint import MAX_AMOUNT_CENTS


@dataclass(frozen=True)
class Settings:
    max_import_rows: int = 5000
    min_amount_cents: int = 1
    max_amount_cents: int = MAX_AMOUNT_CENTS
    transfer_window_days: int = 3
    transfer_min_score: float = 0.3
    transfer_token_bonus: float = 0.1
    ai_monthly_budget_cents: int = 500
    ai_cost_per_call_cents: int = 2


class Config:
    """Loads and provides access to all YAML configuration files."""

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._rules: dict | None = None
        self._settings: Settings | None = None
        self._builtin_rules: tuple[BuiltinRule, ...] | None = None
        self._fallback_rule: FallbackRule | None = None

    def _load(self, filename: str) -> dict | list:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        return data

    @property
    def rules(self) -> dict:
        if self._rules is None:
            self._rules = self._load("rules.yaml")
        return self._rules

    @property
    def builtin_rules(self) -> tuple[BuiltinRule, ...]:
        if self._builtin_rules is None:
            self._builtin_rules = tuple(
                BuiltinRule(
                    id=r["id"],
                    name=r.get("name", r["id"]),
                    pattern=r["pattern"],
                    category_aliases=tuple(r.get("category_aliases", ())),
                    requires_person_name=bool(r.get("requires_person_name", False)),
                )
                for r in self.rules.get("builtin_rules", [])
            )
        return self._builtin_rules

    @property
    def fallback_rule(self) -> FallbackRule | None:
        if self._fallback_rule is None:
            fb = self.rules.get("fallback")
            if not fb:
                return None
            self._fallback_rule = FallbackRule(
                id=fb["id"],
                name=fb.get("name", fb["id"]),
                pattern=fb["pattern"],
                category_aliases=tuple(fb.get("category_aliases", ())),
            )
        return self._fallback_rule

    @property
    def card_payment_patterns(self) -> tuple[str, ...]:
        return tuple(self.rules.get("card_payment_patterns", ()))

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            data = self._load("settings.yaml")
            imports = data.get("import", {})
            transfers = data.get("transfers", {})
            ai = data.get("ai", {})
            defaults = Settings()
            self._settings = Settings(
                max_import_rows=int(imports.get("max_rows", defaults.max_import_rows)),
                min_amount_cents=int(imports.get("min_amount_cents", defaults.min_amount_cents)),
                max_amount_cents=int(imports.get("max_amount_cents", defaults.max_amount_cents)),
                transfer_window_days=int(transfers.get("window_days", defaults.transfer_window_days)),
                transfer_min_score=float(transfers.get("min_score", defaults.transfer_min_score)),
                transfer_token_bonus=float(transfers.get("token_bonus", defaults.transfer_token_bonus)),
                ai_monthly_budget_cents=int(
                    ai.get("monthly_budget_cents", defaults.ai_monthly_budget_cents)
                ),
                ai_cost_per_call_cents=int(
                    ai.get("cost_per_call_cents", defaults.ai_cost_per_call_cents)
                ),
            )
        return self._settings
