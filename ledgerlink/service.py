"""Library entry points consumed by the import and reconciliation callers.

LedgerService wires configuration into the commit pipeline, the transfer
matcher and the reconciliation workflow so callers only deal with user ids,
payloads and entry ids.
"""

from __future__ import annotations

from typing import Callable

from ledgerlink.categorize.ai_fallback import AiCategorizer
from ledgerlink.categorize.deterministic import (
    DEFAULT_BUILTIN_RULES,
    DEFAULT_FALLBACK_RULE,
    DeterministicCategorizer,
)
from ledgerlink.config import Config, Settings
from ledgerlink.database.models import CreditCardPaymentLink, TransferSuggestion
from ledgerlink.database.queries import get_status_counts
from ledgerlink.database.repository import Repository
from ledgerlink.ledger.commit import (
    CARD_PAYMENT_PATTERNS,
    CommitPipeline,
    CommitResult,
    ImportPayload,
)
from ledgerlink.reconcile.transfer_matcher import TransferMatcher
from ledgerlink.reconcile.workflow import ReconciliationInbox, ReconciliationWorkflow


class LedgerService:
    """Per-user ledger operations over one repository.

    Args:
        repo: Repository with migrations applied.
        config: Loaded configuration; built-in defaults when None.
        claude_fn: Optional (system, prompt) -> str callback enabling the
            AI categorization fallback.
    """

    def __init__(
        self,
        repo: Repository,
        config: Config | None = None,
        claude_fn: Callable[[str, str], str] | None = None,
    ):
        self.repo = repo
        self.config = config

        if config is not None:
            settings = config.settings
            categorizer = DeterministicCategorizer(
                builtin_rules=config.builtin_rules or DEFAULT_BUILTIN_RULES,
                fallback_rule=config.fallback_rule,
            )
            patterns = config.card_payment_patterns or CARD_PAYMENT_PATTERNS
        else:
            settings = Settings()
            categorizer = DeterministicCategorizer(
                DEFAULT_BUILTIN_RULES, DEFAULT_FALLBACK_RULE,
            )
            patterns = CARD_PAYMENT_PATTERNS
        self.settings = settings

        ai_categorizer = None
        if claude_fn is not None:
            ai_categorizer = AiCategorizer(
                repo,
                claude_fn,
                monthly_budget_cents=settings.ai_monthly_budget_cents,
                cost_per_call_cents=settings.ai_cost_per_call_cents,
            )

        self.pipeline = CommitPipeline(
            repo,
            categorizer=categorizer,
            settings=settings,
            card_payment_patterns=patterns,
            ai_categorizer=ai_categorizer,
        )
        self.matcher = TransferMatcher(
            repo,
            window_days=settings.transfer_window_days,
            min_score=settings.transfer_min_score,
            token_bonus=settings.transfer_token_bonus,
        )
        self.workflow = ReconciliationWorkflow(repo)

    # ── Import ───────────────────────────────────────────────

    def commit_import(self, user_id: str, payload: ImportPayload) -> CommitResult:
        return self.pipeline.commit(user_id, payload)

    # ── Reconciliation ───────────────────────────────────────

    def run_transfer_matcher(
        self,
        user_id: str,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> list[TransferSuggestion]:
        return self.matcher.run(user_id, date_from, date_to)

    def confirm_transfer(self, user_id: str, out_entry_id: str, in_entry_id: str) -> None:
        self.workflow.confirm_transfer(user_id, out_entry_id, in_entry_id)

    def reject_transfer_suggestion(
        self,
        user_id: str,
        suggestion_id: str | None = None,
        out_entry_id: str | None = None,
        in_entry_id: str | None = None,
    ) -> TransferSuggestion:
        return self.workflow.reject_suggestion(
            user_id,
            suggestion_id=suggestion_id,
            out_entry_id=out_entry_id,
            in_entry_id=in_entry_id,
        )

    def confirm_credit_card_payment(
        self, user_id: str, payment_entry_id: str, credit_card_account_id: str
    ) -> CreditCardPaymentLink:
        return self.workflow.confirm_credit_card_payment(
            user_id, payment_entry_id, credit_card_account_id,
        )

    def get_reconciliation_inbox(self, user_id: str) -> ReconciliationInbox:
        return self.workflow.get_inbox(user_id)

    # ── Reporting ────────────────────────────────────────────

    def get_status(self, user_id: str) -> dict:
        return get_status_counts(self.repo.conn, user_id)
