"""Human review of reconciliation candidates.

Suggestion states: pending -> confirmed, pending -> rejected. Both end
states are final. Every operation validates ownership and state before
writing anything, then performs its writes in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ledgerlink.database.models import CreditCardPaymentLink, LedgerEntry, TransferSuggestion
from ledgerlink.database.queries import (
    get_pending_suggestions_detail,
    get_unlinked_card_activity,
    get_unmatched_payments,
)
from ledgerlink.database.repository import Repository
from ledgerlink.errors import InvalidLink, InvalidPair

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationInbox:
    suggestions: list[dict] = field(default_factory=list)
    unmatched_payments: list[dict] = field(default_factory=list)
    unlinked_card_activity: list[dict] = field(default_factory=list)


class ReconciliationWorkflow:
    def __init__(self, repo: Repository):
        self.repo = repo

    # ── Transfers ───────────────────────────────────────────

    def _owned_entry(self, user_id: str, entry_id: str, error=InvalidPair) -> LedgerEntry:
        entry = self.repo.get_entry(entry_id)
        if entry is None:
            raise error("not_found", entry_id)
        if entry.user_id != user_id:
            raise error("not_owned", entry_id)
        return entry

    def confirm_transfer(self, user_id: str, out_entry_id: str, in_entry_id: str) -> None:
        """Promote both legs to a single internal transfer.

        Raises:
            InvalidPair: reason not_found, not_owned, same_entry,
                already_transfer, same_account or wrong_direction.
        """
        if out_entry_id == in_entry_id:
            raise InvalidPair("same_entry", out_entry_id)
        out_entry = self._owned_entry(user_id, out_entry_id)
        in_entry = self._owned_entry(user_id, in_entry_id)
        for entry in (out_entry, in_entry):
            if entry.type == "transfer" or entry.is_internal_transfer:
                raise InvalidPair("already_transfer", entry.id)
        if out_entry.direction != "OUT" or in_entry.direction != "IN":
            raise InvalidPair("wrong_direction")
        if out_entry.ledger_account_id == in_entry.ledger_account_id:
            raise InvalidPair("same_account")

        self.repo.mark_pair_as_transfer(user_id, out_entry_id, in_entry_id)
        logger.info("Confirmed transfer %s -> %s for user %s", out_entry_id, in_entry_id, user_id)

    def reject_suggestion(
        self,
        user_id: str,
        suggestion_id: str | None = None,
        out_entry_id: str | None = None,
        in_entry_id: str | None = None,
    ) -> TransferSuggestion:
        """Reject by suggestion id or by entry pair.

        A pair that was never suggested is still recorded as rejected so
        the matcher never proposes it. Rejecting twice is a no-op.

        Raises:
            InvalidPair: reason not_found, not_owned, same_entry or
                already_confirmed.
        """
        if suggestion_id is not None:
            suggestion = self.repo.get_suggestion(suggestion_id)
            if suggestion is None:
                raise InvalidPair("not_found", suggestion_id)
            if suggestion.user_id != user_id:
                raise InvalidPair("not_owned", suggestion_id)
            out_entry_id, in_entry_id = suggestion.out_entry_id, suggestion.in_entry_id
        elif out_entry_id is None or in_entry_id is None:
            raise ValueError("Provide suggestion_id or both entry ids")

        if out_entry_id == in_entry_id:
            raise InvalidPair("same_entry", out_entry_id)
        first = self._owned_entry(user_id, out_entry_id)
        second = self._owned_entry(user_id, in_entry_id)
        # Store the pair oriented OUT -> IN regardless of argument order.
        if first.direction == "IN" and second.direction == "OUT":
            first, second = second, first

        existing = self.repo.get_suggestions_for_pair(user_id, first.id, second.id)
        if any(s.status == "confirmed" for s in existing):
            raise InvalidPair("already_confirmed")
        if existing and all(s.status == "rejected" for s in existing):
            return existing[0]

        suggestion = self.repo.reject_pair(user_id, first.id, second.id)
        logger.info("Rejected transfer pair %s / %s for user %s", first.id, second.id, user_id)
        return suggestion

    # ── Credit card payments ────────────────────────────────

    def confirm_credit_card_payment(
        self, user_id: str, payment_entry_id: str, credit_card_account_id: str
    ) -> CreditCardPaymentLink:
        """Link a bank-side outflow to the card bill it paid.

        Raises:
            InvalidLink: reason not_found, not_owned, not_credit_account,
                not_outflow, already_transfer or already_linked.
        """
        entry = self._owned_entry(user_id, payment_entry_id, error=InvalidLink)
        card = self.repo.get_account(credit_card_account_id)
        if card is None:
            raise InvalidLink("not_found", credit_card_account_id)
        if card.user_id != user_id:
            raise InvalidLink("not_owned", credit_card_account_id)
        if not card.is_credit:
            raise InvalidLink("not_credit_account", credit_card_account_id)
        if entry.direction != "OUT" or entry.account_id is None:
            raise InvalidLink("not_outflow", payment_entry_id)
        if entry.type == "transfer":
            raise InvalidLink("already_transfer", payment_entry_id)
        if self.repo.get_payment_link(payment_entry_id) is not None:
            raise InvalidLink("already_linked", payment_entry_id)

        link = self.repo.link_credit_card_payment(
            CreditCardPaymentLink(
                user_id=user_id,
                payment_entry_id=payment_entry_id,
                credit_card_account_id=credit_card_account_id,
            )
        )
        logger.info(
            "Linked payment %s to card %s for user %s",
            payment_entry_id, credit_card_account_id, user_id,
        )
        return link

    # ── Inbox ───────────────────────────────────────────────

    def get_inbox(self, user_id: str) -> ReconciliationInbox:
        conn = self.repo.conn
        return ReconciliationInbox(
            suggestions=get_pending_suggestions_detail(conn, user_id),
            unmatched_payments=get_unmatched_payments(conn, user_id),
            unlinked_card_activity=get_unlinked_card_activity(conn, user_id),
        )
