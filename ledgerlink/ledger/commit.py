"""Import commit pipeline.

Per row: canonicalize -> resolve ledger type -> fingerprint -> existence
check -> categorize. Only rows that will be inserted are categorized, so
the paid AI fallback never runs for duplicates. Rows with bad dates or amounts are counted as invalid
and never abort the batch. Duplicates (already stored, repeated inside the
payload, or lost to a concurrent writer at insert time) are counted, not
raised. The batch record and all new entries are written in one
transaction.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Sequence

from ledgerlink.categorize.ai_fallback import AiCategorizer
from ledgerlink.categorize.deterministic import (
    CategorizationResult,
    DeterministicCategorizer,
)
from ledgerlink.config import Settings
from ledgerlink.database.models import ENTRY_TYPES, Account, ImportBatch, LedgerEntry
from ledgerlink.database.repository import Repository
from ledgerlink.errors import InvalidRow, RowsLimitExceeded
from ledgerlink.parsers.base import ImportRow
from ledgerlink.parsers.canonical import CanonicalRow, canonicalize
from ledgerlink.text.normalizer import MERCHANT_KEY_SENTINEL, normalize_for_match

from .fingerprint import compute_fingerprint, file_hash, serialize_rows

logger = logging.getLogger(__name__)

MAX_IMPORT_COMMIT_ROWS = 5000

CARD_PAYMENT_PATTERNS = (
    "PAGAMENTO FATURA",
    "PAGAMENTO DE FATURA",
    "PGTO FATURA",
    "PAGTO FATURA",
    "FATURA CARTAO",
    "PAG CARTAO",
    "CREDIT CARD PAYMENT",
)
_FATURA_HINT_RE = re.compile(r"\bFATURA\b.*\b(PAGAMENTO|PAGTO|PGTO|CARTAO|CARD)\b"
                             r"|\b(PAGAMENTO|PAGTO|PGTO|CARTAO|CARD)\b.*\bFATURA\b")

# Types a caller may request explicitly; transfer is only set by reconciliation.
_HINTABLE_TYPES = frozenset(ENTRY_TYPES) - {"transfer"}


@dataclass
class ImportPayload:
    """One commit request: a file's worth of rows for one user."""
    source_type: str                 # csv / ofx / pdf / manual
    file_name: str
    rows: list[ImportRow]
    account_id: str | None = None    # default account for rows without one
    mapping: dict | None = None      # column mapping used by the parser


@dataclass
class RowError:
    index: int
    code: str
    message: str


@dataclass
class CommitResult:
    """Counts and identity of one commit."""
    total_received: int = 0
    total_imported: int = 0
    total_skipped: int = 0
    duplicates: int = 0
    invalid_rows: int = 0
    policy_skipped: int = 0
    categorized: int = 0
    batch_id: str | None = None
    file_hash: str | None = None
    duplicate_file: bool = False
    imported_range: tuple[str, str] | None = None
    errors: list[RowError] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "total_received": self.total_received,
            "total_imported": self.total_imported,
            "total_skipped": self.total_skipped,
            "duplicates": self.duplicates,
            "invalid_rows": self.invalid_rows,
        }


def is_card_payment(description: str, patterns: Sequence[str] = CARD_PAYMENT_PATTERNS) -> bool:
    text = normalize_for_match(description)
    if any(normalize_for_match(p) in text for p in patterns):
        return True
    return bool(_FATURA_HINT_RE.search(text))


def resolve_entry_type(
    row: CanonicalRow,
    account: Account,
    card_payment_patterns: Sequence[str] = CARD_PAYMENT_PATTERNS,
) -> str | None:
    """Ledger type for a row on the given account, or None to skip it.

    Card accounts: OUT is a purchase, IN a refund, except the card's own
    bill-payment receipt which is skipped (the bank side records it).
    Bank accounts: an OUT that pays a card bill is cc_payment.
    """
    hint = (row.type_hint or "").strip().lower()
    if hint in _HINTABLE_TYPES:
        return hint

    payment = is_card_payment(row.description, card_payment_patterns)
    if account.is_credit:
        if row.direction == "IN":
            return None if payment else "refund"
        return "cc_purchase"
    if row.direction == "OUT":
        return "cc_payment" if payment else "expense"
    return "income"


class CommitPipeline:
    """Commit batches of import rows into the ledger.

    Args:
        repo: Repository for reads and the transactional write.
        categorizer: Deterministic categorizer (defaults to built-in tables).
        settings: Import limits.
        card_payment_patterns: Phrases marking a card bill payment.
        ai_categorizer: Optional AI fallback for rows left uncategorized.
    """

    def __init__(
        self,
        repo: Repository,
        categorizer: DeterministicCategorizer | None = None,
        settings: Settings | None = None,
        card_payment_patterns: Sequence[str] = CARD_PAYMENT_PATTERNS,
        ai_categorizer: AiCategorizer | None = None,
    ):
        self.repo = repo
        self.categorizer = categorizer or DeterministicCategorizer()
        self.settings = settings or Settings(max_import_rows=MAX_IMPORT_COMMIT_ROWS)
        self.card_payment_patterns = tuple(card_payment_patterns)
        self.ai_categorizer = ai_categorizer

    def commit(self, user_id: str, payload: ImportPayload) -> CommitResult:
        """Commit one payload.

        Raises:
            RowsLimitExceeded: Before any processing if the payload has more
                rows than the configured limit.
        """
        limit = self.settings.max_import_rows
        if len(payload.rows) > limit:
            raise RowsLimitExceeded(len(payload.rows), limit)

        result = CommitResult(total_received=len(payload.rows))
        accounts = {a.id: a for a in self.repo.list_accounts(user_id)}
        categories = self.repo.list_categories(user_id)
        rules = self.repo.list_category_rules(user_id)

        valid_rows: list[CanonicalRow] = []
        candidates: list[tuple[LedgerEntry, CanonicalRow, Account]] = []
        seen: set[str] = set()

        for index, raw in enumerate(payload.rows):
            try:
                row = canonicalize(
                    raw,
                    min_amount_cents=self.settings.min_amount_cents,
                    max_amount_cents=self.settings.max_amount_cents,
                )
            except InvalidRow as e:
                result.invalid_rows += 1
                result.errors.append(RowError(index, e.code, str(e)))
                logger.debug("Row %d invalid: %s", index, e)
                continue
            valid_rows.append(row)

            account = accounts.get(raw.account_id or payload.account_id or "")
            if account is None:
                result.invalid_rows += 1
                result.errors.append(RowError(index, "invalid_account", "Account not found"))
                continue

            entry_type = resolve_entry_type(row, account, self.card_payment_patterns)
            if entry_type is None:
                result.policy_skipped += 1
                continue

            entry = self._build_entry(user_id, row, account, entry_type)
            if entry.fingerprint in seen:
                result.duplicates += 1
                continue
            seen.add(entry.fingerprint)
            candidates.append((entry, row, account))

        existing = self.repo.existing_fingerprints(
            user_id, (entry.fingerprint for entry, _, _ in candidates)
        )
        new_entries: list[LedgerEntry] = []
        for entry, row, row_account in candidates:
            if entry.fingerprint in existing:
                result.duplicates += 1
                continue
            categorization = self._categorize(row, row_account, rules, categories)
            entry.category_id = categorization.category_id
            entry.categorization_source = categorization.source
            entry.categorization_rule_id = categorization.rule_id
            new_entries.append(entry)

        account = accounts.get(payload.account_id or "")
        kind = "CC_STATEMENT" if account is not None and account.is_credit else "BANK_STATEMENT"
        result.file_hash = file_hash(payload.file_name, kind, serialize_rows(valid_rows))
        result.duplicate_file = bool(
            self.repo.get_import_batches_by_hash(user_id, result.file_hash)
        )
        if result.duplicate_file:
            logger.warning("File %s was already submitted; committing rows anyway", payload.file_name)

        batch = ImportBatch(
            user_id=user_id,
            source_type=payload.source_type,
            file_name=payload.file_name,
            file_hash=result.file_hash,
            account_id=account.id if account is not None else None,
            mapping=json.dumps(payload.mapping, sort_keys=True) if payload.mapping else None,
            total_received=result.total_received,
            duplicates=result.duplicates,
            invalid_rows=result.invalid_rows,
            total_skipped=result.duplicates + result.invalid_rows + result.policy_skipped,
        )
        inserted = self.repo.commit_import_batch(batch, new_entries)

        result.batch_id = batch.id
        result.total_imported = batch.total_imported
        result.duplicates = batch.duplicates
        result.total_skipped = batch.total_skipped
        result.categorized = sum(1 for e in inserted if e.category_id)
        if inserted:
            dates = sorted(e.posted_date for e in inserted)
            result.imported_range = (dates[0], dates[-1])

        logger.info(
            "Committed %s for user %s: received=%d imported=%d duplicates=%d"
            " invalid=%d policy_skipped=%d",
            payload.file_name, user_id, result.total_received, result.total_imported,
            result.duplicates, result.invalid_rows, result.policy_skipped,
        )
        return result

    def _build_entry(
        self, user_id: str, row: CanonicalRow, account: Account, entry_type: str
    ) -> LedgerEntry:
        merchant = row.merchant_key if row.merchant_key != MERCHANT_KEY_SENTINEL else None
        account_id = None if account.is_credit else account.id
        card_id = account.id if account.is_credit else None
        return LedgerEntry(
            user_id=user_id,
            posted_date=row.posted_date,
            amount_cents=row.amount_cents,
            direction=row.direction,
            type=entry_type,
            description_raw=row.description,
            description_normalized=row.description_normalized,
            merchant_normalized=merchant,
            account_id=account_id,
            credit_card_account_id=card_id,
            institution_id=account.institution_id,
            external_id=row.external_id,
            fingerprint=compute_fingerprint(
                posted_date=row.posted_date,
                amount_cents=row.amount_cents,
                entry_type=entry_type,
                direction=row.direction,
                description_normalized=row.description_normalized,
                merchant_normalized=merchant,
                account_id=account_id,
                credit_card_account_id=card_id,
                institution_id=account.institution_id,
            ),
        )

    def _categorize(self, row, account, rules, categories) -> CategorizationResult:
        if row.category_id and any(c.id == row.category_id for c in categories):
            return CategorizationResult(category_id=row.category_id, source="explicit")

        result = self.categorizer.categorize(row, rules, categories, account_id=account.id)
        if result.category_id is None and self.ai_categorizer is not None:
            ai = self.ai_categorizer.categorize(row, categories)
            if ai is not None:
                return CategorizationResult(category_id=ai.category_id, source="ai_fallback")
        return result
