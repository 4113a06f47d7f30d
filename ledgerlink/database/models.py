"""Dataclass models matching the SQLite schema.

Each dataclass corresponds to one table. Fields match column names exactly.
All primary keys are TEXT (UUID strings generated via uuid4()).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

ACCOUNT_TYPES = ("checking", "savings", "cash", "credit", "investment")
ENTRY_TYPES = ("income", "expense", "transfer", "cc_purchase", "cc_payment", "fee", "refund")
SOURCE_TYPES = ("csv", "ofx", "pdf", "manual")
SUGGESTION_STATUSES = ("pending", "confirmed", "rejected")


def _new_id() -> str:
    return str(uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Account:
    user_id: str
    name: str
    type: str = "checking"
    id: str = field(default_factory=_new_id)
    institution_id: str | None = None
    created_at: str = field(default_factory=_now)

    @property
    def is_credit(self) -> bool:
        return self.type == "credit"


@dataclass
class Category:
    user_id: str
    name: str
    id: str = field(default_factory=_new_id)
    created_at: str = field(default_factory=_now)


@dataclass
class CategoryRule:
    user_id: str
    name: str
    pattern: str
    category_id: str
    id: str = field(default_factory=_new_id)
    priority: int = 100
    enabled: bool = True
    match_type: str = "contains"  # contains / regex
    account_id: str | None = None
    min_amount: float | None = None
    max_amount: float | None = None
    created_at: str = field(default_factory=_now)


@dataclass
class ImportBatch:
    user_id: str
    source_type: str
    file_name: str
    file_hash: str
    id: str = field(default_factory=_new_id)
    account_id: str | None = None
    mapping: str | None = None  # JSON column mapping
    total_received: int = 0
    total_imported: int = 0
    total_skipped: int = 0
    duplicates: int = 0
    invalid_rows: int = 0
    imported_at: str = field(default_factory=_now)


@dataclass
class LedgerEntry:
    user_id: str
    posted_date: str  # YYYY-MM-DD
    amount_cents: int
    direction: str    # IN / OUT
    type: str
    description_raw: str
    description_normalized: str
    fingerprint: str
    id: str = field(default_factory=_new_id)
    merchant_normalized: str | None = None
    account_id: str | None = None
    credit_card_account_id: str | None = None
    institution_id: str | None = None
    category_id: str | None = None
    categorization_source: str | None = None
    categorization_rule_id: str | None = None
    import_batch_id: str | None = None
    external_id: str | None = None
    is_internal_transfer: bool = False
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def ledger_account_id(self) -> str | None:
        return self.account_id or self.credit_card_account_id

    @property
    def signed_amount(self) -> float:
        cents = self.amount_cents if self.direction == "IN" else -self.amount_cents
        return cents / 100


@dataclass
class TransferSuggestion:
    user_id: str
    out_entry_id: str
    in_entry_id: str
    score: float
    id: str = field(default_factory=_new_id)
    status: str = "pending"
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)


@dataclass
class CreditCardPaymentLink:
    user_id: str
    payment_entry_id: str
    credit_card_account_id: str
    id: str = field(default_factory=_new_id)
    confirmed_at: str = field(default_factory=_now)


@dataclass
class ApiUsage:
    month: str    # YYYY-MM
    service: str
    id: str = field(default_factory=_new_id)
    request_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_cents: int = 0
    updated_at: str = field(default_factory=_now)
