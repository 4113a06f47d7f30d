"""Content hashes used for deduplication.

The row fingerprint is the sole identity of a ledger entry: two imports of
the same real transaction must produce the same hash regardless of batch,
file format or entry path. Both hashes are part of the stored data, so the
serialization below must never change.
"""

from __future__ import annotations

import hashlib
import json
import math
import re
import unicodedata
from typing import TYPE_CHECKING, Iterable

from ledgerlink.errors import InvalidAmount

if TYPE_CHECKING:
    from ledgerlink.database.models import LedgerEntry
    from ledgerlink.parsers.canonical import CanonicalRow

# Upper bound for a stored amount; stays exact as a float and fits SQLite INTEGER.
MAX_AMOUNT_CENTS = 10**15


def normalize_text(value: str | None) -> str:
    """ASCII-only uppercase form used inside hashes."""
    if not value:
        return ""
    text = value.replace("\ufffd", " ")
    text = unicodedata.normalize("NFD", text)
    text = re.sub(r"[\u0300-\u036f]", "", text)
    text = re.sub(r"[^\x20-\x7E]", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text.upper()


def normalize_optional_text(value: str | None) -> str | None:
    normalized = normalize_text(value)
    return normalized or None


def amount_to_cents(amount: object) -> int:
    """Absolute amount in integer cents, rounding half up.

    Raises InvalidAmount for non-numeric, non-finite or zero amounts.
    """
    try:
        value = float(amount)
    except (TypeError, ValueError) as e:
        raise InvalidAmount(amount) from e
    if not math.isfinite(value):
        raise InvalidAmount(amount)
    scaled = abs(value) * 100
    if not math.isfinite(scaled):
        raise InvalidAmount(amount)
    cents = int(math.floor(scaled + 0.5))
    if cents <= 0:
        raise InvalidAmount(amount)
    return cents


def compute_fingerprint(
    posted_date: str,
    amount_cents: int,
    entry_type: str,
    direction: str | None,
    description_normalized: str,
    merchant_normalized: str | None = None,
    account_id: str | None = None,
    credit_card_account_id: str | None = None,
    institution_id: str | None = None,
) -> str:
    """SHA-256 over the |-joined identity fields of one entry.

    posted_date must already be the UTC calendar day (YYYY-MM-DD).
    """
    account_ref = (account_id or "").strip() or (credit_card_account_id or "").strip()
    parts = [
        posted_date[:10],
        str(amount_cents),
        entry_type,
        direction or "",
        normalize_text(description_normalized),
        normalize_optional_text(merchant_normalized) or "",
        account_ref,
        (institution_id or "").strip(),
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def fingerprint(entry: LedgerEntry) -> str:
    return compute_fingerprint(
        posted_date=entry.posted_date,
        amount_cents=entry.amount_cents,
        entry_type=entry.type,
        direction=entry.direction,
        description_normalized=entry.description_normalized,
        merchant_normalized=entry.merchant_normalized,
        account_id=entry.account_id,
        credit_card_account_id=entry.credit_card_account_id,
        institution_id=entry.institution_id,
    )


# ── File hash ────────────────────────────────────────────

STATEMENT_KINDS = ("BANK_STATEMENT", "CC_STATEMENT")


def _json_amount(amount: float) -> int | float:
    rounded = round(amount, 2)
    if rounded == int(rounded):
        return int(rounded)
    return rounded


def serialize_rows(rows: Iterable[CanonicalRow]) -> str:
    """Compact, key-ordered JSON of the rows' identity fields."""
    payload = [
        {
            "postedAt": row.posted_date,
            "amount": _json_amount(row.amount),
            "direction": row.direction.upper() if row.direction else None,
            "description": normalize_text(row.description),
            "externalId": row.external_id.strip().upper() if row.external_id else None,
        }
        for row in rows
    ]
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def file_hash(file_name: str, kind: str, serialized_rows: str) -> str:
    """Hash identifying a re-submission of an unchanged source file."""
    parts = [(file_name or "").strip().lower(), kind, serialized_rows]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
