"""Row canonicalization: one validated row shape for every source.

Parsers and API callers hand over loosely typed ImportRows. canonicalize()
resolves the date and signed amount, derives the direction and cents, and
splits composed descriptions ("Pix enviado: JOAO DA SILVA") into a
transaction kind and a counterparty.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ledgerlink.errors import InvalidAmount
from ledgerlink.ledger.fingerprint import MAX_AMOUNT_CENTS, amount_to_cents
from ledgerlink.text.normalizer import (
    DEFAULT_TABLES,
    TextTables,
    merchant_key,
    normalize,
    normalize_for_match,
)

from .base import ImportRow, apply_type_hint, parse_flexible_date, parse_money

DEFAULT_KIND = "Transacao"

_SEPARATOR = r"\s*[:\-]\s*"

_KNOWN_SPLIT_RE = re.compile(
    r"^(pix\s+enviado|pix\s+recebido|compra\s+no\s+d[eé]bito|compra\s+d[eé]bito"
    r"|pagamento\s+efetuado)" + _SEPARATOR + r"(.+)$",
    re.IGNORECASE,
)
_GENERIC_SPLIT_RE = re.compile(r"^([A-Za-zÀ-ÿ ]{3,40})" + _SEPARATOR + r"(.+)$")

# Checked in order against the match-normalized description.
_KIND_PREFIXES = (
    (re.compile(r"^PIX\s+ENVIADO\b"), "Pix enviado"),
    (re.compile(r"^PIX\s+RECEBIDO\b"), "Pix recebido"),
    (re.compile(r"^PIX\b"), "Pix"),
    (re.compile(r"^COMPRA(?:\s+NO)?\s+DEBITO\b"), "Compra no debito"),
    (re.compile(r"^COMPRA\b"), "Compra"),
    (re.compile(r"^PAGAMENTO(?:\s+EFETUADO)?\b"), "Pagamento"),
    (re.compile(r"^TARIFA\b"), "Tarifa"),
    (re.compile(r"^JUROS\b"), "Juros"),
    (re.compile(r"^IOF\b"), "IOF"),
    (re.compile(r"^MULTA\b"), "Multa"),
)


@dataclass
class CanonicalRow:
    """A validated, source-agnostic transaction line."""
    posted_date: str          # YYYY-MM-DD
    amount: float             # signed: negative=outflow
    direction: str            # IN / OUT
    amount_cents: int         # always > 0
    description: str
    description_normalized: str
    transaction_kind_raw: str
    transaction_kind_norm: str
    counterparty_raw: str | None
    counterparty_norm: str | None
    merchant_key: str
    type_hint: str | None = None
    external_id: str | None = None
    category_id: str | None = None

    @property
    def match_text(self) -> str:
        """Kind and counterparty (or description) joined for rule matching."""
        tail = self.counterparty_norm or self.description_normalized
        return f"{self.transaction_kind_norm} {tail}".strip()


def split_kind_counterparty(description: str) -> tuple[str | None, str | None]:
    """Split "Kind: counterparty" descriptions. Returns (None, None) if not composed."""
    text = description.strip()
    match = _KNOWN_SPLIT_RE.match(text)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    match = _GENERIC_SPLIT_RE.match(text)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    return None, None


def infer_kind(description: str, tables: TextTables = DEFAULT_TABLES) -> tuple[str, str | None]:
    """Guess the transaction kind from a leading keyword.

    Returns (kind, remainder) where remainder is the text after the keyword,
    or None if nothing follows it or no keyword was found.
    """
    normalized = normalize_for_match(description, tables)
    for pattern, kind in _KIND_PREFIXES:
        match = pattern.match(normalized)
        if match:
            remainder = re.sub(r"^[\s:\-]+", "", normalized[match.end():]).strip()
            return kind, remainder or None
    return DEFAULT_KIND, None


def resolve_direction(amount: float, direction: str | None) -> tuple[float, str]:
    """Explicit direction wins over the sign; returns (signed amount, direction)."""
    if direction:
        upper = direction.strip().upper()
        if upper == "IN":
            return abs(amount), "IN"
        if upper == "OUT":
            return -abs(amount), "OUT"
    return amount, ("OUT" if amount < 0 else "IN")


def canonicalize(
    row: ImportRow,
    min_amount_cents: int = 1,
    tables: TextTables = DEFAULT_TABLES,
    max_amount_cents: int = MAX_AMOUNT_CENTS,
) -> CanonicalRow:
    """Validate one row.

    Raises:
        InvalidDate: The date cannot be resolved.
        InvalidAmount: The amount is missing, non-finite or outside
            min_amount_cents..max_amount_cents.
    """
    posted_date = parse_flexible_date(row.posted_at)

    amount = parse_money(row.amount)
    if amount is None:
        raise InvalidAmount(row.amount)
    amount = apply_type_hint(amount, row.type_hint)
    amount, direction = resolve_direction(amount, row.direction)
    cents = amount_to_cents(amount)
    if cents < min_amount_cents or cents > max_amount_cents:
        raise InvalidAmount(row.amount)

    description = normalize(row.description, remove_noise=False, tables=tables)

    kind_raw = row.transaction_kind_raw
    counterparty_raw = row.counterparty_raw
    if not kind_raw and not counterparty_raw and description:
        kind_raw, counterparty_raw = split_kind_counterparty(description)
    if not kind_raw:
        inferred, remainder = infer_kind(description, tables)
        kind_raw = inferred
        if not counterparty_raw and remainder:
            counterparty_raw = remainder
    if not description:
        description = " ".join(p for p in (kind_raw, counterparty_raw) if p) or DEFAULT_KIND

    counterparty_norm = normalize_for_match(counterparty_raw, tables) or None
    return CanonicalRow(
        posted_date=posted_date,
        amount=round(amount, 2),
        direction=direction,
        amount_cents=cents,
        description=description,
        description_normalized=normalize_for_match(description, tables),
        transaction_kind_raw=kind_raw,
        transaction_kind_norm=normalize_for_match(kind_raw, tables),
        counterparty_raw=counterparty_raw,
        counterparty_norm=counterparty_norm,
        merchant_key=merchant_key(counterparty_raw or description, tables),
        type_hint=row.type_hint,
        external_id=row.external_id.strip() if row.external_id else None,
        category_id=row.category_id,
    )
