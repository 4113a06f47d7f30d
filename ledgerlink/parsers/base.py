"""Base parser: shared row structure, interface, and value parsing helpers."""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path

from ledgerlink.errors import InvalidDate
from ledgerlink.text.normalizer import decode, fold_accents, repair_mojibake


@dataclass
class ImportRow:
    """Intermediate representation output by parsers, before canonicalization.

    Values are loosely typed: a row built by hand or by an API caller may
    still carry the raw date and money strings, which the canonicalizer
    validates.
    """
    posted_at: str | date | datetime
    amount: float | str
    description: str
    direction: str | None = None            # IN / OUT, overrides the sign
    type_hint: str | None = None            # "debito", "credit", "fee", ...
    external_id: str | None = None          # FITID or bank reference
    counterparty_raw: str | None = None
    transaction_kind_raw: str | None = None
    balance: float | None = None
    category_id: str | None = None          # caller-chosen category
    account_id: str | None = None           # overrides the batch account


class BaseParser(ABC):
    """Abstract base for all statement parsers.

    Attributes:
        skipped_count: Number of lines dropped during parsing (balance
            summaries, unparseable dates or amounts). Check after parse()
            to detect silent data loss.
    """

    source_type = "manual"

    def __init__(self):
        self.skipped_count: int = 0

    @abstractmethod
    def parse(self, text: str) -> list[ImportRow]:
        """Parse decoded statement text into rows."""

    @abstractmethod
    def detect(self, text: str) -> bool:
        """Return True if this parser can handle the given text."""

    def parse_file(self, file_path: Path) -> list[ImportRow]:
        """Read, decode and repair a file, then parse it."""
        text, _encoding = decode(Path(file_path).read_bytes())
        return self.parse(repair_mojibake(text))


# ── Money ────────────────────────────────────────────────


def parse_money(value: object) -> float | None:
    """Parse locale-formatted money text into a signed float.

    "1.234,56" -> 1234.56, "1,234.56" -> 1234.56, "(12,00)" -> -12.0,
    "50,00-" -> -50.0. When both separators appear the rightmost one is
    the decimal separator. Returns None when there are no digits.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None

    text = str(value).strip()
    if not re.search(r"\d", text):
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
    if text.endswith("-"):
        negative = True
        text = text[:-1]

    cleaned = re.sub(r"[^\d,.\-]", "", text)
    if cleaned.startswith("-"):
        negative = True
    cleaned = cleaned.replace("-", "")

    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")
    if last_comma >= 0 and last_dot >= 0:
        if last_comma > last_dot:
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif last_comma >= 0:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    try:
        amount = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(amount):
        return None
    return -amount if negative else amount


_NEGATIVE_HINTS = ("deb", "saida", "desp", "withdraw")
_POSITIVE_HINTS = ("cred", "entrada", "rece", "deposit")


def apply_type_hint(amount: float, type_hint: str | None) -> float:
    """Force the sign of amount from a textual debit/credit hint."""
    if not type_hint:
        return amount
    hint = fold_accents(type_hint).strip().lower()
    if hint in ("d", "-", "out") or hint.startswith(_NEGATIVE_HINTS):
        return -abs(amount)
    if hint in ("c", "+", "in") or hint.startswith(_POSITIVE_HINTS):
        return abs(amount)
    return amount


# ── Dates ────────────────────────────────────────────────

_DMY_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2}|\d{4})$")
_ISO_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_COMPACT_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})(?:\d{6})?(?:\.\d+)?(?:\[.*\])?$")


def _build_date(year: int, month: int, day: int, raw: object) -> str:
    if year < 100:
        year += 2000
    try:
        return date(year, month, day).isoformat()
    except ValueError as e:
        raise InvalidDate(raw) from e


def parse_flexible_date(value: object) -> str:
    """Resolve a date in any supported source format to YYYY-MM-DD.

    Accepts date/datetime objects, dd/mm/yyyy (also "-", "." and two-digit
    years), ISO yyyy-mm-dd, ISO datetimes (converted to the UTC day), and
    OFX yyyymmdd[hhmmss]. Raises InvalidDate otherwise.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if value is None:
        raise InvalidDate(value)

    text = str(value).strip()
    match = _DMY_RE.match(text)
    if match:
        day, month, year = (int(g) for g in match.groups())
        return _build_date(year, month, day, value)
    match = _ISO_RE.match(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        return _build_date(year, month, day, value)
    match = _COMPACT_RE.match(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        return _build_date(year, month, day, value)
    if "T" in text:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidDate(value) from e
        return parse_flexible_date(parsed)
    raise InvalidDate(value)


# Running-balance summaries that statements interleave with transactions.
BALANCE_LINE_RE = re.compile(
    r"\bSALDO\s+(?:ANTERIOR|FINAL|DISPONIVEL|DO\s+DIA|EM\s+CONTA|TOTAL)\b"
    r"|\b(?:OPENING|CLOSING|AVAILABLE|LEDGER)\s+BALANCE\b",
    re.IGNORECASE,
)


def is_balance_line(text: str | None) -> bool:
    return bool(text) and BALANCE_LINE_RE.search(fold_accents(text)) is not None
