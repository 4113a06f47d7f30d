"""Statement text parser for lines extracted from PDF statements and invoices.

Each transaction line starts with a date (or inherits the last date header)
and carries one or more money tokens; the first token is the amount, the
text before it is the description. Lines without an explicit sign marker
get their sign from keywords.
"""

from __future__ import annotations

import logging
import re
from datetime import date

from ledgerlink.errors import InvalidDate
from ledgerlink.text.normalizer import fold_accents, normalize, normalize_for_match

from .base import BaseParser, ImportRow, is_balance_line, parse_flexible_date, parse_money

logger = logging.getLogger(__name__)

MIN_AMOUNT = 0.01

_MONTHS = {
    "jan": 1, "janeiro": 1, "fev": 2, "fevereiro": 2, "mar": 3, "marco": 3,
    "abr": 4, "abril": 4, "mai": 5, "maio": 5, "jun": 6, "junho": 6,
    "jul": 7, "julho": 7, "ago": 8, "agosto": 8, "set": 9, "setembro": 9,
    "out": 10, "outubro": 10, "nov": 11, "novembro": 11, "dez": 12, "dezembro": 12,
}

_NUMERIC_DATE_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})(?:[/\-.](\d{2,4}))?\b\s*(.*)$")
_WORD_DATE_RE = re.compile(
    r"^(\d{1,2})\s+(?:de\s+)?([A-Za-zÀ-ÿ.]+)\s+(?:de\s+)?(\d{4})\b\s*(.*)$", re.IGNORECASE,
)
_MONEY_RE = re.compile(
    r"(?P<lead>\(?[-+]?\s*(?:R\$\s*)?[-+]?\s*)"
    r"(?P<value>(?:\d{1,3}(?:\.\d{3})+|\d+),\d{2}|(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2})"
    r"(?P<trail>\)?(?:\s*[CD]\b|-)?)",
)
_IGNORED_LINE_RES = (
    re.compile(r"^--\s*\d+\s*(?:of|de)\s*\d+\s*--$", re.IGNORECASE),
    re.compile(r"^TOTAL\b", re.IGNORECASE),
    re.compile(r"^PAGINA\s+\d+", re.IGNORECASE),
)

_NEGATIVE_KEYWORDS = re.compile(
    r"\b(DEBITO|COMPRA|SAIDA|PAGAMENTO|ENVIADO|TARIFA|SAQUE|JUROS|IOF|MULTA)\b"
)
_POSITIVE_KEYWORDS = re.compile(
    r"\b(CREDITO|DEPOSITO|ENTRADA|RECEBIDO|ESTORNO|DEVOLUCAO|RENDIMENTO|SALARIO)\b"
)


def classify_statement_text(text: str) -> str:
    """Return "credit_card_invoice", "bank_statement" or "unknown"."""
    normalized = normalize_for_match(text)
    if "FATURA" in normalized and "VENCIMENTO" in normalized:
        return "credit_card_invoice"
    if "SALDO DO DIA" in normalized or "EXTRATO" in normalized:
        return "bank_statement"
    return "unknown"


def keyword_sign(line: str) -> int | None:
    """-1 or +1 from debit/credit keywords, None if the line has neither."""
    normalized = normalize_for_match(line)
    if _POSITIVE_KEYWORDS.search(normalized):
        return 1
    if _NEGATIVE_KEYWORDS.search(normalized):
        return -1
    return None


class StatementTextParser(BaseParser):
    """Parse text lines from statement or invoice PDFs.

    Args:
        default_year: Year for dates printed without one ("10/01").
            Defaults to the current year.
    """

    source_type = "pdf"

    def __init__(self, default_year: int | None = None):
        super().__init__()
        self.default_year = default_year or date.today().year
        self.document_type = "unknown"

    def detect(self, text: str) -> bool:
        return classify_statement_text(text) != "unknown"

    def parse(self, text: str) -> list[ImportRow]:
        self.skipped_count = 0
        self.document_type = classify_statement_text(text)

        rows: list[ImportRow] = []
        current_date: str | None = None
        for raw_line in text.splitlines():
            line = normalize(raw_line, remove_noise=False)
            if not line or any(p.match(line) for p in _IGNORED_LINE_RES):
                continue

            line_date, rest = self._split_date(line)
            if line_date is not None:
                current_date = line_date
            if is_balance_line(rest):
                continue

            money = _MONEY_RE.search(rest)
            if money is None:
                continue
            if current_date is None:
                self.skipped_count += 1
                continue

            row = self._build_row(current_date, rest, money)
            if row is None:
                self.skipped_count += 1
            else:
                rows.append(row)
        return rows

    def _split_date(self, line: str) -> tuple[str | None, str]:
        match = _NUMERIC_DATE_RE.match(line)
        if match:
            day, month, year, rest = match.groups()
            year = year or str(self.default_year)
            try:
                return parse_flexible_date(f"{day}/{month}/{year}"), rest
            except InvalidDate:
                return None, line
        match = _WORD_DATE_RE.match(line)
        if match:
            day, month_token, year, rest = match.groups()
            month = _MONTHS.get(fold_accents(month_token).lower().rstrip("."))
            if month is not None:
                try:
                    return parse_flexible_date(f"{day}/{month}/{year}"), rest
                except InvalidDate:
                    return None, line
        return None, line

    def _build_row(self, posted_date: str, rest: str, money: re.Match) -> ImportRow | None:
        description = rest[:money.start()].strip(" -:")
        if not description:
            return None

        value = parse_money(money.group("value"))
        if value is None or abs(value) < MIN_AMOUNT:
            return None

        lead = money.group("lead").replace(" ", "")
        trail = money.group("trail").replace(" ", "")
        if "-" in lead or trail.endswith(("D", "-")) or (lead.startswith("(") and trail.startswith(")")):
            sign = -1
        elif "+" in lead or trail.endswith("C"):
            sign = 1
        else:
            sign = keyword_sign(rest) or -1

        return ImportRow(
            posted_at=posted_date,
            amount=sign * abs(value),
            description=description,
        )
