"""Delimited text (CSV) statement parser.

Bank CSV exports differ in delimiter, header language and sign convention.
The delimiter is sniffed from the first lines; columns are resolved from
header aliases unless an explicit mapping is given. Amounts come from a
single signed column or from a debit/credit pair.

Rows are passed on with their raw date and amount text so that unparseable
values are counted as invalid rows at commit time instead of vanishing here.
"""

from __future__ import annotations

import csv
import io
import logging

from ledgerlink.text.normalizer import fold_accents

from .base import BaseParser, ImportRow, is_balance_line, parse_money

logger = logging.getLogger(__name__)

DELIMITERS = (",", ";", "\t", "|")
SNIFF_LINES = 20

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "date": ("data", "date", "dt", "data lancamento", "lancamento", "posted", "posting date"),
    "description": (
        "descricao", "description", "historico", "beneficiario", "favorecido",
        "estabelecimento", "memo", "name", "details", "narrative",
    ),
    "amount": ("valor", "amount", "vlr", "valor (r$)", "value"),
    "debit": ("debito", "saida", "debit", "withdrawal"),
    "credit": ("credito", "entrada", "credit", "deposit"),
    "type": ("tipo", "type", "natureza", "d/c"),
    "balance": ("saldo", "balance"),
    "external_id": ("id", "documento", "doc", "reference", "fitid"),
}


def _header_key(value: str) -> str:
    return " ".join(fold_accents(value).strip().lower().split())


def sniff_delimiter(text: str) -> str:
    """Pick the delimiter that splits the most leading lines consistently."""
    lines = [line for line in text.splitlines() if line.strip()][:SNIFF_LINES]
    best = ","
    best_viable = 0
    for delimiter in DELIMITERS:
        counts = [len(next(csv.reader([line], delimiter=delimiter))) for line in lines]
        if not counts or counts[0] < 2:
            continue
        viable = sum(1 for c in counts if c == counts[0])
        if viable > best_viable:
            best, best_viable = delimiter, viable
    return best


def resolve_columns(header: list[str]) -> dict[str, int]:
    """Map each role to a header index: exact alias first, then substring."""
    keys = [_header_key(h) for h in header]
    resolved: dict[str, int] = {}
    for role, aliases in COLUMN_ALIASES.items():
        for i, key in enumerate(keys):
            if key in aliases and i not in resolved.values():
                resolved[role] = i
                break
    for role, aliases in COLUMN_ALIASES.items():
        if role in resolved:
            continue
        for i, key in enumerate(keys):
            if i in resolved.values():
                continue
            if role in ("amount", "debit", "credit") and "saldo" in key:
                continue
            if any(alias in key for alias in aliases if len(alias) > 2):
                resolved[role] = i
                break
    return resolved


class DelimitedParser(BaseParser):
    """Parse delimited statement exports.

    Args:
        mapping: Optional explicit role -> header name mapping, e.g.
            {"date": "Data", "amount": "Valor", "description": "Historico"}.
            Roles not given are resolved from header aliases.
    """

    source_type = "csv"

    def __init__(self, mapping: dict[str, str] | None = None):
        super().__init__()
        self.mapping = mapping or {}
        self.mapping_used: dict[str, str] = {}
        self.delimiter: str | None = None

    def detect(self, text: str) -> bool:
        header = next((line for line in text.splitlines() if line.strip()), "")
        delimiter = sniff_delimiter(text)
        columns = resolve_columns(next(csv.reader([header], delimiter=delimiter), []))
        return "date" in columns and (
            "amount" in columns or "debit" in columns or "credit" in columns
        )

    def parse(self, text: str) -> list[ImportRow]:
        self.skipped_count = 0
        self.delimiter = sniff_delimiter(text)
        reader = csv.reader(io.StringIO(text), delimiter=self.delimiter)

        header: list[str] | None = None
        rows: list[ImportRow] = []
        for cells in reader:
            if not any(c.strip() for c in cells):
                continue
            if header is None:
                header = [c.strip() for c in cells]
                columns = self._columns(header)
                if "date" not in columns:
                    raise ValueError(f"No date column found in header: {header}")
                continue
            row = self._parse_row(cells, columns)
            if row is None:
                self.skipped_count += 1
            else:
                rows.append(row)

        logger.debug(
            "Parsed %d rows (%d skipped), delimiter=%r", len(rows), self.skipped_count,
            self.delimiter,
        )
        return rows

    def _columns(self, header: list[str]) -> dict[str, int]:
        columns = resolve_columns(header)
        keys = [_header_key(h) for h in header]
        for role, name in self.mapping.items():
            key = _header_key(name)
            if key in keys:
                columns[role] = keys.index(key)
        self.mapping_used = {role: header[i] for role, i in columns.items()}
        return columns

    @staticmethod
    def _cell(cells: list[str], columns: dict[str, int], role: str) -> str:
        index = columns.get(role)
        if index is None or index >= len(cells):
            return ""
        return cells[index].strip()

    def _parse_row(self, cells: list[str], columns: dict[str, int]) -> ImportRow | None:
        description = self._cell(cells, columns, "description")
        if is_balance_line(description):
            return None

        amount: float | str | None = self._cell(cells, columns, "amount")
        if not amount:
            amount = self._debit_credit_amount(cells, columns)
        if amount is None or amount == "":
            return None

        posted_at = self._cell(cells, columns, "date")
        if not posted_at and not description:
            return None

        return ImportRow(
            posted_at=posted_at,
            amount=amount,
            description=description,
            type_hint=self._cell(cells, columns, "type") or None,
            external_id=self._cell(cells, columns, "external_id") or None,
            balance=parse_money(self._cell(cells, columns, "balance")),
        )

    def _debit_credit_amount(
        self, cells: list[str], columns: dict[str, int]
    ) -> float | None:
        debit = parse_money(self._cell(cells, columns, "debit"))
        credit = parse_money(self._cell(cells, columns, "credit"))
        if debit:
            return -abs(debit)
        if credit:
            return abs(credit)
        return None
