"""OFX/QFX statement parser (SGML and XML flavours).

SGML files leave most tags unclosed (<TAG>value), XML files close them.
Values are extracted with regex in both cases, not with an XML parser.
Card statements use CCSTMTRS instead of STMTRS.
"""

from __future__ import annotations

import re

from .base import BaseParser, ImportRow, parse_money

_DATE_TAGS = ("DTPOSTED", "DTUSER", "DTAVAIL")


class OfxParser(BaseParser):
    """Parse OFX/QFX files into rows."""

    source_type = "ofx"

    def __init__(self):
        super().__init__()
        self.statement_kind = "BANK_STATEMENT"

    def detect(self, text: str) -> bool:
        head = text[:2000].upper()
        return "OFXHEADER" in head or "<OFX>" in head

    def parse(self, text: str) -> list[ImportRow]:
        self.skipped_count = 0
        upper = text.upper()
        self.statement_kind = "CC_STATEMENT" if "<CCSTMTRS>" in upper else "BANK_STATEMENT"

        rows: list[ImportRow] = []
        for block in self._split_transactions(text):
            row = self._parse_transaction_block(block)
            if row is not None:
                rows.append(row)
            else:
                self.skipped_count += 1
        return rows

    def _split_transactions(self, content: str) -> list[str]:
        """Split content into individual STMTTRN blocks."""
        pattern = r"<STMTTRN>(.*?)(?=</STMTTRN>|<STMTTRN>|</BANKTRANLIST>|\Z)"
        return re.findall(pattern, content, re.DOTALL | re.IGNORECASE)

    def _parse_transaction_block(self, block: str) -> ImportRow | None:
        posted = next(
            (v for v in (self._extract_tag(block, t) for t in _DATE_TAGS) if v), None,
        )
        trnamt = self._extract_tag(block, "TRNAMT")
        if not posted or not trnamt:
            return None
        if parse_money(trnamt) is None:
            return None

        memo = self._extract_tag(block, "MEMO")
        name = self._extract_tag(block, "NAME")
        return ImportRow(
            posted_at=posted,
            amount=trnamt,
            description=memo or name or "",
            type_hint=self._extract_tag(block, "TRNTYPE"),
            external_id=self._extract_tag(block, "FITID"),
        )

    def _extract_tag(self, block: str, tag: str) -> str | None:
        """Extract value for an OFX tag.

        Handles both:
            <TAG>value          (SGML, no closing tag)
            <TAG>value</TAG>    (XML)
        """
        match = re.search(rf"<{tag}>([^<\n\r]*)", block, re.IGNORECASE)
        if match:
            value = match.group(1).strip()
            return value or None
        return None
