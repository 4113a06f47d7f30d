"""Installment markers ("PARCELA 3/10", "PARC 03 DE 12", "2/6 PARC", "12/24").

Card statements append the installment position to the merchant text, which
would otherwise split one merchant into as many keys as there are installments.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

MAX_INSTALLMENTS = 360

_KEYWORDS = r"(?:PARCELA|PARCELADO|PARC|PCLA|PCL)"

_PATTERNS = (
    re.compile(rf"\b{_KEYWORDS}\.?\s*(\d{{1,3}})\s*(?:DE|/)\s*(\d{{1,3}})\b", re.IGNORECASE),
    re.compile(rf"\b(\d{{1,3}})\s*/\s*(\d{{1,3}})\s*{_KEYWORDS}\b", re.IGNORECASE),
    re.compile(rf"\b{_KEYWORDS}\.?\s*-\s*(\d{{1,3}})\s*(?:DE|/)\s*(\d{{1,3}})\b", re.IGNORECASE),
    # Bare trailing "12/24"
    re.compile(r"(?<![\d/])(\d{1,2})\s*/\s*(\d{1,2})\s*$"),
)

_EDGE_SEPARATORS = re.compile(r"^[\s\-:|()\[\].,]+|[\s\-:|()\[\].,]+$")


@dataclass(frozen=True)
class InstallmentInfo:
    current: int
    total: int
    base_description: str

    @property
    def remaining(self) -> int:
        return self.total - self.current


def _valid(current: int, total: int) -> bool:
    return 1 <= current <= total <= MAX_INSTALLMENTS


def _find(text: str) -> tuple[re.Match, int, int] | None:
    for pattern in _PATTERNS:
        for match in pattern.finditer(text):
            current, total = int(match.group(1)), int(match.group(2))
            if _valid(current, total):
                return match, current, total
    return None


def _clean(text: str) -> str:
    text = re.sub(r"\s{2,}", " ", text)
    return _EDGE_SEPARATORS.sub("", text).strip()


def has_installment_marker(text: str | None) -> bool:
    return bool(text) and _find(text) is not None


def strip_installment_marker(text: str | None) -> str:
    """Remove the first valid installment marker and trim leftover separators."""
    if not text:
        return ""
    found = _find(text)
    if found is None:
        return text.strip()
    match = found[0]
    return _clean(text[:match.start()] + " " + text[match.end():])


def extract_installment_info(text: str | None) -> InstallmentInfo | None:
    if not text:
        return None
    found = _find(text)
    if found is None:
        return None
    match, current, total = found
    base = _clean(text[:match.start()] + " " + text[match.end():])
    return InstallmentInfo(current=current, total=total, base_description=base)
