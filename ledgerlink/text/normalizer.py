"""Text normalization for imported statement data.

Bank exports arrive in unknown encodings, often UTF-8 that was read as
Latin-1 somewhere along the way ("DescriÃ§Ã£o"). This module picks the
best decoding for a byte buffer, repairs known mojibake sequences, and
builds the uppercase, accent-free keys used for matching and grouping.

All lookup tables live in an immutable TextTables instance that can be
replaced in tests or by configuration.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field

from .installments import strip_installment_marker

MERCHANT_KEY_SENTINEL = "transacao"
MERCHANT_KEY_MAX_TOKENS = 6

_MOJIBAKE = (
    ("Ã¡", "á"), ("Ã\u00a0", "à"), ("Ã¢", "â"), ("Ã£", "ã"), ("Ã¤", "ä"),
    ("Ã©", "é"), ("Ãª", "ê"), ("Ã¨", "è"),
    ("Ã\u00ad", "í"), ("Ã¬", "ì"),
    ("Ã³", "ó"), ("Ã²", "ò"), ("Ã´", "ô"), ("Ãµ", "õ"),
    ("Ãº", "ú"), ("Ã¹", "ù"),
    ("Ã§", "ç"),
    ("Ã\u0081", "Á"), ("Ã€", "À"), ("Ã‚", "Â"), ("Ãƒ", "Ã"),
    ("Ã‰", "É"), ("ÃŠ", "Ê"),
    ("Ã\u008d", "Í"),
    ("Ã“", "Ó"), ("Ã”", "Ô"), ("Ã•", "Õ"),
    ("Ãš", "Ú"),
    ("Ã‡", "Ç"),
    ("â€“", "-"), ("â€”", "-"),
    ("â€˜", "'"), ("â€™", "'"),
    ("â€œ", '"'), ("â€\u009d", '"'),
    ("â€¢", "*"), ("â€¦", "..."),
)

# Header words that lose their accented letters to "?" or U+FFFD.
_NAMED_REPAIRS = (
    (r"Descri(?:[\ufffd?]+|Ã§Ã£)o", "Descricao"),
    (r"Lan(?:[\ufffd?]+|Ã§)amento", "Lancamento"),
    (r"Hist(?:[\ufffd?]+|Ã³)rico", "Historico"),
)

_NOISE_PREFIXES = (
    r"^COMPRA\s+NO\s+ESTABELECIMENTO\s*[:\-]?\s*",
    r"^NO\s+ESTABELECIMENTO\s*[:\-]?\s*",
    r"^ESTABELECIMENTO\s*[:\-]?\s*",
)

_LOCATION_TOKENS = ("ITU", "BRA", "BRASIL")

_STOP_TOKENS = frozenset({
    "PIX", "PAGAMENTO", "PAGTO", "PGTO", "COMPRA", "DEBITO", "DEBIT",
    "CREDITO", "TRANSFERENCIA", "TRANSFER", "TRANSF", "RECEBIDO", "ENVIADO",
    "DOC", "TED", "TEF", "TARIFA", "JUROS", "IOF", "MORA", "MULTA",
    "PARCELA", "PARCELADO", "PARC", "NO", "EM", "NOESTABELECIMENTO",
    "ESTABELECIMENTO", "BR", "BRA", "ITU", "R", "RS",
})

_BUSINESS_TOKENS = frozenset({
    "SUPERMERCADO", "MERCADO", "PADARIA", "LANCHES", "RESTAURANTE",
    "POSTO", "IPIRANGA", "FARMACIA", "LOJA", "MERCANTIL", "LTDA", "SA",
    "ME", "EPP", "EIRELI",
})


@dataclass(frozen=True)
class TextTables:
    """Lookup tables used by the normalizer."""
    mojibake: tuple[tuple[str, str], ...] = _MOJIBAKE
    named_repairs: tuple[tuple[str, str], ...] = _NAMED_REPAIRS
    noise_prefixes: tuple[str, ...] = _NOISE_PREFIXES
    location_tokens: tuple[str, ...] = _LOCATION_TOKENS
    stop_tokens: frozenset[str] = field(default=_STOP_TOKENS)
    business_tokens: frozenset[str] = field(default=_BUSINESS_TOKENS)


DEFAULT_TABLES = TextTables()

# ── Decoding ─────────────────────────────────────────────

_CANDIDATE_ENCODINGS = ("utf-8", "latin-1", "cp1252")

_ARTIFACT_RE = re.compile(r"[ÃÂâ]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")


def _decode_score(text: str) -> int:
    return (
        text.count("\ufffd") * 40
        + len(_ARTIFACT_RE.findall(text)) * 4
        + len(_CONTROL_RE.findall(text)) * 2
    )


def decode(data: bytes) -> tuple[str, str]:
    """Decode bytes of unknown encoding.

    Returns (text, encoding_used). The candidate with the lowest score
    wins; ties go to UTF-8 since it is tried first.
    """
    best_text = ""
    best_encoding = _CANDIDATE_ENCODINGS[0]
    best_score: int | None = None
    for encoding in _CANDIDATE_ENCODINGS:
        text = data.decode(encoding, errors="replace")
        score = _decode_score(text)
        if best_score is None or score < best_score:
            best_text, best_encoding, best_score = text, encoding, score
    return best_text, best_encoding


def repair_mojibake(text: str, tables: TextTables = DEFAULT_TABLES) -> str:
    if not text:
        return ""
    for bad, good in tables.mojibake:
        if bad in text:
            text = text.replace(bad, good)
    for pattern, replacement in tables.named_repairs:
        text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)
    return re.sub("\ufffd+", " ", text)


# ── Normalization ────────────────────────────────────────


def fold_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return re.sub(r"[\u0300-\u036f]", "", decomposed)


def normalize(
    text: str | None,
    uppercase: bool = False,
    strip_accents: bool = False,
    remove_noise: bool = True,
    tables: TextTables = DEFAULT_TABLES,
) -> str:
    """Clean free text: repair, collapse separators, drop noise."""
    if not text:
        return ""
    value = repair_mojibake(text, tables)
    value = re.sub(r"[\r\n\t]+", " ", value)
    value = re.sub(r"\|+", " ", value)
    value = re.sub(r"[;:]{2,}", " ", value)
    value = re.sub(r"[.,]{2,}", " ", value)
    if remove_noise:
        for prefix in tables.noise_prefixes:
            value = re.sub(prefix, "", value.strip(), flags=re.IGNORECASE)
        if tables.location_tokens:
            locations = "|".join(re.escape(t) for t in tables.location_tokens)
            value = re.sub(rf"\b(?:{locations})\b", " ", value, flags=re.IGNORECASE)
    value = re.sub(r"\s*-\s*-\s*", " ", value)
    value = re.sub(r"\s+", " ", value).strip()
    if strip_accents:
        value = fold_accents(value)
    if uppercase:
        value = value.upper()
    return value


def normalize_for_match(text: str | None, tables: TextTables = DEFAULT_TABLES) -> str:
    """Uppercase, accent-free, noise-free key used by rules and matching."""
    return normalize(
        text, uppercase=True, strip_accents=True, remove_noise=True, tables=tables,
    )


def merchant_key(text: str | None, tables: TextTables = DEFAULT_TABLES) -> str:
    """Reduce a description to a short lowercase grouping key.

    "PIX ENVIADO JOAO DA SILVA 12/24" -> "joao da silva"
    """
    normalized = normalize_for_match(strip_installment_marker(text), tables)
    kept: list[str] = []
    for raw_token in normalized.split(" "):
        token = re.sub(r"[^A-Z0-9]", "", raw_token)
        if len(token) <= 1 or token.isdigit() or token in tables.stop_tokens:
            continue
        kept.append(token)
        if len(kept) == MERCHANT_KEY_MAX_TOKENS:
            break
    if not kept:
        return MERCHANT_KEY_SENTINEL
    return " ".join(kept).lower()


def looks_like_person_name(text: str | None, tables: TextTables = DEFAULT_TABLES) -> bool:
    """Heuristic: 2-5 word tokens, no business words, at least two alphabetic."""
    normalized = normalize_for_match(text, tables)
    tokens = [t for t in normalized.split(" ") if len(t) > 1]
    if not 2 <= len(tokens) <= 5:
        return False
    if any(t in tables.business_tokens for t in tokens):
        return False
    return sum(1 for t in tokens if t.isalpha()) >= 2
