"""Tests for ledger.fingerprint: row and file hashes."""

import hashlib

import pytest

from ledgerlink.errors import InvalidAmount
from ledgerlink.ledger.fingerprint import (
    amount_to_cents,
    compute_fingerprint,
    file_hash,
    normalize_text,
    serialize_rows,
)
from ledgerlink.parsers.base import ImportRow
from ledgerlink.parsers.canonical import canonicalize


def _fp(**overrides):
    fields = dict(
        posted_date="2024-01-10",
        amount_cents=15000,
        entry_type="expense",
        direction="OUT",
        description_normalized="PADARIA CENTRAL",
        merchant_normalized="padaria central",
        account_id="acc-1",
    )
    fields.update(overrides)
    return compute_fingerprint(**fields)


class TestAmountToCents:
    @pytest.mark.parametrize("amount,expected", [
        (150.0, 15000),
        (-150.0, 15000),
        ("12.34", 1234),
        (0.125, 13),
        (0.01, 1),
    ])
    def test_valid(self, amount, expected):
        assert amount_to_cents(amount) == expected

    @pytest.mark.parametrize("amount", [0, 0.004, float("nan"), float("inf"), 1e307, "abc", None])
    def test_invalid(self, amount):
        with pytest.raises(InvalidAmount):
            amount_to_cents(amount)


class TestNormalizeText:
    def test_strips_accents_and_uppercases(self):
        assert normalize_text("Padaria  São João") == "PADARIA SAO JOAO"

    def test_replacement_char_becomes_space(self):
        assert normalize_text("Descri��o") == "DESCRI O"

    def test_empty(self):
        assert normalize_text(None) == ""


class TestComputeFingerprint:
    def test_known_serialization(self):
        joined = "2024-01-10|15000|expense|OUT|PADARIA CENTRAL|PADARIA CENTRAL|acc-1|"
        assert _fp() == hashlib.sha256(joined.encode("utf-8")).hexdigest()

    def test_deterministic(self):
        assert _fp() == _fp()

    def test_accents_and_case_do_not_matter(self):
        assert _fp(description_normalized="padaria central") == _fp()
        assert _fp(description_normalized="PADARÍA CENTRAL") == _fp()

    @pytest.mark.parametrize("field,value", [
        ("posted_date", "2024-01-11"),
        ("amount_cents", 15001),
        ("entry_type", "transfer"),
        ("direction", "IN"),
        ("description_normalized", "PADARIA NOVA"),
        ("account_id", "acc-2"),
        ("institution_id", "bank-1"),
    ])
    def test_sensitive_to_identity_fields(self, field, value):
        assert _fp(**{field: value}) != _fp()

    def test_card_account_used_when_no_bank_account(self):
        via_card = _fp(account_id=None, credit_card_account_id="acc-1")
        assert via_card == _fp()

    def test_datetime_prefix_truncated_to_day(self):
        assert _fp(posted_date="2024-01-10T23:59:00") == _fp()


class TestFileHash:
    def _rows(self):
        return [
            canonicalize(ImportRow(posted_at="10/01/2024", amount="-150,00",
                                   description="PADARIA CENTRAL")),
            canonicalize(ImportRow(posted_at="11/01/2024", amount="12,5",
                                   description="Pix recebido: Ana", external_id=" abc1 ")),
        ]

    def test_serialize_rows(self):
        serialized = serialize_rows(self._rows())
        assert serialized.startswith(
            '[{"postedAt":"2024-01-10","amount":-150,"direction":"OUT",'
            '"description":"PADARIA CENTRAL","externalId":null}'
        )
        assert '"amount":12.5' in serialized
        assert '"externalId":"ABC1"' in serialized

    def test_file_name_case_and_whitespace_ignored(self):
        body = serialize_rows(self._rows())
        assert file_hash("Extrato.CSV", "BANK_STATEMENT", body) == file_hash(
            " extrato.csv ", "BANK_STATEMENT", body
        )

    def test_kind_changes_hash(self):
        body = serialize_rows(self._rows())
        assert file_hash("a.csv", "BANK_STATEMENT", body) != file_hash("a.csv", "CC_STATEMENT", body)

    def test_rows_change_hash(self):
        rows = self._rows()
        assert file_hash("a.csv", "BANK_STATEMENT", serialize_rows(rows)) != file_hash(
            "a.csv", "BANK_STATEMENT", serialize_rows(rows[:1])
        )
