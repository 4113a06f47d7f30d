"""Tests for parsers.canonical: the row canonicalizer."""

import pytest

from ledgerlink.errors import InvalidAmount, InvalidDate
from ledgerlink.parsers.base import ImportRow
from ledgerlink.parsers.canonical import (
    DEFAULT_KIND,
    canonicalize,
    infer_kind,
    resolve_direction,
    split_kind_counterparty,
)


def _row(**overrides) -> ImportRow:
    defaults = dict(posted_at="10/01/2024", amount="-150,00", description="PADARIA CENTRAL")
    defaults.update(overrides)
    return ImportRow(**defaults)


class TestSplitKindCounterparty:
    def test_known_kind(self):
        assert split_kind_counterparty("Pix enviado: JOAO DA SILVA") == (
            "Pix enviado", "JOAO DA SILVA",
        )

    def test_known_kind_with_accents(self):
        kind, counterparty = split_kind_counterparty("Compra no débito - PADARIA X")
        assert kind == "Compra no débito"
        assert counterparty == "PADARIA X"

    def test_generic_split(self):
        assert split_kind_counterparty("Boleto pago: ENERGIA SA") == ("Boleto pago", "ENERGIA SA")

    def test_not_composed(self):
        assert split_kind_counterparty("SUPERMERCADO BOM PRECO") == (None, None)


class TestInferKind:
    def test_keyword_with_remainder(self):
        assert infer_kind("TARIFA PACOTE SERVICOS") == ("Tarifa", "PACOTE SERVICOS")

    def test_pix_enviado_before_pix(self):
        assert infer_kind("PIX ENVIADO MARIA") == ("Pix enviado", "MARIA")

    def test_default(self):
        assert infer_kind("SUPERMERCADO") == (DEFAULT_KIND, None)


class TestResolveDirection:
    def test_sign(self):
        assert resolve_direction(-5.0, None) == (-5.0, "OUT")
        assert resolve_direction(5.0, None) == (5.0, "IN")

    def test_explicit_direction_wins(self):
        assert resolve_direction(-5.0, "in") == (5.0, "IN")
        assert resolve_direction(5.0, "OUT") == (-5.0, "OUT")


class TestCanonicalize:
    def test_basic_outflow(self):
        row = canonicalize(_row())
        assert row.posted_date == "2024-01-10"
        assert row.amount == -150.0
        assert row.direction == "OUT"
        assert row.amount_cents == 15000
        assert row.description == "PADARIA CENTRAL"
        assert row.description_normalized == "PADARIA CENTRAL"

    def test_composed_description(self):
        row = canonicalize(_row(description="Pix enviado: João da Silva"))
        assert row.transaction_kind_raw == "Pix enviado"
        assert row.transaction_kind_norm == "PIX ENVIADO"
        assert row.counterparty_raw == "João da Silva"
        assert row.counterparty_norm == "JOAO DA SILVA"
        assert row.merchant_key == "joao da silva"
        assert row.match_text == "PIX ENVIADO JOAO DA SILVA"

    def test_uncomposed_description_uses_default_kind(self):
        row = canonicalize(_row(description="SUPERMERCADO BOM PRECO"))
        assert row.transaction_kind_raw == DEFAULT_KIND
        assert row.counterparty_raw is None
        assert row.match_text == "TRANSACAO SUPERMERCADO BOM PRECO"

    def test_explicit_kind_and_counterparty_kept(self):
        row = canonicalize(_row(
            description="qualquer", transaction_kind_raw="Pix", counterparty_raw="ANA LIMA",
        ))
        assert row.transaction_kind_raw == "Pix"
        assert row.counterparty_norm == "ANA LIMA"

    def test_type_hint_overrides_sign(self):
        row = canonicalize(_row(amount="100,00", type_hint="Débito"))
        assert row.amount == -100.0
        assert row.direction == "OUT"

    def test_direction_overrides_sign(self):
        row = canonicalize(_row(amount="-50", direction="IN"))
        assert row.amount == 50.0
        assert row.direction == "IN"

    def test_repairs_mojibake_in_description(self):
        row = canonicalize(_row(description="PADARIA PÃ£O QUENTE"))
        assert row.description == "PADARIA PãO QUENTE"
        assert row.description_normalized == "PADARIA PAO QUENTE"

    def test_external_id_trimmed(self):
        assert canonicalize(_row(external_id="  ABC123 ")).external_id == "ABC123"

    def test_empty_description_falls_back_to_kind(self):
        row = canonicalize(_row(description=""))
        assert row.description == DEFAULT_KIND

    def test_amount_cents_always_positive(self):
        for amount in ("-0,01", "0,01", "-9.999,99", 1234.5):
            assert canonicalize(_row(amount=amount)).amount_cents > 0

    def test_invalid_date(self):
        with pytest.raises(InvalidDate):
            canonicalize(_row(posted_at="32/01/2024"))

    @pytest.mark.parametrize("amount", ["abc", "", "0,00", None])
    def test_invalid_amount(self, amount):
        with pytest.raises(InvalidAmount):
            canonicalize(_row(amount=amount))

    def test_below_minimum_cents(self):
        with pytest.raises(InvalidAmount):
            canonicalize(_row(amount="0,50"), min_amount_cents=100)

    @pytest.mark.parametrize("amount", ["-100000000000000000,00", 1e307])
    def test_above_maximum_cents(self, amount):
        with pytest.raises(InvalidAmount):
            canonicalize(_row(amount=amount))

    def test_custom_maximum_cents(self):
        assert canonicalize(_row(amount="100,00"), max_amount_cents=10000).amount_cents == 10000
        with pytest.raises(InvalidAmount):
            canonicalize(_row(amount="100,01"), max_amount_cents=10000)
