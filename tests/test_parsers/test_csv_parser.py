"""Tests for the delimited (CSV) statement parser."""

import pytest

from ledgerlink.parsers.csv_parser import DelimitedParser, resolve_columns, sniff_delimiter

BR_CSV = (
    "Data;Descrição;Valor;Saldo\n"
    "10/01/2024;PIX ENVIADO JOAO;-150,00;850,00\n"
    "11/01/2024;SALDO DO DIA;;850,00\n"
    "12/01/2024;SALARIO EMPRESA;3.000,00;3.850,00\n"
)

DEBIT_CREDIT_CSV = (
    "Date,Description,Debit,Credit\n"
    "2024-01-10,Coffee,4.50,\n"
    "2024-01-11,Refund,,10.00\n"
    "2024-01-12,Nothing,,\n"
)


class TestSniffDelimiter:
    def test_semicolon(self):
        assert sniff_delimiter(BR_CSV) == ";"

    def test_comma(self):
        assert sniff_delimiter(DEBIT_CREDIT_CSV) == ","

    def test_tab(self):
        assert sniff_delimiter("Data\tValor\n10/01/2024\t1,00\n") == "\t"


class TestResolveColumns:
    def test_exact_aliases(self):
        columns = resolve_columns(["Data", "Descrição", "Valor", "Saldo"])
        assert columns == {"date": 0, "description": 1, "amount": 2, "balance": 3}

    def test_substring_aliases(self):
        columns = resolve_columns(["Data do lançamento", "Histórico completo", "Valor em R$"])
        assert columns["date"] == 0
        assert columns["description"] == 1
        assert columns["amount"] == 2

    def test_balance_column_never_used_for_amount(self):
        columns = resolve_columns(["Data", "Descricao", "Saldo valor"])
        assert "amount" not in columns


class TestDelimitedParser:
    def test_detect(self):
        parser = DelimitedParser()
        assert parser.detect(BR_CSV)
        assert not parser.detect("just some text\nwithout columns\n")

    def test_parse_brazilian_export(self):
        parser = DelimitedParser()
        rows = parser.parse(BR_CSV)
        assert len(rows) == 2
        assert parser.skipped_count == 1
        assert rows[0].posted_at == "10/01/2024"
        assert rows[0].amount == "-150,00"
        assert rows[0].description == "PIX ENVIADO JOAO"
        assert rows[0].balance == 850.0
        assert rows[1].amount == "3.000,00"
        assert parser.delimiter == ";"
        assert parser.mapping_used == {
            "date": "Data", "description": "Descrição", "amount": "Valor", "balance": "Saldo",
        }

    def test_debit_credit_pair(self):
        parser = DelimitedParser()
        rows = parser.parse(DEBIT_CREDIT_CSV)
        assert [r.amount for r in rows] == [-4.5, 10.0]
        assert parser.skipped_count == 1

    def test_type_column(self):
        text = "Data,Historico,Valor,Tipo\n10/01/2024,SALARIO,3000.00,C\n11/01/2024,ALUGUEL,1200.00,D\n"
        rows = DelimitedParser().parse(text)
        assert [r.type_hint for r in rows] == ["C", "D"]

    def test_explicit_mapping(self):
        text = "Quando;Observacao;Quanto\n10/01/2024;Mercado;-80,00\n"
        parser = DelimitedParser(mapping={
            "date": "Quando", "description": "Observacao", "amount": "Quanto",
        })
        rows = parser.parse(text)
        assert len(rows) == 1
        assert rows[0].description == "Mercado"
        assert parser.mapping_used["amount"] == "Quanto"

    def test_missing_date_column(self):
        with pytest.raises(ValueError, match="No date column"):
            DelimitedParser().parse("Foo;Bar\n1;2\n")

    def test_unparseable_values_pass_through(self):
        rows = DelimitedParser().parse("Data;Descricao;Valor\nontem;Padaria;abc\n")
        assert rows[0].posted_at == "ontem"
        assert rows[0].amount == "abc"

    def test_parse_file_latin1(self, tmp_path):
        path = tmp_path / "extrato.csv"
        path.write_bytes(
            "Data;Descrição;Valor\n10/01/2024;Padaria São João;-25,90\n".encode("latin-1")
        )
        rows = DelimitedParser().parse_file(path)
        assert rows[0].description == "Padaria São João"

    def test_parse_file_mojibake(self, tmp_path):
        path = tmp_path / "extrato.csv"
        path.write_text("Data;DescriÃ§Ã£o;Valor\n10/01/2024;PÃ£o;-5,00\n", encoding="utf-8")
        parser = DelimitedParser()
        rows = parser.parse_file(path)
        assert parser.mapping_used["description"] == "Descrição"
        assert rows[0].description == "Pão"
