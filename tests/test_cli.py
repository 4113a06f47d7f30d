"""Tests for ledgerlink.cli: argument parsing and command handlers.

Handlers run through main(argv=[...]) against a temporary SQLite file
configured via environment variables, so each command opens and closes
its own connection exactly as it does from the shell.
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ledgerlink.cli import _make_claude_fn, main
from ledgerlink.database.models import Account
from ledgerlink.database.repository import Repository
from tests.conftest import FIXTURE_CONFIG_DIR, MIGRATIONS_DIR, USER

ROOT = Path(__file__).parent.parent

BR_CSV = (
    "Data;Descricao;Valor\n"
    "10/01/2024;TED ENVIADA;-250,00\n"
    "15/01/2024;PAGAMENTO FATURA;-800,00\n"
)


# ── Helpers ──────────────────────────────────────────────


def _run(argv: list[str]) -> int:
    with patch("ledgerlink.cli._setup_logging"):
        with pytest.raises(SystemExit) as exc:
            main(argv)
    return exc.value.code


@pytest.fixture
def db(tmp_path, monkeypatch):
    """A migrated database file the CLI is pointed at."""
    path = tmp_path / "ledger.db"
    monkeypatch.setenv("LEDGER_DB_PATH", str(path))
    monkeypatch.setenv("LEDGER_CONFIG_DIR", str(FIXTURE_CONFIG_DIR))
    monkeypatch.delenv("LEDGER_MIGRATIONS_DIR", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    repo = Repository(str(path))
    repo.apply_migrations(MIGRATIONS_DIR)
    yield repo
    repo.close()


@pytest.fixture
def accounts(db):
    checking = db.insert_account(Account(user_id=USER, name="Conta Corrente"))
    savings = db.insert_account(Account(user_id=USER, name="Poupanca", type="savings"))
    card = db.insert_account(Account(user_id=USER, name="Cartao", type="credit"))
    return checking, savings, card


# ── Argument parsing tests (subprocess) ──────────────────


class TestCliHelp:
    def test_help_exits_zero(self):
        result = subprocess.run(
            [sys.executable, "-m", "ledgerlink.cli", "--help"],
            capture_output=True, text=True, cwd=ROOT,
        )
        assert result.returncode == 0
        assert "ledgerlink statement import and reconciliation" in result.stdout

    def test_all_subcommands_listed_in_help(self):
        result = subprocess.run(
            [sys.executable, "-m", "ledgerlink.cli", "--help"],
            capture_output=True, text=True, cwd=ROOT,
        )
        for cmd in ["import", "watch", "match", "inbox", "confirm", "reject",
                    "confirm-payment", "status", "account", "category"]:
            assert cmd in result.stdout, f"Subcommand '{cmd}' not in help output"

    def test_import_requires_user(self):
        result = subprocess.run(
            [sys.executable, "-m", "ledgerlink.cli", "import", "x.csv", "--account", "a"],
            capture_output=True, text=True, cwd=ROOT,
        )
        assert result.returncode != 0


# ── main() dispatch tests ────────────────────────────────


class TestMainDispatch:
    def test_main_dispatches_to_handler(self):
        handler = MagicMock(return_value=0)
        with patch.dict("ledgerlink.cli._COMMANDS", {"status": handler}):
            assert _run(["status", "--user", USER]) == 0
        assert handler.call_args.args[0].user == USER

    def test_handler_exit_code_propagates(self):
        with patch.dict("ledgerlink.cli._COMMANDS", {"inbox": MagicMock(return_value=1)}):
            assert _run(["inbox", "--user", USER]) == 1

    def test_main_no_command_shows_help(self, capsys):
        assert _run([]) == 0
        assert "usage:" in capsys.readouterr().out.lower()

    def test_match_date_options(self):
        handler = MagicMock(return_value=0)
        with patch.dict("ledgerlink.cli._COMMANDS", {"match": handler}):
            _run(["match", "--user", USER, "--from", "2024-01-01", "--to", "2024-01-31"])
        args = handler.call_args.args[0]
        assert (args.date_from, args.date_to) == ("2024-01-01", "2024-01-31")


# ── Command handler tests ────────────────────────────────


class TestImportCommand:
    def test_imports_file(self, db, accounts, tmp_path, capsys):
        f = tmp_path / "extrato.csv"
        f.write_text(BR_CSV, encoding="utf-8")

        code = _run(["import", str(f), "--user", USER, "--account", accounts[0].id])

        assert code == 0
        assert "imported=2" in capsys.readouterr().out
        assert db.count_entries(USER) == 2

    def test_reimport_reports_duplicate(self, db, accounts, tmp_path, capsys):
        f = tmp_path / "extrato.csv"
        f.write_text(BR_CSV, encoding="utf-8")
        _run(["import", str(f), "--user", USER, "--account", accounts[0].id])

        code = _run(["import", str(f), "--user", USER, "--account", accounts[0].id])

        assert code == 0
        assert "duplicate" in capsys.readouterr().out
        assert db.count_entries(USER) == 2

    def test_file_not_found(self, db, tmp_path, capsys):
        code = _run(["import", str(tmp_path / "missing.csv"), "--user", USER, "--account", "a"])
        assert code == 1
        assert "File not found" in capsys.readouterr().out

    def test_unsupported_extension(self, db, tmp_path, capsys):
        f = tmp_path / "extrato.xlsx"
        f.write_text("x")
        assert _run(["import", str(f), "--user", USER, "--account", "a"]) == 1
        assert "Unsupported file type" in capsys.readouterr().out

    def test_kind_override(self, db, accounts, tmp_path):
        f = tmp_path / "extrato.dat"
        f.write_text(BR_CSV, encoding="utf-8")
        code = _run(["import", str(f), "--user", USER, "--account", accounts[0].id,
                     "--kind", "csv"])
        assert code == 0
        assert db.count_entries(USER) == 2


class TestReconciliationCommands:
    @pytest.fixture
    def imported(self, db, accounts, tmp_path):
        checking, savings, _card = accounts
        bank = tmp_path / "conta.csv"
        bank.write_text(BR_CSV, encoding="utf-8")
        poupanca = tmp_path / "poupanca.csv"
        poupanca.write_text("Data;Descricao;Valor\n11/01/2024;TED RECEBIDA;250,00\n",
                            encoding="utf-8")
        _run(["import", str(bank), "--user", USER, "--account", checking.id])
        _run(["import", str(poupanca), "--user", USER, "--account", savings.id])
        return accounts

    def test_match_and_confirm(self, db, imported, capsys):
        assert _run(["match", "--user", USER]) == 0
        assert "Transfer suggestions (1)" in capsys.readouterr().out
        s = db.list_suggestions(USER)[0]

        assert _run(["confirm", "--user", USER, s.out_entry_id, s.in_entry_id]) == 0
        assert db.get_entry(s.out_entry_id).type == "transfer"

    def test_match_nothing(self, db, accounts, capsys):
        assert _run(["match", "--user", USER]) == 0
        assert "No transfer candidates found." in capsys.readouterr().out

    def test_confirm_invalid_pair(self, db, imported, capsys):
        assert _run(["confirm", "--user", USER, "missing-1", "missing-2"]) == 1
        assert "Error: not_found" in capsys.readouterr().out

    def test_reject_by_suggestion(self, db, imported):
        _run(["match", "--user", USER])
        s = db.list_suggestions(USER)[0]
        assert _run(["reject", "--user", USER, "--suggestion", s.id]) == 0
        assert db.get_suggestion(s.id).status == "rejected"

    def test_reject_by_pair(self, db, imported):
        entries = db.list_entries(USER)
        out = next(e for e in entries if e.direction == "OUT" and e.type == "expense")
        inn = next(e for e in entries if e.direction == "IN")
        assert _run(["reject", "--user", USER, out.id, inn.id]) == 0
        _run(["match", "--user", USER])
        assert db.list_suggestions(USER, ["pending"]) == []

    def test_reject_requires_target(self, db, capsys):
        assert _run(["reject", "--user", USER]) == 1
        assert "provide --suggestion" in capsys.readouterr().out

    def test_inbox_and_confirm_payment(self, db, imported, capsys):
        _run(["match", "--user", USER])
        capsys.readouterr()
        assert _run(["inbox", "--user", USER]) == 0
        out = capsys.readouterr().out
        assert "Pending transfer suggestions (1)" in out
        assert "Card payments without a link (1)" in out

        payment = next(e for e in db.list_entries(USER) if e.type == "cc_payment")
        card = imported[2]
        assert _run(["confirm-payment", "--user", USER, payment.id, card.id]) == 0
        assert db.get_payment_link(payment.id) is not None

    def test_confirm_payment_wrong_account(self, db, imported, capsys):
        payment = next(e for e in db.list_entries(USER) if e.type == "cc_payment")
        savings = imported[1]
        assert _run(["confirm-payment", "--user", USER, payment.id, savings.id]) == 1
        assert "Error: not_credit_account" in capsys.readouterr().out

    def test_status(self, db, imported, capsys):
        assert _run(["status", "--user", USER]) == 0
        out = capsys.readouterr().out
        assert "Ledger entries:       3" in out
        assert "Import batches:       2" in out


class TestSeedingCommands:
    def test_account_add(self, db, capsys):
        assert _run(["account", "add", "--user", USER, "Cartao Visa", "--type", "credit"]) == 0
        assert "Added account" in capsys.readouterr().out
        [account] = db.list_accounts(USER)
        assert account.name == "Cartao Visa"
        assert account.is_credit

    def test_account_without_action(self, db):
        assert _run(["account"]) == 1

    def test_category_add(self, db):
        assert _run(["category", "add", "--user", USER, "Mercado"]) == 0
        assert [c.name for c in db.list_categories(USER)] == ["Mercado"]


class TestClaudeFn:
    def test_none_without_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert _make_claude_fn() is None
