"""Tests for schema migration system."""

import sqlite3

import pytest

from ledgerlink.database.repository import Repository
from tests.conftest import MIGRATIONS_DIR, USER


@pytest.fixture
def bare_repo():
    r = Repository(":memory:")
    yield r
    r.close()


class TestMigrationApply:
    def test_creates_all_tables(self, bare_repo):
        bare_repo.apply_migrations(MIGRATIONS_DIR)
        tables = {
            row[0]
            for row in bare_repo.conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        expected = {
            "schema_version", "accounts", "categories", "category_rules",
            "import_batches", "ledger_entries", "transfer_suggestions",
            "cc_payment_links", "api_usage",
        }
        assert expected.issubset(tables)

    def test_tracks_version(self, bare_repo):
        bare_repo.apply_migrations(MIGRATIONS_DIR)
        row = bare_repo.conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        assert row[0] == 2

    def test_idempotent(self, bare_repo):
        bare_repo.apply_migrations(MIGRATIONS_DIR)
        bare_repo.apply_migrations(MIGRATIONS_DIR)
        row = bare_repo.conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()
        assert row[0] == 2

    def test_creates_unique_indexes(self, bare_repo):
        bare_repo.apply_migrations(MIGRATIONS_DIR)
        indexes = {
            row[0]
            for row in bare_repo.conn.execute(
                "SELECT name FROM sqlite_master WHERE type='index'"
            ).fetchall()
        }
        assert "idx_ledger_entries_fingerprint" in indexes
        assert "idx_transfer_suggestions_pair" in indexes

    def test_failed_migration_rolls_back(self, bare_repo, tmp_path):
        (tmp_path / "001_ok.sql").write_text("CREATE TABLE a (id TEXT)")
        (tmp_path / "002_bad.sql").write_text("CREATE TABLE b (id TEXT); NOT SQL")
        with pytest.raises(sqlite3.OperationalError):
            bare_repo.apply_migrations(tmp_path)

        versions = [r[0] for r in bare_repo.conn.execute("SELECT version FROM schema_version")]
        assert versions == [1]
        tables = {
            r[0] for r in bare_repo.conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert "b" not in tables


class TestSchemaConstraints:
    def _insert(self, repo, **overrides):
        values = dict(
            id="e1", user_id=USER, posted_date="2024-01-10", amount_cents=100,
            direction="OUT", type="expense", description_raw="X",
            description_normalized="X", account_id=None, credit_card_account_id=None,
            fingerprint="fp1", is_internal_transfer=0,
        )
        values.update(overrides)
        cols = ", ".join(values)
        marks = ", ".join("?" * len(values))
        repo.conn.execute(f"INSERT INTO ledger_entries ({cols}) VALUES ({marks})",
                          list(values.values()))

    def test_amount_must_be_positive(self, repo, checking):
        with pytest.raises(sqlite3.IntegrityError):
            self._insert(repo, account_id=checking.id, amount_cents=0)

    def test_exactly_one_account_reference(self, repo, checking, card):
        with pytest.raises(sqlite3.IntegrityError):
            self._insert(repo)
        with pytest.raises(sqlite3.IntegrityError):
            self._insert(repo, account_id=checking.id, credit_card_account_id=card.id)

    def test_transfer_flag_tracks_type(self, repo, checking):
        with pytest.raises(sqlite3.IntegrityError):
            self._insert(repo, account_id=checking.id, type="transfer", is_internal_transfer=0)
        with pytest.raises(sqlite3.IntegrityError):
            self._insert(repo, account_id=checking.id, is_internal_transfer=1)

    def test_unknown_type_rejected(self, repo, checking):
        with pytest.raises(sqlite3.IntegrityError):
            self._insert(repo, account_id=checking.id, type="bonus")

    def test_suggestion_legs_must_differ(self, repo, checking):
        self._insert(repo, account_id=checking.id)
        with pytest.raises(sqlite3.IntegrityError):
            repo.conn.execute(
                "INSERT INTO transfer_suggestions (id, user_id, out_entry_id, in_entry_id, score)"
                " VALUES ('s1', ?, 'e1', 'e1', 0.5)",
                (USER,),
            )
