"""Repository: persistence for the ledger using raw SQL.

All methods take/return dataclass instances from models.py.
Connection management uses a single connection with WAL mode and
foreign keys enabled. Multi-statement writes run in one explicit
transaction; the unique indexes on (user_id, fingerprint) and
(user_id, out_entry_id, in_entry_id) are the final guard against
duplicates when two writers race.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable

from ledgerlink.errors import InvalidLink

from .models import (
    Account,
    Category,
    CategoryRule,
    CreditCardPaymentLink,
    ImportBatch,
    LedgerEntry,
    TransferSuggestion,
    _new_id,
    _now,
)

_ENTRY_COLUMNS = (
    "id", "user_id", "posted_date", "amount_cents", "direction", "type",
    "description_raw", "description_normalized", "merchant_normalized",
    "account_id", "credit_card_account_id", "institution_id", "category_id",
    "categorization_source", "categorization_rule_id", "import_batch_id",
    "external_id", "fingerprint", "is_internal_transfer", "created_at",
    "updated_at",
)


class Repository:
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version ("
            "  version INTEGER PRIMARY KEY,"
            "  description TEXT,"
            "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
            ")"
        )
        self.conn.commit()

        row = self.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        current = row[0] or 0

        for sql_file in sorted(Path(migrations_dir).glob("*.sql")):
            version = int(sql_file.name.split("_")[0])
            if version > current:
                try:
                    self.conn.execute("BEGIN")
                    # executescript auto-commits, so we split statements manually
                    sql_text = sql_file.read_text()
                    for statement in sql_text.split(";"):
                        statement = statement.strip()
                        if statement:
                            self.conn.execute(statement)
                    self.conn.execute(
                        "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                        (version, sql_file.stem),
                    )
                    self.conn.commit()
                except Exception:
                    self.conn.rollback()
                    raise

    # ── Accounts & categories ───────────────────────────────

    def insert_account(self, account: Account) -> Account:
        self.conn.execute(
            "INSERT INTO accounts (id, user_id, name, type, institution_id, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (account.id, account.user_id, account.name, account.type,
             account.institution_id, account.created_at),
        )
        self.conn.commit()
        return account

    def get_account(self, account_id: str) -> Account | None:
        row = self.conn.execute(
            "SELECT * FROM accounts WHERE id = ?", (account_id,)
        ).fetchone()
        return self._row_to_account(row) if row else None

    def list_accounts(self, user_id: str) -> list[Account]:
        rows = self.conn.execute(
            "SELECT * FROM accounts WHERE user_id = ? ORDER BY name", (user_id,)
        ).fetchall()
        return [self._row_to_account(r) for r in rows]

    def insert_category(self, category: Category) -> Category:
        self.conn.execute(
            "INSERT INTO categories (id, user_id, name, created_at) VALUES (?, ?, ?, ?)",
            (category.id, category.user_id, category.name, category.created_at),
        )
        self.conn.commit()
        return category

    def list_categories(self, user_id: str) -> list[Category]:
        rows = self.conn.execute(
            "SELECT * FROM categories WHERE user_id = ? ORDER BY name, id", (user_id,)
        ).fetchall()
        return [Category(**dict(r)) for r in rows]

    def insert_category_rule(self, rule: CategoryRule) -> CategoryRule:
        self.conn.execute(
            "INSERT INTO category_rules (id, user_id, name, priority, enabled,"
            " match_type, pattern, account_id, min_amount, max_amount,"
            " category_id, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (rule.id, rule.user_id, rule.name, rule.priority, int(rule.enabled),
             rule.match_type, rule.pattern, rule.account_id, rule.min_amount,
             rule.max_amount, rule.category_id, rule.created_at),
        )
        self.conn.commit()
        return rule

    def list_category_rules(self, user_id: str) -> list[CategoryRule]:
        rows = self.conn.execute(
            "SELECT * FROM category_rules WHERE user_id = ?"
            " ORDER BY priority, created_at, id",
            (user_id,),
        ).fetchall()
        return [self._row_to_rule(r) for r in rows]

    # ── Import batches ──────────────────────────────────────

    def get_import_batches_by_hash(self, user_id: str, file_hash: str) -> list[ImportBatch]:
        rows = self.conn.execute(
            "SELECT * FROM import_batches WHERE user_id = ? AND file_hash = ?"
            " ORDER BY imported_at",
            (user_id, file_hash),
        ).fetchall()
        return [ImportBatch(**dict(r)) for r in rows]

    def get_import_batch(self, batch_id: str) -> ImportBatch | None:
        row = self.conn.execute(
            "SELECT * FROM import_batches WHERE id = ?", (batch_id,)
        ).fetchone()
        return ImportBatch(**dict(row)) if row else None

    def commit_import_batch(
        self, batch: ImportBatch, entries: list[LedgerEntry]
    ) -> list[LedgerEntry]:
        """Persist a batch record and its entries atomically.

        Entries whose (user_id, fingerprint) already exists are skipped by
        the unique index and added to batch.duplicates / total_skipped.
        Returns the entries actually inserted.
        """
        inserted: list[LedgerEntry] = []
        try:
            self.conn.execute("BEGIN")
            self.conn.execute(
                "INSERT INTO import_batches (id, user_id, source_type, file_name,"
                " file_hash, account_id, mapping, total_received, total_imported,"
                " total_skipped, duplicates, invalid_rows, imported_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, 0, 0, 0, ?)",
                (batch.id, batch.user_id, batch.source_type, batch.file_name,
                 batch.file_hash, batch.account_id, batch.mapping,
                 batch.total_received, batch.imported_at),
            )
            for entry in entries:
                entry.import_batch_id = batch.id
                cur = self.conn.execute(
                    self._insert_entry_sql(on_conflict_ignore=True),
                    self._entry_params(entry),
                )
                if cur.rowcount == 1:
                    inserted.append(entry)

            conflicts = len(entries) - len(inserted)
            batch.total_imported = len(inserted)
            batch.duplicates += conflicts
            batch.total_skipped += conflicts
            self.conn.execute(
                "UPDATE import_batches SET total_imported = ?, total_skipped = ?,"
                " duplicates = ?, invalid_rows = ? WHERE id = ?",
                (batch.total_imported, batch.total_skipped, batch.duplicates,
                 batch.invalid_rows, batch.id),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return inserted

    # ── Ledger entries ──────────────────────────────────────

    @staticmethod
    def _insert_entry_sql(on_conflict_ignore: bool = False) -> str:
        cols = ", ".join(_ENTRY_COLUMNS)
        marks = ", ".join("?" * len(_ENTRY_COLUMNS))
        sql = f"INSERT INTO ledger_entries ({cols}) VALUES ({marks})"
        if on_conflict_ignore:
            sql += " ON CONFLICT(user_id, fingerprint) DO NOTHING"
        return sql

    @staticmethod
    def _entry_params(entry: LedgerEntry) -> tuple:
        return tuple(
            int(entry.is_internal_transfer) if col == "is_internal_transfer"
            else getattr(entry, col)
            for col in _ENTRY_COLUMNS
        )

    def insert_entry(self, entry: LedgerEntry) -> LedgerEntry:
        """Insert one entry (manual path). Raises sqlite3.IntegrityError on duplicates."""
        self.conn.execute(self._insert_entry_sql(), self._entry_params(entry))
        self.conn.commit()
        return entry

    def get_entry(self, entry_id: str) -> LedgerEntry | None:
        row = self.conn.execute(
            "SELECT * FROM ledger_entries WHERE id = ?", (entry_id,)
        ).fetchone()
        return self._row_to_entry(row) if row else None

    def get_entries(self, entry_ids: Iterable[str]) -> dict[str, LedgerEntry]:
        ids = list(dict.fromkeys(entry_ids))
        result: dict[str, LedgerEntry] = {}
        chunk_size = 500
        for i in range(0, len(ids), chunk_size):
            chunk = ids[i : i + chunk_size]
            ph = ",".join("?" * len(chunk))
            rows = self.conn.execute(
                f"SELECT * FROM ledger_entries WHERE id IN ({ph})", chunk,
            ).fetchall()
            result.update((r["id"], self._row_to_entry(r)) for r in rows)
        return result

    def existing_fingerprints(self, user_id: str, fingerprints: Iterable[str]) -> set[str]:
        """Return the subset of fingerprints already stored for the user.

        Chunked to stay within SQLite's variable limit.
        """
        values = list(dict.fromkeys(fingerprints))
        found: set[str] = set()
        chunk_size = 500
        for i in range(0, len(values), chunk_size):
            chunk = values[i : i + chunk_size]
            ph = ",".join("?" * len(chunk))
            rows = self.conn.execute(
                f"SELECT fingerprint FROM ledger_entries"
                f" WHERE user_id = ? AND fingerprint IN ({ph})",
                [user_id, *chunk],
            ).fetchall()
            found.update(r[0] for r in rows)
        return found

    def count_entries(self, user_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM ledger_entries WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row[0]

    def list_entries(self, user_id: str) -> list[LedgerEntry]:
        rows = self.conn.execute(
            "SELECT * FROM ledger_entries WHERE user_id = ?"
            " ORDER BY posted_date, rowid",
            (user_id,),
        ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def list_transfer_candidates(
        self,
        user_id: str,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> list[LedgerEntry]:
        """Bank-side income/expense entries not yet in a live suggestion."""
        sql = (
            "SELECT e.* FROM ledger_entries e"
            " WHERE e.user_id = ?"
            "   AND e.type IN ('income', 'expense')"
            "   AND e.account_id IS NOT NULL"
            "   AND NOT EXISTS ("
            "     SELECT 1 FROM transfer_suggestions s"
            "     WHERE s.user_id = e.user_id"
            "       AND s.status IN ('pending', 'confirmed')"
            "       AND (s.out_entry_id = e.id OR s.in_entry_id = e.id)"
            "   )"
        )
        params: list = [user_id]
        if date_from:
            sql += " AND e.posted_date >= ?"
            params.append(date_from)
        if date_to:
            sql += " AND e.posted_date <= ?"
            params.append(date_to)
        sql += " ORDER BY e.posted_date, e.rowid"
        rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def mark_pair_as_transfer(self, user_id: str, out_entry_id: str, in_entry_id: str):
        """Flip both legs to transfer and confirm their suggestion, atomically.

        Other pending suggestions that involve either leg are rejected, which
        frees their remaining leg for the next matcher run.
        """
        now = _now()
        try:
            self.conn.execute("BEGIN")
            self.conn.execute(
                "UPDATE ledger_entries SET type = 'transfer', is_internal_transfer = 1,"
                " updated_at = ? WHERE user_id = ? AND id IN (?, ?)",
                (now, user_id, out_entry_id, in_entry_id),
            )
            self.conn.execute(
                "UPDATE transfer_suggestions SET status = 'confirmed', updated_at = ?"
                " WHERE user_id = ? AND status = 'pending'"
                "   AND ((out_entry_id = ? AND in_entry_id = ?)"
                "     OR (out_entry_id = ? AND in_entry_id = ?))",
                (now, user_id, out_entry_id, in_entry_id, in_entry_id, out_entry_id),
            )
            self.conn.execute(
                "UPDATE transfer_suggestions SET status = 'rejected', updated_at = ?"
                " WHERE user_id = ? AND status = 'pending'"
                "   AND (out_entry_id IN (?, ?) OR in_entry_id IN (?, ?))",
                (now, user_id, out_entry_id, in_entry_id, out_entry_id, in_entry_id),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    # ── Transfer suggestions ────────────────────────────────

    def get_suggestion(self, suggestion_id: str) -> TransferSuggestion | None:
        row = self.conn.execute(
            "SELECT * FROM transfer_suggestions WHERE id = ?", (suggestion_id,)
        ).fetchone()
        return TransferSuggestion(**dict(row)) if row else None

    def get_suggestions_for_pair(
        self, user_id: str, entry_a: str, entry_b: str
    ) -> list[TransferSuggestion]:
        """Suggestions for the unordered pair (either orientation)."""
        rows = self.conn.execute(
            "SELECT * FROM transfer_suggestions WHERE user_id = ?"
            " AND ((out_entry_id = ? AND in_entry_id = ?)"
            "   OR (out_entry_id = ? AND in_entry_id = ?))",
            (user_id, entry_a, entry_b, entry_b, entry_a),
        ).fetchall()
        return [TransferSuggestion(**dict(r)) for r in rows]

    def list_suggestions(
        self, user_id: str, statuses: Iterable[str] | None = None
    ) -> list[TransferSuggestion]:
        sql = "SELECT * FROM transfer_suggestions WHERE user_id = ?"
        params: list = [user_id]
        if statuses:
            statuses = list(statuses)
            sql += f" AND status IN ({','.join('?' * len(statuses))})"
            params.extend(statuses)
        sql += " ORDER BY score DESC, created_at"
        rows = self.conn.execute(sql, params).fetchall()
        return [TransferSuggestion(**dict(r)) for r in rows]

    def upsert_pending_suggestions(
        self, suggestions: list[TransferSuggestion]
    ) -> list[TransferSuggestion]:
        """Insert new pending suggestions or refresh the score of pending ones.

        Pairs already confirmed or rejected are left untouched and are not
        returned. Returns the stored rows.
        """
        stored: list[TransferSuggestion] = []
        try:
            self.conn.execute("BEGIN")
            for s in suggestions:
                self.conn.execute(
                    "INSERT INTO transfer_suggestions"
                    " (id, user_id, out_entry_id, in_entry_id, score, status,"
                    "  created_at, updated_at)"
                    " VALUES (?, ?, ?, ?, ?, 'pending', ?, ?)"
                    " ON CONFLICT(user_id, out_entry_id, in_entry_id) DO UPDATE SET"
                    "  score = excluded.score, updated_at = excluded.updated_at"
                    " WHERE transfer_suggestions.status = 'pending'",
                    (s.id, s.user_id, s.out_entry_id, s.in_entry_id, s.score,
                     s.created_at, s.updated_at),
                )
                row = self.conn.execute(
                    "SELECT * FROM transfer_suggestions"
                    " WHERE user_id = ? AND out_entry_id = ? AND in_entry_id = ?",
                    (s.user_id, s.out_entry_id, s.in_entry_id),
                ).fetchone()
                if row is not None and row["status"] == "pending":
                    stored.append(TransferSuggestion(**dict(row)))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return stored

    def reject_pair(
        self, user_id: str, out_entry_id: str, in_entry_id: str
    ) -> TransferSuggestion:
        """Mark the pair's suggestion rejected, recording it if none exists."""
        now = _now()
        try:
            self.conn.execute("BEGIN")
            self.conn.execute(
                "UPDATE transfer_suggestions SET status = 'rejected', updated_at = ?"
                " WHERE user_id = ? AND status = 'pending'"
                "   AND ((out_entry_id = ? AND in_entry_id = ?)"
                "     OR (out_entry_id = ? AND in_entry_id = ?))",
                (now, user_id, out_entry_id, in_entry_id, in_entry_id, out_entry_id),
            )
            self.conn.execute(
                "INSERT INTO transfer_suggestions"
                " (id, user_id, out_entry_id, in_entry_id, score, status,"
                "  created_at, updated_at)"
                " SELECT ?, ?, ?, ?, 0, 'rejected', ?, ?"
                " WHERE NOT EXISTS ("
                "   SELECT 1 FROM transfer_suggestions WHERE user_id = ?"
                "   AND ((out_entry_id = ? AND in_entry_id = ?)"
                "     OR (out_entry_id = ? AND in_entry_id = ?)))",
                (_new_id(),
                 user_id, out_entry_id, in_entry_id, now, now,
                 user_id, out_entry_id, in_entry_id, in_entry_id, out_entry_id),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_suggestions_for_pair(user_id, out_entry_id, in_entry_id)[0]

    def set_suggestion_status(self, suggestion_id: str, status: str):
        self.conn.execute(
            "UPDATE transfer_suggestions SET status = ?, updated_at = ? WHERE id = ?",
            (status, _now(), suggestion_id),
        )
        self.conn.commit()

    # ── Credit card payment links ───────────────────────────

    def get_payment_link(self, payment_entry_id: str) -> CreditCardPaymentLink | None:
        row = self.conn.execute(
            "SELECT * FROM cc_payment_links WHERE payment_entry_id = ?",
            (payment_entry_id,),
        ).fetchone()
        return CreditCardPaymentLink(**dict(row)) if row else None

    def link_credit_card_payment(self, link: CreditCardPaymentLink) -> CreditCardPaymentLink:
        """Create the link and mark the payment entry cc_payment, atomically.

        Raises:
            InvalidLink: The payment entry is already linked (reason
                "already_linked"), including when a concurrent writer won.
        """
        try:
            self.conn.execute("BEGIN")
            self.conn.execute(
                "INSERT INTO cc_payment_links"
                " (id, user_id, payment_entry_id, credit_card_account_id, confirmed_at)"
                " VALUES (?, ?, ?, ?, ?)",
                (link.id, link.user_id, link.payment_entry_id,
                 link.credit_card_account_id, link.confirmed_at),
            )
            self.conn.execute(
                "UPDATE ledger_entries SET type = 'cc_payment', is_internal_transfer = 0,"
                " updated_at = ? WHERE id = ?",
                (_now(), link.payment_entry_id),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            if "UNIQUE constraint failed" in str(e):
                raise InvalidLink("already_linked", link.payment_entry_id) from e
            raise
        except Exception:
            self.conn.rollback()
            raise
        return link

    # ── API usage ───────────────────────────────────────────

    def increment_api_usage(
        self, month: str, service: str,
        requests: int = 1,
        tokens_in: int = 0, tokens_out: int = 0,
        cost_cents: int = 0,
    ):
        """Upsert api_usage row: increment counters for month+service."""
        self.conn.execute(
            "INSERT INTO api_usage"
            " (id, month, service, request_count, input_tokens,"
            "  output_tokens, estimated_cost_cents, updated_at)"
            " VALUES (hex(randomblob(16)), ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)"
            " ON CONFLICT(month, service) DO UPDATE SET"
            "  request_count = request_count + excluded.request_count,"
            "  input_tokens = input_tokens + excluded.input_tokens,"
            "  output_tokens = output_tokens + excluded.output_tokens,"
            "  estimated_cost_cents = estimated_cost_cents + excluded.estimated_cost_cents,"
            "  updated_at = CURRENT_TIMESTAMP",
            (month, service, requests, tokens_in, tokens_out, cost_cents),
        )
        self.conn.commit()

    def get_monthly_cost(self, month: str) -> int:
        """Total estimated cost in cents for a given month."""
        row = self.conn.execute(
            "SELECT COALESCE(SUM(estimated_cost_cents), 0) FROM api_usage"
            " WHERE month = ?",
            (month,),
        ).fetchone()
        return row[0]

    # ── Row mappers ─────────────────────────────────────────

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(**dict(row))

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> CategoryRule:
        data = dict(row)
        data["enabled"] = bool(data["enabled"])
        return CategoryRule(**data)

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> LedgerEntry:
        data = dict(row)
        data["is_internal_transfer"] = bool(data["is_internal_transfer"])
        return LedgerEntry(**data)
