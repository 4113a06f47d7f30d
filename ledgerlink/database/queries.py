"""Queries that span multiple tables.

These back the reconciliation inbox and status reporting.
"""

from __future__ import annotations

import sqlite3


def get_pending_suggestions_detail(conn: sqlite3.Connection, user_id: str) -> list[dict]:
    """Pending suggestions with both legs resolved for display."""
    rows = conn.execute(
        "SELECT s.id, s.score, s.status, s.created_at,"
        "  o.id AS out_entry_id, o.posted_date AS out_posted_date,"
        "  o.amount_cents AS out_amount_cents, o.description_raw AS out_description,"
        "  o.account_id AS out_account_id, oa.name AS out_account_name,"
        "  i.id AS in_entry_id, i.posted_date AS in_posted_date,"
        "  i.amount_cents AS in_amount_cents, i.description_raw AS in_description,"
        "  i.account_id AS in_account_id, ia.name AS in_account_name"
        " FROM transfer_suggestions s"
        " JOIN ledger_entries o ON o.id = s.out_entry_id"
        " JOIN ledger_entries i ON i.id = s.in_entry_id"
        " LEFT JOIN accounts oa ON oa.id = COALESCE(o.account_id, o.credit_card_account_id)"
        " LEFT JOIN accounts ia ON ia.id = COALESCE(i.account_id, i.credit_card_account_id)"
        " WHERE s.user_id = ? AND s.status = 'pending'"
        "   AND o.type <> 'transfer' AND i.type <> 'transfer'"
        " ORDER BY s.score DESC, o.posted_date",
        (user_id,),
    ).fetchall()
    return [dict(r) for r in rows]


def get_unmatched_payments(conn: sqlite3.Connection, user_id: str) -> list[dict]:
    """Bank-side cc_payment outflows that have no payment link yet."""
    rows = conn.execute(
        "SELECT e.id, e.posted_date, e.amount_cents, e.description_raw,"
        "  e.account_id, a.name AS account_name"
        " FROM ledger_entries e"
        " LEFT JOIN accounts a ON a.id = e.account_id"
        " WHERE e.user_id = ? AND e.type = 'cc_payment' AND e.direction = 'OUT'"
        "   AND NOT EXISTS ("
        "     SELECT 1 FROM cc_payment_links l WHERE l.payment_entry_id = e.id"
        "   )"
        " ORDER BY e.posted_date, e.rowid",
        (user_id,),
    ).fetchall()
    return [dict(r) for r in rows]


def get_unlinked_card_activity(conn: sqlite3.Connection, user_id: str) -> list[dict]:
    """Card purchases not yet covered by a confirmed payment.

    A purchase counts as covered once its card has a linked payment posted
    on or after the purchase date; later purchases stay in the inbox.
    """
    rows = conn.execute(
        "SELECT e.id, e.posted_date, e.amount_cents, e.description_raw,"
        "  e.credit_card_account_id, a.name AS account_name"
        " FROM ledger_entries e"
        " JOIN accounts a ON a.id = e.credit_card_account_id AND a.type = 'credit'"
        " WHERE e.user_id = ? AND e.direction = 'OUT'"
        "   AND e.type IN ('cc_purchase', 'expense')"
        "   AND NOT EXISTS ("
        "     SELECT 1 FROM cc_payment_links l"
        "     JOIN ledger_entries p ON p.id = l.payment_entry_id"
        "     WHERE l.user_id = e.user_id"
        "       AND l.credit_card_account_id = e.credit_card_account_id"
        "       AND p.posted_date >= e.posted_date"
        "   )"
        " ORDER BY e.posted_date, e.rowid",
        (user_id,),
    ).fetchall()
    return [dict(r) for r in rows]


def get_status_counts(conn: sqlite3.Connection, user_id: str) -> dict:
    """Aggregate counts for the status command."""
    row = conn.execute(
        "SELECT"
        "  (SELECT COUNT(*) FROM ledger_entries WHERE user_id = :u) AS total_entries,"
        "  (SELECT COUNT(*) FROM ledger_entries WHERE user_id = :u"
        "     AND category_id IS NOT NULL) AS categorized,"
        "  (SELECT COUNT(*) FROM ledger_entries WHERE user_id = :u"
        "     AND type = 'transfer') AS transfers,"
        "  (SELECT COUNT(*) FROM transfer_suggestions WHERE user_id = :u"
        "     AND status = 'pending') AS pending_suggestions,"
        "  (SELECT COUNT(*) FROM transfer_suggestions WHERE user_id = :u"
        "     AND status = 'rejected') AS rejected_suggestions,"
        "  (SELECT COUNT(*) FROM cc_payment_links WHERE user_id = :u) AS payment_links,"
        "  (SELECT COUNT(*) FROM import_batches WHERE user_id = :u) AS total_batches",
        {"u": user_id},
    ).fetchone()
    return dict(row)
