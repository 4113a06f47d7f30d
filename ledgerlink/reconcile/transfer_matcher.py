"""Internal transfer detection across a user's own accounts.

An internal transfer shows up twice: an OUT on one account and an IN of
exactly the same cents on another, usually a day or two apart. Candidates
are bucketed by amount and each bucket is walked as two date-sorted
streams with a sliding window, so the cost grows with the number of
nearby pairs rather than with the square of the history.

Scoring: max(0, 1 - day_diff / window) plus a bonus when the two
descriptions share a significant token, capped at 1.0.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date

from ledgerlink.database.models import LedgerEntry, TransferSuggestion
from ledgerlink.database.repository import Repository
from ledgerlink.text.normalizer import DEFAULT_TABLES, TextTables, normalize_for_match

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 3
DEFAULT_MIN_SCORE = 0.3
DEFAULT_TOKEN_BONUS = 0.1
MIN_TOKEN_LENGTH = 3


@dataclass
class TransferCandidate:
    out_entry: LedgerEntry
    in_entry: LedgerEntry
    day_diff: int
    score: float


def significant_tokens(entry: LedgerEntry, tables: TextTables = DEFAULT_TABLES) -> set[str]:
    text = " ".join(p for p in (entry.merchant_normalized, entry.description_normalized) if p)
    return {
        token for token in re.findall(r"[A-Z0-9]+", normalize_for_match(text, tables))
        if len(token) >= MIN_TOKEN_LENGTH
        and not token.isdigit()
        and token not in tables.stop_tokens
    }


def score_pair(
    day_diff: int,
    window_days: int,
    tokens_overlap: bool,
    token_bonus: float = DEFAULT_TOKEN_BONUS,
) -> float:
    base = max(0.0, 1.0 - day_diff / window_days)
    if tokens_overlap:
        base = min(1.0, base + token_bonus)
    return round(base, 4)


class TransferMatcher:
    """Generate pending transfer suggestions for a user."""

    def __init__(
        self,
        repo: Repository,
        window_days: int = DEFAULT_WINDOW_DAYS,
        min_score: float = DEFAULT_MIN_SCORE,
        token_bonus: float = DEFAULT_TOKEN_BONUS,
        tables: TextTables = DEFAULT_TABLES,
    ):
        if window_days <= 0:
            raise ValueError(f"window_days must be positive, got {window_days}")
        self.repo = repo
        self.window_days = window_days
        self.min_score = min_score
        self.token_bonus = token_bonus
        self.tables = tables

    def find_candidates(self, entries: list[LedgerEntry]) -> list[TransferCandidate]:
        """All OUT/IN pairs with equal cents, different accounts, within the window."""
        buckets: dict[int, tuple[list[LedgerEntry], list[LedgerEntry]]] = defaultdict(
            lambda: ([], [])
        )
        for entry in entries:
            outs, ins = buckets[entry.amount_cents]
            (outs if entry.direction == "OUT" else ins).append(entry)

        tokens: dict[str, set[str]] = {}
        candidates: list[TransferCandidate] = []
        for outs, ins in buckets.values():
            if not outs or not ins:
                continue
            outs.sort(key=lambda e: e.posted_date)
            ins.sort(key=lambda e: e.posted_date)
            in_days = [date.fromisoformat(e.posted_date).toordinal() for e in ins]

            start = 0
            for out_entry in outs:
                out_day = date.fromisoformat(out_entry.posted_date).toordinal()
                while start < len(ins) and in_days[start] < out_day - self.window_days:
                    start += 1
                j = start
                while j < len(ins) and in_days[j] <= out_day + self.window_days:
                    in_entry = ins[j]
                    j += 1
                    if in_entry.account_id == out_entry.account_id:
                        continue
                    day_diff = abs(in_days[j - 1] - out_day)
                    for e in (out_entry, in_entry):
                        if e.id not in tokens:
                            tokens[e.id] = significant_tokens(e, self.tables)
                    overlap = bool(tokens[out_entry.id] & tokens[in_entry.id])
                    score = score_pair(day_diff, self.window_days, overlap, self.token_bonus)
                    if score < self.min_score:
                        continue
                    candidates.append(TransferCandidate(out_entry, in_entry, day_diff, score))
        candidates.sort(key=lambda c: (-c.score, c.out_entry.posted_date, c.out_entry.id))
        return candidates

    def run(
        self,
        user_id: str,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> list[TransferSuggestion]:
        """Persist suggestions for new candidate pairs and return them.

        Pairs already confirmed or rejected for the user are never re-proposed.
        """
        entries = self.repo.list_transfer_candidates(user_id, date_from, date_to)
        suppressed = {
            frozenset((s.out_entry_id, s.in_entry_id))
            for s in self.repo.list_suggestions(user_id, ("rejected", "confirmed"))
        }

        suggestions = [
            TransferSuggestion(
                user_id=user_id,
                out_entry_id=c.out_entry.id,
                in_entry_id=c.in_entry.id,
                score=c.score,
            )
            for c in self.find_candidates(entries)
            if frozenset((c.out_entry.id, c.in_entry.id)) not in suppressed
        ]
        stored = self.repo.upsert_pending_suggestions(suggestions) if suggestions else []
        logger.info(
            "Transfer matcher for user %s: %d candidate entries, %d suggestions",
            user_id, len(entries), len(stored),
        )
        return stored
