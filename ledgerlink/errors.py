"""Exceptions raised by the ledger core.

Row-level errors (InvalidAmount, InvalidDate) are caught by the commit
pipeline and counted as invalid rows. Request-level and reconciliation
errors propagate to the caller.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger errors."""

    code = "ledger_error"


class InvalidRow(LedgerError):
    code = "invalid_row"


class InvalidAmount(InvalidRow):
    code = "invalid_amount"

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Invalid amount: {value!r}")


class InvalidDate(InvalidRow):
    code = "invalid_date"

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Invalid date: {value!r}")


class RowsLimitExceeded(LedgerError):
    code = "rows_limit_exceeded"

    def __init__(self, received: int, limit: int):
        self.received = received
        self.limit = limit
        super().__init__(
            f"Import has {received} rows, limit is {limit}"
        )


class InvalidPair(LedgerError):
    """A transfer pair that cannot be confirmed or rejected.

    reason is one of: not_found, not_owned, already_transfer, same_entry,
    same_account, wrong_direction, already_confirmed.
    """

    code = "invalid_pair"

    def __init__(self, reason: str, detail: str | None = None):
        self.reason = reason
        message = f"Invalid transfer pair: {reason}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InvalidLink(LedgerError):
    """A credit-card payment link that cannot be created.

    reason is one of: not_found, not_owned, not_credit_account,
    not_outflow, already_transfer, already_linked.
    """

    code = "invalid_link"

    def __init__(self, reason: str, detail: str | None = None):
        self.reason = reason
        message = f"Invalid payment link: {reason}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
