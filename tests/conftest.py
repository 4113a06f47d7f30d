"""Shared test fixtures."""

from pathlib import Path
from uuid import uuid4

import pytest

from ledgerlink.database.models import Account, Category, LedgerEntry
from ledgerlink.database.repository import Repository

# Test fixture config directory with synthetic data
FIXTURE_CONFIG_DIR = Path(__file__).parent / "fixtures" / "config"

MIGRATIONS_DIR = Path(__file__).parent.parent / "ledgerlink" / "database" / "migrations"

USER = "user-1"
OTHER_USER = "user-2"


@pytest.fixture
def repo():
    r = Repository(":memory:")
    r.apply_migrations(MIGRATIONS_DIR)
    yield r
    r.close()


@pytest.fixture
def checking(repo):
    return repo.insert_account(Account(user_id=USER, name="Conta Corrente", type="checking"))


@pytest.fixture
def savings(repo):
    return repo.insert_account(Account(user_id=USER, name="Poupanca", type="savings"))


@pytest.fixture
def card(repo):
    return repo.insert_account(Account(user_id=USER, name="Cartao Visa", type="credit"))


@pytest.fixture
def categories(repo):
    names = ["Supermercado", "Alimentacao", "Transferencias", "Taxas", "Salario"]
    return {n: repo.insert_category(Category(user_id=USER, name=n)) for n in names}


@pytest.fixture
def make_entry(repo):
    """Insert a ledger entry directly, bypassing the import pipeline."""

    def _make(account, posted_date, amount_cents, direction,
              description="TRANSFERENCIA", entry_type=None, user_id=USER):
        if entry_type is None:
            if account.is_credit:
                entry_type = "cc_purchase" if direction == "OUT" else "refund"
            else:
                entry_type = "expense" if direction == "OUT" else "income"
        return repo.insert_entry(LedgerEntry(
            user_id=user_id,
            posted_date=posted_date,
            amount_cents=amount_cents,
            direction=direction,
            type=entry_type,
            description_raw=description,
            description_normalized=description.upper(),
            account_id=None if account.is_credit else account.id,
            credit_card_account_id=account.id if account.is_credit else None,
            fingerprint=uuid4().hex,
        ))

    return _make
