"""
Shared fixtures.

Every test gets its own SQLite file under pytest's tmp_path and a
freshly wired set of ledger components.
"""

from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio

from ledger_engine.config import get_settings
from ledger_engine.orchestrator import LedgerComponents, open_ledger


OWNER = "user-1"
OTHER_OWNER = "user-2"

LEDGER_ENV_VARS = [
    "LEDGER_DB_PATH",
    "LEDGER_DB_BUSY_TIMEOUT_MS",
    "LEDGER_DEFAULT_WALLET_NAME",
    "LEDGER_DEFAULT_WALLET_INSTITUTION",
    "LEDGER_RETRY_ATTEMPTS",
    "LEDGER_LARGE_AMOUNT_WARNING",
    "LEDGER_FUTURE_DATE_TOLERANCE_DAYS",
    "LOAN_MIN_NONZERO_ANNUAL_RATE_PERCENT",
    "LOAN_MAX_ANNUAL_RATE_PERCENT",
    "LOAN_MAX_TERM_MONTHS",
    "APP_ENVIRONMENT",
    "DEBUG_MODE",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate tests from the developer's environment and the settings cache."""
    for name in LEDGER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def ledger(tmp_path: Path) -> LedgerComponents:
    components = await open_ledger(tmp_path / "ledger.db")
    yield components
    await components.close()


@pytest_asyncio.fixture
async def wallet(ledger: LedgerComponents):
    return await ledger.engine.open_account(OWNER, {
        "name": "Wallet",
        "kind": "wallet",
        "opening_balance": Decimal("500.00"),
    })


@pytest_asyncio.fixture
async def checking(ledger: LedgerComponents):
    return await ledger.engine.open_account(OWNER, {
        "name": "HDFC Checking",
        "kind": "checking",
        "institution": "HDFC",
        "opening_balance": Decimal("1000.00"),
    })


@pytest_asyncio.fixture
async def credit_card(ledger: LedgerComponents):
    return await ledger.engine.open_account(OWNER, {
        "name": "ICICI Card",
        "kind": "credit",
        "institution": "ICICI",
    })
