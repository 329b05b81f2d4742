"""
Account Models

An account is anything that holds a balance: a bank account, a credit
card or a cash wallet.

SIGN CONVENTION:
- Asset kinds (checking, savings, investment, wallet) store what the
  owner HAS. Income raises the balance, spending lowers it.
- The credit kind stores what the owner OWES. Spending raises the
  balance, a payment lowers it.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ledger_engine.models.money import ZERO, to_money


class AccountKind(str, Enum):
    """Supported account kinds."""
    CHECKING = "checking"
    SAVINGS = "savings"
    INVESTMENT = "investment"
    CREDIT = "credit"
    WALLET = "wallet"

    @property
    def is_debt(self) -> bool:
        """True when the balance represents outstanding debt."""
        return self is AccountKind.CREDIT


ASSET_KINDS = frozenset({
    AccountKind.CHECKING,
    AccountKind.SAVINGS,
    AccountKind.INVESTMENT,
    AccountKind.WALLET,
})


class AccountInput(BaseModel):
    """
    Payload for opening an account.

    The opening balance is NOT written to the balance column directly.
    It becomes an opening_balance transaction so that reconciliation
    can recompute it from the log.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    kind: AccountKind = Field(
        ...,
        description="Account kind"
    )
    institution: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Bank or card issuer"
    )
    opening_balance: Decimal = Field(
        default=ZERO,
        ge=0,
        decimal_places=2,
        description="Starting balance (outstanding debt for credit accounts)"
    )


class Account(BaseModel):
    """An account record as held by the account store."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    kind: AccountKind
    institution: Optional[str] = None
    balance: Decimal = Field(default=ZERO)
    is_active: bool = True
    is_default_wallet: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('balance')
    @classmethod
    def quantize_balance(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @property
    def is_debt(self) -> bool:
        return self.kind.is_debt


class AccountBalance(BaseModel):
    """Balance of one account before and after an operation."""

    account_id: UUID
    name: str
    kind: AccountKind
    balance_before: Decimal
    balance_after: Decimal

    @property
    def delta(self) -> Decimal:
        return self.balance_after - self.balance_before
