"""
Transaction Models

A transaction moves money into, out of, or between accounts.

Direction is never encoded in the sign of the amount. Amounts are
always positive; the type and the populated account slot(s) say
which way the money goes:

    income           -> destination only
    expense          -> source only
    transfer         -> source and destination (different accounts)
    opening_balance  -> destination only (starting level of an account)

STATE MACHINE:
    active --edit--> active (revision + 1) --delete--> deleted (terminal)
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ledger_engine.models.account import AccountBalance
from ledger_engine.models.money import to_money


class TransactionType(str, Enum):
    """Kinds of transaction the ledger understands."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    OPENING_BALANCE = "opening_balance"


class TransactionStatus(str, Enum):
    """
    Transaction lifecycle status.

    There is no path from DELETED back to ACTIVE.
    """
    ACTIVE = "active"
    DELETED = "deleted"


# type -> (source slot required, destination slot required)
SLOT_RULES: dict[TransactionType, tuple[bool, bool]] = {
    TransactionType.INCOME: (False, True),
    TransactionType.EXPENSE: (True, False),
    TransactionType.TRANSFER: (True, True),
    TransactionType.OPENING_BALANCE: (False, True),
}


def slot_violations(
    transaction_type: TransactionType,
    source_account_id: Optional[UUID],
    destination_account_id: Optional[UUID],
) -> list[tuple[str, str]]:
    """
    Check the type/account-slot combination.

    Returns a list of (field, message) pairs, empty when valid.
    """
    needs_source, needs_destination = SLOT_RULES[transaction_type]
    problems = []
    label = transaction_type.value.replace("_", " ")
    article = "An" if label[0] in "aeiou" else "A"

    if needs_source and source_account_id is None:
        problems.append(("source_account_id", f"{article} {label} needs a source account"))
    if not needs_source and source_account_id is not None:
        problems.append(("source_account_id", f"{article} {label} cannot have a source account"))
    if needs_destination and destination_account_id is None:
        problems.append(("destination_account_id", f"{article} {label} needs a destination account"))
    if not needs_destination and destination_account_id is not None:
        problems.append(("destination_account_id", f"{article} {label} cannot have a destination account"))

    if (
        transaction_type == TransactionType.TRANSFER
        and source_account_id is not None
        and source_account_id == destination_account_id
    ):
        problems.append(("destination_account_id", "Source and destination must be different accounts"))

    return problems


class TransactionInput(BaseModel):
    """
    Payload for creating or editing a transaction.

    Edits are full replacements: the same shape is sent for both.
    Slot rules are checked by the validator, not here, so that
    every problem can be reported at once.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Positive amount; direction comes from type and slots"
    )
    category_id: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Opaque reference into the category taxonomy"
    )
    source_account_id: Optional[UUID] = None
    destination_account_id: Optional[UUID] = None
    occurred_at: datetime = Field(default_factory=datetime.utcnow)
    title: str = Field(default="", max_length=500)
    notes: list[str] = Field(default_factory=list)

    @field_validator('notes')
    @classmethod
    def drop_blank_notes(cls, v: list[str]) -> list[str]:
        return [note.strip() for note in v if note and note.strip()]

    @property
    def account_ids(self) -> set[UUID]:
        return {
            account_id
            for account_id in (self.source_account_id, self.destination_account_id)
            if account_id is not None
        }


class Transaction(BaseModel):
    """
    A transaction row as held by the transaction store.

    The slot invariant is enforced here as well: a row that breaks it
    can never be constructed, let alone persisted.
    """

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    category_id: Optional[str] = None
    source_account_id: Optional[UUID] = None
    destination_account_id: Optional[UUID] = None
    occurred_at: datetime
    title: str = ""
    notes: list[str] = Field(default_factory=list)

    status: TransactionStatus = TransactionStatus.ACTIVE
    revision: int = Field(default=0, ge=0)
    sequence: Optional[int] = Field(
        default=None,
        description="Creation order, assigned by the store"
    )
    loan_payment_id: Optional[UUID] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    deleted_at: Optional[datetime] = None

    @field_validator('amount')
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @model_validator(mode='after')
    def validate_slots(self) -> 'Transaction':
        problems = slot_violations(
            self.type, self.source_account_id, self.destination_account_id
        )
        if problems:
            raise ValueError("; ".join(message for _, message in problems))
        return self

    @property
    def is_deleted(self) -> bool:
        return self.status == TransactionStatus.DELETED

    @property
    def was_edited(self) -> bool:
        return self.revision > 0

    @property
    def account_ids(self) -> set[UUID]:
        return {
            account_id
            for account_id in (self.source_account_id, self.destination_account_id)
            if account_id is not None
        }

    @classmethod
    def from_input(
        cls,
        owner_id: str,
        payload: TransactionInput,
        loan_payment_id: Optional[UUID] = None,
    ) -> 'Transaction':
        return cls(
            owner_id=owner_id,
            type=payload.type,
            amount=payload.amount,
            category_id=payload.category_id,
            source_account_id=payload.source_account_id,
            destination_account_id=payload.destination_account_id,
            occurred_at=payload.occurred_at,
            title=payload.title,
            notes=list(payload.notes),
            loan_payment_id=loan_payment_id,
        )

    def with_input(self, payload: TransactionInput) -> 'Transaction':
        """Return the edited version of this transaction."""
        return Transaction(
            id=self.id,
            owner_id=self.owner_id,
            type=payload.type,
            amount=payload.amount,
            category_id=payload.category_id,
            source_account_id=payload.source_account_id,
            destination_account_id=payload.destination_account_id,
            occurred_at=payload.occurred_at,
            title=payload.title,
            notes=list(payload.notes),
            status=self.status,
            revision=self.revision + 1,
            sequence=self.sequence,
            loan_payment_id=self.loan_payment_id,
            created_at=self.created_at,
            updated_at=datetime.utcnow(),
        )


class LedgerResult(BaseModel):
    """
    Outcome of a create, edit or delete.

    Carries the transaction as persisted plus every account balance
    the operation touched (old and new accounts on an edit).
    """

    transaction: Transaction
    balances: list[AccountBalance] = Field(default_factory=list)
    already_deleted: bool = False

    def balance_of(self, account_id: UUID) -> Optional[AccountBalance]:
        for balance in self.balances:
            if balance.account_id == account_id:
                return balance
        return None
