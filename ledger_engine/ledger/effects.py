"""
Effect Calculator

Turns a transaction into the balance deltas it implies. Pure and
deterministic: no storage, no clock.

Sign convention per account kind:

    asset account  (checking, savings, investment, wallet)
        money in  -> +amount
        money out -> -amount
    credit account (balance is debt owed)
        spending  -> +amount
        payment   -> -amount

Income into a credit account has no meaning and is rejected.
A card payment is modelled as a transfer whose destination is the card.
"""

from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from ledger_engine.ledger.errors import ValidationError
from ledger_engine.models.account import Account, AccountKind
from ledger_engine.models.money import ZERO, to_money
from ledger_engine.models.transaction import TransactionType, slot_violations
from ledger_engine.models.validation import ValidationIssue


class AccountRef(BaseModel):
    """The part of an account the calculator needs."""
    model_config = ConfigDict(frozen=True)

    id: UUID
    kind: AccountKind

    @classmethod
    def of(cls, account: Account) -> "AccountRef":
        return cls(id=account.id, kind=account.kind)


class Effect(BaseModel):
    """A signed change to one account's balance."""
    model_config = ConfigDict(frozen=True)

    account_id: UUID
    delta: Decimal


def _outflow(account: AccountRef, amount: Decimal) -> Effect:
    delta = amount if account.kind.is_debt else -amount
    return Effect(account_id=account.id, delta=delta)


def _inflow(account: AccountRef, amount: Decimal) -> Effect:
    delta = -amount if account.kind.is_debt else amount
    return Effect(account_id=account.id, delta=delta)


def compute_effects(
    transaction_type: TransactionType,
    amount: Decimal,
    source: Optional[AccountRef] = None,
    destination: Optional[AccountRef] = None,
) -> list[Effect]:
    """
    Compute the balance effects of a transaction.

    Raises:
        ValidationError: bad amount, bad slot combination, or income
            into a credit account
    """
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError.single("amount", "Amount must be positive")

    problems = slot_violations(
        transaction_type,
        source.id if source else None,
        destination.id if destination else None,
    )
    if problems:
        raise ValidationError(
            "; ".join(message for _, message in problems),
            [
                ValidationIssue(field=field, issue_type="not_allowed", message=message)
                for field, message in problems
            ],
        )

    if transaction_type == TransactionType.INCOME:
        if destination.kind.is_debt:
            raise ValidationError.single(
                "destination_account_id",
                "Income cannot be received into a credit account",
                issue_type="not_allowed",
            )
        return [_inflow(destination, amount)]

    if transaction_type == TransactionType.EXPENSE:
        return [_outflow(source, amount)]

    if transaction_type == TransactionType.TRANSFER:
        return [_outflow(source, amount), _inflow(destination, amount)]

    # Opening balance: starting level, for credit the opening debt
    return [Effect(account_id=destination.id, delta=amount)]


def reverse_effects(effects: Iterable[Effect]) -> list[Effect]:
    """Negate every delta. Applying effects then their reversal is a no-op."""
    return [Effect(account_id=e.account_id, delta=-e.delta) for e in effects]


def combine_effects(*effect_lists: Iterable[Effect]) -> dict[UUID, Decimal]:
    """
    Net deltas per account, in first-seen order.

    Accounts whose deltas cancel out are kept with a zero delta so
    callers still report them as touched.
    """
    combined: dict[UUID, Decimal] = {}
    for effects in effect_lists:
        for effect in effects:
            combined[effect.account_id] = combined.get(effect.account_id, ZERO) + effect.delta
    return combined
