"""
Ledger Engine

The only component that writes account balances.

Every mutating operation is one atomic unit over the account,
transaction and loan stores:

    1. take the per-account locks (ascending id order)
    2. open a write unit of work (BEGIN IMMEDIATE)
    3. load and check the referenced accounts
    4. validate
    5. reverse the old effect (edit / delete) and apply the new one
    6. write the transaction row
    7. commit, or roll back everything on any exception

Validation, not-found and inactive-account errors are raised at
steps 3-4, before anything has been written.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator, Iterable, Optional, TypeVar, Union
from uuid import UUID

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from tenacity import retry, retry_if_exception_type, wait_exponential

from ledger_engine.audit import AuditLogger
from ledger_engine.config import LedgerSettings, get_settings
from ledger_engine.ledger.effects import (
    AccountRef,
    Effect,
    combine_effects,
    compute_effects,
    reverse_effects,
)
from ledger_engine.ledger.errors import (
    InactiveAccountError,
    NotFoundError,
    ValidationError,
)
from ledger_engine.ledger.locks import AccountLockManager
from ledger_engine.models.account import Account, AccountBalance, AccountInput, AccountKind
from ledger_engine.models.loan import LoanPaymentStatus, status_for
from ledger_engine.models.money import ZERO, to_money
from ledger_engine.models.transaction import (
    LedgerResult,
    Transaction,
    TransactionInput,
    TransactionStatus,
    TransactionType,
)
from ledger_engine.models.validation import ValidationIssue, ValidationResult
from ledger_engine.services.storage import (
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
    TransientStorageError,
    UnitOfWork,
)
from ledger_engine.validation import TransactionValidator


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _stop_after_configured_attempts(retry_state) -> bool:
    """tenacity stop condition reading the attempt budget from the engine."""
    owner = retry_state.args[0]
    return retry_state.attempt_number >= owner.retry_attempts


# Only a busy database is worth retrying; the whole unit is re-run.
retry_on_busy = retry(
    retry=retry_if_exception_type(TransientStorageError),
    stop=_stop_after_configured_attempts,
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    reraise=True,
)


def coerce_payload(model_cls: type[ModelT], payload: Union[ModelT, dict]) -> ModelT:
    """Accept a model or a plain dict; pydantic failures become ValidationError."""
    if isinstance(payload, model_cls):
        return payload
    try:
        return model_cls.model_validate(payload)
    except PydanticValidationError as e:
        issues = [
            ValidationIssue(
                field=".".join(str(part) for part in error["loc"]) or "payload",
                issue_type=error["type"],
                message=error["msg"],
            )
            for error in e.errors()
        ]
        raise ValidationError(
            f"Invalid {model_cls.__name__}: {len(issues)} problem(s)", issues
        ) from e


def _duplicate_to_validation(error: DuplicateError) -> ValidationError:
    return ValidationError.single(
        "payload",
        f"Conflicts with an existing record ({error})",
        issue_type="duplicate",
    )


class LedgerEngine:
    """
    Applies transactions to account balances.

    Usage:
        engine = LedgerEngine(storage)
        result = await engine.create_transaction(owner_id, {
            "type": "expense",
            "amount": "200.00",
            "source_account_id": wallet.id,
        })
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: Optional[TransactionValidator] = None,
        locks: Optional[AccountLockManager] = None,
        audit: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._settings = settings or get_settings().ledger
        self.storage = storage
        self.locks = locks or AccountLockManager()
        self._validator = validator or TransactionValidator(self._settings)
        self._audit = audit or AuditLogger()
        self.retry_attempts = self._settings.retry_attempts

    # ------------------------------------------------------------------
    # Helpers shared by every mutating operation
    # ------------------------------------------------------------------

    async def _load_accounts(
        self,
        uow: UnitOfWork,
        owner_id: str,
        account_ids: Iterable[UUID],
        allowed_inactive: Iterable[UUID] = (),
    ) -> dict[UUID, Account]:
        """
        Load referenced accounts, checking ownership and active state.

        Raises:
            NotFoundError: missing, or owned by someone else
            InactiveAccountError: deactivated and not in allowed_inactive
        """
        allowed = set(allowed_inactive)
        accounts = {}
        for account_id in AccountLockManager.ordered(account_ids):
            account = await uow.accounts.get(account_id)
            if account is None or account.owner_id != owner_id:
                raise NotFoundError("account", account_id)
            if not account.is_active and account_id not in allowed:
                raise InactiveAccountError(account_id, account.name)
            accounts[account_id] = account
        return accounts

    async def _raise_if_invalid(
        self,
        owner_id: str,
        operation: str,
        result: ValidationResult,
        entity_id: Optional[UUID] = None,
    ) -> None:
        if result.has_errors:
            await self._audit.log_validation_failed(
                owner_id,
                operation,
                [issue.model_dump() for issue in result.errors],
                entity_id,
            )
            raise ValidationError(self._validator.get_summary(result), result.errors)
        if result.warnings:
            await self._audit.log_warnings(owner_id, operation, result.warnings)

    @asynccontextmanager
    async def _reporting_storage_errors(
        self,
        operation: str,
        owner_id: str,
        entity_id: Optional[UUID] = None,
    ) -> AsyncIterator[None]:
        """Audit a storage failure that aborted the unit, then re-raise it."""
        try:
            yield
        except StorageError as e:
            await self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={
                    "operation": operation,
                    "owner_id": owner_id,
                    "entity_id": str(entity_id) if entity_id else None,
                },
            )
            raise

    @staticmethod
    def _effects_for(
        transaction: Union[Transaction, TransactionInput],
        accounts: dict[UUID, Account],
    ) -> list[Effect]:
        source = (
            AccountRef.of(accounts[transaction.source_account_id])
            if transaction.source_account_id is not None
            else None
        )
        destination = (
            AccountRef.of(accounts[transaction.destination_account_id])
            if transaction.destination_account_id is not None
            else None
        )
        return compute_effects(transaction.type, transaction.amount, source, destination)

    @staticmethod
    async def _apply(
        uow: UnitOfWork,
        accounts: dict[UUID, Account],
        deltas: dict[UUID, Decimal],
    ) -> list[AccountBalance]:
        """Write net deltas to the account store; keeps `accounts` current."""
        balances = []
        for account_id, delta in deltas.items():
            account = accounts[account_id]
            new_balance = to_money(account.balance + delta)
            if delta != ZERO:
                await uow.accounts.set_balance(account_id, new_balance)
            balances.append(AccountBalance(
                account_id=account_id,
                name=account.name,
                kind=account.kind,
                balance_before=account.balance,
                balance_after=new_balance,
            ))
            accounts[account_id] = account.model_copy(update={"balance": new_balance})
        return balances

    @staticmethod
    async def _sync_loan_payment(
        uow: UnitOfWork,
        payment_id: UUID,
        paid_delta: Decimal,
        paid_at: Optional[datetime],
    ) -> None:
        """Move a linked installment's amount_paid by paid_delta."""
        if paid_delta == ZERO:
            return
        payment = await uow.loans.get_payment(payment_id)
        if payment is None:
            return
        amount_paid = to_money(payment.amount_paid + paid_delta)
        if amount_paid > payment.payment_amount:
            raise ValidationError.single(
                "amount",
                f"Installment {payment.payment_number} would be overpaid "
                f"({amount_paid} of {payment.payment_amount})",
            )
        amount_paid = max(amount_paid, ZERO)
        status = status_for(payment, amount_paid, as_of=date.today())
        still_paid = status in (LoanPaymentStatus.PAID, LoanPaymentStatus.PARTIAL)
        await uow.loans.update_payment(payment.model_copy(update={
            "amount_paid": amount_paid,
            "status": status,
            "paid_at": (paid_at or payment.paid_at) if still_paid else None,
        }))

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def open_account(
        self,
        owner_id: str,
        payload: Union[AccountInput, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """
        Open an account.

        A non-zero opening balance is recorded as an opening_balance
        transaction in the same unit, so reconciliation can rebuild it.

        Raises:
            ValidationError: bad payload, or an active account with the
                same name already exists
        """
        payload = coerce_payload(AccountInput, payload)
        account = await self._open_account(owner_id, payload)
        await self._audit.log_account_opened(owner_id, account, correlation_id)
        return account

    @retry_on_busy
    async def _open_account(self, owner_id: str, payload: AccountInput) -> Account:
        account = Account(
            owner_id=owner_id,
            name=payload.name,
            kind=payload.kind,
            institution=payload.institution,
        )
        try:
            async with self.locks.hold([account.id]):
                async with self.storage.unit_of_work() as uow:
                    result = await self._validator.validate_account(owner_id, payload, uow)
                    await self._raise_if_invalid(owner_id, "open_account", result)

                    await uow.accounts.insert(account)
                    if payload.opening_balance > ZERO:
                        await self.create_in_unit(uow, owner_id, TransactionInput(
                            type=TransactionType.OPENING_BALANCE,
                            amount=payload.opening_balance,
                            destination_account_id=account.id,
                            occurred_at=account.created_at,
                            title=f"Opening balance: {account.name}",
                        ))
                    return await uow.accounts.get(account.id)
        except DuplicateError as e:
            raise _duplicate_to_validation(e) from e

    async def deactivate_account(self, owner_id: str, account_id: UUID) -> Account:
        """
        Soft-delete an account. Idempotent.

        The row and its balance are kept; existing transactions can
        still be edited or deleted against it and it is still
        reconciled, but no new transaction may reference it.
        """
        account, changed = await self._deactivate_account(owner_id, account_id)
        if changed:
            await self._audit.log_account_deactivated(owner_id, account)
        return account

    @retry_on_busy
    async def _deactivate_account(self, owner_id: str, account_id: UUID) -> tuple[Account, bool]:
        async with self.locks.hold([account_id]):
            async with self.storage.unit_of_work() as uow:
                accounts = await self._load_accounts(
                    uow, owner_id, [account_id], allowed_inactive=[account_id]
                )
                account = accounts[account_id]
                if not account.is_active:
                    return account, False
                await uow.accounts.set_active(account_id, False)
                return account.model_copy(update={"is_active": False}), True

    async def ensure_default_wallet(self, owner_id: str) -> Account:
        """
        Return the owner's default cash wallet, creating it if needed.

        Safe to call any number of times: at most one default wallet
        exists per owner.
        """
        async with self.storage.unit_of_work(write=False) as uow:
            existing = await uow.accounts.get_default_wallet(owner_id)
        if existing is not None:
            return existing

        wallet, created = await self._create_default_wallet(owner_id)
        if created:
            await self._audit.log_default_wallet_created(owner_id, wallet)
        return wallet

    @retry_on_busy
    async def _create_default_wallet(self, owner_id: str) -> tuple[Account, bool]:
        try:
            async with self.storage.unit_of_work() as uow:
                existing = await uow.accounts.get_default_wallet(owner_id)
                if existing is not None:
                    return existing, False

                wallet = Account(
                    owner_id=owner_id,
                    name=await self._free_wallet_name(uow, owner_id),
                    kind=AccountKind.WALLET,
                    institution=self._settings.default_wallet_institution,
                    is_default_wallet=True,
                )
                await uow.accounts.insert(wallet)
                return wallet, True
        except DuplicateError as e:
            raise _duplicate_to_validation(e) from e

    async def _free_wallet_name(self, uow: UnitOfWork, owner_id: str) -> str:
        """Configured wallet name, suffixed until no active account uses it."""
        base = self._settings.default_wallet_name
        candidates = [base, f"{base} (Default)"]
        attempt = 2
        while True:
            for name in candidates:
                if await uow.accounts.find_active_by_name(owner_id, name) is None:
                    return name
            candidates = [f"{base} (Default {attempt})"]
            attempt += 1

    async def get_account(self, owner_id: str, account_id: UUID) -> Account:
        async with self.storage.unit_of_work(write=False) as uow:
            account = await uow.accounts.get(account_id)
        if account is None or account.owner_id != owner_id:
            raise NotFoundError("account", account_id)
        return account

    async def get_account_balance(
        self,
        account_id: UUID,
        owner_id: Optional[str] = None,
    ) -> Decimal:
        """
        Current stored balance of an account. Pure read.

        For a credit account this is the outstanding debt.
        """
        async with self.storage.unit_of_work(write=False) as uow:
            account = await uow.accounts.get(account_id)
        if account is None or (owner_id is not None and account.owner_id != owner_id):
            raise NotFoundError("account", account_id)
        return account.balance

    async def list_accounts(self, owner_id: str, include_inactive: bool = False) -> list[Account]:
        async with self.storage.unit_of_work(write=False) as uow:
            return await uow.accounts.list_for_owner(owner_id, include_inactive=include_inactive)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_transaction(self, owner_id: str, transaction_id: UUID) -> Transaction:
        """Fetch a transaction, deleted ones included."""
        async with self.storage.unit_of_work(write=False) as uow:
            transaction = await uow.transactions.get(transaction_id)
        if transaction is None or transaction.owner_id != owner_id:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    async def list_transactions(
        self,
        owner_id: str,
        account_id: Optional[UUID] = None,
        include_deleted: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        """List transactions in creation order."""
        async with self.storage.unit_of_work(write=False) as uow:
            return await uow.transactions.list_for_owner(
                owner_id,
                include_deleted=include_deleted,
                account_id=account_id,
                limit=limit,
                offset=offset,
            )

    async def create_in_unit(
        self,
        uow: UnitOfWork,
        owner_id: str,
        payload: TransactionInput,
        loan_payment_id: Optional[UUID] = None,
    ) -> LedgerResult:
        """
        Create a transaction inside a unit the caller already opened.

        The caller must hold the locks of payload.account_ids.
        """
        accounts = await self._load_accounts(uow, owner_id, payload.account_ids)
        result = await self._validator.validate(payload, accounts, uow)
        await self._raise_if_invalid(owner_id, "create_transaction", result)

        transaction = Transaction.from_input(owner_id, payload, loan_payment_id)
        balances = await self._apply(
            uow, accounts, combine_effects(self._effects_for(transaction, accounts))
        )
        transaction = await uow.transactions.insert(transaction)
        return LedgerResult(transaction=transaction, balances=balances)

    async def create_transaction(
        self,
        owner_id: str,
        payload: Union[TransactionInput, dict],
        correlation_id: Optional[UUID] = None,
    ) -> LedgerResult:
        """
        Record a new transaction and apply its effect.

        Raises:
            ValidationError: malformed payload or a broken business rule
            NotFoundError: a referenced account does not exist (for this owner)
            InactiveAccountError: a referenced account is deactivated
        """
        payload = coerce_payload(TransactionInput, payload)
        await self._raise_if_invalid(
            owner_id, "create_transaction", self._validator.validate_schema(payload)
        )

        async with self._reporting_storage_errors("create_transaction", owner_id):
            result = await self._create(owner_id, payload)
        await self._audit.log_transaction_created(owner_id, result, correlation_id)
        return result

    @retry_on_busy
    async def _create(self, owner_id: str, payload: TransactionInput) -> LedgerResult:
        try:
            async with self.locks.hold(payload.account_ids):
                async with self.storage.unit_of_work() as uow:
                    return await self.create_in_unit(uow, owner_id, payload)
        except DuplicateError as e:
            raise _duplicate_to_validation(e) from e

    async def edit_transaction(
        self,
        owner_id: str,
        transaction_id: UUID,
        payload: Union[TransactionInput, dict],
    ) -> LedgerResult:
        """
        Replace a transaction's fields, moving balances accordingly.

        The old effect is reversed and the new one applied in the same
        unit. The result lists every touched account, old and new.

        Raises:
            NotFoundError: missing or not owned by owner_id
            ValidationError: bad payload, or the transaction is deleted
            InactiveAccountError: the edit adds a deactivated account
        """
        payload = coerce_payload(TransactionInput, payload)
        await self._raise_if_invalid(
            owner_id,
            "edit_transaction",
            self._validator.validate_schema(payload),
            transaction_id,
        )

        async with self._reporting_storage_errors("edit_transaction", owner_id, transaction_id):
            result, before = await self._edit(owner_id, transaction_id, payload)
        await self._audit.log_transaction_edited(owner_id, before, result)
        return result

    @retry_on_busy
    async def _edit(
        self,
        owner_id: str,
        transaction_id: UUID,
        payload: TransactionInput,
    ) -> tuple[LedgerResult, Transaction]:
        while True:
            snapshot = await self.get_transaction(owner_id, transaction_id)
            try:
                async with self.locks.hold(snapshot.account_ids | payload.account_ids):
                    async with self.storage.unit_of_work() as uow:
                        current = await uow.transactions.get(transaction_id)
                        if current.account_ids == snapshot.account_ids:
                            result = await self._edit_in_unit(uow, owner_id, current, payload)
                            return result, current
            except DuplicateError as e:
                raise _duplicate_to_validation(e) from e
            # A concurrent edit moved the transaction to other accounts
            logger.debug("edit_relock", transaction_id=str(transaction_id))

    async def _edit_in_unit(
        self,
        uow: UnitOfWork,
        owner_id: str,
        current: Transaction,
        payload: TransactionInput,
    ) -> LedgerResult:
        if current.is_deleted:
            raise ValidationError.single(
                "status",
                "A deleted transaction cannot be edited",
                issue_type="not_allowed",
            )

        previous_ids = current.account_ids
        accounts = await self._load_accounts(
            uow,
            owner_id,
            previous_ids | payload.account_ids,
            allowed_inactive=previous_ids,
        )
        result = await self._validator.validate(payload, accounts, uow, editing=current)
        await self._raise_if_invalid(owner_id, "edit_transaction", result, current.id)

        updated = current.with_input(payload)
        reversal = reverse_effects(self._effects_for(current, accounts))
        balances = await self._apply(
            uow,
            accounts,
            combine_effects(reversal, self._effects_for(updated, accounts)),
        )
        await uow.transactions.update(updated)

        if current.loan_payment_id is not None:
            await self._sync_loan_payment(
                uow,
                current.loan_payment_id,
                updated.amount - current.amount,
                updated.occurred_at,
            )

        return LedgerResult(transaction=updated, balances=balances)

    async def delete_transaction(self, owner_id: str, transaction_id: UUID) -> LedgerResult:
        """
        Delete a transaction and reverse its effect.

        The row is kept with status 'deleted'. Deleting it again is a
        no-op reported with already_deleted=True.

        Raises:
            NotFoundError: missing or not owned by owner_id
        """
        async with self._reporting_storage_errors("delete_transaction", owner_id, transaction_id):
            result = await self._delete(owner_id, transaction_id)
        await self._audit.log_transaction_deleted(owner_id, result)
        return result

    @retry_on_busy
    async def _delete(self, owner_id: str, transaction_id: UUID) -> LedgerResult:
        while True:
            snapshot = await self.get_transaction(owner_id, transaction_id)
            if snapshot.is_deleted:
                return LedgerResult(transaction=snapshot, already_deleted=True)

            async with self.locks.hold(snapshot.account_ids):
                async with self.storage.unit_of_work() as uow:
                    current = await uow.transactions.get(transaction_id)
                    if current.is_deleted:
                        return LedgerResult(transaction=current, already_deleted=True)
                    if current.account_ids == snapshot.account_ids:
                        return await self._delete_in_unit(uow, owner_id, current)
            logger.debug("delete_relock", transaction_id=str(transaction_id))

    async def _delete_in_unit(
        self,
        uow: UnitOfWork,
        owner_id: str,
        current: Transaction,
    ) -> LedgerResult:
        accounts = await self._load_accounts(
            uow, owner_id, current.account_ids, allowed_inactive=current.account_ids
        )
        balances = await self._apply(
            uow,
            accounts,
            combine_effects(reverse_effects(self._effects_for(current, accounts))),
        )

        now = datetime.utcnow()
        deleted = current.model_copy(update={
            "status": TransactionStatus.DELETED,
            "deleted_at": now,
            "updated_at": now,
        })
        await uow.transactions.update(deleted)

        if current.loan_payment_id is not None:
            await self._sync_loan_payment(uow, current.loan_payment_id, -current.amount, None)

        return LedgerResult(transaction=deleted, balances=balances)
