"""
Per-account locks.

Two operations touching the same account never interleave their
read-modify-write of its balance. Locks are always taken in ascending
account-id order, so two operations over overlapping account sets
cannot deadlock.

These locks serialise work inside one process; the database write
lock (BEGIN IMMEDIATE) covers everything else.

A lock lives only while someone holds or waits on it, so the table
stays as small as the set of accounts in flight.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable
from uuid import UUID


class AccountLockManager:
    """Hands out one asyncio.Lock per account id."""

    def __init__(self):
        self._locks: dict[UUID, asyncio.Lock] = {}
        # Holders plus waiters per account; the lock is dropped at zero
        self._users: dict[UUID, int] = {}

    def _lock_for(self, account_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        self._users[account_id] = self._users.get(account_id, 0) + 1
        return lock

    def _release_use(self, account_id: UUID) -> None:
        remaining = self._users[account_id] - 1
        if remaining:
            self._users[account_id] = remaining
        else:
            del self._users[account_id]
            del self._locks[account_id]

    def __len__(self) -> int:
        """Number of accounts currently locked or waited on."""
        return len(self._locks)

    @staticmethod
    def ordered(account_ids: Iterable[UUID]) -> list[UUID]:
        """Deduplicated ids in lock-acquisition order."""
        return sorted(set(account_ids), key=str)

    @asynccontextmanager
    async def hold(self, account_ids: Iterable[UUID]) -> AsyncIterator[list[UUID]]:
        """
        Hold the locks of every given account.

        Usage:
            async with locks.hold({source_id, destination_id}):
                ...

        Yields the ids actually locked, in acquisition order.
        """
        ordered = self.ordered(account_ids)
        registered: list[UUID] = []
        acquired: list[asyncio.Lock] = []
        try:
            for account_id in ordered:
                lock = self._lock_for(account_id)
                registered.append(account_id)
                await lock.acquire()
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()
            for account_id in registered:
                self._release_use(account_id)

    def is_locked(self, account_id: UUID) -> bool:
        lock = self._locks.get(account_id)
        return lock is not None and lock.locked()
