"""
Keyed mutual exclusion port.

Services hold ``async with locks.hold(key) as lease:`` around read-check-write
sequences that must not interleave for the same key (e.g. per-user payouts).
A lock may expire (distributed backends use a TTL sized for one gateway call),
so holders call ``await lease.refresh()`` before each slow external call; it
resets the TTL or raises LockLostError when the lock is no longer theirs.
"""
from __future__ import annotations

from typing import AsyncContextManager, Protocol, runtime_checkable


@runtime_checkable
class LockLease(Protocol):

    async def refresh(self) -> None:
        """Extend the hold; raises LockLostError when the lock expired."""
        ...


@runtime_checkable
class KeyedLock(Protocol):

    def hold(self, key: str) -> AsyncContextManager[LockLease]:
        """Acquire the lock for ``key``; raises LockAcquisitionTimeout when busy too long."""
        ...
