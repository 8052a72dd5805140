"""Per-payment-intent asyncio locks for single-writer refund and status updates"""

import asyncio
import weakref


class IntentLockRegistry:
    """Hands out one lock per payment intent id; idle locks are garbage collected"""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock(self, payment_intent_id: str) -> asyncio.Lock:
        lock = self._locks.get(payment_intent_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[payment_intent_id] = lock
        return lock
