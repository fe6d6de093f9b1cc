"""
Per-subscription mutual exclusion.

Manual renew/edit (API) and the reminder batch both mutate subscriptions.
Every mutation of one record runs under that record's lock, so a renew and a
reminder mark cannot interleave inside this process. Across processes the
ORM version column catches the race instead (ConcurrentModificationError).

A lock lives only while someone holds or waits for it; the registry does not
grow with the number of subscriptions ever touched.
"""
import threading
from contextlib import contextmanager
from typing import Iterator


class RecordLockRegistry:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}
        self._users: dict[int, int] = {}  # holders + waiters per record

    def _acquire_entry(self, record_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(record_id)
            if lock is None:
                lock = self._locks[record_id] = threading.Lock()
            self._users[record_id] = self._users.get(record_id, 0) + 1
            return lock

    def _release_entry(self, record_id: int) -> None:
        with self._guard:
            self._users[record_id] -= 1
            if self._users[record_id] == 0:
                del self._users[record_id]
                del self._locks[record_id]

    @contextmanager
    def hold(self, record_id: int) -> Iterator[None]:
        lock = self._acquire_entry(record_id)
        try:
            with lock:
                yield
        finally:
            self._release_entry(record_id)

    def __len__(self) -> int:
        """Records currently held or waited for"""
        with self._guard:
            return len(self._locks)


# Shared by the API and the scheduler within one process
subscription_locks = RecordLockRegistry()
