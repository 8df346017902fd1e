"""Per-contract mutual exclusion for state-changing operations."""
from contextlib import contextmanager
from threading import RLock
from weakref import WeakValueDictionary


class ContractLocks:
    """
    Hands out one re-entrant lock per contract id.

    The registry holds locks weakly: a lock lives while some caller holds or
    waits on it, and is collected once the contract goes idle.
    """

    def __init__(self) -> None:
        self._registry_lock = RLock()
        self._locks: "WeakValueDictionary[int, RLock]" = WeakValueDictionary()

    def _lock_for(self, contract_id: int) -> RLock:
        with self._registry_lock:
            lock = self._locks.get(contract_id)
            if lock is None:
                lock = RLock()
                self._locks[contract_id] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, contract_id: int):
        lock = self._lock_for(contract_id)
        with lock:
            yield


contract_locks = ContractLocks()
