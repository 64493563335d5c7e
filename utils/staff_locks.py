import threading
from contextlib import contextmanager

from services.errors import LockTimeout

_REGISTRY_GUARD = threading.Lock()
_STAFF_LOCKS = {}


def _lock_for(staff_id):
    with _REGISTRY_GUARD:
        lock = _STAFF_LOCKS.get(staff_id)
        if lock is None:
            lock = threading.RLock()
            _STAFF_LOCKS[staff_id] = lock
        return lock


@contextmanager
def staff_lock(*staff_ids, timeout=5.0):
    """Exclusive per-staff critical section.

    Several ids are locked in ascending order so two callers locking the
    same pair can never deadlock. Locks are re-entrant for the owning thread.

    The registry keeps one RLock per staff id ever locked and never evicts
    them, so its size is bounded by the number of staff rows.
    """
    ids = sorted({int(sid) for sid in staff_ids if sid is not None})
    held = []
    try:
        for sid in ids:
            lock = _lock_for(sid)
            if not lock.acquire(timeout=timeout):
                raise LockTimeout(
                    f"Timed out after {timeout}s waiting for staff #{sid}",
                    staff_id=sid,
                    timeout=timeout,
                )
            held.append(lock)
        yield ids
    finally:
        for lock in reversed(held):
            lock.release()
