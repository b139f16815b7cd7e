from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator


log = logging.getLogger(__name__)

_GLOBAL_LOCK = threading.Lock()
_LOCK_BY_USER: dict[str, threading.Lock] = {}
# Holders plus waiters per user; the entry is dropped when it reaches zero.
_REFS_BY_USER: dict[str, int] = {}


def mask_user(user_id: str | None) -> str:
    s = (user_id or "").strip()
    if len(s) <= 4:
        return "****"
    return "****" + s[-4:]


def _checkout(user_id: str) -> threading.Lock:
    with _GLOBAL_LOCK:
        lock = _LOCK_BY_USER.get(user_id)
        if lock is None:
            lock = threading.Lock()
            _LOCK_BY_USER[user_id] = lock
        _REFS_BY_USER[user_id] = _REFS_BY_USER.get(user_id, 0) + 1
        return lock


def _checkin(user_id: str) -> None:
    with _GLOBAL_LOCK:
        refs = _REFS_BY_USER.get(user_id, 0) - 1
        if refs > 0:
            _REFS_BY_USER[user_id] = refs
            return
        _REFS_BY_USER.pop(user_id, None)
        _LOCK_BY_USER.pop(user_id, None)


@contextmanager
def user_serial_lock(user_id: str) -> Iterator[None]:
    """
    Serialize imports and recalculations for one user within this process.

    Merchant find-or-create and subscription upserts are read-then-write; two runs for the same
    user must not interleave. Locks live only while someone holds or waits on them.
    """
    lock = _checkout(user_id)
    try:
        if not lock.acquire(blocking=False):
            log.debug("Waiting for in-flight run (user %s)", mask_user(user_id))
            lock.acquire()
        try:
            yield
        finally:
            lock.release()
    finally:
        _checkin(user_id)
