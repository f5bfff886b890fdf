"""
Opt-in per-organization mutual exclusion for import and rollback.

Disabled by default: concurrent imports are an accepted risk for this admin
tool and are detected, not prevented, by the marker's version check. With
``ROSTER_ORG_LOCK_ENABLED`` the second concurrent caller fails fast instead.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.orm import Session

from roster_app.importer.errors import ImportLockUnavailable

# Namespaces the advisory lock key away from other users of pg_advisory locks
_LOCK_NAMESPACE = 0x524F5354

_local_locks: dict[int, threading.Lock] = {}
_local_locks_guard = threading.Lock()


@contextmanager
def organization_lock(session: Session, organization_id: int, *, enabled: bool) -> Iterator[None]:
    """Hold the organization's lock for the duration of the block."""
    if not enabled:
        yield
        return

    if session.get_bind().dialect.name == "postgresql":
        acquired = session.execute(
            text("SELECT pg_try_advisory_xact_lock(:namespace, :org_id)"),
            {"namespace": _LOCK_NAMESPACE, "org_id": organization_id},
        ).scalar()
        if not acquired:
            raise ImportLockUnavailable(f"Another roster import or rollback is running for organization {organization_id}")
        # Released automatically when the transaction ends
        yield
        return

    with _local_locks_guard:
        lock = _local_locks.setdefault(organization_id, threading.Lock())
    if not lock.acquire(blocking=False):
        raise ImportLockUnavailable(f"Another roster import or rollback is running for organization {organization_id}")
    try:
        yield
    finally:
        lock.release()
