"""
Core — Advisory Locks

Transaction-scoped PostgreSQL advisory locks for work that is not tied
to a single row (allocating a product's free stock for a document).
No-op on other database backends.

@file core/locks.py
"""

import hashlib

from django.db import connection


def advisory_lock_key(*parts) -> int:
    """Stable bigint key for PostgreSQL advisory lock (same parts = same key)."""
    raw = ':'.join(str(part) for part in parts).encode()
    h = hashlib.sha256(raw).digest()[:8]
    return int.from_bytes(h, 'big') % (2**63)


def acquire_advisory_lock(*parts) -> None:
    """Block until the lock for ``parts`` is held; released at commit or rollback."""
    if connection.vendor != 'postgresql':
        return
    with connection.cursor() as cursor:
        cursor.execute('SELECT pg_advisory_xact_lock(%s)', [advisory_lock_key(*parts)])
