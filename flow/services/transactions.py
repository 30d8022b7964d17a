"""
Transaction helpers shared by the ledgers.

Every check-then-write in the flow ledgers runs inside
:func:`atomic_with_retry`.  Row locks and compare-and-set updates inside
the wrapped function keep the invariants; this module only owns the
transaction boundary and the single transparent retry on a low-level
conflict (deadlock, serialization failure, lock wait timeout).
"""
from __future__ import annotations

import functools

import structlog
from django.db import OperationalError, transaction

from flow.errors import TransactionConflict

logger = structlog.get_logger(__name__)

MAX_ATTEMPTS = 2


def atomic_with_retry(func):
    """Run ``func`` in its own transaction, retrying once on conflict.

    When the caller already holds a transaction the call simply joins it
    and any conflict propagates: the outer block is broken at that point
    and only its owner can retry.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if transaction.get_connection().in_atomic_block:
            with transaction.atomic():
                return func(*args, **kwargs)
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                with transaction.atomic():
                    return func(*args, **kwargs)
            except OperationalError as exc:
                if attempt == MAX_ATTEMPTS:
                    logger.error('transaction_conflict', op=func.__name__, attempts=attempt, error=str(exc))
                    raise TransactionConflict() from exc
                logger.warning('transaction_retry', op=func.__name__, attempt=attempt, error=str(exc))
    return wrapper
