# src/infrastructure/db/transaction.py

"""
One logical operation, one database transaction.

Every handler runs its reads, locks and writes inside ``unit_of_work``:
the block commits on success and rolls back on any exception, so a
failed operation never leaves a partial write behind. Lock waits,
statement timeouts, deadlocks and serialization failures are reported
as ``RetryableConflictError`` instead of surfacing as driver errors.
"""

from contextlib import contextmanager
import logging

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from src.config import LOCK_TIMEOUT_MS, TRANSACTION_TIMEOUT_MS
from src.domain.exceptions import RetryableConflictError

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available, query_canceled
_RETRYABLE_PGCODES = {"40001", "40P01", "55P03", "57014"}


def is_retryable(exc: Exception) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode is not None:
        return pgcode in _RETRYABLE_PGCODES
    # SQLite reports a busy writer this way.
    return "locked" in str(exc.orig).lower()


def _apply_timeouts(db: Session) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text(f"SET LOCAL lock_timeout = {int(LOCK_TIMEOUT_MS)}"))
    db.execute(text(f"SET LOCAL statement_timeout = {int(TRANSACTION_TIMEOUT_MS)}"))
    db.execute(
        text(
            "SET LOCAL idle_in_transaction_session_timeout = "
            f"{int(TRANSACTION_TIMEOUT_MS)}"
        )
    )


@contextmanager
def unit_of_work(db: Session, serializable: bool = False):
    """
    Precondition: the session holds no writes of its own. A transaction
    left open by earlier reads is closed before the new one begins, since
    isolation level and SET LOCAL only apply to a fresh transaction.
    Pending changes are refused rather than committed on the caller's behalf.
    """
    if db.new or db.dirty or db.deleted:
        raise RuntimeError("unit_of_work started on a session with uncommitted changes")

    if db.in_transaction():
        db.commit()

    try:
        if serializable:
            db.connection(execution_options={"isolation_level": "SERIALIZABLE"})
        _apply_timeouts(db)
        yield db
        db.commit()
    except OperationalError as exc:
        db.rollback()
        if not is_retryable(exc):
            raise
        logger.warning("Transaction aborted by lock contention: %s", exc.orig)
        raise RetryableConflictError(
            "Inventory is busy, please retry the request."
        ) from exc
    except Exception:
        db.rollback()
        raise
