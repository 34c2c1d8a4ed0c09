from sqlalchemy.exc import IntegrityError, OperationalError

from src.infrastructure.db.transaction import is_retryable


class _PgError(Exception):

    def __init__(self, pgcode):
        super().__init__(f"pg error {pgcode}")
        self.pgcode = pgcode


def _operational(orig) -> OperationalError:
    return OperationalError("SELECT 1", {}, orig)


def test_serialization_and_lock_failures_are_retryable():
    for pgcode in ("40001", "40P01", "55P03", "57014"):
        assert is_retryable(_operational(_PgError(pgcode)))


def test_other_postgres_errors_are_not_retryable():
    assert not is_retryable(_operational(_PgError("08006")))


def test_sqlite_busy_is_retryable():
    assert is_retryable(_operational(Exception("database is locked")))


def test_non_operational_errors_are_not_retryable():
    assert not is_retryable(IntegrityError("INSERT", {}, Exception("duplicate")))
    assert not is_retryable(ValueError("nope"))
