# src/application/expiration_reaper.py

from dataclasses import dataclass
from datetime import datetime
import logging
import threading

from sqlalchemy.orm import sessionmaker

from src.application.cancellation_service import CancellationService
from src.config import REAPER_BATCH_SIZE, REAPER_INTERVAL_SECONDS
from src.domain.clock import as_utc, utc_now
from src.infrastructure.db.session import SessionLocal, get_db_session
from src.infrastructure.repositories.order_repository import OrderRepository

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    found: int = 0
    expired: int = 0
    skipped: int = 0
    failed: int = 0


class ExpirationReaper:
    """
    Background sweep that cancels pending orders past expires_at and
    returns their reserved units to inventory.

    Each order is expired in its own session and transaction, so one
    bad row is logged and skipped without holding up the batch.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        interval_seconds: float = REAPER_INTERVAL_SECONDS,
        batch_size: int = REAPER_BATCH_SIZE,
    ):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self._sweep_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep(self, now: datetime | None = None) -> SweepResult:
        if not self._sweep_lock.acquire(blocking=False):
            logger.info("Previous expiration sweep still running, skipping")
            return SweepResult()

        try:
            return self._sweep(as_utc(now) or utc_now())
        finally:
            self._sweep_lock.release()

    def _sweep(self, now: datetime) -> SweepResult:
        with get_db_session(self.session_factory) as db:
            order_ids = OrderRepository(db).list_expired_pending_ids(now, self.batch_size)

        result = SweepResult(found=len(order_ids))
        if not order_ids:
            return result

        logger.info("Found %s expired orders", len(order_ids))

        for order_id in order_ids:
            try:
                with get_db_session(self.session_factory) as db:
                    expired = CancellationService(db).expire(order_id, now=now)
            except Exception:
                result.failed += 1
                logger.exception("Failed to expire order %s", order_id)
                continue

            if expired:
                result.expired += 1
            else:
                result.skipped += 1

        logger.info(
            "Expiration sweep done: %s expired, %s skipped, %s failed",
            result.expired,
            result.skipped,
            result.failed,
        )
        return result

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception("Expiration sweep failed")

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="order-expiration-reaper",
            daemon=True,
        )
        self._thread.start()
        logger.info("Order expiration reaper started, every %.0f seconds", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Order expiration reaper stopped")
