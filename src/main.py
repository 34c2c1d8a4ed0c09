import logging
import time

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from src.api.routes.routes import get_reaper, router
from src.config import (
    DB_CONNECT_MAX_RETRIES,
    DB_CONNECT_RETRY_DELAY,
    LOG_LEVEL,
    REAPER_ENABLED,
)
from src.infrastructure.db.session import engine
from src.infrastructure.db.models import Base

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(title="Ticket Reservation Engine")

app.include_router(router)
logger = logging.getLogger(__name__)


def _wait_for_db() -> None:
    # Handles the common case where API starts before Postgres is ready.
    for attempt in range(1, DB_CONNECT_MAX_RETRIES + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is reachable.")
            return
        except OperationalError:
            if attempt == DB_CONNECT_MAX_RETRIES:
                logger.exception(
                    "Database not reachable after %s attempts. Check DATABASE_URL and Postgres status.",
                    DB_CONNECT_MAX_RETRIES,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1f seconds...",
                attempt,
                DB_CONNECT_MAX_RETRIES,
                DB_CONNECT_RETRY_DELAY,
            )
            time.sleep(DB_CONNECT_RETRY_DELAY)


@app.on_event("startup")
def on_startup() -> None:
    _wait_for_db()
    Base.metadata.create_all(bind=engine)
    if REAPER_ENABLED:
        get_reaper().start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    get_reaper().stop()
