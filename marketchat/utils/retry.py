# file: marketchat/utils/retry.py

import logging
import time

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from marketchat.core.errors import StoreUnavailable
from marketchat.core.settings import settings

logger = logging.getLogger("store_retry")

# connection / lock level failures; constraint violations are not in here
TRANSIENT_ERRORS = (OperationalError,)


def is_transient(exc: Exception) -> bool:
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def run_with_retry(
    db: Session,
    fn,
    *,
    label: str,
    attempts: int | None = None,
    backoff: float | None = None,
):
    """
    Runs fn() and retries transient store failures with exponential backoff.

    Only pass idempotent work here. The session is rolled back between
    attempts; after the last one StoreUnavailable is raised.
    """
    attempts = attempts or settings.STORE_RETRY_ATTEMPTS
    delay = settings.STORE_RETRY_BACKOFF_SECONDS if backoff is None else backoff

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except DBAPIError as e:
            db.rollback()
            if not is_transient(e):
                raise
            if attempt >= attempts:
                logger.error(f"[Store] {label} failed after {attempt} attempts: {e}")
                raise StoreUnavailable(f"store unavailable during {label}") from e

            logger.warning(f"[Store] {label} attempt {attempt}/{attempts} failed, retrying in {delay:.2f}s: {e}")
            time.sleep(delay)
            delay *= 2
