"""Bounded retry for operations that hit transient database conflicts."""
import logging
import time
from flask import current_app, has_app_context
from gestion.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)


def _setting(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def retry_on_conflict(operation, *args, max_attempts: int = None, base_delay: float = None,
                      max_delay: float = None, sleep=time.sleep, **kwargs):
    """
    Call operation(*args, **kwargs), retrying on ConcurrencyError.

    Waits base_delay * 2^(attempt-1) seconds between attempts, capped at
    max_delay. Any other exception propagates immediately. The last
    ConcurrencyError is re-raised once attempts run out.
    """
    max_attempts = max_attempts or _setting('PURCHASE_MAX_RETRIES', 3)
    base_delay = _setting('PURCHASE_RETRY_BASE_DELAY', 1.0) if base_delay is None else base_delay
    max_delay = _setting('PURCHASE_RETRY_MAX_DELAY', 5.0) if max_delay is None else max_delay

    for attempt in range(1, max_attempts + 1):
        try:
            return operation(*args, **kwargs)
        except ConcurrencyError as e:
            if attempt == max_attempts:
                logger.error(f"{operation.__name__} failed after {attempt} attempts: {e.message}")
                raise
            wait = min(base_delay * (2 ** (attempt - 1)), max_delay)
            logger.warning(
                f"{operation.__name__} conflict (attempt {attempt}/{max_attempts}), "
                f"retrying in {wait:.1f}s: {e.message}"
            )
            if wait > 0:
                sleep(wait)
