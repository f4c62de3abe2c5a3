from __future__ import annotations

import threading
from typing import Optional

import structlog

from .config import CHECKOUT_SWEEP_INTERVAL_SECONDS
from .database import SessionLocal
from .orders import OrderLifecycle

logger = structlog.get_logger(__name__)


def sweep_once() -> list:
    db = SessionLocal()
    try:
        return OrderLifecycle(db).expire_checkouts()
    finally:
        db.close()


def start_checkout_sweeper(
    interval_seconds: float = CHECKOUT_SWEEP_INTERVAL_SECONDS,
    daemon: bool = True,
    stop: Optional[threading.Event] = None,
) -> threading.Thread:
    """Cancel abandoned hosted checkouts on a fixed interval in a background thread.

    The loop runs until ``stop`` is set (forever when none is given).
    """
    stop = stop or threading.Event()

    def _run() -> None:
        while not stop.is_set():
            try:
                expired = sweep_once()
                if expired:
                    logger.info("checkout_sweep_finished", expired=len(expired))
            except Exception:
                # keep the loop alive; the next tick retries
                logger.exception("checkout_sweep_failed")
            stop.wait(interval_seconds)

    t = threading.Thread(target=_run, name="checkout-sweeper", daemon=daemon)
    t.start()
    logger.info("checkout_sweeper_started", interval_seconds=interval_seconds)
    return t
