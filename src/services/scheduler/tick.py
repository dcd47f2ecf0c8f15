"""
Scheduler tick execution.

A tick is one bounded pass of the sequence engine over due work. Ticks are
serialized within a process; across processes the engine's conditional
claims keep concurrent ticks from doing the same work twice.
"""

import logging
from datetime import datetime

from flask import has_app_context

from src.extensions import db

logger = logging.getLogger(__name__)


def run_tick(self, limit=None):
    """Run one tick and return its counts.

    Callable from the background loop or from the manual tick endpoint.
    """
    with self._tick_lock:
        if has_app_context():
            return self._run_tick_in_context(limit)

        with self.app.app_context():
            return self._run_tick_in_context(limit)


def _run_tick_in_context(self, limit=None):
    started = datetime.utcnow()
    try:
        result = self._get_sequence_engine().process_due(limit or self.batch_size)
    except Exception as e:
        db.session.rollback()
        self.last_error = str(e)
        logger.error(f"Scheduler tick failed: {str(e)}")
        raise
    finally:
        self.last_tick_at = datetime.utcnow()

    self.ticks_run += 1
    self.last_tick_result = result
    self.last_error = None

    elapsed = (self.last_tick_at - started).total_seconds()
    logger.info(f"Scheduler tick {self.ticks_run} completed in {elapsed:.2f}s")
    return result
