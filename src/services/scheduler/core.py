"""
Core scheduler functionality.

This module contains the main scheduler class and core functionality:
- SequenceScheduler class
- Thread management
- Main processing loop
- Scheduler lifecycle management
"""

import logging
import threading
from datetime import datetime

from src.services.sequence_engine import SequenceEngine

logger = logging.getLogger(__name__)

# Global scheduler instance
_sequence_scheduler = None


def get_sequence_scheduler():
    """Get the global scheduler instance."""
    global _sequence_scheduler
    if _sequence_scheduler is None:
        _sequence_scheduler = SequenceScheduler()
    return _sequence_scheduler


class SequenceScheduler:
    """Background scheduler that runs sequence engine ticks on an interval."""

    def __init__(self, app=None, sequence_engine=None):
        self.app = app
        self.sequence_engine = sequence_engine  # Initialize lazily
        self.running = False
        self.thread = None
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()

        self.tick_seconds = 60
        self.batch_size = 100

        # Last tick bookkeeping, reported by the status endpoint
        self.started_at = None
        self.last_tick_at = None
        self.last_tick_result = None
        self.last_error = None
        self.ticks_run = 0

        if app is not None:
            self.init_app(app)

    def _get_sequence_engine(self):
        """Get sequence engine instance (lazy initialization)."""
        if self.sequence_engine is None:
            self.sequence_engine = SequenceEngine()
        return self.sequence_engine

    def init_app(self, app):
        """Initialize the scheduler with the Flask app."""
        self.app = app

        # Load configuration from app config
        self.tick_seconds = app.config.get('SCHEDULER_TICK_SECONDS', 60)
        self.batch_size = app.config.get('SCHEDULER_BATCH_SIZE', 100)

        logger.info(f"Scheduler initialized: tick every {self.tick_seconds}s, batch size {self.batch_size}")

    def start(self):
        """Start the background processing thread."""
        if self.app is None:
            raise RuntimeError("Scheduler has no Flask app; call init_app first")

        if self.running:
            logger.warning("Scheduler is already running")
            return False

        self._stop_event.clear()
        self.running = True
        self.started_at = datetime.utcnow()
        self.thread = threading.Thread(target=self._process_loop, name='sequence-scheduler', daemon=True)
        self.thread.start()
        logger.info("Sequence scheduler started successfully")
        return True

    def stop(self, timeout=30):
        """Stop the background processing thread."""
        if not self.running:
            logger.info("Scheduler is already stopped")
            return False

        logger.info("Stopping scheduler...")
        self.running = False
        self._stop_event.set()

        if self.thread and self.thread.is_alive():
            logger.info("Waiting for scheduler thread to terminate...")
            self.thread.join(timeout=timeout)

            if self.thread.is_alive():
                logger.warning(f"Scheduler thread did not terminate within {timeout} seconds")

        self.thread = None
        logger.info("Scheduler stopped")
        return True

    def _process_loop(self):
        """Main processing loop for the scheduler."""
        logger.info("Starting scheduler processing loop")

        while not self._stop_event.is_set():
            try:
                self.run_tick()
            except Exception as e:
                # A failed tick must not kill the loop
                self.last_error = str(e)
                logger.error(f"Error in scheduler processing loop: {str(e)}")

            self._stop_event.wait(self.tick_seconds)

        logger.info("Scheduler processing loop ended")

    def get_status(self):
        """Scheduler state for the status endpoint."""
        return {
            'running': self.running,
            'thread_alive': bool(self.thread and self.thread.is_alive()),
            'tick_seconds': self.tick_seconds,
            'batch_size': self.batch_size,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'last_tick_at': self.last_tick_at.isoformat() if self.last_tick_at else None,
            'last_tick_result': self.last_tick_result,
            'last_error': self.last_error,
            'ticks_run': self.ticks_run
        }

    # Import other modules for functionality
    from .tick import run_tick, _run_tick_in_context
