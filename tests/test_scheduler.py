"""
Unit tests for the background sequence scheduler.
"""

from unittest.mock import Mock, patch

import pytest

from src.services.scheduler import SequenceScheduler, get_sequence_scheduler
from src.models import StepExecution

pytestmark = pytest.mark.unit

TICK_COUNTS = {'sent': 2, 'advanced': 2, 'errors': 0}


@pytest.fixture
def scheduler(app):
    """A scheduler bound to the test app with a mock engine."""
    engine = Mock()
    engine.process_due.return_value = dict(TICK_COUNTS)
    return SequenceScheduler(app=app, sequence_engine=engine)


class TestSequenceScheduler:
    """Test cases for SequenceScheduler."""

    def test_scheduler_initialization(self, app):
        app.config['SCHEDULER_TICK_SECONDS'] = 15
        app.config['SCHEDULER_BATCH_SIZE'] = 25

        scheduler = SequenceScheduler(app=app)

        assert scheduler.app is app
        assert scheduler.running is False
        assert scheduler.thread is None
        assert scheduler.tick_seconds == 15
        assert scheduler.batch_size == 25

    def test_get_sequence_scheduler_singleton(self):
        assert get_sequence_scheduler() is get_sequence_scheduler()

    def test_run_tick_uses_batch_size(self, scheduler):
        result = scheduler.run_tick()

        assert result == TICK_COUNTS
        scheduler.sequence_engine.process_due.assert_called_once_with(scheduler.batch_size)
        assert scheduler.ticks_run == 1
        assert scheduler.last_tick_result == TICK_COUNTS
        assert scheduler.last_tick_at is not None
        assert scheduler.last_error is None

    def test_run_tick_with_limit(self, scheduler):
        scheduler.run_tick(limit=5)
        scheduler.sequence_engine.process_due.assert_called_once_with(5)

    def test_run_tick_outside_app_context(self, app):
        engine = Mock()
        engine.process_due.return_value = {}
        scheduler = SequenceScheduler(app=app, sequence_engine=engine)

        # The app fixture holds a context open; leave it for this call
        with patch('src.services.scheduler.tick.has_app_context', return_value=False):
            with patch.object(app, 'app_context', wraps=app.app_context) as mock_context:
                scheduler.run_tick()

        mock_context.assert_called_once()

    def test_run_tick_failure(self, scheduler):
        scheduler.sequence_engine.process_due.side_effect = RuntimeError("database unavailable")

        with pytest.raises(RuntimeError):
            scheduler.run_tick()

        assert scheduler.last_error == "database unavailable"
        assert scheduler.ticks_run == 0
        assert scheduler.last_tick_at is not None

    def test_start_without_app(self):
        with pytest.raises(RuntimeError):
            SequenceScheduler().start()

    def test_start_and_stop(self, scheduler):
        scheduler.tick_seconds = 3600

        with patch.object(scheduler, 'run_tick') as mock_tick:
            assert scheduler.start() is True
            assert scheduler.running is True
            assert scheduler.start() is False

            assert scheduler.stop(timeout=5) is True

        assert scheduler.running is False
        assert scheduler.thread is None
        assert mock_tick.call_count <= 1
        assert scheduler.stop() is False

    def test_loop_survives_failed_tick(self, scheduler):
        scheduler._stop_event.wait = Mock(side_effect=lambda timeout: scheduler._stop_event.set())

        with patch.object(scheduler, 'run_tick', side_effect=RuntimeError("boom")):
            scheduler._process_loop()

        assert scheduler.last_error == "boom"

    def test_get_status(self, scheduler):
        scheduler.run_tick()

        status = scheduler.get_status()

        assert status['running'] is False
        assert status['thread_alive'] is False
        assert status['ticks_run'] == 1
        assert status['last_tick_result'] == TICK_COUNTS
        assert status['started_at'] is None


class TestSchedulerWithEngine:
    """A tick driving the real engine."""

    def test_tick_dispatches_due_steps(self, app, engine, make_sequence, contact):
        sequence = make_sequence()
        engine.enroll(sequence.id, [contact.id])
        scheduler = SequenceScheduler(app=app, sequence_engine=engine)

        result = scheduler.run_tick()

        assert result['sent'] == 1
        assert result['advanced'] == 1
        assert StepExecution.query.filter_by(status='sent').count() == 1
