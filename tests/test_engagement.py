"""
Unit tests for engagement signals.
"""

import pytest
from sqlalchemy import text

from src.extensions import db
from src.models import Event, StepExecution
from src.services.sequence_engine import NotFoundError, ValidationError

pytestmark = pytest.mark.unit


@pytest.fixture
def sent(engine, make_sequence, contact):
    """Enrollment whose first (social) step went out at BASE_TIME."""
    sequence = make_sequence()
    enrollment_id = engine.enroll(sequence.id, [contact.id])['enrollment_ids'][0]
    engine.process_due()
    executions = (
        StepExecution.query
        .filter_by(enrollment_id=enrollment_id)
        .order_by(StepExecution.step_number.asc())
        .all()
    )
    return enrollment_id, executions[0].id, executions[1].id


class TestRecordEngagement:
    """Test cases for record_engagement."""

    def test_opened_then_clicked(self, engine, sent):
        enrollment_id, execution_id, _ = sent

        opened = engine.record_engagement(execution_id, 'opened')
        clicked = engine.record_engagement(execution_id, 'clicked')

        assert opened['changed'] is True
        assert opened['status'] == 'opened'
        assert clicked['status'] == 'clicked'
        assert clicked['enrollment_status'] == 'active'

    def test_signals_never_move_backwards(self, engine, sent):
        _, execution_id, _ = sent
        engine.record_engagement(execution_id, 'clicked')

        result = engine.record_engagement(execution_id, 'opened')

        assert result['changed'] is False
        assert result['status'] == 'clicked'

    def test_repeated_signal_is_a_no_op(self, engine, sent):
        _, execution_id, _ = sent
        engine.record_engagement(execution_id, 'opened')

        result = engine.record_engagement(execution_id, 'opened')

        assert result['changed'] is False
        assert Event.query.filter_by(execution_id=execution_id, event_type='engagement_opened').count() == 1

    def test_reply_halts_the_enrollment(self, engine, sent, clock):
        enrollment_id, execution_id, next_execution_id = sent

        result = engine.record_engagement(execution_id, 'replied')

        assert result['status'] == 'replied'
        assert result['enrollment_changed'] is True
        assert result['enrollment_status'] == 'replied'
        assert engine.get_execution(next_execution_id).status == 'skipped'

        clock.advance(days=10)
        counts = engine.process_due()
        assert counts['sent'] == 0
        assert StepExecution.query.filter_by(enrollment_id=enrollment_id).count() == 2

    def test_reply_closes_enrollment_changed_by_another_writer(self, engine, sent):
        enrollment_id, execution_id, next_execution_id = sent
        enrollment = engine.get_enrollment(enrollment_id)
        stale_revision = enrollment.revision
        # Another worker bumps the revision after this session loaded the row
        db.session.execute(
            text("UPDATE sequence_enrollments SET revision = revision + 1 WHERE id = :id"),
            {'id': enrollment_id}
        )
        assert enrollment.revision == stale_revision

        result = engine.record_engagement(execution_id, 'replied')

        assert result['changed'] is True
        assert result['enrollment_changed'] is True
        assert result['enrollment_status'] == 'replied'
        assert engine.get_enrollment(enrollment_id).revision == stale_revision + 2
        assert engine.get_execution(next_execution_id).status == 'skipped'

    def test_repeated_reply_closes_enrollment_left_open(self, engine, sent):
        enrollment_id, execution_id, next_execution_id = sent
        db.session.execute(
            text("UPDATE sequence_step_executions SET status = 'replied' WHERE id = :id"),
            {'id': execution_id}
        )
        db.session.commit()

        result = engine.record_engagement(execution_id, 'replied')

        assert result['changed'] is False
        assert result['enrollment_changed'] is True
        assert engine.get_enrollment(enrollment_id).status == 'replied'
        assert engine.get_execution(next_execution_id).status == 'skipped'

        again = engine.record_engagement(execution_id, 'replied')
        assert again['enrollment_changed'] is False

    def test_bounce_halts_the_enrollment(self, engine, sent):
        enrollment_id, execution_id, _ = sent
        engine.record_engagement(execution_id, 'opened')

        result = engine.record_engagement(execution_id, 'bounced')

        assert result['status'] == 'bounced'
        assert engine.get_enrollment(enrollment_id).status == 'bounced'

    def test_opt_out_closes_enrollment_but_keeps_execution_status(self, engine, sent):
        enrollment_id, execution_id, next_execution_id = sent

        result = engine.record_engagement(execution_id, 'opted_out')

        assert result['changed'] is False
        assert result['enrollment_changed'] is True
        assert result['status'] == 'sent'
        assert engine.get_enrollment(enrollment_id).status == 'opted_out'
        assert engine.get_execution(next_execution_id).status == 'skipped'
        assert Event.query.filter_by(execution_id=execution_id, event_type='engagement_opted_out').count() == 1

    def test_reply_after_completion(self, engine, sent, clock):
        enrollment_id, execution_id, _ = sent
        for _ in range(8):
            clock.advance(days=1)
            engine.process_due()
        assert engine.get_enrollment(enrollment_id).status == 'completed'

        result = engine.record_engagement(execution_id, 'replied')

        assert result['enrollment_status'] == 'replied'

    def test_signal_for_unsent_execution_is_ignored(self, engine, sent):
        enrollment_id, _, next_execution_id = sent

        result = engine.record_engagement(next_execution_id, 'replied')

        assert result['changed'] is False
        assert result['enrollment_changed'] is False
        assert result['status'] == 'scheduled'
        assert engine.get_enrollment(enrollment_id).status == 'active'

    def test_engagement_updates_last_activity(self, engine, sent, clock):
        enrollment_id, execution_id, _ = sent
        clock.advance(hours=5)

        engine.record_engagement(execution_id, 'opened')

        assert engine.get_enrollment(enrollment_id).last_activity_at == clock.now

    def test_unknown_signal(self, engine, sent):
        _, execution_id, _ = sent
        with pytest.raises(ValidationError):
            engine.record_engagement(execution_id, 'forwarded')

    def test_unknown_execution(self, engine):
        with pytest.raises(NotFoundError):
            engine.record_engagement('missing', 'opened')


class TestRecordEngagementByRef:
    """Signals addressed by provider message id."""

    def test_by_ref(self, engine, sent):
        _, execution_id, _ = sent

        result = engine.record_engagement_by_ref(f"manual:{execution_id}", 'clicked')

        assert result['execution_id'] == execution_id
        assert result['status'] == 'clicked'

    def test_unknown_ref(self, engine, sent):
        with pytest.raises(NotFoundError):
            engine.record_engagement_by_ref('email-unknown', 'opened')

    def test_empty_ref(self, engine):
        with pytest.raises(ValidationError):
            engine.record_engagement_by_ref('', 'opened')
