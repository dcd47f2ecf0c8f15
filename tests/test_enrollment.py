"""
Unit tests for enrolling contacts and operator enrollment status changes.
"""

from datetime import datetime

import pytest

from src.models import Event, SequenceEnrollment, StepExecution
from src.services.sequence_engine import ConfigurationError, InvalidTransition, NotFoundError, ValidationError
from tests.conftest import AI_EMAIL_STEP, BASE_TIME

pytestmark = pytest.mark.unit


def _only_execution(enrollment_id):
    return StepExecution.query.filter_by(enrollment_id=enrollment_id).one()


class TestEnroll:
    """Test cases for enroll."""

    def test_enroll_seeds_first_execution(self, engine, make_sequence, contact):
        sequence = make_sequence()

        result = engine.enroll(sequence.id, [contact.id], user_id='user-1')

        assert result['enrolled'] == 1
        assert result['skipped'] == 0
        assert result['failed'] == 0
        enrollment = engine.get_enrollment(result['enrollment_ids'][0])
        assert enrollment.status == 'active'
        assert enrollment.current_step == 1
        assert enrollment.sequence_version == 1
        assert enrollment.enrolled_at == BASE_TIME
        assert enrollment.user_id == 'user-1'

        execution = _only_execution(enrollment.id)
        assert execution.status == 'scheduled'
        assert execution.step_number == 1
        assert execution.scheduled_for == BASE_TIME
        assert Event.query.filter_by(enrollment_id=enrollment.id, event_type='enrolled').count() == 1

    def test_ai_step_starts_pending_review(self, engine, make_sequence, contact):
        sequence = make_sequence(steps=[AI_EMAIL_STEP])

        result = engine.enroll(sequence.id, [contact.id])

        execution = _only_execution(result['enrollment_ids'][0])
        assert execution.status == 'pending_review'
        assert execution.generated_body is None

    def test_enrollment_inherits_sequence_org(self, engine, make_sequence, contact):
        sequence = make_sequence(org_id='org-1')
        result = engine.enroll(sequence.id, [contact.id])
        assert engine.get_enrollment(result['enrollment_ids'][0]).org_id == 'org-1'

    def test_enroll_is_idempotent(self, engine, make_sequence, contact):
        sequence = make_sequence()
        engine.enroll(sequence.id, [contact.id])

        result = engine.enroll(sequence.id, [contact.id])

        assert result == {'enrolled': 0, 'skipped': 1, 'failed': 0, 'enrollment_ids': []}
        assert SequenceEnrollment.query.count() == 1
        assert StepExecution.query.count() == 1

    def test_duplicate_ids_in_one_call(self, engine, make_sequence, contact):
        sequence = make_sequence()
        result = engine.enroll(sequence.id, [contact.id, contact.id])

        assert result['enrolled'] == 1
        assert result['skipped'] == 1

    def test_unknown_contact_counts_as_failed(self, engine, make_sequence, contact):
        sequence = make_sequence()
        result = engine.enroll(sequence.id, [contact.id, 'no-such-contact'])

        assert result['enrolled'] == 1
        assert result['failed'] == 1

    def test_stepless_sequence_rejected_without_writes(self, engine, make_sequence, contact):
        sequence = make_sequence(status='draft')
        engine.replace_steps(sequence.id, [])

        with pytest.raises(ConfigurationError):
            engine.enroll(sequence.id, [contact.id])
        with pytest.raises(ConfigurationError):
            engine.enroll(sequence.id, [])

        assert SequenceEnrollment.query.count() == 0
        assert StepExecution.query.count() == 0

    def test_archived_sequence_rejected(self, engine, make_sequence, contact):
        sequence = make_sequence(status='archived')
        with pytest.raises(ConfigurationError):
            engine.enroll(sequence.id, [contact.id])

    def test_unknown_sequence(self, engine, contact):
        with pytest.raises(NotFoundError):
            engine.enroll('missing', [contact.id])

    def test_draft_sequence_accepts_enrollments(self, engine, make_sequence, contact):
        sequence = make_sequence(status='draft')
        assert engine.enroll(sequence.id, [contact.id])['enrolled'] == 1

    def test_reenroll_after_removed(self, engine, make_sequence, contact):
        sequence = make_sequence()
        first = engine.enroll(sequence.id, [contact.id])['enrollment_ids'][0]
        engine.set_enrollment_status(first, 'removed')

        result = engine.enroll(sequence.id, [contact.id])

        assert result['enrolled'] == 1
        assert result['enrollment_ids'][0] != first
        assert SequenceEnrollment.query.filter_by(contact_id=contact.id).count() == 2

    def test_enrollment_pins_current_version(self, engine, make_sequence, make_contact):
        sequence = make_sequence()
        early = engine.enroll(sequence.id, [make_contact().id])['enrollment_ids'][0]

        engine.replace_steps(sequence.id, [{"step_number": 1, "channel": "task", "ai_personalization": False}])
        late = engine.enroll(sequence.id, [make_contact().id])['enrollment_ids'][0]

        assert engine.get_enrollment(early).sequence_version == 1
        assert engine.get_enrollment(late).sequence_version == 2
        assert _only_execution(early).step.channel == 'social'
        assert _only_execution(late).step.channel == 'task'

    def test_first_step_moved_off_weekend(self, engine, make_sequence, contact, clock):
        clock.now = datetime(2026, 3, 7, 10, 0, 0)  # Saturday
        sequence = make_sequence(settings={'skip_weekends': True})

        result = engine.enroll(sequence.id, [contact.id])

        assert _only_execution(result['enrollment_ids'][0]).scheduled_for == datetime(2026, 3, 9, 10, 0, 0)


class TestEnrollmentStatus:
    """Test cases for operator status changes."""

    @pytest.fixture
    def enrollment_id(self, engine, make_sequence, contact):
        sequence = make_sequence()
        return engine.enroll(sequence.id, [contact.id])['enrollment_ids'][0]

    def test_pause_and_resume(self, engine, enrollment_id, clock):
        paused = engine.set_enrollment_status(enrollment_id, 'paused')

        assert paused['changed'] is True
        assert paused['enrollment'].status == 'paused'
        assert paused['enrollment'].paused_at == BASE_TIME
        # Pausing does not cancel the step already scheduled
        assert _only_execution(enrollment_id).status == 'scheduled'

        clock.advance(hours=1)
        resumed = engine.set_enrollment_status(enrollment_id, 'active')

        assert resumed['enrollment'].status == 'active'
        assert resumed['enrollment'].paused_at is None
        assert resumed['advance'] == {
            'advanced': False, 'reason': 'execution_in_flight',
            'execution_id': _only_execution(enrollment_id).id
        }

    def test_status_change_bumps_revision(self, engine, enrollment_id):
        before = engine.get_enrollment(enrollment_id).revision
        engine.set_enrollment_status(enrollment_id, 'paused')
        assert engine.get_enrollment(enrollment_id).revision == before + 1

    def test_same_status_is_a_no_op(self, engine, enrollment_id):
        result = engine.set_enrollment_status(enrollment_id, 'active')
        assert result['changed'] is False

    def test_replied_skips_open_execution(self, engine, enrollment_id):
        result = engine.set_enrollment_status(enrollment_id, 'replied')

        assert result['enrollment'].status == 'replied'
        assert _only_execution(enrollment_id).status == 'skipped'
        assert Event.query.filter_by(enrollment_id=enrollment_id, event_type='step_skipped').count() == 1
        assert Event.query.filter_by(enrollment_id=enrollment_id, event_type='enrollment_replied').count() == 1

    def test_claimed_execution_is_not_skipped(self, engine, enrollment_id, db_session):
        execution = _only_execution(enrollment_id)
        execution.claimed_at = BASE_TIME
        execution.claim_token = 'tick-1'
        db_session.commit()

        engine.set_enrollment_status(enrollment_id, 'removed')

        assert _only_execution(enrollment_id).status == 'scheduled'

    def test_completed_cannot_be_reactivated(self, engine, enrollment_id):
        engine.set_enrollment_status(enrollment_id, 'completed')

        with pytest.raises(InvalidTransition):
            engine.set_enrollment_status(enrollment_id, 'active')
        assert engine.get_enrollment(enrollment_id).status == 'completed'

    def test_removed_is_final(self, engine, enrollment_id):
        engine.set_enrollment_status(enrollment_id, 'removed')
        with pytest.raises(InvalidTransition):
            engine.set_enrollment_status(enrollment_id, 'paused')

    def test_unknown_status(self, engine, enrollment_id):
        with pytest.raises(ValidationError):
            engine.set_enrollment_status(enrollment_id, 'snoozed')

    def test_unknown_enrollment(self, engine):
        with pytest.raises(NotFoundError):
            engine.set_enrollment_status('missing', 'paused')


class TestListings:
    """Test cases for enrollment and execution listings."""

    def test_get_enrollments_and_executions(self, engine, make_sequence, make_contact):
        sequence = make_sequence()
        result = engine.enroll(sequence.id, [make_contact().id, make_contact().id])

        enrollments = engine.get_enrollments(sequence.id)
        assert {e.id for e in enrollments} == set(result['enrollment_ids'])

        executions = engine.get_executions(result['enrollment_ids'][0])
        assert [e.step_number for e in executions] == [1]

    def test_listings_for_unknown_ids(self, engine):
        with pytest.raises(NotFoundError):
            engine.get_enrollments('missing')
        with pytest.raises(NotFoundError):
            engine.get_executions('missing')
