"""
Enrollment management.

This module contains functionality for:
- Enrolling contacts into a sequence (idempotent per sequence/contact)
- Seeding the first step execution
- Operator status changes (pause, resume, mark replied, remove)
- Enrollment and execution listings
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Any

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from src.extensions import db
from src.models import Contact, SequenceEnrollment, StepExecution
from src.models.enrollment import ENROLLMENT_STATUSES
from src.models.step_execution import IN_FLIGHT_STATUSES
from .errors import ConfigurationError, ValidationError
from .state_machine import check_transition

logger = logging.getLogger(__name__)

# Statuses after which an open execution can never go out
CLOSING_STATUSES = ('completed', 'replied', 'bounced', 'opted_out', 'removed')


def enroll(self, sequence_id: str, contact_ids: List[str], org_id: str = None, user_id: str = None) -> Dict[str, Any]:
    """Enroll contacts into a sequence.

    Each contact is enrolled in its own transaction; a contact that already
    has a live enrollment (or loses a concurrent insert race) is skipped.
    """
    sequence = self.get_sequence(sequence_id)
    steps = sequence.current_steps

    if not steps:
        raise ConfigurationError("Sequence has no steps", {'sequence_id': sequence_id})
    if sequence.status == 'archived':
        raise ConfigurationError("Cannot enroll contacts into an archived sequence", {'sequence_id': sequence_id})

    first_step = steps[0]
    version = sequence.current_version
    result = {'enrolled': 0, 'skipped': 0, 'failed': 0, 'enrollment_ids': []}
    seen = set()

    for contact_id in contact_ids or []:
        if contact_id in seen:
            result['skipped'] += 1
            continue
        seen.add(contact_id)

        existing = SequenceEnrollment.query.filter(
            SequenceEnrollment.sequence_id == sequence_id,
            SequenceEnrollment.contact_id == contact_id,
            SequenceEnrollment.status != 'removed'
        ).first()
        if existing:
            logger.info(f"Contact {contact_id} already enrolled in sequence {sequence_id} ({existing.status}), skipping")
            result['skipped'] += 1
            continue

        if db.session.get(Contact, contact_id) is None:
            logger.warning(f"Contact {contact_id} not found, cannot enroll into sequence {sequence_id}")
            result['failed'] += 1
            continue

        try:
            now = self._now()
            enrollment = SequenceEnrollment(
                sequence_id=sequence_id,
                contact_id=contact_id,
                org_id=org_id or sequence.org_id,
                user_id=user_id,
                status='active',
                current_step=1,
                sequence_version=version,
                enrolled_at=now,
                last_activity_at=now,
                meta_json={}
            )
            db.session.add(enrollment)
            db.session.flush()

            execution = self._create_execution(sequence, enrollment, first_step, base_time=now)
            self._record_event(
                'enrolled', enrollment.id, execution.id,
                sequence_version=version, first_execution_status=execution.status
            )
            db.session.commit()

            result['enrolled'] += 1
            result['enrollment_ids'].append(enrollment.id)
        except IntegrityError:
            # Lost a race with a concurrent enroll of the same contact
            db.session.rollback()
            logger.info(f"Contact {contact_id} enrolled concurrently into sequence {sequence_id}, skipping")
            result['skipped'] += 1
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Error enrolling contact {contact_id} into sequence {sequence_id}: {str(e)}")
            result['failed'] += 1

    logger.info(
        f"Enrollment into sequence {sequence_id}: {result['enrolled']} enrolled, "
        f"{result['skipped']} skipped, {result['failed']} failed"
    )
    if result['enrolled']:
        self._invalidate_stats(sequence_id)
    return result


def _create_execution(self, sequence, enrollment, step, base_time: datetime) -> StepExecution:
    """Add the execution for ``step`` to the session, due ``delay_days`` after ``base_time``."""
    execution = StepExecution(
        enrollment_id=enrollment.id,
        step_id=step.id,
        step_number=step.step_number,
        status='pending_review' if step.ai_personalization else 'scheduled',
        scheduled_for=self._compute_due_time(sequence, step, base_time),
        personalization_data={}
    )
    db.session.add(execution)
    db.session.flush()
    return execution


def _skip_open_executions(self, enrollment, reason: str) -> int:
    """Skip the enrollment's in-flight execution unless a tick currently holds its claim."""
    stale_before = self._now() - timedelta(seconds=self._claim_timeout())
    skipped = StepExecution.query.filter(
        StepExecution.enrollment_id == enrollment.id,
        StepExecution.status.in_(IN_FLIGHT_STATUSES),
        or_(StepExecution.claimed_at.is_(None), StepExecution.claimed_at < stale_before)
    ).update({'status': 'skipped', 'updated_at': self._now()}, synchronize_session=False)

    if skipped:
        self._record_event('step_skipped', enrollment.id, reason=reason)
        logger.info(f"Skipped {skipped} open execution(s) for enrollment {enrollment.id}: {reason}")
    return skipped


def set_enrollment_status(self, enrollment_id: str, status: str) -> Dict[str, Any]:
    """Operator status change: pause, resume, mark replied, remove, ..."""
    if status not in ENROLLMENT_STATUSES:
        raise ValidationError(f"Unknown enrollment status '{status}'", {'status': status})

    enrollment = self.get_enrollment(enrollment_id)
    if enrollment.status == status:
        return {'changed': False, 'enrollment': enrollment}

    check_transition('enrollment', enrollment.status, status)

    previous = enrollment.status
    now = self._now()
    enrollment.status = status
    enrollment.revision = (enrollment.revision or 0) + 1
    enrollment.last_activity_at = now
    if status == 'paused':
        enrollment.paused_at = now
    elif status == 'active':
        enrollment.paused_at = None
    elif status == 'completed':
        enrollment.completed_at = now

    if status in CLOSING_STATUSES:
        self._skip_open_executions(enrollment, reason=f"enrollment_{status}")

    self._record_event(f"enrollment_{status}", enrollment.id, previous_status=previous, source='operator')
    db.session.commit()

    logger.info(f"Enrollment {enrollment_id} status changed: {previous} -> {status}")
    self._invalidate_stats(enrollment.sequence_id)

    result = {'changed': True, 'enrollment': enrollment, 'previous_status': previous}
    if status == 'active':
        # Steps that fired while paused were not followed by an advance
        result['advance'] = self.advance(enrollment.id)
    return result


def get_enrollments(self, sequence_id: str) -> List[SequenceEnrollment]:
    self.get_sequence(sequence_id)
    return (
        SequenceEnrollment.query
        .filter_by(sequence_id=sequence_id)
        .order_by(SequenceEnrollment.enrolled_at.desc())
        .all()
    )


def get_executions(self, enrollment_id: str) -> List[StepExecution]:
    self.get_enrollment(enrollment_id)
    return (
        StepExecution.query
        .filter_by(enrollment_id=enrollment_id)
        .order_by(StepExecution.scheduled_for.asc(), StepExecution.step_number.asc())
        .all()
    )
