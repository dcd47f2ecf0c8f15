"""
Step execution scheduling.

This module contains functionality for:
- Advancing an enrollment to its next step (or completing it)
- Materializing due executions: claim, dispatch, record outcome
- AI content generation and operator approval for held executions
- Content previews
- The bounded scan run by each scheduler tick

Every state change here is a conditional update, so two ticks working on the
same enrollment never both advance it or both dispatch the same execution.
"""

import logging
import uuid
from datetime import timedelta
from typing import Dict, Any, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from src.extensions import db
from src.models import Sequence, SequenceEnrollment, StepExecution
from src.models.step_execution import IN_FLIGHT_STATUSES
from .errors import (
    ConfigurationError, DispatchFailure, GenerationFailure, ValidationError
)
from .state_machine import check_transition

logger = logging.getLogger(__name__)

# Enrollment statuses whose already-scheduled execution still goes out
DISPATCHABLE_ENROLLMENT_STATUSES = ('active', 'paused')


def advance(self, enrollment_id: str) -> Dict[str, Any]:
    """Move an enrollment past its latest finished execution.

    Creates the next step's execution, or completes the enrollment after the
    last step. A lost claim is reported as ``conflict`` and never raised.
    """
    enrollment = self.get_enrollment(enrollment_id)

    if enrollment.status != 'active':
        return {'advanced': False, 'reason': f"enrollment_{enrollment.status}"}

    open_execution = self._get_open_execution(enrollment.id)
    if open_execution:
        return {'advanced': False, 'reason': 'execution_in_flight', 'execution_id': open_execution.id}

    sequence = enrollment.sequence
    steps = self._steps_by_number(sequence, enrollment.sequence_version)
    total_steps = len(steps)
    latest = self._get_latest_execution(enrollment.id)
    expected_step = enrollment.current_step
    expected_revision = enrollment.revision
    now = self._now()

    if latest is not None and latest.step_number >= enrollment.current_step:
        if enrollment.current_step >= total_steps:
            check_transition('enrollment', 'active', 'completed')
            completed = SequenceEnrollment.query.filter(
                SequenceEnrollment.id == enrollment.id,
                SequenceEnrollment.status == 'active',
                SequenceEnrollment.revision == expected_revision
            ).update({
                'status': 'completed',
                'completed_at': now,
                'last_activity_at': now,
                'revision': expected_revision + 1
            }, synchronize_session=False)

            if completed != 1:
                db.session.rollback()
                logger.info(f"Enrollment {enrollment_id} completion claimed elsewhere")
                return {'advanced': False, 'conflict': True}

            self._record_event('enrollment_completed', enrollment.id, total_steps=total_steps)
            db.session.commit()
            logger.info(f"Enrollment {enrollment_id} completed all {total_steps} steps")
            self._invalidate_stats(sequence.id)
            return {'advanced': False, 'completed': True}

        next_number = enrollment.current_step + 1
    else:
        # The current step never got an execution (e.g. a crash right after the claim)
        next_number = enrollment.current_step

    step = steps.get(next_number)
    if step is None:
        raise ConfigurationError(
            f"Sequence {sequence.id} version {enrollment.sequence_version} has no step {next_number}",
            {'sequence_id': sequence.id, 'version': enrollment.sequence_version, 'step_number': next_number}
        )

    claimed = SequenceEnrollment.query.filter(
        SequenceEnrollment.id == enrollment.id,
        SequenceEnrollment.status == 'active',
        SequenceEnrollment.current_step == expected_step,
        SequenceEnrollment.revision == expected_revision
    ).update({
        'current_step': next_number,
        'revision': expected_revision + 1,
        'last_activity_at': now
    }, synchronize_session=False)

    if claimed != 1:
        db.session.rollback()
        logger.info(f"Advance of enrollment {enrollment_id} claimed elsewhere")
        return {'advanced': False, 'conflict': True}

    base_time = latest.executed_at if latest is not None and latest.executed_at else now
    try:
        execution = self._create_execution(sequence, enrollment, step, base_time=base_time)
        self._record_event(
            'step_scheduled', enrollment.id, execution.id,
            step_number=next_number, status=execution.status,
            scheduled_for=execution.scheduled_for.isoformat()
        )
        db.session.commit()
    except IntegrityError:
        # Another execution went in flight for this enrollment first
        db.session.rollback()
        logger.info(f"Enrollment {enrollment_id} already has an execution in flight")
        return {'advanced': False, 'conflict': True}

    logger.info(
        f"Enrollment {enrollment_id} advanced to step {next_number}/{total_steps}, "
        f"due {execution.scheduled_for.isoformat()} ({execution.status})"
    )
    return {
        'advanced': True,
        'step_number': next_number,
        'execution_id': execution.id,
        'status': execution.status,
        'scheduled_for': execution.scheduled_for.isoformat()
    }


def _resolve_content(self, execution: StepExecution, step, contact, sequence) -> Dict[str, Any]:
    """Content to dispatch: generated/approved content if any, else the rendered templates."""
    if execution.has_generated_content:
        return {
            'subject': execution.generated_subject,
            'body': execution.generated_body,
            'data': execution.personalization_data or {},
            'source': 'generated'
        }
    return self._build_template_content(step, contact, sequence)


def _finalize_execution(self, execution_id: str, claim_token: str, values: Dict[str, Any]) -> bool:
    """Write a claimed execution's outcome; False if the claim was lost meanwhile."""
    values = dict(values, claimed_at=None, claim_token=None, updated_at=self._now())
    updated = StepExecution.query.filter(
        StepExecution.id == execution_id,
        StepExecution.status == 'scheduled',
        StepExecution.claim_token == claim_token
    ).update(values, synchronize_session=False)
    return updated == 1


def materialize(self, execution_id: str) -> Dict[str, Any]:
    """Dispatch a due ``scheduled`` execution and advance its enrollment."""
    execution = self.get_execution(execution_id)
    now = self._now()
    result = {'execution_id': execution_id, 'dispatched': False}

    if execution.status != 'scheduled':
        return dict(result, status=execution.status, reason='not_scheduled')
    if execution.scheduled_for > now:
        return dict(result, status=execution.status, reason='not_due')

    enrollment = execution.enrollment
    sequence = enrollment.sequence

    if enrollment.status not in DISPATCHABLE_ENROLLMENT_STATUSES:
        check_transition('execution', 'scheduled', 'skipped')
        skipped = StepExecution.query.filter(
            StepExecution.id == execution.id,
            StepExecution.status == 'scheduled'
        ).update({'status': 'skipped', 'updated_at': now}, synchronize_session=False)
        if skipped:
            self._record_event('step_skipped', enrollment.id, execution.id, reason=f"enrollment_{enrollment.status}")
        db.session.commit()
        logger.info(f"Execution {execution_id} skipped: enrollment is {enrollment.status}")
        return dict(result, status='skipped', reason=f"enrollment_{enrollment.status}")

    if sequence.status != 'active':
        return dict(result, status='scheduled', reason=f"sequence_{sequence.status}")

    # Claim with a visibility timeout so a crashed tick's work is picked up again later
    claim_token = str(uuid.uuid4())
    stale_before = now - timedelta(seconds=self._claim_timeout())
    claimed = StepExecution.query.filter(
        StepExecution.id == execution.id,
        StepExecution.status == 'scheduled',
        or_(StepExecution.claimed_at.is_(None), StepExecution.claimed_at < stale_before)
    ).update({'claimed_at': now, 'claim_token': claim_token}, synchronize_session=False)
    db.session.commit()

    if claimed != 1:
        logger.info(f"Execution {execution_id} claimed by another worker")
        return dict(result, status='scheduled', conflict=True)

    execution = self.get_execution(execution_id)
    step = execution.step
    enrollment = execution.enrollment

    if step.ai_personalization and not execution.has_generated_content:
        check_transition('execution', 'scheduled', 'pending_review')
        self._finalize_execution(execution.id, claim_token, {'status': 'pending_review'})
        self._record_event('step_held_for_generation', enrollment.id, execution.id, step_number=step.step_number)
        db.session.commit()
        logger.info(f"Execution {execution_id} needs generated content, moved to pending_review")
        return dict(result, status='pending_review', reason='generation_required')

    error_message = None
    if execution.dispatch_ref:
        # Sent before an earlier claim expired; never send twice
        outcome = 'sent'
        dispatch_ref = execution.dispatch_ref
    else:
        contact = enrollment.contact
        content = self._resolve_content(execution, step, contact, sequence)
        try:
            dispatch_ref = self._dispatch(execution, step, contact, content)
            outcome = 'sent'
        except DispatchFailure as e:
            outcome = 'failed'
            dispatch_ref = None
            error_message = e.message
            logger.error(f"Dispatch failed for execution {execution_id}: {e.message}")

    check_transition('execution', 'scheduled', outcome)
    executed_at = self._now()
    finalized = self._finalize_execution(execution.id, claim_token, {
        'status': outcome,
        'executed_at': executed_at,
        'dispatch_ref': dispatch_ref,
        'error_message': error_message
    })
    if not finalized:
        db.session.rollback()
        logger.warning(f"Execution {execution_id} changed while being dispatched; outcome '{outcome}' not recorded")
        return dict(result, status=outcome, conflict=True)

    SequenceEnrollment.query.filter(SequenceEnrollment.id == enrollment.id).update(
        {'last_activity_at': executed_at}, synchronize_session=False
    )
    self._record_event(
        f"step_{outcome}", enrollment.id, execution.id,
        step_number=step.step_number, channel=step.channel,
        dispatch_ref=dispatch_ref, error=error_message
    )
    db.session.commit()
    self._invalidate_stats(sequence.id)

    result.update({
        'status': outcome,
        'dispatched': outcome == 'sent',
        'dispatch_ref': dispatch_ref,
        'error': error_message
    })
    result['advance'] = self.advance(enrollment.id)
    return result


def generate_content(self, execution_id: str) -> Dict[str, Any]:
    """Ask the AI gateway for a held execution's content.

    Success stores the content and moves the execution to ``scheduled``.
    Failure leaves it in ``pending_review`` with ``error_message`` set.
    """
    execution = self.get_execution(execution_id)
    check_transition('execution', execution.status, 'scheduled')

    enrollment = execution.enrollment
    if enrollment.status not in DISPATCHABLE_ENROLLMENT_STATUSES:
        raise ConfigurationError(
            f"Enrollment is {enrollment.status}; content can no longer be generated",
            {'enrollment_id': enrollment.id}
        )

    sequence = enrollment.sequence
    step = execution.step
    total_steps = len(sequence.steps_for_version(enrollment.sequence_version))

    try:
        content = self._get_ai_gateway().generate_step_content(
            self._contact_payload(enrollment.contact),
            self._step_payload(step),
            self._sequence_context(sequence, total_steps)
        )
    except GenerationFailure as e:
        StepExecution.query.filter(
            StepExecution.id == execution.id,
            StepExecution.status == 'pending_review'
        ).update({'error_message': e.message, 'updated_at': self._now()}, synchronize_session=False)
        self._record_event('generation_failed', enrollment.id, execution.id, error=e.message)
        db.session.commit()
        logger.error(f"Content generation failed for execution {execution_id}: {e.message}")
        return {'execution_id': execution_id, 'generated': False, 'status': 'pending_review', 'error': e.message}

    updated = StepExecution.query.filter(
        StepExecution.id == execution.id,
        StepExecution.status == 'pending_review'
    ).update({
        'status': 'scheduled',
        'generated_subject': content.get('subject'),
        'generated_body': content.get('body'),
        'personalization_data': content,
        'error_message': None,
        'updated_at': self._now()
    }, synchronize_session=False)

    if updated != 1:
        db.session.rollback()
        logger.info(f"Execution {execution_id} left pending_review while generating")
        return {'execution_id': execution_id, 'generated': False, 'conflict': True}

    self._record_event('content_generated', enrollment.id, execution.id, step_number=step.step_number)
    db.session.commit()
    logger.info(f"Generated content for execution {execution_id} (step {step.step_number}, {step.channel})")
    return {'execution_id': execution_id, 'generated': True, 'status': 'scheduled', 'content': content}


def approve_execution(self, execution_id: str, subject: Optional[str] = None, body: Optional[str] = None) -> StepExecution:
    """Operator approval of held content, optionally edited, moving it to ``scheduled``."""
    execution = self.get_execution(execution_id)
    check_transition('execution', execution.status, 'scheduled')

    generated_subject = subject if subject is not None else execution.generated_subject
    generated_body = body if body is not None else execution.generated_body

    if execution.step.ai_personalization and not generated_body:
        raise ValidationError(
            "Nothing to approve: generate content or supply a body first",
            {'execution_id': execution_id}
        )

    personalization_data = dict(execution.personalization_data or {})
    if subject is not None or body is not None:
        personalization_data['edited_by_operator'] = True

    updated = StepExecution.query.filter(
        StepExecution.id == execution.id,
        StepExecution.status == 'pending_review'
    ).update({
        'status': 'scheduled',
        'generated_subject': generated_subject,
        'generated_body': generated_body,
        'personalization_data': personalization_data,
        'error_message': None,
        'updated_at': self._now()
    }, synchronize_session=False)

    if updated == 1:
        self._record_event('content_approved', execution.enrollment_id, execution.id,
                           edited=personalization_data.get('edited_by_operator', False))
    db.session.commit()
    logger.info(f"Execution {execution_id} approved")
    return self.get_execution(execution_id)


def skip_execution(self, execution_id: str, reason: str = None) -> Dict[str, Any]:
    """Operator skip of an in-flight execution; the enrollment then moves on."""
    execution = self.get_execution(execution_id)
    check_transition('execution', execution.status, 'skipped')

    stale_before = self._now() - timedelta(seconds=self._claim_timeout())
    skipped = StepExecution.query.filter(
        StepExecution.id == execution.id,
        StepExecution.status == execution.status,
        or_(StepExecution.claimed_at.is_(None), StepExecution.claimed_at < stale_before)
    ).update({'status': 'skipped', 'executed_at': self._now(), 'updated_at': self._now()}, synchronize_session=False)

    if skipped != 1:
        db.session.rollback()
        return {'execution_id': execution_id, 'skipped': False, 'conflict': True}

    self._record_event('step_skipped', execution.enrollment_id, execution.id, reason=reason or 'operator')
    db.session.commit()
    logger.info(f"Execution {execution_id} skipped by operator")

    execution = self.get_execution(execution_id)
    self._invalidate_stats(execution.enrollment.sequence_id)
    return {
        'execution_id': execution_id,
        'skipped': True,
        'advance': self.advance(execution.enrollment_id)
    }


def preview_step(self, enrollment_id: str) -> Optional[Dict[str, Any]]:
    """Content for the enrollment's current due step, without committing anything."""
    enrollment = self.get_enrollment(enrollment_id)
    sequence = enrollment.sequence
    steps = self._steps_by_number(sequence, enrollment.sequence_version)

    execution = self._get_open_execution(enrollment.id)
    if execution is not None:
        step_number = execution.step_number
    else:
        step_number = enrollment.current_step
        latest = self._get_latest_execution(enrollment.id)
        # current_step already went out (fired while paused, or advance never ran)
        if latest is not None and latest.step_number == step_number:
            step_number += 1
    step = steps.get(step_number)
    if step is None or (execution is None and enrollment.status in ('completed', 'replied', 'bounced', 'opted_out', 'removed')):
        return None

    preview = {
        'enrollment_id': enrollment_id,
        'execution_id': execution.id if execution else None,
        'step_number': step.step_number,
        'channel': step.channel,
        'committed': False
    }

    if execution is not None and execution.has_generated_content:
        content = self._resolve_content(execution, step, enrollment.contact, sequence)
    elif step.ai_personalization:
        generated = self._get_ai_gateway().generate_step_content(
            self._contact_payload(enrollment.contact),
            self._step_payload(step),
            self._sequence_context(sequence, len(steps))
        )
        content = {'subject': generated.get('subject'), 'body': generated.get('body'),
                   'data': generated, 'source': 'ai'}
    else:
        content = self._build_template_content(step, enrollment.contact, sequence)

    preview.update(content)
    return preview


def process_due(self, limit: int = None) -> Dict[str, int]:
    """One scheduler tick: a bounded scan of due work.

    Failures are isolated per execution/enrollment and only counted.
    """
    limit = limit or int(self._config('SCHEDULER_BATCH_SIZE', 100))
    now = self._now()
    counts = {
        'generated': 0, 'generation_failed': 0,
        'materialized': 0, 'sent': 0, 'failed': 0, 'skipped': 0, 'held': 0,
        'advanced': 0, 'completed': 0, 'conflicts': 0, 'errors': 0
    }

    def _count_advance(advance_result):
        if not advance_result:
            return
        if advance_result.get('advanced'):
            counts['advanced'] += 1
        if advance_result.get('completed'):
            counts['completed'] += 1
        if advance_result.get('conflict'):
            counts['conflicts'] += 1

    # Held executions whose content has not been generated yet
    if self._config('AUTO_GENERATE', True):
        pending_ids = [row.id for row in (
            db.session.query(StepExecution.id)
            .join(SequenceEnrollment, StepExecution.enrollment_id == SequenceEnrollment.id)
            .join(Sequence, SequenceEnrollment.sequence_id == Sequence.id)
            .filter(
                StepExecution.status == 'pending_review',
                StepExecution.scheduled_for <= now,
                StepExecution.generated_body.is_(None),
                SequenceEnrollment.status == 'active',
                Sequence.status == 'active'
            )
            .order_by(StepExecution.scheduled_for.asc())
            .limit(limit)
            .all()
        )]
        for execution_id in pending_ids:
            try:
                outcome = self.generate_content(execution_id)
                if outcome.get('generated'):
                    counts['generated'] += 1
                elif outcome.get('conflict'):
                    counts['conflicts'] += 1
                else:
                    counts['generation_failed'] += 1
            except Exception as e:
                db.session.rollback()
                counts['errors'] += 1
                logger.error(f"Error generating content for execution {execution_id}: {str(e)}")

    # Due executions
    stale_before = now - timedelta(seconds=self._claim_timeout())
    due_ids = [row.id for row in (
        db.session.query(StepExecution.id)
        .join(SequenceEnrollment, StepExecution.enrollment_id == SequenceEnrollment.id)
        .join(Sequence, SequenceEnrollment.sequence_id == Sequence.id)
        .filter(
            StepExecution.status == 'scheduled',
            StepExecution.scheduled_for <= now,
            or_(StepExecution.claimed_at.is_(None), StepExecution.claimed_at < stale_before),
            Sequence.status == 'active'
        )
        .order_by(StepExecution.scheduled_for.asc())
        .limit(limit)
        .all()
    )]
    for execution_id in due_ids:
        try:
            outcome = self.materialize(execution_id)
            if outcome.get('conflict'):
                counts['conflicts'] += 1
                continue
            status = outcome.get('status')
            if status in ('sent', 'failed'):
                counts['materialized'] += 1
                counts[status] += 1
            elif status == 'skipped':
                counts['skipped'] += 1
            elif status == 'pending_review':
                counts['held'] += 1
            _count_advance(outcome.get('advance'))
        except Exception as e:
            db.session.rollback()
            counts['errors'] += 1
            logger.error(f"Error materializing execution {execution_id}: {str(e)}")

    # Active enrollments left with nothing in flight (e.g. a tick died between dispatch and advance)
    in_flight = select(StepExecution.enrollment_id).where(StepExecution.status.in_(IN_FLIGHT_STATUSES))
    stalled_ids = [row.id for row in (
        db.session.query(SequenceEnrollment.id)
        .filter(
            SequenceEnrollment.status == 'active',
            ~SequenceEnrollment.id.in_(in_flight)
        )
        .limit(limit)
        .all()
    )]
    for enrollment_id in stalled_ids:
        try:
            _count_advance(self.advance(enrollment_id))
        except Exception as e:
            db.session.rollback()
            counts['errors'] += 1
            logger.error(f"Error advancing enrollment {enrollment_id}: {str(e)}")

    logger.info(f"Scheduler tick finished: {counts}")
    return counts
