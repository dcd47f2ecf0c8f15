"""
Engagement signals for dispatched executions.

Signals arrive from provider webhooks or operators. An execution only moves
forward (sent -> opened -> clicked -> replied, or to bounced); replies,
bounces and opt-outs also close the enrollment.
"""

import logging
from typing import Dict, Any

from src.extensions import db
from src.models import SequenceEnrollment, StepExecution
from .errors import NotFoundError, ValidationError
from .state_machine import can_transition, is_engagement_forward

logger = logging.getLogger(__name__)

ENGAGEMENT_SIGNALS = ('opened', 'clicked', 'replied', 'bounced', 'opted_out')

# Execution statuses that mean the step actually went out
DELIVERED_STATUSES = ('sent', 'opened', 'clicked', 'replied', 'bounced')

# Signals that end the enrollment's cadence
ENROLLMENT_OUTCOMES = {
    'replied': 'replied',
    'bounced': 'bounced',
    'opted_out': 'opted_out',
}

# Attempts at the conditional enrollment update before giving up
CLOSE_ATTEMPTS = 3


def record_engagement(self, execution_id: str, signal: str) -> Dict[str, Any]:
    """Apply an engagement signal to an execution and its enrollment.

    Out-of-order or repeated signals leave the execution as it is.
    """
    if signal not in ENGAGEMENT_SIGNALS:
        raise ValidationError(f"Unknown engagement signal '{signal}'", {'signal': signal})

    execution = self.get_execution(execution_id)
    previous = execution.status
    now = self._now()

    enrollment = execution.enrollment
    if previous not in DELIVERED_STATUSES:
        logger.info(f"Engagement '{signal}' ignored for execution {execution_id}: never sent ({previous})")
        return {
            'execution_id': execution_id,
            'changed': False,
            'enrollment_changed': False,
            'status': previous,
            'enrollment_status': enrollment.status
        }

    changed = False
    if signal != 'opted_out' and is_engagement_forward(previous, signal):
        updated = StepExecution.query.filter(
            StepExecution.id == execution.id,
            StepExecution.status == previous
        ).update({'status': signal, 'updated_at': now}, synchronize_session=False)
        changed = updated == 1

    current = signal if changed else previous
    target = ENROLLMENT_OUTCOMES.get(signal)
    # An opt-out leaves the execution status alone but still closes the enrollment;
    # a reply or bounce closes it whenever the execution sits at that status
    enrollment_changed = False
    if target and (signal == 'opted_out' or current == signal):
        enrollment_changed = self._close_enrollment(enrollment, target, now)

    if changed and not enrollment_changed:
        SequenceEnrollment.query.filter(SequenceEnrollment.id == enrollment.id).update(
            {'last_activity_at': now}, synchronize_session=False
        )

    if changed or enrollment_changed:
        self._record_event(
            f"engagement_{signal}", enrollment.id, execution.id,
            previous_status=previous, enrollment_status=target if enrollment_changed else None
        )
    db.session.commit()

    if changed or enrollment_changed:
        logger.info(f"Engagement '{signal}' recorded for execution {execution_id} (was {previous})")
        self._invalidate_stats(enrollment.sequence_id)
    else:
        logger.info(f"Engagement '{signal}' ignored for execution {execution_id} in status {previous}")

    db.session.refresh(execution)
    db.session.refresh(enrollment)
    return {
        'execution_id': execution_id,
        'changed': changed,
        'enrollment_changed': enrollment_changed,
        'status': execution.status,
        'enrollment_status': enrollment.status
    }


def _close_enrollment(self, enrollment, target: str, now) -> bool:
    """Move an enrollment to a closing status and skip its open executions.

    The update is conditional on status and revision; when another writer got
    there first the row is re-read and the claim retried while the move is
    still allowed.
    """
    for _ in range(CLOSE_ATTEMPTS):
        if not can_transition('enrollment', enrollment.status, target):
            return False

        moved = SequenceEnrollment.query.filter(
            SequenceEnrollment.id == enrollment.id,
            SequenceEnrollment.status == enrollment.status,
            SequenceEnrollment.revision == enrollment.revision
        ).update({
            'status': target,
            'revision': (enrollment.revision or 0) + 1,
            'last_activity_at': now
        }, synchronize_session=False)
        if moved == 1:
            self._skip_open_executions(enrollment, reason=f"enrollment_{target}")
            return True

        logger.info(f"Enrollment {enrollment.id} changed underneath a {target} signal, retrying")
        db.session.refresh(enrollment)

    logger.warning(f"Could not close enrollment {enrollment.id} as {target} after {CLOSE_ATTEMPTS} attempts")
    return False


def record_engagement_by_ref(self, dispatch_ref: str, signal: str) -> Dict[str, Any]:
    """Engagement for the execution a provider message id belongs to."""
    if not dispatch_ref:
        raise ValidationError("dispatch_ref is required")

    execution = StepExecution.query.filter_by(dispatch_ref=dispatch_ref).first()
    if not execution:
        raise NotFoundError("Step execution", dispatch_ref)
    return self.record_engagement(execution.id, signal)
