"""
Core sequence engine functionality.

This module contains the main sequence engine class and core functionality:
- SequenceEngine class
- Shared lookups and event recording
- Configuration and collaborator access (AI gateway, stats cache)
"""

import logging
from datetime import datetime
from typing import Dict, Any, Optional
from flask import current_app

from src.extensions import db
from src.models import Sequence, SequenceEnrollment, StepExecution, Event
from src.models.step_execution import IN_FLIGHT_STATUSES
from .errors import NotFoundError

logger = logging.getLogger(__name__)

# Example sequence definition: email intro, social touch, then a call
EXAMPLE_SEQUENCE = [
    {
        "step_number": 1,
        "channel": "email",
        "delay_days": 0,
        "subject_template": "Quick idea for {{company_name}}",
        "body_template": "Hi {{first_name}}, I noticed {{company_name}} is growing its team. Would a 15-minute chat next week be useful?",
        "ai_personalization": True,
        "ai_prompt": "Reference something specific about their role."
    },
    {
        "step_number": 2,
        "channel": "social",
        "delay_days": 2,
        "body_template": "Hi {{first_name}}, following up on my note from earlier this week. Happy to share what we've seen work for teams like yours.",
        "ai_personalization": False
    },
    {
        "step_number": 3,
        "channel": "call",
        "delay_days": 5,
        "body_template": "Call {{full_name}} at {{company_name}}: open with the email thread, ask about current process.",
        "ai_personalization": False,
        "notes": "Leave a voicemail if no answer."
    }
]


class SequenceEngine:
    """Engine for defining outreach sequences and advancing enrollments through them."""

    def __init__(self, ai_gateway=None, clock=None):
        """Initialize the sequence engine.

        ``clock`` returns the current naive-UTC time; tests pass a fixed clock.
        """
        self.ai_gateway = ai_gateway  # Initialize lazily
        self.clock = clock or datetime.utcnow
        self._cache = None

    def _now(self) -> datetime:
        return self.clock()

    def _get_ai_gateway(self):
        """Get AI gateway client instance (lazy initialization)."""
        if self.ai_gateway is None:
            from src.services.ai_gateway import AIGatewayClient
            self.ai_gateway = AIGatewayClient()
        return self.ai_gateway

    def _get_cache(self):
        """Get the stats cache shared by the current app (disabled without Redis)."""
        if self._cache is None:
            from src.services.caching import get_cache_service
            self._cache = get_cache_service()
        return self._cache

    def _config(self, key: str, default=None):
        """Read a config value from the Flask app, falling back to ``default``."""
        try:
            return current_app.config.get(key, default)
        except RuntimeError:
            # No application context
            return default

    def _claim_timeout(self) -> int:
        return int(self._config('CLAIM_VISIBILITY_TIMEOUT', 300))

    # Lookups

    def get_sequence(self, sequence_id: str) -> Sequence:
        sequence = db.session.get(Sequence, sequence_id)
        if not sequence:
            raise NotFoundError("Sequence", sequence_id)
        return sequence

    def get_enrollment(self, enrollment_id: str) -> SequenceEnrollment:
        enrollment = db.session.get(SequenceEnrollment, enrollment_id)
        if not enrollment:
            raise NotFoundError("Enrollment", enrollment_id)
        return enrollment

    def get_execution(self, execution_id: str) -> StepExecution:
        execution = db.session.get(StepExecution, execution_id)
        if not execution:
            raise NotFoundError("Step execution", execution_id)
        return execution

    def _get_open_execution(self, enrollment_id: str) -> Optional[StepExecution]:
        """The execution still in flight (scheduled/pending_review) for an enrollment, if any."""
        return (
            StepExecution.query
            .filter(
                StepExecution.enrollment_id == enrollment_id,
                StepExecution.status.in_(IN_FLIGHT_STATUSES)
            )
            .first()
        )

    def _get_latest_execution(self, enrollment_id: str) -> Optional[StepExecution]:
        return (
            StepExecution.query
            .filter(StepExecution.enrollment_id == enrollment_id)
            .order_by(StepExecution.step_number.desc(), StepExecution.created_at.desc())
            .first()
        )

    def _steps_by_number(self, sequence: Sequence, version: int) -> Dict[int, Any]:
        return {step.step_number: step for step in sequence.steps_for_version(version)}

    def _record_event(self, event_type: str, enrollment_id: str = None, execution_id: str = None, **meta):
        """Add an audit event to the current session; committed with the caller's unit of work."""
        event = Event(
            event_type=event_type,
            enrollment_id=enrollment_id,
            execution_id=execution_id,
            timestamp=self._now(),
            meta_json=meta or None
        )
        db.session.add(event)
        return event

    def _invalidate_stats(self, sequence_id: str):
        try:
            self._get_cache().invalidate_sequence_cache(sequence_id)
        except Exception as e:
            logger.warning(f"Could not invalidate stats cache for sequence {sequence_id}: {str(e)}")

    # Payloads handed to the AI gateway

    def _contact_payload(self, contact) -> Dict[str, Any]:
        if contact is None:
            return {}
        return {
            'first_name': contact.first_name,
            'last_name': contact.last_name,
            'email': contact.email,
            'title': contact.title,
            'company_name': contact.company_name,
            'industry': contact.industry,
            'notes': contact.notes
        }

    def _step_payload(self, step) -> Dict[str, Any]:
        return {
            'step_number': step.step_number,
            'channel': step.channel,
            'subject_template': step.subject_template,
            'body_template': step.body_template,
            'ai_prompt': step.ai_prompt
        }

    def _sequence_context(self, sequence: Sequence, total_steps: int) -> Dict[str, Any]:
        return {
            'name': sequence.name,
            'total_steps': total_steps
        }

    # Import functionality from other modules
    from .definitions import (
        create_sequence, replace_steps, set_sequence_status, update_sequence,
        delete_sequence, list_sequences, validate_steps, _normalize_steps, _validate_settings
    )
    from .enrollment import (
        enroll, set_enrollment_status, get_enrollments, get_executions,
        _create_execution, _skip_open_executions
    )
    from .step_runner import (
        advance, materialize, generate_content, approve_execution, skip_execution,
        preview_step, process_due, _resolve_content, _finalize_execution
    )
    from .engagement import record_engagement, record_engagement_by_ref, _close_enrollment
    from .stats import sequence_stats, step_stats
    from .timezone import _get_sequence_timezone, _is_weekend_in_timezone, _next_working_time
    from .delay_calculator import _compute_due_time, _describe_schedule
    from .message_formatter import _render_template, _build_template_content, _validate_template, _get_available_placeholders
    from .action_executor import _dispatch, _send_email, _hand_off_manual
