"""
Sequence and step definitions.

This module contains functionality for:
- Step list validation (contiguous numbering, channels, delays)
- Creating sequences and replacing their steps as a new immutable version
- Sequence status changes and metadata updates
- Listing sequences with enrollment/reply counts
"""

import logging
from typing import Dict, List, Any, Optional
import pytz
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from src.extensions import db
from src.models import Sequence, SequenceStep, SequenceEnrollment
from src.models.sequence import STEP_CHANNELS
from .errors import ValidationError, ConfigurationError
from .state_machine import check_transition

logger = logging.getLogger(__name__)

# Older clients call the social channel "linkedin"
CHANNEL_ALIASES = {'linkedin': 'social'}

LONG_DELAY_DAYS = 30


def validate_steps(self, steps: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate a step list without persisting anything."""
    try:
        normalized = self._normalize_steps(steps)
    except ValidationError as e:
        return {'valid': False, 'errors': e.details.get('errors', [e.message]), 'warnings': []}

    warnings = []
    for step in normalized:
        label = f"Step {step['step_number']}"
        if step['channel'] == 'email' and not step['ai_personalization'] and not step['subject_template']:
            warnings.append(f"{label}: Email step has no subject template and no AI personalization")
        if not step['ai_personalization'] and not step['body_template']:
            warnings.append(f"{label}: No body template and no AI personalization")
        if step['delay_days'] > LONG_DELAY_DAYS:
            warnings.append(f"{label}: delay_days is very long (>{LONG_DELAY_DAYS} days)")
        for template_key in ('subject_template', 'body_template'):
            for problem in self._validate_template(step[template_key]):
                warnings.append(f"{label}: {template_key}: {problem}")

    return {
        'valid': True,
        'errors': [],
        'warnings': warnings,
        'schedule': self._describe_schedule(normalized)
    }


def _normalize_steps(self, steps, allow_empty: bool = False) -> List[Dict[str, Any]]:
    """Check a step list and return it cleaned and sorted by step_number.

    Raises ValidationError listing every problem found.
    """
    if steps is None:
        steps = []
    if not isinstance(steps, list):
        raise ValidationError("Steps must be a list", {'errors': ["Steps must be a list"]})
    if not steps:
        if allow_empty:
            return []
        raise ValidationError("Sequence must have at least one step", {'errors': ["Sequence cannot be empty"]})

    errors = []
    normalized = []

    for i, step in enumerate(steps):
        label = f"Step {i + 1}"
        if not isinstance(step, dict):
            errors.append(f"{label}: must be an object")
            continue

        step_number = step.get('step_number')
        if isinstance(step_number, bool) or not isinstance(step_number, int):
            errors.append(f"{label}: step_number must be an integer")

        channel = CHANNEL_ALIASES.get(step.get('channel'), step.get('channel'))
        if channel not in STEP_CHANNELS:
            errors.append(f"{label}: Invalid channel '{step.get('channel')}'")

        delay_days = step.get('delay_days', 0)
        if isinstance(delay_days, bool) or not isinstance(delay_days, int):
            errors.append(f"{label}: delay_days must be an integer")
        elif delay_days < 0:
            errors.append(f"{label}: delay_days cannot be negative")

        normalized.append({
            'step_number': step_number,
            'channel': channel,
            'delay_days': delay_days,
            'subject_template': step.get('subject_template') or None,
            'body_template': step.get('body_template') or None,
            'ai_personalization': bool(step.get('ai_personalization', True)),
            'ai_prompt': step.get('ai_prompt') or None,
            'notes': step.get('notes') or None
        })

    if not errors:
        numbers = sorted(s['step_number'] for s in normalized)
        if len(set(numbers)) != len(numbers):
            errors.append("Duplicate step_number values")
        if numbers != list(range(1, len(numbers) + 1)):
            errors.append(f"Step numbers must be contiguous starting at 1 (got {numbers})")

    if errors:
        raise ValidationError("Invalid step definitions", {'errors': errors})

    return sorted(normalized, key=lambda s: s['step_number'])


def _validate_settings(self, settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ValidationError("Settings must be an object")

    tz_name = settings.get('timezone')
    if tz_name:
        try:
            pytz.timezone(tz_name)
        except pytz.exceptions.UnknownTimeZoneError:
            raise ValidationError(f"Unknown timezone '{tz_name}'", {'timezone': tz_name})

    return settings


def _add_step_rows(sequence: Sequence, version: int, steps: List[Dict[str, Any]]):
    for step in steps:
        db.session.add(SequenceStep(sequence_id=sequence.id, version=version, **step))


def create_sequence(self, name: str, steps: List[Dict[str, Any]], description: str = None,
                    tags: List[str] = None, settings: Dict[str, Any] = None,
                    org_id: str = None, user_id: str = None) -> Sequence:
    """Create a draft sequence with its version 1 steps."""
    if not name or not str(name).strip():
        raise ValidationError("Sequence name is required", {'errors': ["Sequence name is required"]})

    normalized = self._normalize_steps(steps)
    settings = self._validate_settings(settings)

    try:
        sequence = Sequence(
            org_id=org_id,
            user_id=user_id,
            name=str(name).strip(),
            description=description or None,
            tags=tags or None,
            settings=settings,
            status='draft',
            current_version=1
        )
        db.session.add(sequence)
        db.session.flush()

        _add_step_rows(sequence, 1, normalized)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error creating sequence '{name}': {str(e)}")
        raise

    logger.info(f"Created sequence {sequence.id} ('{sequence.name}') with {len(normalized)} steps")
    return sequence


def replace_steps(self, sequence_id: str, steps: List[Dict[str, Any]]) -> List[SequenceStep]:
    """Replace a sequence's steps wholesale by writing a new version.

    Enrollments keep running on the version they were enrolled with.
    """
    sequence = self.get_sequence(sequence_id)

    if sequence.status == 'archived':
        raise ValidationError("Archived sequences cannot be edited", {'status': sequence.status})

    normalized = self._normalize_steps(steps, allow_empty=sequence.status in ('draft', 'paused'))
    new_version = sequence.current_version + 1

    try:
        _add_step_rows(sequence, new_version, normalized)
        sequence.current_version = new_version
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error replacing steps for sequence {sequence_id}: {str(e)}")
        raise

    logger.info(f"Sequence {sequence_id} steps replaced: version {new_version}, {len(normalized)} steps")
    self._invalidate_stats(sequence_id)
    return sequence.steps_for_version(new_version)


def set_sequence_status(self, sequence_id: str, status: str) -> Sequence:
    """Change a sequence's lifecycle status through the transition table."""
    sequence = self.get_sequence(sequence_id)

    if sequence.status == status:
        return sequence

    check_transition('sequence', sequence.status, status)

    if status == 'active':
        steps = sequence.current_steps
        if not steps:
            raise ConfigurationError("Cannot activate a sequence with no steps", {'sequence_id': sequence_id})
        numbers = [step.step_number for step in steps]
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValidationError("Step numbers must be contiguous starting at 1", {'step_numbers': numbers})

    previous = sequence.status
    sequence.status = status
    db.session.commit()

    logger.info(f"Sequence {sequence_id} status changed: {previous} -> {status}")
    return sequence


def update_sequence(self, sequence_id: str, **fields) -> Sequence:
    """Update a sequence's name, description, tags or settings."""
    sequence = self.get_sequence(sequence_id)

    if 'name' in fields:
        name = fields['name']
        if not name or not str(name).strip():
            raise ValidationError("Sequence name is required")
        sequence.name = str(name).strip()
    if 'description' in fields:
        sequence.description = fields['description'] or None
    if 'tags' in fields:
        tags = fields['tags']
        if tags is not None and not isinstance(tags, list):
            raise ValidationError("Tags must be a list")
        sequence.tags = tags or None
    if 'settings' in fields:
        sequence.settings = self._validate_settings(fields['settings'])

    db.session.commit()
    return sequence


def delete_sequence(self, sequence_id: str) -> Dict[str, Any]:
    """Delete a sequence, or archive it when it already has enrollments."""
    sequence = self.get_sequence(sequence_id)

    enrollment_count = SequenceEnrollment.query.filter_by(sequence_id=sequence_id).count()
    if enrollment_count > 0:
        if sequence.status != 'archived':
            check_transition('sequence', sequence.status, 'archived')
            sequence.status = 'archived'
            db.session.commit()
        logger.info(f"Sequence {sequence_id} archived instead of deleted ({enrollment_count} enrollments)")
        return {'deleted': False, 'archived': True, 'enrollment_count': enrollment_count}

    db.session.delete(sequence)
    db.session.commit()
    logger.info(f"Sequence {sequence_id} deleted")
    return {'deleted': True, 'archived': False, 'enrollment_count': 0}


def list_sequences(self, org_id: str = None) -> List[Dict[str, Any]]:
    """All sequences (of one org when given) with enrollment and reply counts."""
    query = Sequence.query
    if org_id:
        query = query.filter(Sequence.org_id == org_id)
    sequences = query.order_by(Sequence.updated_at.desc()).all()

    sequence_ids = [s.id for s in sequences]
    enrollment_counts = {}
    reply_counts = {}
    if sequence_ids:
        rows = (
            db.session.query(SequenceEnrollment.sequence_id, SequenceEnrollment.status, func.count(SequenceEnrollment.id))
            .filter(SequenceEnrollment.sequence_id.in_(sequence_ids))
            .group_by(SequenceEnrollment.sequence_id, SequenceEnrollment.status)
            .all()
        )
        for seq_id, status, count in rows:
            enrollment_counts[seq_id] = enrollment_counts.get(seq_id, 0) + count
            if status == 'replied':
                reply_counts[seq_id] = count

    results = []
    for sequence in sequences:
        data = sequence.to_dict()
        data['_enrollment_count'] = enrollment_counts.get(sequence.id, 0)
        data['_reply_count'] = reply_counts.get(sequence.id, 0)
        results.append(data)
    return results
