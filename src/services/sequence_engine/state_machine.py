"""
Transition tables for sequences, enrollments and step executions.

All status writes in the engine go through ``check_transition`` so an illegal
change (e.g. ``completed -> active``) is rejected in one place.
"""

from .errors import InvalidTransition, ValidationError

SEQUENCE_TRANSITIONS = {
    'draft': {'active', 'paused', 'archived'},
    'active': {'draft', 'paused', 'archived'},
    'paused': {'draft', 'active', 'archived'},
    'archived': {'draft'},
}

ENROLLMENT_TRANSITIONS = {
    'active': {'paused', 'completed', 'replied', 'bounced', 'opted_out', 'removed'},
    'paused': {'active', 'replied', 'bounced', 'opted_out', 'removed'},
    # A reply can land after the last step went out
    'completed': {'replied', 'bounced', 'opted_out', 'removed'},
    'replied': {'removed'},
    'bounced': {'removed'},
    'opted_out': {'removed'},
    'removed': set(),
}

EXECUTION_TRANSITIONS = {
    'scheduled': {'sent', 'failed', 'skipped', 'pending_review'},
    'pending_review': {'scheduled', 'skipped'},
    'sent': {'opened', 'clicked', 'replied', 'bounced'},
    'opened': {'clicked', 'replied', 'bounced'},
    'clicked': {'replied', 'bounced'},
    'replied': set(),
    'bounced': set(),
    'skipped': set(),
    'failed': set(),
}

_TABLES = {
    'sequence': SEQUENCE_TRANSITIONS,
    'enrollment': ENROLLMENT_TRANSITIONS,
    'execution': EXECUTION_TRANSITIONS,
}

# Enrollment statuses that end the cadence for good
TERMINAL_ENROLLMENT_STATUSES = frozenset(
    status for status, targets in ENROLLMENT_TRANSITIONS.items() if targets <= {'removed'}
) | {'removed'}

TERMINAL_EXECUTION_STATUSES = frozenset(
    status for status, targets in EXECUTION_TRANSITIONS.items() if not targets
)

# Forward order of delivery/engagement; bounced sits outside it
ENGAGEMENT_ORDER = ('sent', 'opened', 'clicked', 'replied')


def can_transition(entity, from_status, to_status):
    table = _TABLES[entity]
    if from_status not in table:
        return False
    return to_status in table[from_status]


def check_transition(entity, from_status, to_status):
    """Raise if ``from_status -> to_status`` is not allowed for ``entity``."""
    table = _TABLES.get(entity)
    if table is None:
        raise ValueError(f"Unknown entity '{entity}'")
    if to_status not in table:
        raise ValidationError(f"Unknown {entity} status '{to_status}'", {'status': to_status})
    if not can_transition(entity, from_status, to_status):
        raise InvalidTransition(entity, from_status, to_status)


def is_engagement_forward(from_status, to_status):
    """True when an engagement signal moves an execution strictly forward."""
    if to_status == 'bounced':
        return from_status in ('sent', 'opened', 'clicked')
    if from_status not in ENGAGEMENT_ORDER or to_status not in ENGAGEMENT_ORDER:
        return False
    return ENGAGEMENT_ORDER.index(to_status) > ENGAGEMENT_ORDER.index(from_status)
