"""
Unit tests for the status transition tables.
"""

import pytest

from src.services.sequence_engine.errors import InvalidTransition, ValidationError
from src.services.sequence_engine.state_machine import (
    ENROLLMENT_TRANSITIONS, EXECUTION_TRANSITIONS, SEQUENCE_TRANSITIONS, TERMINAL_ENROLLMENT_STATUSES, TERMINAL_EXECUTION_STATUSES,
    can_transition, check_transition, is_engagement_forward
)
from src.models.enrollment import ENROLLMENT_STATUSES
from src.models.sequence import SEQUENCE_STATUSES
from src.models.step_execution import EXECUTION_STATUSES

pytestmark = pytest.mark.unit


class TestTransitionTables:
    """Every status of every entity has a row in its table."""

    def test_tables_cover_model_statuses(self):
        assert set(SEQUENCE_TRANSITIONS) == set(SEQUENCE_STATUSES)
        assert set(ENROLLMENT_TRANSITIONS) == set(ENROLLMENT_STATUSES)
        assert set(EXECUTION_TRANSITIONS) == set(EXECUTION_STATUSES)

    def test_self_transitions_are_not_listed(self):
        for status in SEQUENCE_STATUSES:
            assert can_transition('sequence', status, status) is False

    def test_every_live_enrollment_can_be_removed(self):
        for status in ENROLLMENT_STATUSES:
            if status != 'removed':
                check_transition('enrollment', status, 'removed')

    def test_terminal_execution_statuses(self):
        assert TERMINAL_EXECUTION_STATUSES == {'replied', 'bounced', 'skipped', 'failed'}

    def test_terminal_enrollment_statuses(self):
        assert TERMINAL_ENROLLMENT_STATUSES == {'replied', 'bounced', 'opted_out', 'removed'}


class TestCheckTransition:
    """Test cases for check_transition."""

    @pytest.mark.parametrize('entity, from_status, to_status', [
        ('sequence', 'draft', 'active'),
        ('sequence', 'archived', 'draft'),
        ('enrollment', 'paused', 'active'),
        ('enrollment', 'completed', 'replied'),
        ('execution', 'pending_review', 'scheduled'),
        ('execution', 'scheduled', 'pending_review'),
        ('execution', 'opened', 'bounced'),
    ])
    def test_allowed(self, entity, from_status, to_status):
        check_transition(entity, from_status, to_status)

    @pytest.mark.parametrize('entity, from_status, to_status', [
        ('sequence', 'archived', 'active'),
        ('enrollment', 'completed', 'active'),
        ('enrollment', 'removed', 'active'),
        ('execution', 'sent', 'scheduled'),
        ('execution', 'clicked', 'opened'),
        ('execution', 'failed', 'scheduled'),
    ])
    def test_rejected(self, entity, from_status, to_status):
        with pytest.raises(InvalidTransition) as exc_info:
            check_transition(entity, from_status, to_status)

        assert exc_info.value.code == 'INVALID_TRANSITION'
        assert exc_info.value.details == {'entity': entity, 'from': from_status, 'to': to_status}

    def test_invalid_transition_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            check_transition('sequence', 'archived', 'active')

    def test_unknown_target_status(self):
        with pytest.raises(ValidationError) as exc_info:
            check_transition('enrollment', 'active', 'snoozed')
        assert not isinstance(exc_info.value, InvalidTransition)

    def test_unknown_entity(self):
        with pytest.raises(ValueError):
            check_transition('campaign', 'draft', 'active')


class TestEngagementOrder:
    """Engagement only ever moves forward."""

    @pytest.mark.parametrize('from_status, to_status, expected', [
        ('sent', 'opened', True),
        ('sent', 'replied', True),
        ('opened', 'clicked', True),
        ('clicked', 'opened', False),
        ('opened', 'opened', False),
        ('replied', 'clicked', False),
        ('clicked', 'bounced', True),
        ('replied', 'bounced', False),
        ('bounced', 'bounced', False),
        ('scheduled', 'opened', False),
    ])
    def test_is_engagement_forward(self, from_status, to_status, expected):
        assert is_engagement_forward(from_status, to_status) is expected
