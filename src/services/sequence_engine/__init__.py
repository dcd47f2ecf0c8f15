"""
Sequence engine services package.

This package contains organized sequence engine functionality:
- core.py: Main sequence engine class and shared lookups
- definitions.py: Sequence and step definitions (validation, versions, status)
- enrollment.py: Enrolling contacts and operator status changes
- step_runner.py: Advancing enrollments and materializing step executions
- engagement.py: Inbound engagement signals
- stats.py: Per-sequence and per-step rollups
- state_machine.py: Transition tables for every status field
- timezone.py / delay_calculator.py: Due time calculations
- message_formatter.py: Template rendering for non-personalized steps
- action_executor.py: Channel dispatch
"""

from .core import SequenceEngine, EXAMPLE_SEQUENCE
from .errors import (
    SequenceEngineError, ValidationError, InvalidTransition, ConfigurationError,
    NotFoundError, GenerationFailure, DispatchFailure, ConcurrencyConflict
)

# Export the main sequence engine class, example sequence and error taxonomy
__all__ = [
    'SequenceEngine', 'EXAMPLE_SEQUENCE',
    'SequenceEngineError', 'ValidationError', 'InvalidTransition', 'ConfigurationError',
    'NotFoundError', 'GenerationFailure', 'DispatchFailure', 'ConcurrencyConflict'
]
