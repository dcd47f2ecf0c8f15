"""
Scheduler services package.

This package contains the background scheduler:
- core.py: Main scheduler class, thread management and lifecycle
- tick.py: One bounded pass of the sequence engine over due work
"""

from .core import SequenceScheduler, get_sequence_scheduler

# Export the main scheduler class and function
__all__ = ['SequenceScheduler', 'get_sequence_scheduler']
