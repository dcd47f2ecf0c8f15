"""
Delay calculations and timing logic.

``delay_days`` is measured from the previous step's execution (or from
enrollment for step 1). It is a lower bound: the scheduler picks due work up
on its next tick.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Any, List
from src.models import Sequence

logger = logging.getLogger(__name__)


def _compute_due_time(self, sequence: Sequence, step, base_time: datetime) -> datetime:
    """Calculate when a step becomes due, given the time its predecessor ran."""
    due = base_time + timedelta(days=step.delay_days or 0)

    if (sequence.settings or {}).get('skip_weekends'):
        shifted = self._next_working_time(sequence, due)
        if shifted != due:
            logger.info(f"Step {step.step_number} of sequence {sequence.id} moved off weekend: {due} -> {shifted}")
        due = shifted

    return due


def _describe_schedule(self, steps: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Earliest day offset of each step relative to enrollment, assuming on-time execution."""
    schedule = []
    cumulative = 0
    for step in sorted(steps, key=lambda s: s['step_number']):
        cumulative += step.get('delay_days', 0)
        schedule.append({
            'step_number': step['step_number'],
            'channel': step['channel'],
            'delay_days': step.get('delay_days', 0),
            'earliest_day': cumulative,
            'send_time': "Immediate" if cumulative == 0 else f"After {cumulative} day(s)"
        })
    return schedule
