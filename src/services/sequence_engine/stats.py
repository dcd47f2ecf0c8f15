"""
Sequence statistics.

Counts are aggregated in the database and cached per sequence; every write
that changes a count invalidates the sequence's cache entries.
"""

import logging
from typing import Dict, Any, List

from sqlalchemy import func

from src.extensions import db
from src.models import SequenceEnrollment, SequenceStep, StepExecution
from src.models.enrollment import ENROLLMENT_STATUSES
from src.models.step_execution import EXECUTION_STATUSES
from src.services.caching import CacheService

logger = logging.getLogger(__name__)


def _stats_ttl(self) -> int:
    return int(self._config('STATS_CACHE_TTL', 60))


def sequence_stats(self, sequence_id: str) -> Dict[str, Any]:
    """Enrollment counts by status, total enrolled and reply rate (a fraction in [0, 1])."""
    self.get_sequence(sequence_id)

    cache = self._get_cache()
    cache_key = CacheService.sequence_key(sequence_id, "summary")
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    rows = (
        db.session.query(SequenceEnrollment.status, func.count(SequenceEnrollment.id))
        .filter(SequenceEnrollment.sequence_id == sequence_id)
        .group_by(SequenceEnrollment.status)
        .all()
    )
    counts = {status: 0 for status in ENROLLMENT_STATUSES}
    for status, count in rows:
        counts[status] = count

    total = sum(counts.values())
    stats = dict(counts)
    stats['total_enrolled'] = total
    stats['reply_rate'] = round(counts['replied'] / total, 4) if total else 0.0

    cache.set(cache_key, stats, _stats_ttl(self))
    return stats


def step_stats(self, sequence_id: str) -> List[Dict[str, Any]]:
    """Execution counts by status for each step.

    Current-version steps come first in step order; steps of older versions
    that still have executions follow, flagged ``current: False``.
    """
    sequence = self.get_sequence(sequence_id)

    cache = self._get_cache()
    cache_key = CacheService.sequence_key(sequence_id, "steps")
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    rows = (
        db.session.query(StepExecution.step_id, StepExecution.status, func.count(StepExecution.id))
        .join(SequenceStep, StepExecution.step_id == SequenceStep.id)
        .filter(SequenceStep.sequence_id == sequence_id)
        .group_by(StepExecution.step_id, StepExecution.status)
        .all()
    )
    counts_by_step = {}
    for step_id, status, count in rows:
        counts_by_step.setdefault(step_id, {})[status] = count

    def _row(step, current):
        counts = {status: 0 for status in EXECUTION_STATUSES}
        counts.update(counts_by_step.get(step.id, {}))
        row = {
            'step_id': step.id,
            'step_number': step.step_number,
            'version': step.version,
            'channel': step.channel,
            'current': current
        }
        row.update(counts)
        row['total'] = sum(counts.values())
        return row

    results = [_row(step, True) for step in sequence.current_steps]

    current_ids = {row['step_id'] for row in results}
    historical_ids = [step_id for step_id in counts_by_step if step_id not in current_ids]
    if historical_ids:
        historical = (
            SequenceStep.query
            .filter(SequenceStep.id.in_(historical_ids))
            .order_by(SequenceStep.version.asc(), SequenceStep.step_number.asc())
            .all()
        )
        results.extend(_row(step, False) for step in historical)

    cache.set(cache_key, results, _stats_ttl(self))
    return results
