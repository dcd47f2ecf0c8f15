"""
Timezone handling for due time calculations.

This module contains functionality for:
- Sequence timezone lookup (settings.timezone, IANA name)
- Weekend detection in the sequence's timezone
- Pushing due times off weekends
"""

import logging
from datetime import datetime, timedelta
import pytz
from src.models import Sequence

logger = logging.getLogger(__name__)


def _get_sequence_timezone(self, sequence: Sequence):
    """Get the timezone configured for a sequence (UTC when unset or unknown)."""
    tz_name = (sequence.settings or {}).get('timezone') or 'UTC'
    try:
        return pytz.timezone(tz_name)
    except pytz.exceptions.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{tz_name}' for sequence {sequence.id}, using UTC")
        return pytz.UTC


def _is_weekend_in_timezone(self, sequence: Sequence, when: datetime) -> bool:
    """Check if a naive-UTC datetime falls on a weekend in the sequence's timezone."""
    tz = self._get_sequence_timezone(sequence)
    local_time = pytz.UTC.localize(when).astimezone(tz)
    return local_time.weekday() >= 5  # Saturday = 5, Sunday = 6


def _next_working_time(self, sequence: Sequence, when: datetime) -> datetime:
    """Move a naive-UTC datetime to the same local time on the next weekday, if needed."""
    if not self._is_weekend_in_timezone(sequence, when):
        return when

    tz = self._get_sequence_timezone(sequence)
    local_time = pytz.UTC.localize(when).astimezone(tz)
    days_ahead = 7 - local_time.weekday()  # Saturday -> 2, Sunday -> 1
    naive_local = local_time.replace(tzinfo=None) + timedelta(days=days_ahead)
    # Re-localize so DST changes over the weekend keep the wall-clock time
    shifted = tz.localize(naive_local)
    return shifted.astimezone(pytz.UTC).replace(tzinfo=None)
