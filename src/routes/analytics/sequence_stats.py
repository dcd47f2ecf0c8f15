"""
Sequence analytics endpoints.

This module contains functionality for:
- Enrollment counts by status and reply rate for a sequence
- Execution counts by status for each step
"""

import logging
from datetime import datetime
from flask import jsonify

from src.services.sequence_engine import SequenceEngine
from src.utils.error_handling import handle_exception
from src.utils.tenant import ensure_org_access

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import analytics_bp


@analytics_bp.route('/sequences/<sequence_id>/stats', methods=['GET'])
def get_sequence_stats(sequence_id):
    """Enrollment counts by status, total enrolled and reply rate (0..1)."""
    try:
        engine = SequenceEngine()
        sequence = ensure_org_access(engine.get_sequence(sequence_id), "Sequence", sequence_id)
        stats = engine.sequence_stats(sequence_id)

        return jsonify({
            'sequence_id': sequence_id,
            'sequence_name': sequence.name,
            'stats': stats,
            'generated_at': datetime.utcnow().isoformat()
        }), 200

    except Exception as e:
        logger.error(f"Error getting stats for sequence {sequence_id}: {str(e)}")
        return handle_exception(e, "getting sequence stats")


@analytics_bp.route('/sequences/<sequence_id>/step-stats', methods=['GET'])
def get_sequence_step_stats(sequence_id):
    """Execution counts by status per step, including steps of older versions."""
    try:
        engine = SequenceEngine()
        sequence = ensure_org_access(engine.get_sequence(sequence_id), "Sequence", sequence_id)
        steps = engine.step_stats(sequence_id)

        return jsonify({
            'sequence_id': sequence_id,
            'current_version': sequence.current_version,
            'steps': steps,
            'generated_at': datetime.utcnow().isoformat()
        }), 200

    except Exception as e:
        logger.error(f"Error getting step stats for sequence {sequence_id}: {str(e)}")
        return handle_exception(e, "getting step stats")
