"""
Step execution endpoints.

This module contains functionality for:
- Generating AI content for a held execution
- Approving (optionally edited) content
- Skipping an execution
- Recording engagement signals by hand
"""

import logging
from flask import request, jsonify

from src.extensions import db
from src.services.sequence_engine import SequenceEngine, GenerationFailure
from src.utils.error_handling import handle_exception, handle_validation_error, handle_conflict_error
from src.utils.tenant import ensure_org_access

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp


def _load_execution(engine, execution_id):
    execution = engine.get_execution(execution_id)
    ensure_org_access(execution.enrollment, "Step execution", execution_id)
    return execution


@sequence_bp.route('/executions/<execution_id>/generate', methods=['POST'])
def generate_execution_content(execution_id):
    """Generate personalized content for an execution held in pending_review."""
    try:
        engine = SequenceEngine()
        _load_execution(engine, execution_id)
        result = engine.generate_content(execution_id)

        if result.get('conflict'):
            return handle_conflict_error("Execution changed while generating", {'execution_id': execution_id})
        if not result['generated']:
            # The execution stays in pending_review; report the gateway failure
            raise GenerationFailure(result['error'], {'execution_id': execution_id, 'status': result['status']})

        return jsonify({
            'message': 'Content generated',
            'execution': engine.get_execution(execution_id).to_dict(include_step=True)
        }), 200

    except Exception as e:
        db.session.rollback()
        return handle_exception(e, "generating content")


@sequence_bp.route('/executions/<execution_id>/approve', methods=['POST'])
def approve_execution(execution_id):
    """Approve held content, optionally with an edited subject/body."""
    try:
        data = request.get_json(silent=True) or {}
        engine = SequenceEngine()
        _load_execution(engine, execution_id)
        execution = engine.approve_execution(execution_id, subject=data.get('subject'), body=data.get('body'))

        return jsonify({
            'message': 'Execution approved',
            'execution': execution.to_dict(include_step=True)
        }), 200

    except Exception as e:
        db.session.rollback()
        return handle_exception(e, "approving execution")


@sequence_bp.route('/executions/<execution_id>/skip', methods=['POST'])
def skip_execution(execution_id):
    """Skip an in-flight execution; the enrollment moves to its next step."""
    try:
        data = request.get_json(silent=True) or {}
        engine = SequenceEngine()
        _load_execution(engine, execution_id)
        result = engine.skip_execution(execution_id, reason=data.get('reason'))

        if result.get('conflict'):
            return handle_conflict_error("Execution is being dispatched", {'execution_id': execution_id})
        return jsonify(result), 200

    except Exception as e:
        db.session.rollback()
        return handle_exception(e, "skipping execution")


@sequence_bp.route('/executions/<execution_id>/engagement', methods=['POST'])
def record_execution_engagement(execution_id):
    """Record an engagement signal (opened, clicked, replied, bounced, opted_out)."""
    try:
        data = request.get_json(silent=True)
        if not data or not data.get('signal'):
            return handle_validation_error("Signal is required")

        engine = SequenceEngine()
        _load_execution(engine, execution_id)
        result = engine.record_engagement(execution_id, data['signal'])

        return jsonify(result), 200

    except Exception as e:
        db.session.rollback()
        return handle_exception(e, "recording engagement")
