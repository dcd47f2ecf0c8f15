"""
Scheduler management endpoints.

This module contains functionality for:
- Scheduler status checking
- Starting scheduler
- Stopping scheduler
- Running a single tick on demand
"""

import logging
from flask import jsonify, request

from src.services.caching import get_cache_service
from src.services.scheduler import get_sequence_scheduler
from src.utils.error_handling import handle_exception, handle_validation_error

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import automation_bp


@automation_bp.route('/scheduler/status', methods=['GET'])
def get_scheduler_status():
    """Get the current status of the sequence scheduler and the stats cache."""
    try:
        status = get_sequence_scheduler().get_status()
        status["stats_cache"] = get_cache_service().get_cache_stats()
        return jsonify(status), 200

    except Exception as e:
        logger.error(f"Error getting scheduler status: {str(e)}")
        return handle_exception(e, "getting scheduler status")


@automation_bp.route('/scheduler/start', methods=['POST'])
def start_scheduler():
    """Start the sequence scheduler."""
    try:
        scheduler = get_sequence_scheduler()

        if scheduler.running:
            return jsonify({'message': 'Scheduler is already running', 'status': 'running'}), 200

        scheduler.start()

        return jsonify({
            'message': 'Scheduler started successfully',
            'status': 'running'
        }), 200

    except Exception as e:
        logger.error(f"Error starting scheduler: {str(e)}")
        return handle_exception(e, "starting scheduler")


@automation_bp.route('/scheduler/stop', methods=['POST'])
def stop_scheduler():
    """Stop the sequence scheduler."""
    try:
        scheduler = get_sequence_scheduler()

        if not scheduler.running:
            return jsonify({'message': 'Scheduler is already stopped', 'status': 'stopped'}), 200

        scheduler.stop()

        return jsonify({
            'message': 'Scheduler stopped successfully',
            'status': 'stopped'
        }), 200

    except Exception as e:
        logger.error(f"Error stopping scheduler: {str(e)}")
        return handle_exception(e, "stopping scheduler")


@automation_bp.route('/scheduler/tick', methods=['POST'])
def run_scheduler_tick():
    """Run one scheduler tick synchronously and return its counts."""
    try:
        data = request.get_json(silent=True) or {}
        limit = data.get('limit')
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            return handle_validation_error("limit must be a positive integer")

        result = get_sequence_scheduler().run_tick(limit=limit)

        return jsonify({
            'message': 'Tick completed',
            'result': result
        }), 200

    except Exception as e:
        logger.error(f"Error running scheduler tick: {str(e)}")
        return handle_exception(e, "running scheduler tick")
