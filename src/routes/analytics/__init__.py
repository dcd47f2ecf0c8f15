"""
Analytics routes package.

This package contains organized analytics functionality:
- sequence_stats.py: Per-sequence enrollment rollups and per-step execution counts
"""

from flask import Blueprint

# Create the main analytics blueprint
analytics_bp = Blueprint('analytics', __name__)

# Import all route modules to register them
from . import sequence_stats

# Export the blueprint
__all__ = ['analytics_bp']
