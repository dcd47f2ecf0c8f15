"""
Sequence routes package.

This package contains organized sequence functionality:
- crud.py: Basic CRUD operations for sequences
- management.py: Step replacement and sequence status changes
- validation.py: Step validation and the example sequence
- enrollment.py: Enrolling contacts and enrollment operations
- execution.py: Operator actions on step executions
"""

from flask import Blueprint

# Create the main sequence blueprint
sequence_bp = Blueprint('sequence', __name__)

# Import all route modules to register them
from . import crud
from . import management
from . import validation
from . import enrollment
from . import execution

# Export the blueprint
__all__ = ['sequence_bp']
