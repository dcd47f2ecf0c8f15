"""
Webhook routes package.

This package contains inbound provider webhooks:
- resend.py: Resend email events (opened, clicked, bounced, complained)
"""

from flask import Blueprint

# Create the main webhook blueprint
webhook_bp = Blueprint('webhook', __name__)

# Import all route modules to register them
from . import resend

# Export the blueprint
__all__ = ['webhook_bp']
