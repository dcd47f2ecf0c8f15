# Import db from extensions to use the same instance
from src.extensions import db

# Import all models to ensure they are registered with SQLAlchemy
from src.models.contact import Contact
from src.models.sequence import Sequence, SequenceStep
from src.models.enrollment import SequenceEnrollment
from src.models.step_execution import StepExecution
from src.models.event import Event
from src.models.webhook_data import WebhookData

__all__ = ['db', 'Contact', 'Sequence', 'SequenceStep', 'SequenceEnrollment', 'StepExecution', 'Event', 'WebhookData']
