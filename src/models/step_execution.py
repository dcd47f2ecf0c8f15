import uuid
from datetime import datetime
from src.models import db
from sqlalchemy import JSON, Index, text

EXECUTION_STATUSES = (
    'scheduled', 'pending_review', 'sent', 'opened', 'clicked',
    'replied', 'bounced', 'skipped', 'failed'
)
IN_FLIGHT_STATUSES = ('scheduled', 'pending_review')


class StepExecution(db.Model):
    __tablename__ = 'sequence_step_executions'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    enrollment_id = db.Column(db.String(36), db.ForeignKey('sequence_enrollments.id'), nullable=False, index=True)
    step_id = db.Column(db.String(36), db.ForeignKey('sequence_steps.id'), nullable=False, index=True)
    step_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(50), nullable=False, default='scheduled')
    scheduled_for = db.Column(db.DateTime, nullable=False, index=True)
    executed_at = db.Column(db.DateTime, nullable=True)
    generated_subject = db.Column(db.Text, nullable=True)
    generated_body = db.Column(db.Text, nullable=True)
    personalization_data = db.Column(JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    claimed_at = db.Column(db.DateTime, nullable=True)
    claim_token = db.Column(db.String(36), nullable=True)
    dispatch_ref = db.Column(db.String(255), nullable=True, index=True)  # Provider message id
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    step = db.relationship('SequenceStep', lazy=True)

    # Never two executions in flight for the same enrollment
    __table_args__ = (
        Index(
            'uq_execution_in_flight_per_enrollment',
            'enrollment_id',
            unique=True,
            sqlite_where=text("status IN ('scheduled', 'pending_review')"),
            postgresql_where=text("status IN ('scheduled', 'pending_review')"),
        ),
    )

    @property
    def is_in_flight(self):
        return self.status in IN_FLIGHT_STATUSES

    @property
    def has_generated_content(self):
        return self.generated_body is not None

    def to_dict(self, include_step=False):
        data = {
            'id': str(self.id),
            'enrollment_id': str(self.enrollment_id),
            'step_id': str(self.step_id),
            'step_number': self.step_number,
            'status': self.status,
            'scheduled_for': self.scheduled_for.isoformat() if self.scheduled_for else None,
            'executed_at': self.executed_at.isoformat() if self.executed_at else None,
            'generated_subject': self.generated_subject,
            'generated_body': self.generated_body,
            'personalization_data': self.personalization_data or {},
            'error_message': self.error_message,
            'dispatch_ref': self.dispatch_ref,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
        if include_step:
            data['step'] = self.step.to_dict() if self.step else None
        return data

    def __repr__(self):
        return f'<StepExecution step {self.step_number} ({self.status}) for {self.enrollment_id}>'
