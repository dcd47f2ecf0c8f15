import uuid
from datetime import datetime
from src.models import db
from sqlalchemy import JSON, UniqueConstraint

SEQUENCE_STATUSES = ('draft', 'active', 'paused', 'archived')
STEP_CHANNELS = ('email', 'social', 'call', 'task')


class Sequence(db.Model):
    __tablename__ = 'sequences'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=True, index=True)
    user_id = db.Column(db.String(36), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(50), nullable=False, default='draft')  # draft, active, paused, archived
    tags = db.Column(JSON, nullable=True)
    settings = db.Column(JSON, nullable=True)  # Free-form, e.g. {"timezone": "Europe/London", "skip_weekends": true}
    current_version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    steps = db.relationship('SequenceStep', backref='sequence', lazy=True, cascade='all, delete-orphan')
    enrollments = db.relationship('SequenceEnrollment', backref='sequence', lazy=True, cascade='all, delete-orphan')

    def steps_for_version(self, version=None):
        """Ordered steps of one immutable version (the current one by default)."""
        if version is None:
            version = self.current_version
        return (
            SequenceStep.query
            .filter_by(sequence_id=self.id, version=version)
            .order_by(SequenceStep.step_number.asc())
            .all()
        )

    @property
    def current_steps(self):
        return self.steps_for_version(self.current_version)

    def to_dict(self, include_steps=False):
        data = {
            'id': str(self.id),
            'org_id': self.org_id,
            'user_id': self.user_id,
            'name': self.name,
            'description': self.description,
            'status': self.status,
            'tags': self.tags or [],
            'settings': self.settings or {},
            'current_version': self.current_version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
        if include_steps:
            data['steps'] = [step.to_dict() for step in self.current_steps]
        return data

    def __repr__(self):
        return f'<Sequence {self.name}>'


class SequenceStep(db.Model):
    """One touchpoint of a sequence version. Rows are never updated in place."""
    __tablename__ = 'sequence_steps'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    sequence_id = db.Column(db.String(36), db.ForeignKey('sequences.id'), nullable=False, index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    step_number = db.Column(db.Integer, nullable=False)  # 1-based
    channel = db.Column(db.String(20), nullable=False)  # email, social, call, task
    delay_days = db.Column(db.Integer, nullable=False, default=0)
    subject_template = db.Column(db.Text, nullable=True)
    body_template = db.Column(db.Text, nullable=True)
    ai_personalization = db.Column(db.Boolean, nullable=False, default=True)
    ai_prompt = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('sequence_id', 'version', 'step_number', name='uq_sequence_version_step_number'),
    )

    def to_dict(self):
        return {
            'id': str(self.id),
            'sequence_id': str(self.sequence_id),
            'version': self.version,
            'step_number': self.step_number,
            'channel': self.channel,
            'delay_days': self.delay_days,
            'subject_template': self.subject_template,
            'body_template': self.body_template,
            'ai_personalization': self.ai_personalization,
            'ai_prompt': self.ai_prompt,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<SequenceStep {self.step_number} ({self.channel}) v{self.version}>'
