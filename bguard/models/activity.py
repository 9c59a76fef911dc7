"""
Audit Models for BGuard Suite

Activity log entries and security events.
"""

from datetime import datetime
from enum import Enum
from bguard import db
from bguard.models.base import json_text_property, isoformat, enum_value


class ActivityStatus(Enum):
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'


class EventSeverity(Enum):
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    CRITICAL = 'CRITICAL'


class ActivityLog(db.Model):
    """A user action recorded for audit."""

    __tablename__ = 'activity_logs'

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    status = db.Column(db.Enum(ActivityStatus), default=ActivityStatus.SUCCESS, index=True)
    description = db.Column(db.Text, nullable=True)
    _details = db.Column('details', db.Text, nullable=True)
    details = json_text_property('_details', default=dict)

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)
    entity_type = db.Column(db.String(64), nullable=True, index=True)
    entity_id = db.Column(db.String(64), nullable=True)

    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    user = db.relationship('User', backref=db.backref('activities', lazy='dynamic'))

    def to_dict(self):
        return {
            'id': self.id,
            'action': self.action,
            'status': enum_value(self.status),
            'description': self.description,
            'details': self.details,
            'user_id': self.user_id,
            'user_email': self.user.email if self.user else None,
            'organization_id': self.organization_id,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'error_message': self.error_message,
            'created_at': isoformat(self.created_at),
        }


class SecurityEvent(db.Model):
    """A security-relevant event that may need an administrator's attention."""

    __tablename__ = 'security_events'

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    severity = db.Column(db.Enum(EventSeverity), default=EventSeverity.LOW, index=True)
    description = db.Column(db.Text, nullable=False)
    _metadata = db.Column('metadata', db.Text, nullable=True)
    event_metadata = json_text_property('_metadata', default=dict)

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    is_resolved = db.Column(db.Boolean, default=False, index=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    resolved_by = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def resolve(self, resolved_by):
        self.is_resolved = True
        self.resolved_at = datetime.utcnow()
        self.resolved_by = resolved_by

    def to_dict(self):
        return {
            'id': self.id,
            'event_type': self.event_type,
            'severity': enum_value(self.severity),
            'description': self.description,
            'metadata': self.event_metadata,
            'user_id': self.user_id,
            'organization_id': self.organization_id,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'is_resolved': self.is_resolved,
            'resolved_at': isoformat(self.resolved_at),
            'resolved_by': self.resolved_by,
            'created_at': isoformat(self.created_at),
        }
