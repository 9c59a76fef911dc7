"""
Tag Models for BGuard Suite

System tags are shared by every organization; organization tags belong to
a single tenant.
"""

import re
from datetime import datetime
from bguard import db
from bguard.models.base import isoformat


class Tag(db.Model):
    """Finding tag, either system-wide or organization scoped."""

    __tablename__ = 'tags'
    __table_args__ = (db.UniqueConstraint('organization_id', 'name', name='uq_tag_org_name'),)

    DEFAULT_COLOR = '#6b7280'
    COLOR_REGEX = re.compile(r'^#[0-9A-Fa-f]{6}$')

    # Applying one of these to a finding requires a justification
    JUSTIFICATION_REQUIRED = ('False Positive', 'Not Applicable')

    SYSTEM_TAGS = (
        ('False Positive', '#ef4444', 'Finding does not apply after investigation'),
        ('Not Applicable', '#9ca3af', 'Finding is out of scope for this system'),
        ('Accepted Risk', '#f59e0b', 'Risk formally accepted by the business'),
        ('Needs Review', '#3b82f6', 'Finding requires further review'),
        ('Quick Win', '#10b981', 'Low effort remediation'),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    color = db.Column(db.String(7), default=DEFAULT_COLOR)
    description = db.Column(db.Text, nullable=True)
    is_system = db.Column(db.Boolean, default=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    finding_tags = db.relationship('FindingTag', backref='tag', lazy='dynamic',
                                   cascade='all, delete-orphan')

    def __init__(self, name, color=None, description=None, organization_id=None,
                 created_by=None, is_system=False):
        self.name = self.validate_name(name)
        self.color = self.validate_color(color)
        self.description = description
        self.organization_id = organization_id
        self.created_by = created_by
        self.is_system = is_system

    @staticmethod
    def validate_name(name):
        name = (name or '').strip()
        if not name or len(name) > 50:
            raise ValueError("Tag name must be between 1 and 50 characters")
        return name

    @classmethod
    def validate_color(cls, color):
        if not color:
            return cls.DEFAULT_COLOR
        if not cls.COLOR_REGEX.match(color):
            raise ValueError("Color must be a hex value like #RRGGBB")
        return color

    @property
    def requires_justification(self):
        return self.name in self.JUSTIFICATION_REQUIRED

    @classmethod
    def seed_system_tags(cls):
        """Create any missing system tags; returns the number created."""
        created = 0
        for name, color, description in cls.SYSTEM_TAGS:
            if cls.query.filter_by(name=name, is_system=True).first():
                continue
            db.session.add(cls(name=name, color=color, description=description, is_system=True))
            created += 1
        db.session.commit()
        return created

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'color': self.color,
            'description': self.description,
            'is_system': self.is_system,
            'organization_id': self.organization_id,
            'usage_count': self.finding_tags.count(),
            'created_at': isoformat(self.created_at),
        }


class FindingTag(db.Model):
    """Tag applied to a finding, with optional justification."""

    __tablename__ = 'finding_tags'
    __table_args__ = (db.UniqueConstraint('finding_id', 'tag_id', name='uq_finding_tag'),)

    id = db.Column(db.Integer, primary_key=True)
    finding_id = db.Column(db.Integer, db.ForeignKey('findings.id'), nullable=False, index=True)
    tag_id = db.Column(db.Integer, db.ForeignKey('tags.id'), nullable=False, index=True)
    justification = db.Column(db.Text, nullable=True)
    applied_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'tag_id': self.tag_id,
            'name': self.tag.name if self.tag else None,
            'color': self.tag.color if self.tag else None,
            'justification': self.justification,
            'applied_by': self.applied_by,
            'created_at': isoformat(self.created_at),
        }
