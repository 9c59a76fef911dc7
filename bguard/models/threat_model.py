"""
Threat Model and Finding Models for BGuard Suite

A threat model describes a system in prose; STRIDE findings are generated
from it (by the AI analyzer or manually) and tracked through remediation.
"""

from datetime import datetime
from enum import Enum
from bguard import db
from bguard.models.base import json_text_property, isoformat, enum_value


class ThreatModelStatus(Enum):
    """Threat model lifecycle."""
    DRAFT = 'DRAFT'
    ANALYZING = 'ANALYZING'
    COMPLETED = 'COMPLETED'
    ARCHIVED = 'ARCHIVED'


class Severity(Enum):
    """Finding severity levels."""
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    CRITICAL = 'CRITICAL'


class StrideCategory(Enum):
    """STRIDE threat categories."""
    SPOOFING = 'SPOOFING'
    TAMPERING = 'TAMPERING'
    REPUDIATION = 'REPUDIATION'
    INFORMATION_DISCLOSURE = 'INFORMATION_DISCLOSURE'
    DENIAL_OF_SERVICE = 'DENIAL_OF_SERVICE'
    ELEVATION_OF_PRIVILEGE = 'ELEVATION_OF_PRIVILEGE'


class FindingStatus(Enum):
    """Remediation status of a finding."""
    OPEN = 'OPEN'
    IN_PROGRESS = 'IN_PROGRESS'
    RESOLVED = 'RESOLVED'


class AssetImpact(Enum):
    """How a finding affects a threat model asset."""
    DIRECT = 'DIRECT'
    INDIRECT = 'INDIRECT'
    CASCADING = 'CASCADING'


class ThreatModel(db.Model):
    """
    Threat model for a described system.

    Deleting a threat model removes its findings, assets and reports.
    """

    __tablename__ = 'threat_models'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    prompt = db.Column(db.Text, nullable=False)
    system_type = db.Column(db.String(50), nullable=True)
    status = db.Column(db.Enum(ThreatModelStatus), default=ThreatModelStatus.DRAFT, index=True)
    error_message = db.Column(db.Text, nullable=True)

    # Structured context for the rule-based analyzer (stored as JSON)
    _context = db.Column('context', db.Text, nullable=True)
    context = json_text_property('_context', default=dict)

    summary = db.Column(db.Text, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('threat_models', lazy='dynamic'))
    findings = db.relationship('Finding', backref='threat_model', lazy='dynamic',
                               cascade='all, delete-orphan')
    assets = db.relationship('ThreatAsset', backref='threat_model', lazy='dynamic',
                             cascade='all, delete-orphan')
    reports = db.relationship('Report', backref='threat_model', lazy='dynamic',
                              cascade='all, delete-orphan')

    def __init__(self, name, prompt, user_id=None, organization_id=None,
                 description=None, system_type=None, context=None):
        self.name = self._validate_name(name)
        self.prompt = self._validate_prompt(prompt)
        self.user_id = user_id
        self.organization_id = organization_id
        self.description = description
        self.system_type = system_type
        self.context = context or {}
        self.status = ThreatModelStatus.DRAFT

    @staticmethod
    def _validate_name(name):
        if name is not None and not isinstance(name, str):
            raise ValueError("Threat model name must be a string")
        name = (name or '').strip()
        if len(name) < 3 or len(name) > 100:
            raise ValueError("Threat model name must be between 3 and 100 characters")
        return name

    @staticmethod
    def _validate_prompt(prompt):
        if prompt is not None and not isinstance(prompt, str):
            raise ValueError("System description must be a string")
        prompt = (prompt or '').strip()
        if len(prompt) < 10 or len(prompt) > 10000:
            raise ValueError("System description must be between 10 and 10000 characters")
        return prompt

    def severity_counts(self):
        counts = {severity.value: 0 for severity in Severity}
        for finding in self.findings:
            counts[finding.severity.value] += 1
        return counts

    def to_dict(self, include_findings=False):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'prompt': self.prompt,
            'system_type': self.system_type,
            'status': enum_value(self.status),
            'summary': self.summary,
            'error_message': self.error_message,
            'user_id': self.user_id,
            'organization_id': self.organization_id,
            'findings_count': self.findings.count(),
            'severity_counts': self.severity_counts(),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
        if include_findings:
            data['findings'] = [f.to_dict() for f in self.findings.order_by(Finding.id)]
            data['assets'] = [a.to_dict() for a in self.assets]
        return data

    def __repr__(self):
        return f'<ThreatModel {self.name}>'


class Finding(db.Model):
    """A STRIDE finding with compliance framework mappings."""

    __tablename__ = 'findings'

    id = db.Column(db.Integer, primary_key=True)
    threat_model_id = db.Column(db.Integer, db.ForeignKey('threat_models.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)

    threat_scenario = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    severity = db.Column(db.Enum(Severity), default=Severity.MEDIUM, index=True)
    stride_category = db.Column(db.Enum(StrideCategory), nullable=False, index=True)
    recommendation = db.Column(db.Text, nullable=True)
    status = db.Column(db.Enum(FindingStatus), default=FindingStatus.OPEN, index=True)
    comments = db.Column(db.Text, nullable=True)

    # Framework mappings
    _nist_controls = db.Column('nist_controls', db.Text, nullable=True)
    nist_controls = json_text_property('_nist_controls')
    owasp_category = db.Column(db.String(10), nullable=True)
    cvss_score = db.Column(db.Float, nullable=True)
    asvs_level = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('findings', lazy='dynamic'))
    finding_tags = db.relationship('FindingTag', backref='finding', lazy='dynamic',
                                   cascade='all, delete-orphan')
    finding_assets = db.relationship('FindingAsset', backref='finding', lazy='dynamic',
                                     cascade='all, delete-orphan')

    def __init__(self, threat_model_id, threat_scenario, stride_category, severity=Severity.MEDIUM,
                 description=None, recommendation=None, user_id=None, organization_id=None):
        if not threat_scenario or not threat_scenario.strip():
            raise ValueError("Threat scenario is required")
        self.threat_model_id = threat_model_id
        self.threat_scenario = threat_scenario.strip()[:500]
        self.stride_category = stride_category
        self.severity = severity
        self.description = description
        self.recommendation = recommendation
        self.user_id = user_id
        self.organization_id = organization_id
        self.status = FindingStatus.OPEN

    def to_dict(self):
        return {
            'id': self.id,
            'threat_model_id': self.threat_model_id,
            'threat_model_name': self.threat_model.name if self.threat_model else None,
            'threat_scenario': self.threat_scenario,
            'description': self.description,
            'severity': enum_value(self.severity),
            'stride_category': enum_value(self.stride_category),
            'recommendation': self.recommendation,
            'status': enum_value(self.status),
            'comments': self.comments,
            'nist_controls': self.nist_controls,
            'owasp_category': self.owasp_category,
            'cvss_score': self.cvss_score,
            'asvs_level': self.asvs_level,
            'user_id': self.user_id,
            'organization_id': self.organization_id,
            'tags': [ft.to_dict() for ft in self.finding_tags],
            'assets': [fa.to_dict() for fa in self.finding_assets],
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }

    def __repr__(self):
        return f'<Finding {self.id} {enum_value(self.severity)}>'


class ThreatAsset(db.Model):
    """An asset named inside a threat model (component, data store, service)."""

    __tablename__ = 'threat_assets'

    id = db.Column(db.Integer, primary_key=True)
    threat_model_id = db.Column(db.Integer, db.ForeignKey('threat_models.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    asset_type = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)
    criticality = db.Column(db.Enum(Severity), default=Severity.MEDIUM)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    finding_assets = db.relationship('FindingAsset', backref='asset', lazy='dynamic',
                                     cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'threat_model_id': self.threat_model_id,
            'name': self.name,
            'asset_type': self.asset_type,
            'description': self.description,
            'criticality': enum_value(self.criticality),
            'created_at': isoformat(self.created_at),
        }


class FindingAsset(db.Model):
    """Link between a finding and an asset of the same threat model."""

    __tablename__ = 'finding_assets'
    __table_args__ = (db.UniqueConstraint('finding_id', 'asset_id', name='uq_finding_asset'),)

    id = db.Column(db.Integer, primary_key=True)
    finding_id = db.Column(db.Integer, db.ForeignKey('findings.id'), nullable=False, index=True)
    asset_id = db.Column(db.Integer, db.ForeignKey('threat_assets.id'), nullable=False, index=True)
    impact = db.Column(db.Enum(AssetImpact), default=AssetImpact.DIRECT)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'finding_id': self.finding_id,
            'asset_id': self.asset_id,
            'asset_name': self.asset.name if self.asset else None,
            'impact': enum_value(self.impact),
            'created_at': isoformat(self.created_at),
        }
