"""
Application Asset Models for BGuard Suite

Inventory of applications and services, linked to the threat models and
design reviews that cover them.
"""

from datetime import datetime
from enum import Enum
from bguard import db
from bguard.models.base import json_text_property, isoformat, enum_value


class AssetType(Enum):
    WEB_APPLICATION = 'WEB_APPLICATION'
    MOBILE_APPLICATION = 'MOBILE_APPLICATION'
    API_SERVICE = 'API_SERVICE'
    DATABASE = 'DATABASE'
    MICROSERVICE = 'MICROSERVICE'
    INFRASTRUCTURE = 'INFRASTRUCTURE'
    CLOUD_SERVICE = 'CLOUD_SERVICE'
    THIRD_PARTY_SERVICE = 'THIRD_PARTY_SERVICE'
    OTHER = 'OTHER'


class AssetStatus(Enum):
    ACTIVE = 'ACTIVE'
    INACTIVE = 'INACTIVE'
    DEPRECATED = 'DEPRECATED'
    UNDER_DEVELOPMENT = 'UNDER_DEVELOPMENT'
    RETIRED = 'RETIRED'


class BusinessCriticality(Enum):
    VERY_LOW = 'VERY_LOW'
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    VERY_HIGH = 'VERY_HIGH'


class DataClassification(Enum):
    PUBLIC = 'PUBLIC'
    INTERNAL = 'INTERNAL'
    CONFIDENTIAL = 'CONFIDENTIAL'
    RESTRICTED = 'RESTRICTED'


class Environment(Enum):
    PRODUCTION = 'PRODUCTION'
    STAGING = 'STAGING'
    DEVELOPMENT = 'DEVELOPMENT'
    TESTING = 'TESTING'


class ReviewStatus(Enum):
    """Coverage of an asset by threat models or design reviews."""
    NOT_STARTED = 'NOT_STARTED'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    NEEDS_UPDATE = 'NEEDS_UPDATE'


class ApplicationAsset(db.Model):
    """An application or service in the asset inventory."""

    __tablename__ = 'application_assets'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    asset_type = db.Column(db.Enum(AssetType), nullable=False, index=True)
    status = db.Column(db.Enum(AssetStatus), default=AssetStatus.ACTIVE, index=True)
    business_criticality = db.Column(db.Enum(BusinessCriticality), default=BusinessCriticality.MEDIUM, index=True)
    data_classification = db.Column(db.Enum(DataClassification), default=DataClassification.INTERNAL)
    environment = db.Column(db.Enum(Environment), default=Environment.PRODUCTION, index=True)

    owner = db.Column(db.String(200), nullable=True)
    team = db.Column(db.String(200), nullable=True)
    business_unit = db.Column(db.String(200), nullable=True)
    hosting_provider = db.Column(db.String(200), nullable=True)

    application_url = db.Column(db.String(2048), nullable=True)
    repository_url = db.Column(db.String(2048), nullable=True)
    documentation_url = db.Column(db.String(2048), nullable=True)

    has_authentication = db.Column(db.Boolean, default=False)
    encryption_in_transit = db.Column(db.Boolean, default=False)
    encryption_at_rest = db.Column(db.Boolean, default=False)

    _tech_stack = db.Column('tech_stack', db.Text, nullable=True)
    tech_stack = json_text_property('_tech_stack')
    _compliance_requirements = db.Column('compliance_requirements', db.Text, nullable=True)
    compliance_requirements = json_text_property('_compliance_requirements')
    _tags = db.Column('tags', db.Text, nullable=True)
    tags = json_text_property('_tags')

    threat_model_status = db.Column(db.Enum(ReviewStatus), default=ReviewStatus.NOT_STARTED, index=True)
    design_review_status = db.Column(db.Enum(ReviewStatus), default=ReviewStatus.NOT_STARTED, index=True)
    last_security_review = db.Column(db.DateTime, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    threat_model_links = db.relationship('AssetThreatModelLink', backref='asset', lazy='dynamic',
                                         cascade='all, delete-orphan')
    design_review_links = db.relationship('AssetDesignReviewLink', backref='asset', lazy='dynamic',
                                          cascade='all, delete-orphan')
    discovery_sessions = db.relationship('EndpointDiscoverySession', backref='asset', lazy='dynamic',
                                         cascade='all, delete-orphan')

    # Simple text fields a client may set directly
    TEXT_FIELDS = ('description', 'owner', 'team', 'business_unit', 'hosting_provider',
                   'application_url', 'repository_url', 'documentation_url')
    FLAG_FIELDS = ('has_authentication', 'encryption_in_transit', 'encryption_at_rest')
    LIST_FIELDS = ('tech_stack', 'compliance_requirements', 'tags')

    @staticmethod
    def validate_name(name):
        name = (name or '').strip()
        if not name or len(name) > 200:
            raise ValueError("Asset name must be between 1 and 200 characters")
        return name

    @property
    def is_high_risk(self):
        """High criticality without completed threat model or design review coverage."""
        if self.business_criticality not in (BusinessCriticality.HIGH, BusinessCriticality.VERY_HIGH):
            return False
        uncovered = (ReviewStatus.NOT_STARTED, ReviewStatus.IN_PROGRESS)
        return self.threat_model_status in uncovered or self.design_review_status in uncovered

    def refresh_threat_model_status(self):
        self.threat_model_status = (ReviewStatus.COMPLETED if self.threat_model_links.count()
                                    else ReviewStatus.NOT_STARTED)

    def refresh_design_review_status(self):
        self.design_review_status = (ReviewStatus.COMPLETED if self.design_review_links.count()
                                     else ReviewStatus.NOT_STARTED)

    def to_dict(self, include_links=False):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'asset_type': enum_value(self.asset_type),
            'status': enum_value(self.status),
            'business_criticality': enum_value(self.business_criticality),
            'data_classification': enum_value(self.data_classification),
            'environment': enum_value(self.environment),
            'owner': self.owner,
            'team': self.team,
            'business_unit': self.business_unit,
            'hosting_provider': self.hosting_provider,
            'application_url': self.application_url,
            'repository_url': self.repository_url,
            'documentation_url': self.documentation_url,
            'has_authentication': self.has_authentication,
            'encryption_in_transit': self.encryption_in_transit,
            'encryption_at_rest': self.encryption_at_rest,
            'tech_stack': self.tech_stack,
            'compliance_requirements': self.compliance_requirements,
            'tags': self.tags,
            'threat_model_status': enum_value(self.threat_model_status),
            'design_review_status': enum_value(self.design_review_status),
            'last_security_review': isoformat(self.last_security_review),
            'user_id': self.user_id,
            'organization_id': self.organization_id,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
        if include_links:
            data['linked_threat_models'] = [link.to_dict() for link in self.threat_model_links]
            data['linked_design_reviews'] = [link.to_dict() for link in self.design_review_links]
        return data

    def __repr__(self):
        return f'<ApplicationAsset {self.name}>'


class AssetThreatModelLink(db.Model):
    """Asset covered by a threat model."""

    __tablename__ = 'asset_threat_model_links'
    __table_args__ = (db.UniqueConstraint('asset_id', 'threat_model_id', name='uq_asset_threat_model'),)

    id = db.Column(db.Integer, primary_key=True)
    asset_id = db.Column(db.Integer, db.ForeignKey('application_assets.id'), nullable=False, index=True)
    threat_model_id = db.Column(db.Integer, db.ForeignKey('threat_models.id'), nullable=False, index=True)
    linked_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    threat_model = db.relationship('ThreatModel', backref=db.backref(
        'asset_links', lazy='dynamic', cascade='all, delete-orphan'))

    def to_dict(self):
        return {
            'id': self.id,
            'asset_id': self.asset_id,
            'threat_model_id': self.threat_model_id,
            'threat_model_name': self.threat_model.name if self.threat_model else None,
            'created_at': isoformat(self.created_at),
        }


class AssetDesignReviewLink(db.Model):
    """Asset covered by a design review."""

    __tablename__ = 'asset_design_review_links'
    __table_args__ = (db.UniqueConstraint('asset_id', 'design_review_id', name='uq_asset_design_review'),)

    id = db.Column(db.Integer, primary_key=True)
    asset_id = db.Column(db.Integer, db.ForeignKey('application_assets.id'), nullable=False, index=True)
    design_review_id = db.Column(db.Integer, db.ForeignKey('design_reviews.id'), nullable=False, index=True)
    linked_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    design_review = db.relationship('DesignReview', backref=db.backref(
        'asset_links', lazy='dynamic', cascade='all, delete-orphan'))

    def to_dict(self):
        return {
            'id': self.id,
            'asset_id': self.asset_id,
            'design_review_id': self.design_review_id,
            'design_review_name': self.design_review.name if self.design_review else None,
            'created_at': isoformat(self.created_at),
        }
