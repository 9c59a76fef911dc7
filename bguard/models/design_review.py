"""
Design Review Model for BGuard Suite

Architecture security reviews scored by the design analyzer.
"""

from datetime import datetime
from enum import Enum
from bguard import db
from bguard.models.base import json_text_property, isoformat, enum_value


class DesignReviewType(Enum):
    ARCHITECTURE = 'ARCHITECTURE'
    SECURITY_CONTROLS = 'SECURITY_CONTROLS'
    DATA_FLOW = 'DATA_FLOW'
    INFRASTRUCTURE = 'INFRASTRUCTURE'
    COMPLIANCE = 'COMPLIANCE'
    CODE_REVIEW = 'CODE_REVIEW'


class SystemType(Enum):
    WEB_APPLICATION = 'WEB_APPLICATION'
    MOBILE_APP = 'MOBILE_APP'
    API = 'API'
    MICROSERVICES = 'MICROSERVICES'
    CLOUD_NATIVE = 'CLOUD_NATIVE'
    DESKTOP = 'DESKTOP'
    IOT = 'IOT'
    OTHER = 'OTHER'


class DesignReviewStatus(Enum):
    DRAFT = 'DRAFT'
    IN_PROGRESS = 'IN_PROGRESS'
    UNDER_REVIEW = 'UNDER_REVIEW'
    COMPLETED = 'COMPLETED'
    ARCHIVED = 'ARCHIVED'


class SecurityGrade(Enum):
    A = 'A'
    B = 'B'
    C = 'C'
    D = 'D'
    F = 'F'


class RiskLevel(Enum):
    VERY_LOW = 'VERY_LOW'
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    VERY_HIGH = 'VERY_HIGH'
    CRITICAL = 'CRITICAL'


class DesignReview(db.Model):
    """Security design review of a system architecture."""

    __tablename__ = 'design_reviews'

    DOMAIN_SCORES = ('authentication', 'authorization', 'data_protection',
                     'input_validation', 'logging_monitoring', 'secure_design')

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    review_type = db.Column(db.Enum(DesignReviewType), default=DesignReviewType.ARCHITECTURE, index=True)
    system_type = db.Column(db.Enum(SystemType), default=SystemType.WEB_APPLICATION, index=True)
    scope = db.Column(db.Text, nullable=True)
    business_context = db.Column(db.Text, nullable=True)
    tech_stack = db.Column(db.Text, nullable=True)
    architecture_description = db.Column(db.Text, nullable=True)

    _compliance_frameworks = db.Column('compliance_frameworks', db.Text, nullable=True)
    compliance_frameworks = json_text_property('_compliance_frameworks')

    status = db.Column(db.Enum(DesignReviewStatus), default=DesignReviewStatus.DRAFT, index=True)
    progress = db.Column(db.Integer, default=0)  # 0-100

    security_score = db.Column(db.Integer, nullable=True)
    security_grade = db.Column(db.Enum(SecurityGrade), nullable=True, index=True)
    overall_risk = db.Column(db.Enum(RiskLevel), default=RiskLevel.MEDIUM, index=True)
    compliance_score = db.Column(db.Integer, nullable=True)

    _domain_scores = db.Column('domain_scores', db.Text, nullable=True)
    domain_scores = json_text_property('_domain_scores', default=dict)
    _security_findings = db.Column('security_findings', db.Text, nullable=True)
    security_findings = json_text_property('_security_findings')
    _recommendations = db.Column('recommendations', db.Text, nullable=True)
    recommendations = json_text_property('_recommendations')
    _prioritized_actions = db.Column('prioritized_actions', db.Text, nullable=True)
    prioritized_actions = json_text_property('_prioritized_actions')
    _compliance_gaps = db.Column('compliance_gaps', db.Text, nullable=True)
    compliance_gaps = json_text_property('_compliance_gaps')
    _analysis_results = db.Column('analysis_results', db.Text, nullable=True)
    analysis_results = json_text_property('_analysis_results', default=dict)

    last_analysis_date = db.Column(db.DateTime, nullable=True)
    review_completed_date = db.Column(db.DateTime, nullable=True)
    last_modified_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    TEXT_FIELDS = ('description', 'scope', 'business_context', 'tech_stack', 'architecture_description')

    @staticmethod
    def validate_name(name):
        name = (name or '').strip()
        if not name or len(name) > 200:
            raise ValueError("Design review name must be between 1 and 200 characters")
        return name

    def to_dict(self, include_results=False):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'review_type': enum_value(self.review_type),
            'system_type': enum_value(self.system_type),
            'scope': self.scope,
            'business_context': self.business_context,
            'tech_stack': self.tech_stack,
            'architecture_description': self.architecture_description,
            'compliance_frameworks': self.compliance_frameworks,
            'status': enum_value(self.status),
            'progress': self.progress,
            'security_score': self.security_score,
            'security_grade': enum_value(self.security_grade),
            'overall_risk': enum_value(self.overall_risk),
            'compliance_score': self.compliance_score,
            'domain_scores': self.domain_scores,
            'linked_assets': [link.asset_id for link in self.asset_links],
            'last_analysis_date': isoformat(self.last_analysis_date),
            'review_completed_date': isoformat(self.review_completed_date),
            'user_id': self.user_id,
            'organization_id': self.organization_id,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
        if include_results:
            data.update({
                'security_findings': self.security_findings,
                'recommendations': self.recommendations,
                'prioritized_actions': self.prioritized_actions,
                'compliance_gaps': self.compliance_gaps,
            })
        return data

    def __repr__(self):
        return f'<DesignReview {self.name}>'
