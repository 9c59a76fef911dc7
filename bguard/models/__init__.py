"""
BGuard Suite Database Models

Secure database models with proper validation and relationships.
"""

from bguard.models.organization import Organization
from bguard.models.user import User, UserRole, PasswordResetToken
from bguard.models.threat_model import (
    ThreatModel, ThreatModelStatus, Finding, FindingStatus, Severity, StrideCategory,
    ThreatAsset, FindingAsset, AssetImpact
)
from bguard.models.tag import Tag, FindingTag
from bguard.models.asset import (
    ApplicationAsset, AssetType, AssetStatus, BusinessCriticality, DataClassification,
    Environment, ReviewStatus, AssetThreatModelLink, AssetDesignReviewLink
)
from bguard.models.design_review import (
    DesignReview, DesignReviewType, DesignReviewStatus, SystemType, SecurityGrade, RiskLevel
)
from bguard.models.third_party_review import ThirdPartyReview, ThirdPartyReviewStatus, ScanFrequency
from bguard.models.endpoint import (
    EndpointDiscoverySession, DiscoveredEndpoint, DiscoveryStatus, EndpointType,
    EndpointSensitivity, EndpointRiskLevel
)
from bguard.models.report import Report, ReportFormat
from bguard.models.activity import ActivityLog, ActivityStatus, SecurityEvent, EventSeverity
from bguard.models.api_key import ApiKey
from bguard.models.settings import SlaSettings, AdminStats

__all__ = [
    'Organization', 'User', 'UserRole', 'PasswordResetToken',
    'ThreatModel', 'ThreatModelStatus', 'Finding', 'FindingStatus', 'Severity', 'StrideCategory',
    'ThreatAsset', 'FindingAsset', 'AssetImpact', 'Tag', 'FindingTag',
    'ApplicationAsset', 'AssetType', 'AssetStatus', 'BusinessCriticality', 'DataClassification',
    'Environment', 'ReviewStatus', 'AssetThreatModelLink', 'AssetDesignReviewLink',
    'DesignReview', 'DesignReviewType', 'DesignReviewStatus', 'SystemType', 'SecurityGrade', 'RiskLevel',
    'ThirdPartyReview', 'ThirdPartyReviewStatus', 'ScanFrequency',
    'EndpointDiscoverySession', 'DiscoveredEndpoint', 'DiscoveryStatus', 'EndpointType',
    'EndpointSensitivity', 'EndpointRiskLevel',
    'Report', 'ReportFormat', 'ActivityLog', 'ActivityStatus', 'SecurityEvent', 'EventSeverity',
    'ApiKey', 'SlaSettings', 'AdminStats',
]
