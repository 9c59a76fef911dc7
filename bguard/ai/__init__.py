"""
BGuard AI Module

LLM-assisted STRIDE threat analysis, design and vendor review scoring,
and endpoint classification, each with a rule-based fallback.
"""

from bguard.ai.llm import LLMService, LLMProvider, LLMError, create_llm_service, get_llm_service
from bguard.ai.threat_analyzer import ThreatAnalyzer, ThreatModelContext, ThreatItem
from bguard.ai.review_analyzer import DesignAnalyzer, VendorAnalyzer, SiteObservation
from bguard.ai.endpoints import EndpointClassifier, EndpointInfo

__all__ = [
    'LLMService', 'LLMProvider', 'LLMError', 'create_llm_service', 'get_llm_service',
    'ThreatAnalyzer', 'ThreatModelContext', 'ThreatItem',
    'DesignAnalyzer', 'VendorAnalyzer', 'SiteObservation',
    'EndpointClassifier', 'EndpointInfo',
]
