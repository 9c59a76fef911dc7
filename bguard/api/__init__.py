"""
BGuard REST API

JSON endpoints for every feature of the platform. Session cookie or
X-API-Key authentication; rate limited per route.
"""

from flask import Blueprint

api_bp = Blueprint('api', __name__)

from bguard.api import (  # noqa: E402,F401
    auth, users, organizations, threat_models, findings, tags, assets,
    design_reviews, third_party_reviews, discovery, reports, security,
    settings, activity, dashboard
)
