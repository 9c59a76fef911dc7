"""
BGuard Activity Routes

Audit log listing and statistics, scoped by role.
"""

from datetime import datetime
from flask import jsonify, request

from bguard.api import api_bp
from bguard.api.helpers import api_login_required, scoped_query, paginate
from bguard.models import ActivityLog, ActivityStatus
from bguard.models.base import parse_enum
from bguard.security.activity import activity_stats


def _parse_date(name):
    value = request.args.get(name)
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: expected ISO 8601 date")


def _filtered_query():
    """
    Scoped activity query with filters from the request.

    Query args: action, status, entity_type, user_id, start_date, end_date.
    """
    query = scoped_query(ActivityLog)
    if request.args.get('action'):
        query = query.filter(ActivityLog.action == request.args['action'])
    status = parse_enum(ActivityStatus, request.args.get('status'), 'status')
    if status:
        query = query.filter(ActivityLog.status == status)
    if request.args.get('entity_type'):
        query = query.filter(ActivityLog.entity_type == request.args['entity_type'])
    user_id = request.args.get('user_id', type=int)
    if user_id:
        query = query.filter(ActivityLog.user_id == user_id)
    start, end = _parse_date('start_date'), _parse_date('end_date')
    if start:
        query = query.filter(ActivityLog.created_at >= start)
    if end:
        query = query.filter(ActivityLog.created_at <= end)
    return query


@api_bp.route('/activity', methods=['GET'])
@api_login_required
def list_activity():
    try:
        query = _filtered_query()
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(paginate(query.order_by(ActivityLog.created_at.desc()), lambda a: a.to_dict(),
                            key='activities', default_per_page=50))


@api_bp.route('/activity/stats', methods=['GET'])
@api_login_required
def get_activity_stats():
    try:
        query = _filtered_query()
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(activity_stats(query))
