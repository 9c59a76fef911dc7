"""
Shared helpers for BGuard API routes.

Authentication decorator, request parsing, pagination and scoped record
lookup.
"""

import csv
import io
import logging
from functools import wraps
from flask import request, jsonify, Response
from flask_login import current_user

from bguard import db
from bguard.models.user import UserRole
from bguard.security.rbac import build_user_scope, can_access_resource

security_logger = logging.getLogger('security')


def api_login_required(f):
    """
    Custom decorator that requires authentication via session or API key.
    Returns JSON error instead of redirect for API endpoints.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({'error': 'Authentication required',
                            'message': 'Please provide valid credentials or API key'}), 401
        return f(*args, **kwargs)
    return decorated_function


def get_json_body():
    """Request JSON as a dict; empty dict when the body is missing or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def int_arg(name, default, minimum=1, maximum=None):
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        value = default
    value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def bool_arg(name, default=None):
    value = request.args.get(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes')


def paginate(query, serialize, key='items', default_per_page=20, per_page_arg='per_page'):
    """Paginate ``query`` from ``page``/``per_page`` args into a JSON-ready dict."""
    page = int_arg('page', 1)
    per_page = int_arg(per_page_arg, default_per_page, maximum=100)
    pagination = query.paginate(page=page, per_page=per_page, error_out=False)
    return {
        key: [serialize(item) for item in pagination.items],
        'total': pagination.total,
        'page': page,
        'per_page': per_page,
        'pages': pagination.pages,
    }


def scoped_query(model):
    """Records of ``model`` visible to the current user."""
    return build_user_scope(model.query, model, current_user)


def get_accessible(model, record_id, label):
    """
    SECURITY: Fetch a record only if the current user may access it.
    Prevents IDOR (Insecure Direct Object Reference) attacks.

    Returns (record, None) or (None, error_response).
    """
    record = db.session.get(model, record_id) if record_id is not None else None
    if record is None:
        return None, (jsonify({'error': f'{label} not found'}), 404)
    if not can_access_resource(current_user, record.user_id, record.organization_id):
        security_logger.warning(
            f"Unauthorized {label.lower()} access: {record_id} by user {current_user.id}"
        )
        return None, (jsonify({'error': 'Access denied'}), 403)
    return record, None


def is_admin_or_business_admin():
    return current_user.role in (UserRole.ADMIN, UserRole.BUSINESS_ADMIN)


def csv_response(rows, columns, filename):
    """Render dict rows as a CSV attachment."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, extrasaction='ignore')
    writer.writeheader()
    for row in rows:
        writer.writerow({k: (', '.join(map(str, v)) if isinstance(v, list) else v) for k, v in row.items()})
    return Response(
        buffer.getvalue(),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={filename}'}
    )


def export_response(records, columns, basename):
    """Export ``records`` (dicts) as JSON or CSV depending on the ``format`` arg."""
    fmt = (request.args.get('format') or 'json').lower()
    if fmt == 'csv':
        return csv_response(records, columns, f'{basename}.csv')
    if fmt != 'json':
        return jsonify({'error': 'Format must be json or csv'}), 400
    return jsonify({basename: records, 'total': len(records)})
