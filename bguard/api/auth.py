"""
BGuard Authentication Routes

Signup, login with per-organization lockout, logout, password change and
password reset.
"""

import logging
from datetime import datetime
from flask import jsonify, current_app, session
from flask_login import login_user, logout_user, current_user

from bguard import db, limiter
from bguard.api import api_bp
from bguard.api.forms import (
    SignupForm, LoginForm, ChangePasswordForm, PasswordResetRequestForm, PasswordResetConfirmForm
)
from bguard.api.helpers import api_login_required
from bguard.models import User, UserRole, Organization, PasswordResetToken, ActivityStatus, EventSeverity
from bguard.security.activity import log_activity
from bguard.security.events import SecurityEventService
from bguard.security.rbac import PERMISSIONS

security_logger = logging.getLogger('security')

PASSWORD_RULES = ('Password must be at least 8 characters with uppercase, lowercase, '
                  'number, and special character')


def _safe_validation_message(error):
    """SECURITY: Only surface known validation messages."""
    message = str(error)
    lowered = message.lower()
    if 'password' in lowered:
        return PASSWORD_RULES
    if 'email' in lowered:
        return 'Please enter a valid email address'
    if 'name' in lowered:
        return message
    return 'Invalid input. Please check your information.'


@api_bp.route('/auth/signup', methods=['POST'])
@limiter.limit("5 per hour")
def signup():
    """
    Register a new account.

    Request body:
    {
        "email": "jane@example.com",
        "password": "...",
        "first_name": "Jane",
        "last_name": "Doe",
        "organization_name": "Acme"        (creates the organization)
        or "organization_id": 3            (joins an existing one)
    }
    """
    form = SignupForm()
    if not form.validate():
        return jsonify({'error': form.error_message()}), 400

    email = form.email.data.strip().lower()
    existing = User.query.filter_by(email=email).first()
    if existing:
        log_activity('SIGNUP_ATTEMPT_EXISTING_USER', user=existing, status=ActivityStatus.FAILED,
                     description='Signup attempted with an existing email')
        security_logger.warning(f"Signup attempt for existing account {existing.id}")
        return jsonify({'error': 'An account with this email already exists'}), 400

    try:
        organization = None
        if form.organization_name.data:
            name = Organization.validate_name(form.organization_name.data)
            if Organization.query.filter(db.func.lower(Organization.name) == name.lower()).first():
                return jsonify({'error': 'Organization already exists'}), 409
            organization = Organization(name=name)
            db.session.add(organization)
            db.session.flush()
        elif form.organization_id.data:
            organization = db.session.get(Organization, form.organization_id.data)
            if organization is None or not organization.is_active:
                return jsonify({'error': 'Organization not found'}), 400

        user = User(
            email=email,
            password=form.password.data,
            first_name=form.first_name.data,
            last_name=form.last_name.data,
            role=UserRole.BUSINESS_USER,
            organization_id=organization.id if organization else None,
        )
        db.session.add(user)
        db.session.commit()

    except ValueError as e:
        db.session.rollback()
        security_logger.warning(f"Signup validation error: {e}")
        return jsonify({'error': _safe_validation_message(e)}), 400
    except Exception as e:
        db.session.rollback()
        security_logger.error(f"Signup error: {e}")
        return jsonify({'error': 'Registration failed'}), 500

    security_logger.info(f"New user registered: {user.id}")
    log_activity('SIGNUP', user=user, description='Account created', entity_type='user', entity_id=user.id,
                 details={'organization_created': bool(form.organization_name.data)})
    return jsonify({'message': 'Registration successful', 'user': user.to_dict()}), 201


@api_bp.route('/auth/login', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    """Log in with email and password."""
    form = LoginForm()
    if not form.validate():
        return jsonify({'error': form.error_message()}), 400

    email = form.email.data.strip().lower()
    user = User.query.filter_by(email=email).first()

    if user and user.is_locked():
        SecurityEventService.log_event(
            'LOGIN_BLOCKED', EventSeverity.MEDIUM, 'Login attempt on locked account', user=user,
            metadata={'locked_until': user.locked_until.isoformat()},
        )
        return jsonify({'error': 'Account is temporarily locked. Try again later.',
                        'locked_until': user.locked_until.isoformat()}), 423

    if user and user.check_password(form.password.data):
        if not user.is_active:
            log_activity('LOGIN', user=user, status=ActivityStatus.FAILED,
                         description='Login attempt on suspended account')
            return jsonify({'error': 'Account is suspended'}), 403

        # SECURITY: Regenerate session to prevent session fixation
        session.clear()
        user.record_successful_login()
        login_user(user, remember=form.remember.data)
        session.permanent = bool(form.remember.data)

        SecurityEventService.log_event('LOGIN_SUCCESS', EventSeverity.LOW, 'Successful login', user=user)
        security_logger.info(f"Successful login: {user.id}")
        return jsonify({'message': 'Login successful', 'user': user.to_dict()})

    if user:
        locked = user.record_failed_login()
        SecurityEventService.log_event(
            'LOGIN_FAILED', EventSeverity.MEDIUM, 'Invalid password', user=user,
            metadata={'failed_attempts': user.failed_login_attempts},
        )
        SecurityEventService.check_for_alerts(user)
        if locked:
            SecurityEventService.log_event(
                'ACCOUNT_LOCKED', EventSeverity.HIGH, 'Account locked after repeated failed logins',
                user=user, metadata={'locked_until': user.locked_until.isoformat()},
            )
        security_logger.warning(f"Failed login attempt for user: {user.id}")
    else:
        log_activity('LOGIN', status=ActivityStatus.FAILED, description='Login attempt for unknown account')
        security_logger.warning("Login attempt for non-existent user")

    return jsonify({'error': 'Invalid email or password'}), 401


@api_bp.route('/auth/logout', methods=['POST'])
@api_login_required
def logout():
    log_activity('LOGOUT', user=current_user, description='Logged out')
    logout_user()
    session.clear()
    return jsonify({'message': 'Logged out'})


@api_bp.route('/auth/me', methods=['GET'])
@api_login_required
def me():
    """Current user with their effective permissions."""
    data = current_user.to_dict(include_security=True)
    data['permissions'] = sorted(PERMISSIONS.get(current_user.role, ()))
    return jsonify(data)


@api_bp.route('/auth/change-password', methods=['POST'])
@api_login_required
@limiter.limit("5 per hour")
def change_password():
    form = ChangePasswordForm()
    if not form.validate():
        return jsonify({'error': form.error_message()}), 400

    if not current_user.check_password(form.current_password.data):
        SecurityEventService.log_event('PASSWORD_CHANGE_FAILED', EventSeverity.MEDIUM,
                                       'Incorrect current password', user=current_user)
        return jsonify({'error': 'Current password is incorrect'}), 400

    try:
        current_user.set_password(form.new_password.data)
        db.session.commit()
    except ValueError:
        db.session.rollback()
        return jsonify({'error': PASSWORD_RULES}), 400

    SecurityEventService.log_event('PASSWORD_CHANGED', EventSeverity.MEDIUM, 'Password changed', user=current_user)
    return jsonify({'message': 'Password changed successfully'})


@api_bp.route('/auth/password-reset/request', methods=['POST'])
@limiter.limit("5 per hour")
def request_password_reset():
    """
    Issue a password reset token.

    The response is identical whether or not the account exists. There is
    no email delivery; the token is only returned when EXPOSE_RESET_TOKENS
    is enabled.
    """
    form = PasswordResetRequestForm()
    if not form.validate():
        return jsonify({'error': form.error_message()}), 400

    response = {'message': 'If the account exists, a password reset has been issued'}
    user = User.query.filter_by(email=form.email.data.strip().lower()).first()
    if user and user.is_active:
        _, token = PasswordResetToken.issue(user, current_app.config.get('PASSWORD_RESET_TOKEN_HOURS', 1))
        db.session.commit()
        SecurityEventService.log_event('PASSWORD_RESET_REQUESTED', EventSeverity.LOW,
                                       'Password reset requested', user=user)
        if current_app.config.get('EXPOSE_RESET_TOKENS'):
            response['reset_token'] = token
    return jsonify(response)


@api_bp.route('/auth/password-reset/confirm', methods=['POST'])
@limiter.limit("10 per hour")
def confirm_password_reset():
    form = PasswordResetConfirmForm()
    if not form.validate():
        return jsonify({'error': form.error_message()}), 400

    record = PasswordResetToken.find_valid(form.token.data)
    if record is None:
        security_logger.warning("Invalid or expired password reset token used")
        return jsonify({'error': 'Invalid or expired reset token'}), 400

    user = record.user
    try:
        user.set_password(form.new_password.data)
    except ValueError:
        db.session.rollback()
        return jsonify({'error': PASSWORD_RULES}), 400

    record.used_at = datetime.utcnow()
    user.unlock()
    db.session.commit()
    SecurityEventService.log_event('PASSWORD_RESET_COMPLETED', EventSeverity.MEDIUM,
                                   'Password reset completed', user=user)
    return jsonify({'message': 'Password has been reset'})
