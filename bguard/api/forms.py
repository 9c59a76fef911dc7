"""
Request forms for BGuard account endpoints.

Flask-WTF forms bound to JSON request bodies. CSRF is handled by the
blueprint exemption, so forms disable it.
"""

from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, BooleanField, IntegerField
from wtforms.validators import DataRequired, Email, Length, Optional, ValidationError

from bguard.models import User


class JsonForm(FlaskForm):
    class Meta:
        csrf = False

    def error_message(self):
        """First validation error as a single message."""
        for field, errors in self.errors.items():
            if errors:
                return f"{field}: {errors[0]}"
        return 'Invalid input'


class SignupForm(JsonForm):
    """Self-service signup."""
    email = StringField('Email', validators=[DataRequired(), Email(), Length(max=120)])
    password = PasswordField('Password', validators=[DataRequired(), Length(min=8, max=128)])
    first_name = StringField('First name', validators=[DataRequired(), Length(max=80)])
    last_name = StringField('Last name', validators=[DataRequired(), Length(max=80)])
    organization_name = StringField('Organization name', validators=[Optional(), Length(min=2, max=100)])
    organization_id = IntegerField('Organization', validators=[Optional()])

    def validate_organization_id(self, field):
        if field.data and self.organization_name.data:
            raise ValidationError('Provide either organization_name or organization_id, not both')


class LoginForm(JsonForm):
    email = StringField('Email', validators=[DataRequired(), Length(max=120)])
    password = PasswordField('Password', validators=[DataRequired()])
    remember = BooleanField('Remember Me')


class ChangePasswordForm(JsonForm):
    current_password = PasswordField('Current password', validators=[DataRequired()])
    new_password = PasswordField('New password', validators=[DataRequired(), Length(min=8, max=128)])


class PasswordResetRequestForm(JsonForm):
    email = StringField('Email', validators=[DataRequired(), Email()])


class PasswordResetConfirmForm(JsonForm):
    token = StringField('Token', validators=[DataRequired(), Length(max=128)])
    new_password = PasswordField('New password', validators=[DataRequired(), Length(min=8, max=128)])


class AdminCreateUserForm(JsonForm):
    """User creation by an ADMIN or BUSINESS_ADMIN."""
    email = StringField('Email', validators=[DataRequired(), Email(), Length(max=120)])
    password = PasswordField('Password', validators=[DataRequired(), Length(min=8, max=128)])
    first_name = StringField('First name', validators=[Optional(), Length(max=80)])
    last_name = StringField('Last name', validators=[Optional(), Length(max=80)])
    role = StringField('Role', validators=[Optional()])
    organization_id = IntegerField('Organization', validators=[Optional()])

    def validate_email(self, field):
        if User.query.filter_by(email=field.data.strip().lower()).first():
            raise ValidationError('Email already registered')
