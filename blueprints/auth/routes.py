import logging
import secrets

from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_user, logout_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from errors import Unauthorized, ValidationFailed
from extensions import db, login_manager
from formatters import user_dict
from forms import ForgotPasswordForm, LanguageForm, LoginForm, ResetPasswordForm, validated
from models import User
from queries.users import find_by_email
from role_required import current_scope
from services import mailer

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__, url_prefix="/api/auth")

TOKEN_SALT = "api-token"


def _serializer():
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_token(user):
    return _serializer().dumps({"id": user.id, "pw": user.password_hash[-12:]})


def user_from_token(token):
    try:
        data = _serializer().loads(token, max_age=current_app.config["API_TOKEN_MAX_AGE"])
    except (SignatureExpired, BadSignature):
        return None
    user = db.session.get(User, data.get("id"))
    # a password change invalidates outstanding tokens
    if not user or not user.is_active or user.password_hash[-12:] != data.get("pw"):
        return None
    return user


@login_manager.user_loader
def load_user(user_id):
    user = db.session.get(User, int(user_id))
    return user if user and user.is_active else None


@login_manager.request_loader
def load_user_from_request(req):
    header = req.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return user_from_token(header[len("Bearer "):].strip())
    return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "User not authenticated"}), 401


@bp.route("/login", methods=["POST"])
def login():
    form = validated(LoginForm)
    user = find_by_email(form.email.data)
    if not (user and user.is_active and user.check_password(form.password.data)):
        logger.info("Failed login for %s", form.email.data)
        raise Unauthorized("Invalid email or password")
    login_user(user)
    return jsonify({"user": user_dict(user), "token": issue_token(user)})


@bp.route("/logout", methods=["POST"])
def logout():
    logout_user()
    return jsonify({"message": "Logged out successfully"})


@bp.route("/me")
def me():
    current_scope()
    return jsonify({"user": user_dict(current_user, include_groups=True)})


@bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    form = validated(ForgotPasswordForm)
    user = find_by_email(form.email.data)
    if user and user.is_active:
        user.issue_reset_token(secrets.token_hex(32), current_app.config["PASSWORD_RESET_TTL"])
        db.session.commit()
        mailer.send_password_reset(user, user.reset_token)
    # same answer whether or not the account exists
    return jsonify({"message": "If an account exists for this email, a reset link has been sent"})


@bp.route("/reset-password", methods=["POST"])
def reset_password():
    form = validated(ResetPasswordForm)
    user = db.session.query(User).filter(User.reset_token == form.token.data).first()
    if user is None or not user.reset_token_valid():
        raise ValidationFailed("Invalid or expired reset token", field="token")
    try:
        user.set_password(form.password.data)
    except ValueError as exc:
        raise ValidationFailed(str(exc), field="password") from exc
    user.reset_token = None
    user.reset_token_expiry = None
    db.session.commit()
    return jsonify({"message": "Password has been reset successfully"})


@bp.route("/update-language", methods=["POST"])
def update_language():
    scope = current_scope()
    form = validated(LanguageForm)
    user = db.session.get(User, scope.user_id)
    user.language_preference = form.language.data
    db.session.commit()
    return jsonify({"message": "Language updated successfully", "language": user.language_preference})
