import logging

from sqlalchemy import or_

from extensions import db
from errors import Conflict, Forbidden, ValidationFailed
from models import ROLE_ADMIN, ROLE_STUDENT, Assessment, Attempt, Institution, User
from queries import ensure_unique, first_or_404, like

logger = logging.getLogger(__name__)


def list_users(scope, role=None, institution_id=None, search=None):
    query = db.session.query(User)
    query = scope.institution_filter(query, User.institution_id)
    if role:
        query = query.filter(User.role == role)
    if institution_id:
        query = query.filter(User.institution_id == institution_id)
    if search:
        pattern = like(search)
        full_name = User.given_name + " " + User.family_name
        query = query.filter(
            or_(
                full_name.ilike(pattern, escape="\\"),
                User.email.ilike(pattern, escape="\\"),
            )
        )
    return query.order_by(User.family_name, User.given_name).all()


def get_user(scope, user_id):
    query = db.session.query(User).filter(User.id == user_id)
    query = scope.institution_filter(query, User.institution_id)
    return first_or_404(query, "User not found")


def _check_email(email, exclude_id=None):
    query = db.session.query(User.id).filter(User.email == email)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    ensure_unique(query, "A user with this email already exists")


def _resolve_institution(scope, role, institution_id, current=None):
    if not scope.is_global:
        if role == ROLE_ADMIN:
            raise Forbidden("Only administrators can manage administrator accounts")
        if institution_id and institution_id != scope.institution_id:
            raise Forbidden("You can only manage users of your own institution")
        return scope.institution_id
    if institution_id is None:
        institution_id = current
    if role != ROLE_ADMIN and not institution_id:
        raise ValidationFailed("Institution is required for this role", field="institution_id")
    if institution_id and db.session.get(Institution, institution_id) is None:
        raise ValidationFailed("Institution not found", field="institution_id")
    return institution_id


def create_user(scope, data):
    """``data`` holds the validated form fields; ``password`` is mandatory here."""
    if not data.get("password"):
        raise ValidationFailed("Password is required", field="password")
    role = data.get("role") or ROLE_STUDENT
    institution_id = _resolve_institution(scope, role, data.get("institution_id"))
    _check_email(data["email"])
    user = User(
        email=data["email"],
        given_name=data["given_name"],
        family_name=data["family_name"],
        role=role,
        institution_id=institution_id,
        language_preference=data.get("language_preference") or "en",
        is_active=True if data.get("is_active") is None else data["is_active"],
    )
    try:
        user.set_password(data["password"])
    except ValueError as exc:
        raise ValidationFailed(str(exc), field="password") from exc
    db.session.add(user)
    db.session.flush()
    logger.info("Created %s account %s", role, user.id)
    return user


def update_user(scope, user_id, data):
    user = get_user(scope, user_id)
    if not scope.is_global and user.role == ROLE_ADMIN:
        raise Forbidden("Only administrators can manage administrator accounts")
    role = data.get("role") or user.role
    institution_id = _resolve_institution(scope, role, data.get("institution_id"), current=user.institution_id)
    if institution_id != user.institution_id:
        if user.groups:
            raise Conflict("Cannot move a user with group memberships to another institution")
        if db.session.query(Assessment.id).filter(Assessment.teacher_id == user.id).first() is not None:
            raise Conflict("Cannot move a user who owns assessments to another institution")
    user.institution_id = institution_id
    _check_email(data["email"], exclude_id=user.id)
    user.email = data["email"]
    user.given_name = data["given_name"]
    user.family_name = data["family_name"]
    user.role = role
    if data.get("language_preference"):
        user.language_preference = data["language_preference"]
    if data.get("is_active") is not None:
        user.is_active = data["is_active"]
    # password only changes when supplied
    if data.get("password"):
        try:
            user.set_password(data["password"])
        except ValueError as exc:
            raise ValidationFailed(str(exc), field="password") from exc
    return user


def delete_user(scope, user_id):
    user = get_user(scope, user_id)
    if user.id == scope.user_id:
        raise Conflict("You cannot delete your own account")
    if not scope.is_global and user.role == ROLE_ADMIN:
        raise Forbidden("Only administrators can manage administrator accounts")
    if db.session.query(Attempt.id).filter(Attempt.user_id == user.id).first() is not None:
        raise Conflict("Cannot delete user with assessment attempts")
    if db.session.query(Assessment.id).filter(Assessment.teacher_id == user.id).first() is not None:
        raise Conflict("Cannot delete user who owns assessments")
    user.groups.clear()
    db.session.delete(user)


def user_groups(scope, user_id):
    return get_user(scope, user_id).groups


def find_by_email(email):
    return db.session.query(User).filter(User.email == email).first()
