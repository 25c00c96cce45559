from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask_login import current_user

from errors import Forbidden, MissingContext, Unauthorized
from models import ROLE_ADMIN, ROLE_TEACHER, ROLES


@dataclass(frozen=True)
class Scope:
    """Who is asking, and therefore which rows they may see or change."""

    user_id: int
    role: str
    institution_id: Optional[int]

    @property
    def is_global(self) -> bool:
        return self.role == ROLE_ADMIN

    def institution_filter(self, query, column):
        if self.is_global:
            return query
        return query.filter(column == self.institution_id)

    def owner_filter(self, query, column):
        # clerks see every row of their institution
        if self.role != ROLE_TEACHER:
            return query
        return query.filter(column == self.user_id)

    def student_filter(self, query, column):
        return query.filter(column == self.user_id)

    def can_see_institution(self, institution_id) -> bool:
        return self.is_global or institution_id == self.institution_id

    def ensure_institution(self, institution_id):
        if not self.can_see_institution(institution_id):
            raise Forbidden("You can only manage records of your own institution")


def resolve_scope(user) -> Scope:
    if user is None or not user.is_authenticated:
        raise Unauthorized("User not authenticated")
    if user.role not in ROLES:
        raise Forbidden("Unknown role")
    if user.role != ROLE_ADMIN and not user.institution_id:
        raise MissingContext("User is not attached to an institution")
    return Scope(user_id=user.id, role=user.role, institution_id=user.institution_id)


def current_scope() -> Scope:
    return resolve_scope(current_user)


def role_required(*role_names):
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            scope = current_scope()
            if scope.role not in role_names:
                raise Forbidden("Access denied")
            return fn(*args, **kwargs)
        return wrapper
    return deco
