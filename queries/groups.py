from sqlalchemy import func

from extensions import db
from errors import Conflict, NotFound, ValidationFailed
from models import ROLE_STUDENT, Group, Institution, User, assessment_groups, user_groups
from queries import ensure_unique, first_or_404


def _scoped(scope):
    return scope.institution_filter(db.session.query(Group), Group.institution_id)


def list_groups(scope, institution_id=None):
    """Return ``(group, member_count)`` pairs."""
    member_count = func.count(user_groups.c.user_id)
    query = (
        db.session.query(Group, member_count)
        .outerjoin(user_groups, user_groups.c.group_id == Group.id)
        .group_by(Group.id)
    )
    query = scope.institution_filter(query, Group.institution_id)
    if institution_id:
        query = query.filter(Group.institution_id == institution_id)
    return query.order_by(Group.created_at.desc(), Group.id.desc()).all()


def get_group(scope, group_id):
    return first_or_404(_scoped(scope).filter(Group.id == group_id), "Group not found")


def _check_name(institution_id, name, exclude_id=None):
    query = db.session.query(Group.id).filter(Group.institution_id == institution_id, Group.name == name)
    if exclude_id is not None:
        query = query.filter(Group.id != exclude_id)
    ensure_unique(query, "A group with this name already exists in this institution")


def _institution_for(scope, institution_id):
    if not scope.is_global:
        # non-admins always create inside their own institution
        return scope.institution_id
    if not institution_id:
        raise ValidationFailed("Name and institution_id are required", field="institution_id")
    if db.session.get(Institution, institution_id) is None:
        raise ValidationFailed("Institution not found", field="institution_id")
    return institution_id


def create_group(scope, name, description=None, institution_id=None):
    institution_id = _institution_for(scope, institution_id)
    _check_name(institution_id, name)
    group = Group(name=name, description=description or "", institution_id=institution_id)
    db.session.add(group)
    db.session.flush()
    return group


def update_group(scope, group_id, name, description=None, institution_id=None):
    group = get_group(scope, group_id)
    if institution_id and institution_id != group.institution_id:
        scope.ensure_institution(institution_id)
        if group.members:
            raise Conflict("Cannot move a group with members to another institution")
        assigned = db.session.query(assessment_groups.c.assessment_id).filter(assessment_groups.c.group_id == group.id)
        if assigned.first() is not None:
            raise Conflict("Cannot move a group assigned to assessments to another institution")
        group.institution_id = _institution_for(scope, institution_id)
    _check_name(group.institution_id, name, exclude_id=group.id)
    group.name = name
    group.description = description or ""
    return group


def delete_group(scope, group_id):
    group = get_group(scope, group_id)
    # membership and assignment rows go in the same transaction as the group
    group.members.clear()
    db.session.execute(assessment_groups.delete().where(assessment_groups.c.group_id == group.id))
    db.session.delete(group)


def list_members(scope, group_id):
    return get_group(scope, group_id).members


def add_member(scope, group_id, user_id):
    group = get_group(scope, group_id)
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    if user.institution_id != group.institution_id:
        raise ValidationFailed("User must belong to the same institution as the group", field="user_id")
    if user in group.members:
        raise Conflict("User is already a member of this group")
    group.members.append(user)
    return user


def remove_member(scope, group_id, user_id):
    group = get_group(scope, group_id)
    user = next((member for member in group.members if member.id == user_id), None)
    if user is None:
        raise NotFound("User is not a member of this group")
    group.members.remove(user)


def available_students(scope, group_id):
    group = get_group(scope, group_id)
    member_ids = db.select(user_groups.c.user_id).where(user_groups.c.group_id == group.id)
    return (
        db.session.query(User)
        .filter(
            User.institution_id == group.institution_id,
            User.role == ROLE_STUDENT,
            User.is_active.is_(True),
            User.id.notin_(member_ids),
        )
        .order_by(User.given_name, User.family_name)
        .all()
    )


