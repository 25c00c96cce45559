from sqlalchemy import or_

from extensions import db
from errors import Conflict, NotFound, ValidationFailed
from models import (
    ROLE_TEACHER,
    Assessment,
    Attempt,
    Group,
    Institution,
    Skill,
    User,
    as_utc,
    assessment_groups,
    user_groups,
    utcnow,
)
from queries import first_or_404, like, paginate

FIELDS = (
    "name",
    "description",
    "difficulty_level",
    "educational_level",
    "output_language",
    "evaluation_context",
    "case_text",
    "questions_per_skill",
    "available_from",
    "available_until",
    "dispute_period",
)


def _scoped(scope, owner_only):
    query = scope.institution_filter(db.session.query(Assessment), Assessment.institution_id)
    if owner_only:
        query = scope.owner_filter(query, Assessment.teacher_id)
    return query


def list_assessments(scope, page, limit, owner_only=False, search=None, status=None, institution_id=None):
    query = _scoped(scope, owner_only)
    if search:
        pattern = like(search)
        query = query.filter(
            or_(Assessment.name.ilike(pattern, escape="\\"), Assessment.description.ilike(pattern, escape="\\"))
        )
    if status and status != "all":
        query = query.filter(Assessment.status == status)
    if institution_id:
        query = query.filter(Assessment.institution_id == institution_id)
    query = query.order_by(Assessment.created_at.desc(), Assessment.id.desc())
    return paginate(query, page, limit)


def get_assessment(scope, assessment_id, owner_only=False):
    query = _scoped(scope, owner_only).filter(Assessment.id == assessment_id)
    return first_or_404(query, "Assessment not found")


def _resolve_owner(scope, institution_id, teacher_id):
    if not scope.is_global:
        institution_id = scope.institution_id
    elif institution_id and db.session.get(Institution, institution_id) is None:
        raise ValidationFailed("Institution not found", field="institution_id")
    if scope.role == ROLE_TEACHER:
        return institution_id, scope.user_id
    if teacher_id:
        teacher = db.session.get(User, teacher_id)
        if teacher is None or teacher.role != ROLE_TEACHER:
            raise ValidationFailed("Teacher not found", field="teacher_id")
        if institution_id and teacher.institution_id != institution_id:
            raise ValidationFailed("Teacher belongs to another institution", field="teacher_id")
    return institution_id, teacher_id or None


def _resolve_skills(institution_id, skill_ids):
    wanted = set(skill_ids)
    skills = db.session.query(Skill).filter(Skill.id.in_(wanted)).all()
    if len(skills) != len(wanted):
        raise ValidationFailed("Some skills do not exist", field="skill_ids")
    for skill in skills:
        if institution_id and skill.institution_id != institution_id:
            raise ValidationFailed(f"Skill {skill.name} belongs to another institution", field="skill_ids")
        if not skill.levels:
            raise ValidationFailed(f"Skill {skill.name} has no levels defined", field="skill_ids")
    return skills


def _apply(assessment, data):
    for name in FIELDS:
        setattr(assessment, name, data[name])
    if data.get("status"):
        assessment.status = data["status"]
    if data.get("show_teacher_name") is not None:
        assessment.show_teacher_name = data["show_teacher_name"]


def create_assessment(scope, data):
    institution_id, teacher_id = _resolve_owner(scope, data.get("institution_id"), data.get("teacher_id"))
    skills = _resolve_skills(institution_id, data["skill_ids"])
    assessment = Assessment(institution_id=institution_id, teacher_id=teacher_id)
    _apply(assessment, data)
    assessment.skills = skills
    db.session.add(assessment)
    db.session.flush()
    return assessment


def _ensure_unused(assessment, action):
    if db.session.query(Attempt.id).filter(Attempt.assessment_id == assessment.id).first() is not None:
        raise Conflict(f"Cannot {action} an assessment that already has attempts")


def update_assessment(scope, assessment_id, data, owner_only=False):
    assessment = get_assessment(scope, assessment_id, owner_only)
    _ensure_unused(assessment, "edit")
    institution_id, teacher_id = _resolve_owner(
        scope,
        data.get("institution_id") or assessment.institution_id,
        data.get("teacher_id") or assessment.teacher_id,
    )
    if institution_id != assessment.institution_id and assessment.groups:
        raise Conflict("Remove the assigned groups before moving the assessment to another institution")
    assessment.institution_id = institution_id
    assessment.teacher_id = teacher_id
    assessment.skills = _resolve_skills(institution_id, data["skill_ids"])
    _apply(assessment, data)
    return assessment


def limited_update(scope, assessment_id, data, owner_only=False):
    """Change the window end, dispute period, status and name visibility of an assessment in use."""
    assessment = get_assessment(scope, assessment_id, owner_only)
    if db.session.query(Attempt.id).filter(Attempt.assessment_id == assessment.id).first() is None:
        raise ValidationFailed("This assessment has no attempts. Use the full edit form instead.")
    if assessment.available_from and data["available_until"] <= as_utc(assessment.available_from):
        raise ValidationFailed("Available until date must be after available from date", field="available_until")
    assessment.available_until = data["available_until"]
    assessment.dispute_period = data["dispute_period"]
    assessment.status = data["status"]
    if data.get("show_teacher_name") is not None:
        assessment.show_teacher_name = data["show_teacher_name"]
    return assessment


def delete_assessment(scope, assessment_id, owner_only=False):
    assessment = get_assessment(scope, assessment_id, owner_only)
    _ensure_unused(assessment, "delete")
    assessment.skills.clear()
    assessment.groups.clear()
    db.session.delete(assessment)


def get_groups(scope, assessment_id, owner_only=False):
    return get_assessment(scope, assessment_id, owner_only).groups


def replace_groups(scope, assessment_id, group_ids, owner_only=False):
    assessment = get_assessment(scope, assessment_id, owner_only)
    wanted = set(group_ids or [])
    groups = db.session.query(Group).filter(Group.id.in_(wanted)).all() if wanted else []
    if len(groups) != len(wanted):
        raise ValidationFailed("Some groups do not exist", field="group_ids")
    for group in groups:
        if assessment.institution_id and group.institution_id != assessment.institution_id:
            raise ValidationFailed(f"Group {group.name} belongs to another institution", field="group_ids")
        scope.ensure_institution(group.institution_id)
    assessment.groups = groups
    return assessment.groups


# ----- Student visibility -----
def _assigned_to(user_id):
    group_ids = db.select(user_groups.c.group_id).where(user_groups.c.user_id == user_id)
    assessment_ids = db.select(assessment_groups.c.assessment_id).where(assessment_groups.c.group_id.in_(group_ids))
    return db.session.query(Assessment).filter(Assessment.id.in_(assessment_ids))


def latest_attempt(user_id, assessment_id, status=None):
    query = db.session.query(Attempt).filter(Attempt.user_id == user_id, Attempt.assessment_id == assessment_id)
    if status:
        query = query.filter(Attempt.status == status)
    return query.order_by(Attempt.created_at.desc(), Attempt.id.desc()).first()


def student_assessments(scope):
    """Return ``(assessment, latest_attempt)`` pairs currently open to the student."""
    now = utcnow()
    assessments = _assigned_to(scope.user_id).order_by(Assessment.available_from.desc(), Assessment.id.desc()).all()
    return [
        (assessment, latest_attempt(scope.user_id, assessment.id))
        for assessment in assessments
        if assessment.is_available(now)
    ]


def get_student_assessment(scope, assessment_id):
    assessment = first_or_404(
        _assigned_to(scope.user_id).filter(Assessment.id == assessment_id),
        "Assessment not found",
    )
    # past attempts stay reachable after the window closes
    if not assessment.is_available() and latest_attempt(scope.user_id, assessment.id) is None:
        raise NotFound("Assessment not available")
    return assessment
