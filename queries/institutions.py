from extensions import db
from errors import Conflict, Forbidden
from models import Assessment, Domain, Group, Institution, Skill, SkillLevelSetting, User
from queries import ensure_unique, get_or_404


def list_institutions(scope):
    query = db.session.query(Institution)
    query = scope.institution_filter(query, Institution.id)
    return query.order_by(Institution.name).all()


def get_institution(scope, institution_id):
    institution = get_or_404(Institution, institution_id, "Institution not found")
    scope.ensure_institution(institution.id)
    return institution


def _check_name(name, exclude_id=None):
    query = db.session.query(Institution.id).filter(Institution.name == name)
    if exclude_id is not None:
        query = query.filter(Institution.id != exclude_id)
    ensure_unique(query, "An institution with this name already exists")


def create_institution(scope, name, contact_name, contact_email):
    if not scope.is_global:
        raise Forbidden("Only administrators can create institutions")
    _check_name(name)
    institution = Institution(name=name, contact_name=contact_name, contact_email=contact_email)
    db.session.add(institution)
    db.session.flush()
    return institution


def update_institution(scope, institution_id, name, contact_name, contact_email):
    institution = get_institution(scope, institution_id)
    _check_name(name, exclude_id=institution.id)
    institution.name = name
    institution.contact_name = contact_name
    institution.contact_email = contact_email
    return institution


def delete_institution(scope, institution_id):
    if not scope.is_global:
        raise Forbidden("Only administrators can delete institutions")
    institution = get_institution(scope, institution_id)
    dependants = (
        ("users", User.institution_id),
        ("groups", Group.institution_id),
        ("assessments", Assessment.institution_id),
        ("domains", Domain.institution_id),
        ("skills", Skill.institution_id),
    )
    for label, column in dependants:
        if db.session.query(column).filter(column == institution.id).first() is not None:
            raise Conflict(f"Cannot delete institution with associated {label}")
    db.session.delete(institution)


def get_level_settings(scope, institution_id):
    return get_institution(scope, institution_id).level_settings


def replace_level_settings(scope, institution_id, levels):
    """Swap the whole rubric template; ``levels`` comes from ``forms.parse_levels``."""
    institution = get_institution(scope, institution_id)
    institution.level_settings.clear()
    db.session.flush()
    for item in sorted(levels, key=lambda lvl: lvl["order"]):
        institution.level_settings.append(SkillLevelSetting(**item))
    db.session.flush()
    return institution.level_settings


def template_for(institution_id):
    return (
        db.session.query(SkillLevelSetting)
        .filter(SkillLevelSetting.institution_id == institution_id)
        .order_by(SkillLevelSetting.order)
        .all()
    )
