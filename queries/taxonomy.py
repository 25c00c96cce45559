"""Domains, skills and the ordered rubric levels of each skill."""
from sqlalchemy import func

from extensions import db
from errors import Conflict, ValidationFailed
from models import Domain, Institution, Result, Skill, SkillLevel, assessment_skills
from queries import ensure_unique, first_or_404
from queries.institutions import template_for


# ----- Domains -----
def _domains(scope):
    query = db.session.query(Domain)
    if scope.is_global:
        return query
    # institution-less domains are shared by every institution
    return query.filter((Domain.institution_id == scope.institution_id) | Domain.institution_id.is_(None))


def list_domains(scope):
    """Return ``(domain, skills_count)`` pairs."""
    skills_count = func.count(Skill.id)
    query = (
        db.session.query(Domain, skills_count)
        .outerjoin(Skill, Skill.domain_id == Domain.id)
        .group_by(Domain.id)
    )
    if not scope.is_global:
        query = query.filter((Domain.institution_id == scope.institution_id) | Domain.institution_id.is_(None))
    return query.order_by(Domain.name).all()


def get_domain(scope, domain_id):
    return first_or_404(_domains(scope).filter(Domain.id == domain_id), "Domain not found")


def _editable_domain(scope, domain_id):
    domain = get_domain(scope, domain_id)
    if domain.institution_id is None and not scope.is_global:
        raise ValidationFailed("Shared domains can only be changed by administrators")
    return domain


def _check_domain_name(institution_id, name, exclude_id=None):
    query = db.session.query(Domain.id).filter(Domain.name == name)
    if institution_id is None:
        query = query.filter(Domain.institution_id.is_(None))
    else:
        query = query.filter(Domain.institution_id == institution_id)
    if exclude_id is not None:
        query = query.filter(Domain.id != exclude_id)
    ensure_unique(query, "A domain with this name already exists")


def create_domain(scope, name, description=None, institution_id=None):
    if not scope.is_global:
        institution_id = scope.institution_id
    elif institution_id and db.session.get(Institution, institution_id) is None:
        raise ValidationFailed("Institution not found", field="institution_id")
    _check_domain_name(institution_id, name)
    domain = Domain(name=name, description=description, institution_id=institution_id or None)
    db.session.add(domain)
    db.session.flush()
    return domain


def update_domain(scope, domain_id, name, description=None):
    domain = _editable_domain(scope, domain_id)
    _check_domain_name(domain.institution_id, name, exclude_id=domain.id)
    domain.name = name
    domain.description = description
    return domain


def delete_domain(scope, domain_id):
    domain = _editable_domain(scope, domain_id)
    if db.session.query(Skill.id).filter(Skill.domain_id == domain.id).first() is not None:
        raise Conflict("Cannot delete domain with associated skills")
    db.session.delete(domain)


def domain_skills(scope, domain_id):
    domain = get_domain(scope, domain_id)
    query = db.session.query(Skill).filter(Skill.domain_id == domain.id)
    query = scope.institution_filter(query, Skill.institution_id)
    return query.order_by(Skill.name).all()


# ----- Skills -----
def list_skills(scope, domain_id=None, institution_id=None):
    query = scope.institution_filter(db.session.query(Skill), Skill.institution_id)
    if domain_id:
        query = query.filter(Skill.domain_id == domain_id)
    if institution_id:
        query = query.filter(Skill.institution_id == institution_id)
    return query.order_by(Skill.name).all()


def get_skill(scope, skill_id):
    query = scope.institution_filter(db.session.query(Skill).filter(Skill.id == skill_id), Skill.institution_id)
    return first_or_404(query, "Skill not found")


def _check_skill_name(name, domain_id, exclude_id=None):
    query = db.session.query(Skill.id).filter(Skill.name == name, Skill.domain_id == domain_id)
    if exclude_id is not None:
        query = query.filter(Skill.id != exclude_id)
    ensure_unique(query, "A skill with this name already exists in this domain.")


def _resolve_parents(scope, institution_id, domain_id):
    if not scope.is_global:
        institution_id = scope.institution_id
    if not institution_id:
        raise ValidationFailed("All fields are required.", field="institution_id")
    if db.session.get(Institution, institution_id) is None:
        raise ValidationFailed("Institution not found.", field="institution_id")
    domain = db.session.get(Domain, domain_id)
    if domain is None:
        raise ValidationFailed("Domain not found.", field="domain_id")
    if domain.institution_id not in (None, institution_id):
        raise ValidationFailed("Domain belongs to another institution.", field="domain_id")
    return institution_id, domain


def create_skill(scope, name, description, domain_id, institution_id=None):
    institution_id, domain = _resolve_parents(scope, institution_id, domain_id)
    _check_skill_name(name, domain.id)
    skill = Skill(name=name, description=description, domain_id=domain.id, institution_id=institution_id)
    db.session.add(skill)
    db.session.flush()
    return skill


def update_skill(scope, skill_id, name, description, domain_id, institution_id=None):
    skill = get_skill(scope, skill_id)
    institution_id, domain = _resolve_parents(scope, institution_id or skill.institution_id, domain_id)
    if institution_id != skill.institution_id:
        in_use = db.session.query(assessment_skills.c.assessment_id).filter(assessment_skills.c.skill_id == skill.id)
        if in_use.first() is not None:
            raise Conflict("Cannot move a skill used by assessments to another institution")
    _check_skill_name(name, domain.id, exclude_id=skill.id)
    skill.name = name
    skill.description = description
    skill.domain_id = domain.id
    skill.institution_id = institution_id
    return skill


def delete_skill(scope, skill_id):
    skill = get_skill(scope, skill_id)
    if skill.levels:
        raise Conflict("Cannot delete skill with associated skill levels.")
    in_use = db.session.query(assessment_skills.c.assessment_id).filter(assessment_skills.c.skill_id == skill.id)
    if in_use.first() is not None:
        raise Conflict("Cannot delete skill associated with assessments.")
    skill.sources.clear()
    db.session.delete(skill)


# ----- Levels -----
def get_levels(scope, skill_id):
    return get_skill(scope, skill_id).levels


def _check_template(institution_id, levels):
    template = template_for(institution_id)
    if not template:
        return
    expected = [(setting.order, setting.label) for setting in template]
    given = [(level["order"], level["label"]) for level in sorted(levels, key=lambda lvl: lvl["order"])]
    if given != expected:
        labels = ", ".join(label for _, label in expected)
        raise ValidationFailed(f"Levels must follow the institution template: {labels}", field="levels")


def replace_levels(scope, skill_id, levels):
    """Delete-then-insert the ordered levels of a skill inside the request transaction."""
    skill = get_skill(scope, skill_id)
    _check_template(skill.institution_id, levels)
    level_ids = [level.id for level in skill.levels]
    if level_ids and db.session.query(Result.id).filter(Result.skill_level_id.in_(level_ids)).first() is not None:
        raise Conflict("Cannot replace levels that have already been used in results")
    skill.levels.clear()
    db.session.flush()
    for item in sorted(levels, key=lambda lvl: lvl["order"]):
        skill.levels.append(SkillLevel(**item))
    db.session.flush()
    return skill.levels


def skill_sources(scope, skill_id):
    return get_skill(scope, skill_id).sources
