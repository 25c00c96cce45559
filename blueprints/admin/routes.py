from flask import Blueprint, jsonify, request
from flask_login import login_required

from extensions import db
from formatters import (
    assessment_dict,
    attempt_dict,
    domain_dict,
    group_dict,
    institution_dict,
    level_dict,
    level_setting_dict,
    many,
    member_dict,
    result_dict,
    skill_dict,
    source_dict,
    user_dict,
)
from forms import (
    AssessmentForm,
    DomainForm,
    GroupAssignmentForm,
    GroupForm,
    InstitutionForm,
    MemberForm,
    SkillForm,
    UserForm,
    form_dict,
    json_object,
    parse_levels,
    validated,
)
from queries import assessments as assessment_queries
from queries import attempts as attempt_queries
from queries import groups as group_queries
from queries import institutions as institution_queries
from queries import page_args
from queries import taxonomy
from queries import users as user_queries
from role_required import current_scope, role_required

bp = Blueprint("admin", __name__, url_prefix="/api/admin")

AREA_ROLES = ("admin", "clerk")


def _int_arg(name):
    return request.args.get(name, type=int)


# ----- Institutions -----
@bp.route("/institutions", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def institutions():
    rows = institution_queries.list_institutions(current_scope())
    return jsonify({"institutions": many(institution_dict, rows)})


@bp.route("/institutions", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def create_institution():
    form = validated(InstitutionForm)
    institution = institution_queries.create_institution(
        current_scope(), form.name.data, form.contact_name.data, form.contact_email.data
    )
    db.session.commit()
    return jsonify({"institution": institution_dict(institution), "message": "Institution created successfully"}), 201


@bp.route("/institutions/<int:institution_id>", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def institution_detail(institution_id):
    institution = institution_queries.get_institution(current_scope(), institution_id)
    return jsonify({"institution": institution_dict(institution)})


@bp.route("/institutions/<int:institution_id>", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def update_institution(institution_id):
    form = validated(InstitutionForm)
    institution = institution_queries.update_institution(
        current_scope(), institution_id, form.name.data, form.contact_name.data, form.contact_email.data
    )
    db.session.commit()
    return jsonify({"institution": institution_dict(institution), "message": "Institution updated successfully"})


@bp.route("/institutions/<int:institution_id>", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def delete_institution(institution_id):
    institution_queries.delete_institution(current_scope(), institution_id)
    db.session.commit()
    return jsonify({"message": "Institution deleted successfully"})


@bp.route("/institutions/<int:institution_id>/level-settings", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def level_settings(institution_id):
    rows = institution_queries.get_level_settings(current_scope(), institution_id)
    return jsonify({"levels": many(level_setting_dict, rows)})


@bp.route("/institutions/<int:institution_id>/level-settings", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def replace_level_settings(institution_id):
    levels = parse_levels(json_object().get("levels"))
    rows = institution_queries.replace_level_settings(current_scope(), institution_id, levels)
    db.session.commit()
    return jsonify({"levels": many(level_setting_dict, rows), "message": "Level settings saved successfully"})


# ----- Users -----
@bp.route("/users", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def users():
    rows = user_queries.list_users(
        current_scope(),
        role=request.args.get("role"),
        institution_id=_int_arg("institution_id"),
        search=request.args.get("search", "").strip() or None,
    )
    return jsonify({"users": many(user_dict, rows)})


@bp.route("/users", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def create_user():
    form = validated(UserForm)
    user = user_queries.create_user(current_scope(), form_dict(form))
    db.session.commit()
    return jsonify({"user": user_dict(user), "message": "User created successfully"}), 201


@bp.route("/users/<int:user_id>", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def user_detail(user_id):
    user = user_queries.get_user(current_scope(), user_id)
    return jsonify({"user": user_dict(user, include_groups=True)})


@bp.route("/users/<int:user_id>", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def update_user(user_id):
    form = validated(UserForm)
    user = user_queries.update_user(current_scope(), user_id, form_dict(form))
    db.session.commit()
    return jsonify({"user": user_dict(user), "message": "User updated successfully"})


@bp.route("/users/<int:user_id>", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def delete_user(user_id):
    user_queries.delete_user(current_scope(), user_id)
    db.session.commit()
    return jsonify({"message": "User deleted successfully"})


@bp.route("/users/<int:user_id>/groups", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def user_groups(user_id):
    rows = user_queries.user_groups(current_scope(), user_id)
    return jsonify({"groups": many(group_dict, rows)})


# ----- Groups -----
@bp.route("/groups", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def groups():
    rows = group_queries.list_groups(current_scope(), institution_id=_int_arg("institution_id"))
    return jsonify({"groups": [group_dict(group, count) for group, count in rows]})


@bp.route("/groups", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def create_group():
    form = validated(GroupForm)
    group = group_queries.create_group(
        current_scope(), form.name.data, form.description.data, form.institution_id.data
    )
    db.session.commit()
    return jsonify({"group": group_dict(group, 0), "message": "Group created successfully"}), 201


@bp.route("/groups/<int:group_id>", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def group_detail(group_id):
    group = group_queries.get_group(current_scope(), group_id)
    return jsonify({"group": group_dict(group)})


@bp.route("/groups/<int:group_id>", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def update_group(group_id):
    form = validated(GroupForm)
    group = group_queries.update_group(
        current_scope(), group_id, form.name.data, form.description.data, form.institution_id.data
    )
    db.session.commit()
    return jsonify({"group": group_dict(group), "message": "Group updated successfully"})


@bp.route("/groups/<int:group_id>", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def delete_group(group_id):
    group_queries.delete_group(current_scope(), group_id)
    db.session.commit()
    return jsonify({"message": "Group deleted successfully"})


@bp.route("/groups/<int:group_id>/members", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def group_members(group_id):
    rows = group_queries.list_members(current_scope(), group_id)
    return jsonify({"members": many(member_dict, rows)})


@bp.route("/groups/<int:group_id>/members", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def add_group_member(group_id):
    form = validated(MemberForm)
    user = group_queries.add_member(current_scope(), group_id, form.user_id.data)
    db.session.commit()
    return jsonify({"member": member_dict(user), "message": "Member added successfully"}), 201


@bp.route("/groups/<int:group_id>/members/<int:user_id>", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def remove_group_member(group_id, user_id):
    group_queries.remove_member(current_scope(), group_id, user_id)
    db.session.commit()
    return jsonify({"message": "Member removed successfully"})


# ----- Domains -----
@bp.route("/domains", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def domains():
    rows = taxonomy.list_domains(current_scope())
    return jsonify({"domains": [domain_dict(domain, count) for domain, count in rows]})


@bp.route("/domains", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def create_domain():
    form = validated(DomainForm)
    domain = taxonomy.create_domain(current_scope(), form.name.data, form.description.data, form.institution_id.data)
    db.session.commit()
    return jsonify({"domain": domain_dict(domain, 0), "message": "Domain created successfully"}), 201


@bp.route("/domains/<int:domain_id>", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def update_domain(domain_id):
    form = validated(DomainForm)
    domain = taxonomy.update_domain(current_scope(), domain_id, form.name.data, form.description.data)
    db.session.commit()
    return jsonify({"domain": domain_dict(domain), "message": "Domain updated successfully"})


@bp.route("/domains/<int:domain_id>", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def delete_domain(domain_id):
    taxonomy.delete_domain(current_scope(), domain_id)
    db.session.commit()
    return jsonify({"message": "Domain deleted successfully"})


# ----- Skills -----
@bp.route("/skills", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def skills():
    rows = taxonomy.list_skills(
        current_scope(), domain_id=_int_arg("domain_id"), institution_id=_int_arg("institution_id")
    )
    return jsonify({"skills": many(skill_dict, rows)})


@bp.route("/skills", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def create_skill():
    form = validated(SkillForm)
    skill = taxonomy.create_skill(
        current_scope(), form.name.data, form.description.data, form.domain_id.data, form.institution_id.data
    )
    db.session.commit()
    return jsonify({"skill": skill_dict(skill), "message": "Skill created successfully"}), 201


@bp.route("/skills/<int:skill_id>", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def skill_detail(skill_id):
    skill = taxonomy.get_skill(current_scope(), skill_id)
    return jsonify({"skill": skill_dict(skill, include_levels=True)})


@bp.route("/skills/<int:skill_id>", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def update_skill(skill_id):
    form = validated(SkillForm)
    skill = taxonomy.update_skill(
        current_scope(), skill_id, form.name.data, form.description.data, form.domain_id.data, form.institution_id.data
    )
    db.session.commit()
    return jsonify({"skill": skill_dict(skill), "message": "Skill updated successfully"})


@bp.route("/skills/<int:skill_id>", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def delete_skill(skill_id):
    taxonomy.delete_skill(current_scope(), skill_id)
    db.session.commit()
    return jsonify({"message": "Skill deleted successfully"})


@bp.route("/skills/<int:skill_id>/levels", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def skill_levels(skill_id):
    rows = taxonomy.get_levels(current_scope(), skill_id)
    return jsonify({"levels": many(level_dict, rows)})


@bp.route("/skills/<int:skill_id>/levels", methods=["POST", "PUT"])
@login_required
@role_required(*AREA_ROLES)
def replace_skill_levels(skill_id):
    levels = parse_levels(json_object().get("levels"))
    rows = taxonomy.replace_levels(current_scope(), skill_id, levels)
    db.session.commit()
    return jsonify({"levels": many(level_dict, rows), "message": "Skill levels saved successfully"})


@bp.route("/skills/<int:skill_id>/sources", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def skill_sources(skill_id):
    rows = taxonomy.skill_sources(current_scope(), skill_id)
    return jsonify({"sources": many(source_dict, rows)})


# ----- Assessments -----
@bp.route("/assessments", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def assessments():
    page, limit = page_args(request.args)
    rows, meta = assessment_queries.list_assessments(
        current_scope(),
        page,
        limit,
        search=request.args.get("search", "").strip() or None,
        status=request.args.get("status"),
        institution_id=_int_arg("institution_id"),
    )
    return jsonify({"assessments": many(assessment_dict, rows), **meta})


@bp.route("/assessments", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def create_assessment():
    form = validated(AssessmentForm)
    assessment = assessment_queries.create_assessment(current_scope(), form_dict(form))
    db.session.commit()
    return jsonify({"assessment": assessment_dict(assessment, detailed=True), "message": "Assessment created successfully"}), 201


@bp.route("/assessments/<int:assessment_id>", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def assessment_detail(assessment_id):
    assessment = assessment_queries.get_assessment(current_scope(), assessment_id)
    return jsonify({"assessment": assessment_dict(assessment, detailed=True)})


@bp.route("/assessments/<int:assessment_id>", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def update_assessment(assessment_id):
    form = validated(AssessmentForm)
    assessment = assessment_queries.update_assessment(current_scope(), assessment_id, form_dict(form))
    db.session.commit()
    return jsonify({"assessment": assessment_dict(assessment, detailed=True), "message": "Assessment updated successfully"})


@bp.route("/assessments/<int:assessment_id>", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def delete_assessment(assessment_id):
    assessment_queries.delete_assessment(current_scope(), assessment_id)
    db.session.commit()
    return jsonify({"message": "Assessment deleted successfully"})


@bp.route("/assessments/<int:assessment_id>/groups", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def assessment_groups(assessment_id):
    rows = assessment_queries.get_groups(current_scope(), assessment_id)
    return jsonify({"groups": many(group_dict, rows)})


@bp.route("/assessments/<int:assessment_id>/groups", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def replace_assessment_groups(assessment_id):
    form = validated(GroupAssignmentForm)
    rows = assessment_queries.replace_groups(current_scope(), assessment_id, form.group_ids.data)
    db.session.commit()
    return jsonify({"groups": many(group_dict, rows), "message": "Groups updated successfully"})


# ----- Attempts -----
@bp.route("/attempts", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def attempts():
    page, limit = page_args(request.args)
    rows, meta = attempt_queries.list_attempts(
        current_scope(),
        page,
        limit,
        search=request.args.get("search", "").strip() or None,
        status=request.args.get("status"),
        institution_id=_int_arg("institution_id"),
        assessment_id=_int_arg("assessment_id"),
    )
    return jsonify({"attempts": many(attempt_dict, rows), **meta})


@bp.route("/attempts/assessment/<int:assessment_id>", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def assessment_attempts(assessment_id):
    scope = current_scope()
    assessment = assessment_queries.get_assessment(scope, assessment_id)
    rows = attempt_queries.attempts_for_assessment(scope, assessment.id)
    return jsonify({"assessment": assessment_dict(assessment), "attempts": many(attempt_dict, rows)})


@bp.route("/attempts/<int:attempt_id>", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def delete_attempt(attempt_id):
    attempt_queries.delete_attempt(current_scope(), attempt_id)
    db.session.commit()
    return jsonify({"message": "Attempt deleted successfully"})


@bp.route("/attempts/<int:attempt_id>/results", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def attempt_results(attempt_id):
    attempt = attempt_queries.get_attempt(current_scope(), attempt_id)
    return jsonify({"attempt": attempt_dict(attempt), "results": many(result_dict, attempt.results)})
