
from flask import Blueprint, jsonify, request, send_file
from flask_login import login_required

from extensions import db
from formatters import (
    assessment_dict,
    attempt_dict,
    dispute_dict,
    domain_dict,
    group_dict,
    level_dict,
    many,
    member_dict,
    message_dict,
    result_dict,
    skill_dict,
    source_dict,
    user_dict,
)
from forms import (
    AssessmentForm,
    DisputeUpdateForm,
    DomainForm,
    GroupAssignmentForm,
    GroupForm,
    LimitedAssessmentForm,
    MemberForm,
    MessageForm,
    ResultUpdateForm,
    SkillForm,
    SourceLinkForm,
    SourceUploadForm,
    StudentForm,
    form_dict,
    json_object,
    parse_levels,
    validated,
)
from models import ROLE_STUDENT
from queries import assessments as assessment_queries
from queries import attempts as attempt_queries
from queries import disputes as dispute_queries
from queries import groups as group_queries
from queries import page_args
from queries import sources as source_queries
from queries import taxonomy
from queries import users as user_queries
from role_required import current_scope, role_required
from services import mailer, storage
from services.export_pdf import build_transcript_pdf


bp = Blueprint("teacher", __name__, url_prefix="/api/teacher")

AREA_ROLES = ("teacher", "clerk")


# ----- Users -----
@bp.route("/users", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def users():
    rows = user_queries.list_users(current_scope(), role=request.args.get("role"))
    return jsonify({"users": many(user_dict, rows)})


@bp.route("/users", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def create_student():
    form = validated(StudentForm)
    data = form_dict(form)
    data["role"] = ROLE_STUDENT
    user = user_queries.create_user(current_scope(), data)
    db.session.commit()
    return jsonify({"user": user_dict(user), "message": "Student created successfully"}), 201


# ----- Groups -----
@bp.route("/groups", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def groups():
    rows = group_queries.list_groups(current_scope())
    return jsonify({"groups": [group_dict(group, count) for group, count in rows]})


@bp.route("/groups", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def create_group():
    form = validated(GroupForm)
    group = group_queries.create_group(current_scope(), form.name.data, form.description.data)
    db.session.commit()
    return jsonify({"group": group_dict(group, 0), "message": "Group created successfully"}), 201


@bp.route("/groups/<int:group_id>", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def group_detail(group_id):
    group = group_queries.get_group(current_scope(), group_id)
    return jsonify({"group": group_dict(group), "members": many(member_dict, group.members)})


@bp.route("/groups/<int:group_id>", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def update_group(group_id):
    form = validated(GroupForm)
    group = group_queries.update_group(current_scope(), group_id, form.name.data, form.description.data)
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


@bp.route("/groups/<int:group_id>/members/available", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def available_members(group_id):
    rows = group_queries.available_students(current_scope(), group_id)
    return jsonify({"users": many(member_dict, rows)})


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
    domain = taxonomy.create_domain(current_scope(), form.name.data, form.description.data)
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


@bp.route("/domains/<int:domain_id>/skills", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def domain_skills(domain_id):
    rows = taxonomy.domain_skills(current_scope(), domain_id)
    return jsonify({"skills": many(skill_dict, rows)})


# ----- Skills -----
@bp.route("/skills", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def skills():
    rows = taxonomy.list_skills(current_scope(), domain_id=request.args.get("domain_id", type=int))
    return jsonify({"skills": many(skill_dict, rows)})


@bp.route("/skills", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def create_skill():
    form = validated(SkillForm)
    skill = taxonomy.create_skill(current_scope(), form.name.data, form.description.data, form.domain_id.data)
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
    skill = taxonomy.update_skill(current_scope(), skill_id, form.name.data, form.description.data, form.domain_id.data)
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


# ----- Sources -----
@bp.route("/sources", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def sources():
    rows = source_queries.list_sources(current_scope(), skill_id=request.args.get("skill_id", type=int))
    return jsonify({"sources": many(source_dict, rows)})


@bp.route("/sources/upload", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def upload_source():
    form = validated(SourceUploadForm)
    source = source_queries.create_source(
        current_scope(),
        form.pdf_file.data,
        form.title.data,
        authors=form.authors.data,
        publication_year=form.publication_year.data,
        skill_id=form.skill_id.data,
    )
    db.session.commit()
    return jsonify({"source": source_dict(source), "message": "Source uploaded successfully"}), 201


@bp.route("/sources/unlinked", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def unlinked_sources():
    rows = source_queries.unlinked_sources(current_scope())
    return jsonify({"sources": many(source_dict, rows)})


@bp.route("/sources/link", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def link_sources():
    form = validated(SourceLinkForm)
    skill, count = source_queries.link_sources(current_scope(), form.skill_id.data, form.source_ids.data)
    db.session.commit()
    return jsonify(
        {
            "success": True,
            "message": f"Successfully linked {count} source(s) to the skill",
            "sources": many(source_dict, skill.sources),
        }
    )


@bp.route("/sources/link", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def unlink_sources():
    form = validated(SourceLinkForm)
    scope = current_scope()
    for source_id in form.source_ids.data:
        source_queries.unlink_source(scope, form.skill_id.data, source_id)
    db.session.commit()
    return jsonify({"success": True, "message": "Source unlinked successfully"})


@bp.route("/sources/<int:source_id>", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def delete_source(source_id):
    key = source_queries.delete_source(current_scope(), source_id)
    db.session.commit()
    if not storage.remove_file_best_effort(key):
        # keep the cleanup entry queued by the failed delete
        db.session.commit()
    return jsonify({"message": "Source deleted successfully"})


@bp.route("/sources/<int:source_id>/download", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def download_source(source_id):
    source, url = source_queries.download_url(current_scope(), source_id)
    return jsonify({"url": url, "title": source.title})


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
        owner_only=True,
        search=request.args.get("search", "").strip() or None,
        status=request.args.get("status"),
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
    assessment = assessment_queries.get_assessment(current_scope(), assessment_id, owner_only=True)
    return jsonify({"assessment": assessment_dict(assessment, detailed=True)})


@bp.route("/assessments/<int:assessment_id>", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def update_assessment(assessment_id):
    form = validated(AssessmentForm)
    assessment = assessment_queries.update_assessment(current_scope(), assessment_id, form_dict(form), owner_only=True)
    db.session.commit()
    return jsonify({"assessment": assessment_dict(assessment, detailed=True), "message": "Assessment updated successfully"})


@bp.route("/assessments/<int:assessment_id>/limited", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def limited_update_assessment(assessment_id):
    form = validated(LimitedAssessmentForm)
    assessment = assessment_queries.limited_update(current_scope(), assessment_id, form_dict(form), owner_only=True)
    db.session.commit()
    return jsonify({"assessment": assessment_dict(assessment, detailed=True), "message": "Assessment updated successfully"})


@bp.route("/assessments/<int:assessment_id>", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def delete_assessment(assessment_id):
    assessment_queries.delete_assessment(current_scope(), assessment_id, owner_only=True)
    db.session.commit()
    return jsonify({"message": "Assessment deleted successfully"})


@bp.route("/assessments/<int:assessment_id>/groups", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def assessment_groups(assessment_id):
    rows = assessment_queries.get_groups(current_scope(), assessment_id, owner_only=True)
    return jsonify({"groups": many(group_dict, rows)})


@bp.route("/assessments/<int:assessment_id>/groups", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def replace_assessment_groups(assessment_id):
    form = validated(GroupAssignmentForm)
    rows = assessment_queries.replace_groups(current_scope(), assessment_id, form.group_ids.data, owner_only=True)
    db.session.commit()
    return jsonify({"groups": many(group_dict, rows), "message": "Groups updated successfully"})


# ----- Attempts & results -----
@bp.route("/attempts", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def attempts():
    page, limit = page_args(request.args)
    rows, meta = attempt_queries.list_attempts(
        current_scope(),
        page,
        limit,
        owner_only=True,
        search=request.args.get("search", "").strip() or None,
        status=request.args.get("status"),
        assessment_id=request.args.get("assessment_id", type=int),
    )
    return jsonify({"attempts": many(attempt_dict, rows), **meta})


@bp.route("/attempts/<int:attempt_id>", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def attempt_detail(attempt_id):
    attempt = attempt_queries.get_attempt(current_scope(), attempt_id, owner_only=True)
    return jsonify({"attempt": attempt_dict(attempt), "conversation": many(message_dict, attempt.messages)})


@bp.route("/attempts/<int:attempt_id>", methods=["DELETE"])
@login_required
@role_required(*AREA_ROLES)
def delete_attempt(attempt_id):
    attempt_queries.delete_attempt(current_scope(), attempt_id, owner_only=True)
    db.session.commit()
    return jsonify({"message": "Attempt deleted successfully"})


@bp.route("/attempts/<int:attempt_id>/results", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def attempt_results(attempt_id):
    attempt = attempt_queries.get_attempt(current_scope(), attempt_id, owner_only=True)
    return jsonify({"attempt": attempt_dict(attempt), "results": many(result_dict, attempt.results)})


@bp.route("/attempts/<int:attempt_id>/transcript.pdf", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def attempt_transcript(attempt_id):
    attempt = attempt_queries.get_attempt(current_scope(), attempt_id, owner_only=True)
    buffer = build_transcript_pdf(attempt)
    return send_file(
        buffer,
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"attempt-{attempt.id}-transcript.pdf",
    )


@bp.route("/attempts/<int:attempt_id>/disputes", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def attempt_disputes(attempt_id):
    scope = current_scope()
    attempt = attempt_queries.get_attempt(scope, attempt_id, owner_only=True)
    rows = dispute_queries.list_disputes(scope, attempt_id=attempt.id)
    return jsonify({"disputes": many(dispute_dict, rows)})


@bp.route("/results/<int:result_id>", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def update_result(result_id):
    form = validated(ResultUpdateForm)
    result = attempt_queries.update_result(current_scope(), result_id, form.skill_level_id.data, form.feedback.data)
    db.session.commit()
    return jsonify({"result": result_dict(result), "message": "Result updated successfully"})


# ----- Disputes -----
@bp.route("/disputes", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def disputes():
    rows = dispute_queries.list_disputes(current_scope(), status=request.args.get("status"))
    return jsonify({"disputes": many(dispute_dict, rows)})


@bp.route("/disputes/<int:dispute_id>", methods=["PUT"])
@login_required
@role_required(*AREA_ROLES)
def update_dispute(dispute_id):
    form = validated(DisputeUpdateForm)
    dispute, changed = dispute_queries.update_dispute(
        current_scope(), dispute_id, form.teacher_argument.data, form.status.data
    )
    db.session.commit()
    if changed:
        mailer.send_dispute_status(dispute)
    return jsonify({"dispute": dispute_dict(dispute), "message": "Dispute updated successfully"})


@bp.route("/disputes/<int:dispute_id>/conversation", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def dispute_conversation(dispute_id):
    dispute = dispute_queries.get_dispute(current_scope(), dispute_id)
    return jsonify({"conversation": many(message_dict, dispute.messages)})


@bp.route("/disputes/<int:dispute_id>/conversation", methods=["POST"])
@login_required
@role_required(*AREA_ROLES)
def post_dispute_message(dispute_id):
    form = validated(MessageForm)
    message = dispute_queries.add_teacher_message(current_scope(), dispute_id, form.message.data)
    db.session.commit()
    return jsonify({"message": message_dict(message)}), 201


# ----- Dashboard -----
@bp.route("/dashboard/stats", methods=["GET"])
@login_required
@role_required(*AREA_ROLES)
def dashboard_stats():
    return jsonify({"stats": attempt_queries.dashboard_stats(current_scope())})
