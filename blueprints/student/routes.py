from flask import Blueprint, jsonify
from flask_login import login_required

from extensions import db
from formatters import assessment_dict, attempt_dict, dispute_dict, iso, many, message_dict, result_dict
from forms import DisputeCreateForm, MessageForm, validated
from queries import assessments as assessment_queries
from queries import attempts as attempt_queries
from queries import disputes as dispute_queries
from role_required import current_scope, role_required

bp = Blueprint("student", __name__, url_prefix="/api/student")


def _student_assessment(assessment, attempt):
    data = assessment_dict(assessment, hide_teacher=True)
    data["attempt"] = attempt_dict(attempt) if attempt else None
    return data


def _attempt_with_deadline(attempt):
    data = attempt_dict(attempt)
    data["dispute_deadline"] = iso(dispute_queries.dispute_deadline(attempt))
    return data


@bp.route("/assessments", methods=["GET"])
@login_required
@role_required("student")
def assessments():
    active, completed = [], []
    for assessment, attempt in assessment_queries.student_assessments(current_scope()):
        bucket = completed if attempt is not None and attempt.is_completed else active
        bucket.append(_student_assessment(assessment, attempt))
    return jsonify(
        {
            "activeAssessments": active,
            "completedAssessments": completed,
            "totalActive": len(active),
            "totalCompleted": len(completed),
        }
    )


@bp.route("/assessments/<int:assessment_id>", methods=["GET"])
@login_required
@role_required("student")
def assessment_detail(assessment_id):
    scope = current_scope()
    assessment = assessment_queries.get_student_assessment(scope, assessment_id)
    data = assessment_dict(assessment, detailed=True, hide_teacher=True)
    # students never see the grading context or group wiring
    data.pop("evaluation_context", None)
    data.pop("groups", None)
    attempt = assessment_queries.latest_attempt(scope.user_id, assessment.id)
    data["attempt"] = attempt_dict(attempt) if attempt else None
    return jsonify({"assessment": data})


@bp.route("/assessments/<int:assessment_id>/attempt", methods=["POST"])
@login_required
@role_required("student")
def start_attempt(assessment_id):
    attempt, created = attempt_queries.start_attempt(current_scope(), assessment_id)
    db.session.commit()
    return jsonify({"attempt": attempt_dict(attempt), "created": created}), 201 if created else 200


@bp.route("/assessments/<int:assessment_id>/results", methods=["GET"])
@login_required
@role_required("student")
def assessment_results(assessment_id):
    attempt = attempt_queries.latest_completed(current_scope(), assessment_id)
    return jsonify({"attempt": _attempt_with_deadline(attempt), "results": many(result_dict, attempt.results)})


@bp.route("/attempts/<int:attempt_id>/conversation", methods=["GET"])
@login_required
@role_required("student")
def conversation(attempt_id):
    attempt = attempt_queries.student_attempt(current_scope(), attempt_id)
    return jsonify({"attempt": attempt_dict(attempt), "conversation": many(message_dict, attempt.messages)})


@bp.route("/attempts/<int:attempt_id>/conversation", methods=["POST"])
@login_required
@role_required("student")
def post_message(attempt_id):
    form = validated(MessageForm)
    attempt, reply, results = attempt_queries.post_message(current_scope(), attempt_id, form.message.data)
    db.session.commit()
    return jsonify(
        {
            "aiResponse": reply.to_dict(),
            "attempt": attempt_dict(attempt),
            "results": many(result_dict, results),
        }
    )


@bp.route("/attempts/<int:attempt_id>/results", methods=["GET"])
@login_required
@role_required("student")
def attempt_results(attempt_id):
    attempt = attempt_queries.student_attempt(current_scope(), attempt_id)
    return jsonify({"attempt": _attempt_with_deadline(attempt), "results": many(result_dict, attempt.results)})


@bp.route("/disputes", methods=["POST"])
@login_required
@role_required("student")
def create_dispute():
    form = validated(DisputeCreateForm)
    dispute = dispute_queries.create_dispute(current_scope(), form.result_id.data, form.student_argument.data)
    db.session.commit()
    return jsonify({"dispute": dispute_dict(dispute), "message": "Dispute submitted successfully"}), 201


@bp.route("/disputes/<int:result_id>", methods=["GET"])
@login_required
@role_required("student")
def dispute_detail(result_id):
    dispute = dispute_queries.student_dispute(current_scope(), result_id)
    return jsonify({"dispute": dispute_dict(dispute)})


@bp.route("/disputes/<int:result_id>/conversation", methods=["GET"])
@login_required
@role_required("student")
def dispute_conversation(result_id):
    dispute = dispute_queries.student_dispute(current_scope(), result_id)
    return jsonify({"dispute": dispute_dict(dispute), "conversation": many(message_dict, dispute.messages)})


@bp.route("/disputes/<int:result_id>/conversation", methods=["POST"])
@login_required
@role_required("student")
def post_dispute_message(result_id):
    form = validated(MessageForm)
    message = dispute_queries.add_student_message(current_scope(), result_id, form.message.data)
    db.session.commit()
    return jsonify({"message": message_dict(message)}), 201
