from datetime import timedelta

from extensions import db
from errors import Conflict, NotFound, ValidationFailed
from models import (
    ATTEMPT_COMPLETED,
    DISPUTE_PENDING,
    Assessment,
    Attempt,
    Dispute,
    DisputeMessage,
    Result,
    as_utc,
    utcnow,
)
from queries import first_or_404


def _scoped(scope, owner_only=True):
    query = (
        db.session.query(Dispute)
        .join(Result, Dispute.result_id == Result.id)
        .join(Attempt, Result.attempt_id == Attempt.id)
        .join(Assessment, Attempt.assessment_id == Assessment.id)
    )
    query = scope.institution_filter(query, Assessment.institution_id)
    if owner_only:
        query = scope.owner_filter(query, Assessment.teacher_id)
    return query


def list_disputes(scope, status=None, attempt_id=None):
    query = _scoped(scope)
    if status and status != "all":
        query = query.filter(Dispute.status == status)
    if attempt_id:
        query = query.filter(Attempt.id == attempt_id)
    return query.order_by(Dispute.created_at.desc(), Dispute.id.desc()).all()


def get_dispute(scope, dispute_id):
    return first_or_404(_scoped(scope).filter(Dispute.id == dispute_id), "Dispute not found or access denied")


def update_dispute(scope, dispute_id, teacher_argument, status):
    """Return ``(dispute, status_changed)``."""
    dispute = get_dispute(scope, dispute_id)
    changed = dispute.status != status
    dispute.teacher_argument = teacher_argument
    dispute.status = status
    return dispute, changed


def add_teacher_message(scope, dispute_id, text):
    dispute = get_dispute(scope, dispute_id)
    message = DisputeMessage(message_type="teacher", message_text=text)
    dispute.messages.append(message)
    db.session.flush()
    return message


# ----- Student side -----
def _student_result(scope, result_id):
    query = (
        db.session.query(Result)
        .join(Attempt, Result.attempt_id == Attempt.id)
        .filter(Result.id == result_id)
    )
    query = scope.student_filter(query, Attempt.user_id)
    return first_or_404(query, "Result not found")


def dispute_deadline(attempt):
    completed = as_utc(attempt.completed_at)
    if completed is None:
        return None
    return completed + timedelta(days=attempt.assessment.dispute_period or 0)


def create_dispute(scope, result_id, argument):
    result = _student_result(scope, result_id)
    attempt = result.attempt
    if attempt.status != ATTEMPT_COMPLETED:
        raise NotFound("Result not found or attempt not completed")
    if result.dispute is not None:
        raise Conflict("A dispute already exists for this result")
    deadline = dispute_deadline(attempt)
    if deadline is None or utcnow() > deadline:
        raise ValidationFailed("Dispute period has expired")
    dispute = Dispute(status=DISPUTE_PENDING, student_argument=argument)
    result.dispute = dispute
    dispute.messages.append(DisputeMessage(message_type="student", message_text=argument))
    db.session.flush()
    return dispute


def student_dispute(scope, result_id):
    result = _student_result(scope, result_id)
    if result.dispute is None:
        raise NotFound("No dispute found for this result")
    return result.dispute


def add_student_message(scope, result_id, text):
    dispute = student_dispute(scope, result_id)
    message = DisputeMessage(message_type="student", message_text=text)
    dispute.messages.append(message)
    db.session.flush()
    return message
