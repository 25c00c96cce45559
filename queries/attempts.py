"""Attempts, their transcripts and graded results."""
import logging

from sqlalchemy import func, or_

from extensions import db
from errors import NotFound, UpstreamError, ValidationFailed
from models import (
    ATTEMPT_COMPLETED,
    ATTEMPT_IN_PROGRESS,
    DISPUTE_PENDING,
    ROLE_STUDENT,
    Assessment,
    Attempt,
    ConversationMessage,
    Dispute,
    Group,
    Result,
    User,
    utcnow,
)
from queries import first_or_404, like, paginate
from queries.assessments import get_student_assessment, latest_attempt
from services import grading

logger = logging.getLogger(__name__)


def _scoped(scope, owner_only=False):
    query = db.session.query(Attempt).join(Assessment, Attempt.assessment_id == Assessment.id)
    query = scope.institution_filter(query, Assessment.institution_id)
    if owner_only:
        query = scope.owner_filter(query, Assessment.teacher_id)
    return query


def list_attempts(
    scope,
    page,
    limit,
    owner_only=False,
    search=None,
    status=None,
    institution_id=None,
    assessment_id=None,
):
    query = _scoped(scope, owner_only).join(User, Attempt.user_id == User.id)
    if search:
        pattern = like(search)
        query = query.filter(
            or_(
                (User.given_name + " " + User.family_name).ilike(pattern, escape="\\"),
                User.email.ilike(pattern, escape="\\"),
                Assessment.name.ilike(pattern, escape="\\"),
            )
        )
    if status and status != "all":
        query = query.filter(Attempt.status == status)
    if institution_id:
        query = query.filter(Assessment.institution_id == institution_id)
    if assessment_id:
        query = query.filter(Attempt.assessment_id == assessment_id)
    query = query.order_by(Attempt.created_at.desc(), Attempt.id.desc())
    return paginate(query, page, limit)


def attempts_for_assessment(scope, assessment_id, owner_only=False):
    query = _scoped(scope, owner_only).filter(Attempt.assessment_id == assessment_id)
    return query.order_by(Attempt.created_at.desc(), Attempt.id.desc()).all()


def get_attempt(scope, attempt_id, owner_only=False):
    return first_or_404(_scoped(scope, owner_only).filter(Attempt.id == attempt_id), "Attempt not found")


def delete_attempt(scope, attempt_id, owner_only=False):
    attempt = get_attempt(scope, attempt_id, owner_only)
    # results, disputes and the transcript cascade with the attempt
    db.session.delete(attempt)


def _level_rank(level):
    levels = level.skill.levels
    return levels.index(level) + 1, len(levels)


def _recompute_grade(attempt):
    attempt.final_grade = grading.final_grade([_level_rank(r.skill_level) for r in attempt.results])


def update_result(scope, result_id, skill_level_id, feedback, owner_only=True):
    query = (
        db.session.query(Result)
        .join(Attempt, Result.attempt_id == Attempt.id)
        .join(Assessment, Attempt.assessment_id == Assessment.id)
        .filter(Result.id == result_id)
    )
    query = scope.institution_filter(query, Assessment.institution_id)
    if owner_only:
        query = scope.owner_filter(query, Assessment.teacher_id)
    result = first_or_404(query, "Result not found")
    level = next((lvl for lvl in result.skill.levels if lvl.id == skill_level_id), None)
    if level is None:
        raise ValidationFailed("Skill level does not belong to the result's skill", field="skill_level_id")
    result.skill_level = level
    result.feedback = feedback
    _recompute_grade(result.attempt)
    return result


def dashboard_stats(scope):
    assessments = scope.owner_filter(
        scope.institution_filter(db.session.query(Assessment.id), Assessment.institution_id),
        Assessment.teacher_id,
    ).subquery()
    attempts = db.session.query(func.count(Attempt.id)).filter(Attempt.assessment_id.in_(db.select(assessments.c.id)))
    pending = (
        db.session.query(func.count(Dispute.id))
        .join(Result, Dispute.result_id == Result.id)
        .join(Attempt, Result.attempt_id == Attempt.id)
        .filter(Attempt.assessment_id.in_(db.select(assessments.c.id)), Dispute.status == DISPUTE_PENDING)
    )
    students = scope.institution_filter(
        db.session.query(func.count(User.id)).filter(User.role == ROLE_STUDENT), User.institution_id
    )
    groups = scope.institution_filter(db.session.query(func.count(Group.id)), Group.institution_id)
    return {
        "totalAssessments": db.session.query(func.count()).select_from(assessments).scalar(),
        "totalAttempts": attempts.scalar(),
        "completedAttempts": attempts.filter(Attempt.status == ATTEMPT_COMPLETED).scalar(),
        "totalStudents": students.scalar(),
        "totalGroups": groups.scalar(),
        "pendingDisputes": pending.scalar(),
    }


# ----- Student side -----
def student_attempt(scope, attempt_id):
    query = scope.student_filter(db.session.query(Attempt).filter(Attempt.id == attempt_id), Attempt.user_id)
    return first_or_404(query, "Attempt not found")


def start_attempt(scope, assessment_id):
    """Return ``(attempt, created)``; the latest attempt is reused when there is one."""
    assessment = get_student_assessment(scope, assessment_id)
    attempt = latest_attempt(scope.user_id, assessment.id)
    if attempt is not None:
        return attempt, False
    if not assessment.is_available():
        raise ValidationFailed("Assessment is not available")
    attempt = Attempt(assessment_id=assessment.id, user_id=scope.user_id, status=ATTEMPT_IN_PROGRESS)
    db.session.add(attempt)
    db.session.flush()
    return attempt, True


def latest_completed(scope, assessment_id):
    assessment = get_student_assessment(scope, assessment_id)
    attempt = latest_attempt(scope.user_id, assessment.id, status=ATTEMPT_COMPLETED)
    if attempt is None:
        raise NotFound("No completed attempt found for this assessment")
    return attempt


def _validated_results(assessment, verdicts):
    """Check every verdict against the assessment before anything is written."""
    if not verdicts:
        raise UpstreamError("The evaluator did not return any skill results")
    skills = {skill.id: skill for skill in assessment.skills}
    chosen = []
    seen = set()
    for verdict in verdicts:
        skill = skills.get(verdict.skill_id)
        if skill is None:
            raise UpstreamError(f"Evaluator referenced skill {verdict.skill_id} outside this assessment")
        if skill.id in seen:
            raise UpstreamError(f"Evaluator graded skill {skill.id} twice")
        level = next((lvl for lvl in skill.levels if lvl.id == verdict.skill_level_id), None)
        if level is None:
            raise UpstreamError(f"Invalid skill level ID provided by evaluator: {verdict.skill_level_id}")
        seen.add(skill.id)
        chosen.append((skill, level, verdict.feedback))
    return chosen


def post_message(scope, attempt_id, text):
    """Run one conversation turn: store the message, grade it, store the reply.

    Nothing of the turn is kept when the evaluator fails or returns an invalid verdict.
    """
    attempt = student_attempt(scope, attempt_id)
    if attempt.is_completed:
        raise ValidationFailed("Assessment already completed")
    assessment = attempt.assessment
    db.session.add(ConversationMessage(attempt=attempt, message_type="student", message_text=text))
    db.session.flush()

    try:
        reply = grading.evaluate_reply(assessment, list(attempt.messages), text)
    except grading.GradingError as exc:
        logger.exception("Grading attempt %s failed", attempt.id)
        raise UpstreamError("AI service temporarily unavailable. Please try again.", status_code=503) from exc

    if reply.message:
        db.session.add(ConversationMessage(attempt=attempt, message_type="ai", message_text=reply.message))

    results = []
    if reply.can_determine_level:
        chosen = _validated_results(assessment, reply.skill_results)
        for skill, level, feedback in chosen:
            result = Result(skill=skill, skill_level=level, feedback=feedback)
            attempt.results.append(result)
            results.append(result)
        attempt.status = ATTEMPT_COMPLETED
        attempt.completed_at = utcnow()
        attempt.final_grade = grading.final_grade([_level_rank(level) for _, level, _ in chosen])
        logger.info("Attempt %s completed with grade %.2f", attempt.id, attempt.final_grade)
    db.session.flush()
    return attempt, reply, results
