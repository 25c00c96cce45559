"""Row-to-JSON shaping for every API response."""
from __future__ import annotations

from typing import Iterable, Optional

from models import as_utc


def iso(value) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def _name(user) -> Optional[str]:
    return user.full_name if user else None


def institution_dict(institution):
    return {
        "id": institution.id,
        "name": institution.name,
        "contact_name": institution.contact_name,
        "contact_email": institution.contact_email,
        "created_at": iso(institution.created_at),
        "updated_at": iso(institution.updated_at),
    }


def level_dict(level):
    return {
        "id": level.id,
        "order": level.order,
        "label": level.label,
        "description": level.description,
    }


def level_setting_dict(setting):
    return {
        "id": setting.id,
        "institution_id": setting.institution_id,
        "order": setting.order,
        "label": setting.label,
        "description": setting.description,
    }


def user_dict(user, include_groups: bool = False):
    data = {
        "id": user.id,
        "email": user.email,
        "given_name": user.given_name,
        "family_name": user.family_name,
        "full_name": user.full_name,
        "role": user.role,
        "language_preference": user.language_preference,
        "is_active": bool(user.is_active),
        "institution_id": user.institution_id,
        "institution_name": user.institution.name if user.institution else None,
        "created_at": iso(user.created_at),
        "updated_at": iso(user.updated_at),
    }
    if include_groups:
        data["groups"] = [{"id": g.id, "name": g.name} for g in user.groups]
    return data


def member_dict(user):
    return {
        "id": user.id,
        "email": user.email,
        "given_name": user.given_name,
        "family_name": user.family_name,
        "role": user.role,
    }


def group_dict(group, member_count: Optional[int] = None):
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description or "",
        "institution_id": group.institution_id,
        "institution_name": group.institution.name if group.institution else None,
        "member_count": len(group.members) if member_count is None else int(member_count),
        "created_at": iso(group.created_at),
        "updated_at": iso(group.updated_at),
    }


def domain_dict(domain, skills_count: Optional[int] = None):
    return {
        "id": domain.id,
        "name": domain.name,
        "description": domain.description,
        "institution_id": domain.institution_id,
        "skills_count": len(domain.skills) if skills_count is None else int(skills_count),
        "created_at": iso(domain.created_at),
        "updated_at": iso(domain.updated_at),
    }


def skill_dict(skill, include_levels: bool = False):
    data = {
        "id": skill.id,
        "name": skill.name,
        "description": skill.description,
        "institution_id": skill.institution_id,
        "institution_name": skill.institution.name if skill.institution else None,
        "domain_id": skill.domain_id,
        "domain_name": skill.domain.name if skill.domain else None,
        "levels_count": len(skill.levels),
        "sources_count": len(skill.sources),
        "created_at": iso(skill.created_at),
        "updated_at": iso(skill.updated_at),
    }
    if include_levels:
        data["levels"] = [level_dict(level) for level in skill.levels]
    return data


def source_dict(source):
    return {
        "id": source.id,
        "title": source.title,
        "authors": source.authors,
        "publication_year": source.publication_year,
        "pdf_s3_key": source.pdf_s3_key,
        "pdf_file_size": source.pdf_file_size,
        "pdf_upload_date": iso(source.pdf_upload_date),
        "pdf_processing_status": source.pdf_processing_status,
        "pdf_page_count": source.pdf_page_count,
        "is_custom": bool(source.is_custom),
        "created_by": source.created_by,
        "created_by_name": _name(source.creator),
        "skill_ids": [skill.id for skill in source.skills],
        "created_at": iso(source.created_at),
    }


def assessment_dict(assessment, detailed: bool = False, hide_teacher: bool = False):
    teacher_name = _name(assessment.teacher)
    if hide_teacher and not assessment.show_teacher_name:
        teacher_name = None
    data = {
        "id": assessment.id,
        "name": assessment.name,
        "description": assessment.description,
        "difficulty_level": assessment.difficulty_level,
        "educational_level": assessment.educational_level,
        "output_language": assessment.output_language,
        "questions_per_skill": assessment.questions_per_skill,
        "available_from": iso(assessment.available_from),
        "available_until": iso(assessment.available_until),
        "dispute_period": assessment.dispute_period,
        "show_teacher_name": bool(assessment.show_teacher_name),
        "status": assessment.status,
        "institution_id": assessment.institution_id,
        "institution_name": assessment.institution.name if assessment.institution else None,
        "teacher_id": assessment.teacher_id,
        "teacher_name": teacher_name,
        "skills_count": len(assessment.skills),
        "created_at": iso(assessment.created_at),
        "updated_at": iso(assessment.updated_at),
    }
    if detailed:
        data["evaluation_context"] = assessment.evaluation_context
        data["case_text"] = assessment.case_text
        data["skills"] = [skill_dict(skill, include_levels=True) for skill in assessment.skills]
        data["groups"] = [{"id": g.id, "name": g.name} for g in assessment.groups]
    return data


def attempt_dict(attempt):
    assessment = attempt.assessment
    student = attempt.student
    return {
        "id": attempt.id,
        "assessment_id": attempt.assessment_id,
        "assessment_name": assessment.name if assessment else None,
        "user_id": attempt.user_id,
        "student_name": _name(student),
        "student_email": student.email if student else None,
        "institution_name": assessment.institution.name if assessment and assessment.institution else None,
        "teacher_name": _name(assessment.teacher) if assessment else None,
        "status": attempt.status,
        "final_grade": attempt.final_grade,
        "created_at": iso(attempt.created_at),
        "completed_at": iso(attempt.completed_at),
    }


def message_dict(message):
    return {
        "id": message.id,
        "message_type": message.message_type,
        "message_text": message.message_text,
        "created_at": iso(message.created_at),
    }


def dispute_dict(dispute, include_messages: bool = False):
    data = {
        "id": dispute.id,
        "result_id": dispute.result_id,
        "status": dispute.status,
        "student_argument": dispute.student_argument,
        "teacher_argument": dispute.teacher_argument,
        "created_at": iso(dispute.created_at),
        "updated_at": iso(dispute.updated_at),
    }
    result = dispute.result
    if result is not None:
        data["skill_name"] = result.skill.name if result.skill else None
        data["skill_level_label"] = result.skill_level.label if result.skill_level else None
        data["attempt_id"] = result.attempt_id
        data["student_name"] = _name(result.attempt.student) if result.attempt else None
    if include_messages:
        data["messages"] = [message_dict(m) for m in dispute.messages]
    return data


def result_dict(result):
    level = result.skill_level
    skill = result.skill
    return {
        "id": result.id,
        "attempt_id": result.attempt_id,
        "skill_id": result.skill_id,
        "skill_name": skill.name if skill else None,
        "skill_description": skill.description if skill else None,
        "skill_level_id": result.skill_level_id,
        "skill_level_label": level.label if level else None,
        "skill_level_order": level.order if level else None,
        "feedback": result.feedback,
        "dispute": dispute_dict(result.dispute) if result.dispute else None,
    }


def many(formatter, rows: Iterable, **kwargs):
    return [formatter(row, **kwargs) for row in rows]
