from datetime import datetime, timedelta, timezone
from typing import Optional
from passlib.hash import pbkdf2_sha256
from flask_login import UserMixin
from extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without tzinfo
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


ROLE_ADMIN = "admin"
ROLE_TEACHER = "teacher"
ROLE_STUDENT = "student"
ROLE_CLERK = "clerk"
ROLES = (ROLE_ADMIN, ROLE_TEACHER, ROLE_STUDENT, ROLE_CLERK)

LANGUAGES = ("en", "es")

ATTEMPT_IN_PROGRESS = "In progress"
ATTEMPT_COMPLETED = "Completed"

DISPUTE_PENDING = "Pending"
DISPUTE_STATUSES = (DISPUTE_PENDING, "Under review", "Accepted", "Rejected")

ASSESSMENT_STATUSES = ("Active", "Inactive", "Draft")

PDF_PENDING = "pending"
PDF_PROCESSING = "processing"
PDF_COMPLETED = "completed"
PDF_FAILED = "failed"


# Association tables (many-to-many)
user_groups = db.Table(
    "user_groups",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("group_id", db.Integer, db.ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
)

skill_sources = db.Table(
    "skill_sources",
    db.Column("skill_id", db.Integer, db.ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True),
    db.Column("source_id", db.Integer, db.ForeignKey("sources.id", ondelete="CASCADE"), primary_key=True),
)

assessment_skills = db.Table(
    "assessment_skills",
    db.Column("assessment_id", db.Integer, db.ForeignKey("assessments.id", ondelete="CASCADE"), primary_key=True),
    db.Column("skill_id", db.Integer, db.ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True),
)

assessment_groups = db.Table(
    "assessment_groups",
    db.Column("assessment_id", db.Integer, db.ForeignKey("assessments.id", ondelete="CASCADE"), primary_key=True),
    db.Column("group_id", db.Integer, db.ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
)


class Institution(db.Model):
    __tablename__ = "institutions"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    contact_name = db.Column(db.String(200), nullable=False)
    contact_email = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    level_settings = db.relationship(
        "SkillLevelSetting",
        back_populates="institution",
        cascade="all, delete-orphan",
        order_by="SkillLevelSetting.order",
    )


class User(UserMixin, db.Model):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    institution_id = db.Column(db.Integer, db.ForeignKey("institutions.id"), index=True)
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    given_name = db.Column(db.String(120), nullable=False)
    family_name = db.Column(db.String(120), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_STUDENT)
    language_preference = db.Column(db.String(5), nullable=False, default="en")
    is_active = db.Column(db.Boolean, default=True)
    reset_token = db.Column(db.String(64), index=True)
    reset_token_expiry = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    institution = db.relationship("Institution")
    groups = db.relationship("Group", secondary=user_groups, back_populates="members")

    def set_password(self, raw):
        if raw is None:
            raise ValueError("Password is required")
        try:
            raw.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ValueError("Invalid password") from exc
        self.password_hash = pbkdf2_sha256.hash(raw)

    def check_password(self, raw):
        if raw is None:
            return False
        try:
            raw.encode("utf-8")
        except UnicodeEncodeError:
            return False
        try:
            return pbkdf2_sha256.verify(raw, self.password_hash)
        except ValueError:
            return False

    def issue_reset_token(self, token: str, ttl_seconds: int):
        self.reset_token = token
        self.reset_token_expiry = utcnow() + timedelta(seconds=ttl_seconds)

    def reset_token_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.reset_token or not self.reset_token_expiry:
            return False
        return as_utc(self.reset_token_expiry) > (now or utcnow())

    @property
    def full_name(self):
        return f"{self.given_name} {self.family_name}".strip()


class Group(db.Model):
    __tablename__ = "groups"
    id = db.Column(db.Integer, primary_key=True)
    institution_id = db.Column(db.Integer, db.ForeignKey("institutions.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    institution = db.relationship("Institution")
    members = db.relationship(
        "User",
        secondary=user_groups,
        back_populates="groups",
        order_by="[User.given_name, User.family_name]",
    )

    __table_args__ = (
        db.UniqueConstraint("institution_id", "name", name="uq_group_institution_name"),
    )


class Domain(db.Model):
    __tablename__ = "domains"
    id = db.Column(db.Integer, primary_key=True)
    institution_id = db.Column(db.Integer, db.ForeignKey("institutions.id"), index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    institution = db.relationship("Institution")
    skills = db.relationship("Skill", back_populates="domain", order_by="Skill.name")


class Skill(db.Model):
    __tablename__ = "skills"
    id = db.Column(db.Integer, primary_key=True)
    institution_id = db.Column(db.Integer, db.ForeignKey("institutions.id"), nullable=False, index=True)
    domain_id = db.Column(db.Integer, db.ForeignKey("domains.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    institution = db.relationship("Institution")
    domain = db.relationship("Domain", back_populates="skills")
    levels = db.relationship(
        "SkillLevel",
        back_populates="skill",
        cascade="all, delete-orphan",
        order_by="SkillLevel.order",
    )
    sources = db.relationship("Source", secondary=skill_sources, back_populates="skills")

    __table_args__ = (
        db.UniqueConstraint("name", "domain_id", name="uq_skill_name_domain"),
    )


class SkillLevelSetting(db.Model):
    """Institution-wide rubric template every skill's levels must follow."""
    __tablename__ = "skill_level_settings"
    id = db.Column(db.Integer, primary_key=True)
    institution_id = db.Column(db.Integer, db.ForeignKey("institutions.id"), nullable=False, index=True)
    order = db.Column(db.Integer, nullable=False)
    label = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)

    institution = db.relationship("Institution", back_populates="level_settings")


class SkillLevel(db.Model):
    __tablename__ = "skill_levels"
    id = db.Column(db.Integer, primary_key=True)
    skill_id = db.Column(db.Integer, db.ForeignKey("skills.id"), nullable=False, index=True)
    order = db.Column(db.Integer, nullable=False)
    label = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=False)

    skill = db.relationship("Skill", back_populates="levels")


class Source(db.Model):
    __tablename__ = "sources"
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(500), nullable=False)
    authors = db.Column(db.String(500))
    publication_year = db.Column(db.Integer)
    pdf_s3_key = db.Column(db.String(500))
    pdf_file_size = db.Column(db.Integer)
    pdf_upload_date = db.Column(db.DateTime(timezone=True))
    pdf_processing_status = db.Column(db.String(20), nullable=False, default=PDF_PENDING)
    pdf_text = db.Column(db.Text)
    pdf_page_count = db.Column(db.Integer)
    is_custom = db.Column(db.Boolean, default=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    creator = db.relationship("User")
    skills = db.relationship("Skill", secondary=skill_sources, back_populates="sources")


class Assessment(db.Model):
    __tablename__ = "assessments"
    id = db.Column(db.Integer, primary_key=True)
    institution_id = db.Column(db.Integer, db.ForeignKey("institutions.id"), index=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey("users.id"), index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    difficulty_level = db.Column(db.String(50))
    educational_level = db.Column(db.String(50))
    output_language = db.Column(db.String(5), nullable=False, default="en")
    evaluation_context = db.Column(db.Text)
    case_text = db.Column(db.Text)
    questions_per_skill = db.Column(db.Integer, nullable=False, default=1)
    available_from = db.Column(db.DateTime(timezone=True))
    available_until = db.Column(db.DateTime(timezone=True))
    dispute_period = db.Column(db.Integer, nullable=False, default=3)  # days
    show_teacher_name = db.Column(db.Boolean, default=False)
    status = db.Column(db.String(20), nullable=False, default="Active")
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    institution = db.relationship("Institution")
    teacher = db.relationship("User")
    skills = db.relationship("Skill", secondary=assessment_skills, order_by="Skill.name")
    groups = db.relationship("Group", secondary=assessment_groups, order_by="Group.name")
    attempts = db.relationship(
        "Attempt",
        back_populates="assessment",
        cascade="all, delete-orphan",
    )

    def is_available(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        if self.status != "Active":
            return False
        start, end = as_utc(self.available_from), as_utc(self.available_until)
        if start and now < start:
            return False
        if end and now > end:
            return False
        return True

    @property
    def max_turns(self) -> int:
        return max(len(self.skills), 1) * max(self.questions_per_skill or 1, 1)


class Attempt(db.Model):
    __tablename__ = "attempts"
    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(db.Integer, db.ForeignKey("assessments.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=ATTEMPT_IN_PROGRESS)
    final_grade = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True))

    assessment = db.relationship("Assessment", back_populates="attempts")
    student = db.relationship("User")
    results = db.relationship(
        "Result",
        back_populates="attempt",
        cascade="all, delete-orphan",
    )
    messages = db.relationship(
        "ConversationMessage",
        back_populates="attempt",
        cascade="all, delete-orphan",
        order_by="[ConversationMessage.created_at, ConversationMessage.id]",
    )

    @property
    def is_completed(self) -> bool:
        return self.status == ATTEMPT_COMPLETED


class ConversationMessage(db.Model):
    __tablename__ = "conversation_messages"
    id = db.Column(db.Integer, primary_key=True)
    attempt_id = db.Column(db.Integer, db.ForeignKey("attempts.id"), nullable=False, index=True)
    message_type = db.Column(db.String(20), nullable=False)  # 'student' or 'ai'
    message_text = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    attempt = db.relationship("Attempt", back_populates="messages")


class Result(db.Model):
    __tablename__ = "results"
    id = db.Column(db.Integer, primary_key=True)
    attempt_id = db.Column(db.Integer, db.ForeignKey("attempts.id"), nullable=False, index=True)
    skill_id = db.Column(db.Integer, db.ForeignKey("skills.id"), nullable=False)
    skill_level_id = db.Column(db.Integer, db.ForeignKey("skill_levels.id"), nullable=False)
    feedback = db.Column(db.Text)

    attempt = db.relationship("Attempt", back_populates="results")
    skill = db.relationship("Skill")
    skill_level = db.relationship("SkillLevel")
    dispute = db.relationship(
        "Dispute",
        back_populates="result",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.UniqueConstraint("attempt_id", "skill_id", name="uq_result_attempt_skill"),
    )


class Dispute(db.Model):
    __tablename__ = "disputes"
    id = db.Column(db.Integer, primary_key=True)
    result_id = db.Column(db.Integer, db.ForeignKey("results.id"), nullable=False, unique=True)
    status = db.Column(db.String(20), nullable=False, default=DISPUTE_PENDING)
    student_argument = db.Column(db.Text, nullable=False)
    teacher_argument = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    result = db.relationship("Result", back_populates="dispute")
    messages = db.relationship(
        "DisputeMessage",
        back_populates="dispute",
        cascade="all, delete-orphan",
        order_by="[DisputeMessage.created_at, DisputeMessage.id]",
    )


class DisputeMessage(db.Model):
    __tablename__ = "dispute_messages"
    id = db.Column(db.Integer, primary_key=True)
    dispute_id = db.Column(db.Integer, db.ForeignKey("disputes.id"), nullable=False, index=True)
    message_type = db.Column(db.String(20), nullable=False)  # 'student' or 'teacher'
    message_text = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    dispute = db.relationship("Dispute", back_populates="messages")


# Object storage keys whose deletion failed; drained by `flask storage sweep`
class StorageCleanup(db.Model):
    __tablename__ = "storage_cleanup"
    id = db.Column(db.Integer, primary_key=True)
    s3_key = db.Column(db.String(500), nullable=False)
    failures = db.Column(db.Integer, nullable=False, default=1)
    last_error = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)
