"""Request validation for the JSON API.

Flask-WTF feeds ``request.get_json()`` into these forms for POST/PUT
requests, so each form below doubles as the contract of one endpoint body.
"""
from __future__ import annotations

from datetime import datetime, timezone

from flask import request
from flask_wtf import FlaskForm
from flask_wtf.file import FileAllowed, FileField, FileRequired
from wtforms import BooleanField, DateTimeField, Field, IntegerField, PasswordField, StringField, TextAreaField
from wtforms.validators import AnyOf, DataRequired, Length, NumberRange, Optional, Regexp, ValidationError

from errors import ValidationFailed
from models import ASSESSMENT_STATUSES, DISPUTE_STATUSES, LANGUAGES, ROLES

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

DATETIME_FORMATS = [
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
]


def clean_text(value):
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    return value.strip()


def lower_text(value):
    value = clean_text(value)
    return value.lower() if value else value


class IntegerInput(IntegerField):
    """IntegerField that tolerates JSON ``null`` and numeric strings."""

    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] in (None, ""):
            self.data = None
            return
        try:
            self.data = int(valuelist[0])
        except (TypeError, ValueError) as exc:
            self.data = None
            raise ValueError(self.gettext("Not a valid integer value.")) from exc


class IntegerListField(Field):
    def process_formdata(self, valuelist):
        try:
            self.data = [int(value) for value in valuelist if value not in (None, "")]
        except (TypeError, ValueError) as exc:
            self.data = []
            raise ValueError("Expected a list of numeric ids.") from exc

    def _value(self):
        return ",".join(str(v) for v in self.data or [])


class UtcDateTimeField(DateTimeField):
    def process_formdata(self, valuelist):
        if valuelist and valuelist[0] is None:
            self.data = None
            return
        if valuelist and isinstance(valuelist[0], str) and valuelist[0].endswith("Z"):
            valuelist = [valuelist[0][:-1]]
        super().process_formdata(valuelist)
        if isinstance(self.data, datetime) and self.data.tzinfo is None:
            self.data = self.data.replace(tzinfo=timezone.utc)


def json_object():
    """The JSON request body as a dict; empty bodies read as ``{}``."""
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return body


class JsonForm(FlaskForm):
    class Meta:
        csrf = False

        def wrap_formdata(self, form, formdata):
            if request.is_json:
                json_object()
            return super().wrap_formdata(form, formdata)


def validate_form(form):
    """Validate ``form`` or raise with the first violated constraint."""
    if form.validate():
        return form
    for name, errors in form.errors.items():
        if errors:
            raise ValidationFailed(errors[0], field=name)
    raise ValidationFailed("Invalid request")


def validated(form_cls, **kwargs):
    return validate_form(form_cls(**kwargs))


def form_dict(form):
    """Field data keyed by name; a BooleanField missing from the body maps to None."""
    data = {}
    for field in form:
        if isinstance(field, BooleanField) and not field.raw_data:
            data[field.name] = None
        else:
            data[field.name] = field.data
    return data


# ----- Auth -----
class LoginForm(JsonForm):
    email = StringField("Email", filters=[lower_text], validators=[DataRequired("Email is required")])
    password = PasswordField(
        "Password",
        validators=[DataRequired("Password is required"), Length(max=128)],
    )


class ForgotPasswordForm(JsonForm):
    email = StringField("Email", filters=[lower_text], validators=[DataRequired("Email is required")])


class ResetPasswordForm(JsonForm):
    token = StringField("Token", filters=[clean_text], validators=[DataRequired("Token and password are required")])
    password = PasswordField(
        "Password",
        validators=[
            DataRequired("Token and password are required"),
            Length(min=6, max=128, message="Password must be at least 6 characters long"),
        ],
    )


class LanguageForm(JsonForm):
    language = StringField(
        "Language",
        filters=[clean_text],
        validators=[DataRequired("Language is required"), AnyOf(LANGUAGES, 'Invalid language. Must be "en" or "es"')],
    )


# ----- Institutions & users -----
class InstitutionForm(JsonForm):
    name = StringField("Name", filters=[clean_text], validators=[DataRequired("Institution name is required"), Length(max=200)])
    contact_name = StringField("Contact name", filters=[clean_text], validators=[DataRequired("Contact name is required"), Length(max=200)])
    contact_email = StringField(
        "Contact email",
        filters=[clean_text],
        validators=[DataRequired("Contact email is required"), Regexp(EMAIL_PATTERN, message="Invalid email format")],
    )


class UserForm(JsonForm):
    email = StringField(
        "Email",
        filters=[lower_text],
        validators=[DataRequired("Email is required"), Regexp(EMAIL_PATTERN, message="Invalid email format")],
    )
    given_name = StringField("Given name", filters=[clean_text], validators=[DataRequired("Given name is required"), Length(max=120)])
    family_name = StringField("Family name", filters=[clean_text], validators=[DataRequired("Family name is required"), Length(max=120)])
    role = StringField("Role", filters=[clean_text], validators=[DataRequired("Role is required"), AnyOf(ROLES, "Invalid role")])
    institution_id = IntegerInput("Institution", validators=[Optional()])
    password = PasswordField(
        "Password",
        validators=[Optional(), Length(min=6, max=128, message="Password must be between 6 and 128 characters")],
    )  # required on create
    language_preference = StringField("Language", filters=[clean_text], validators=[Optional(), AnyOf(LANGUAGES)])
    is_active = BooleanField("Active")


class StudentForm(UserForm):
    role = StringField("Role", filters=[clean_text], validators=[Optional(), AnyOf(("student",), "Teachers can only create students")])


# ----- Groups & taxonomy -----
class GroupForm(JsonForm):
    name = StringField("Name", filters=[clean_text], validators=[DataRequired("Group name is required"), Length(max=200)])
    description = TextAreaField("Description", filters=[clean_text], validators=[Optional(), Length(max=2000)])
    institution_id = IntegerInput("Institution", validators=[Optional()])


class MemberForm(JsonForm):
    user_id = IntegerInput("User", validators=[DataRequired("User ID is required")])


class DomainForm(JsonForm):
    name = StringField("Name", filters=[clean_text], validators=[DataRequired("Domain name is required"), Length(max=200)])
    description = TextAreaField("Description", filters=[clean_text], validators=[Optional()])
    institution_id = IntegerInput("Institution", validators=[Optional()])


class SkillForm(JsonForm):
    institution_id = IntegerInput("Institution", validators=[Optional()])
    domain_id = IntegerInput("Domain", validators=[DataRequired("All fields are required.")])
    name = StringField("Name", filters=[clean_text], validators=[DataRequired("All fields are required."), Length(max=200)])
    description = TextAreaField("Description", filters=[clean_text], validators=[DataRequired("All fields are required.")])


# ----- Sources -----
class SourceUploadForm(JsonForm):
    pdf_file = FileField(
        "PDF",
        validators=[FileRequired("Title and PDF file are required."), FileAllowed(["pdf"], "Only PDF files are allowed.")],
    )
    title = StringField("Title", filters=[clean_text], validators=[DataRequired("Title and PDF file are required."), Length(max=500)])
    authors = StringField("Authors", filters=[clean_text], validators=[Optional(), Length(max=500)])
    publication_year = IntegerInput("Year", validators=[Optional(), NumberRange(min=1000, max=9999)])
    skill_id = IntegerInput("Skill", validators=[Optional()])


class SourceLinkForm(JsonForm):
    skill_id = IntegerInput("Skill", validators=[DataRequired("Skill ID and source IDs are required")])
    source_ids = IntegerListField("Sources", validators=[DataRequired("Skill ID and source IDs are required")])


# ----- Assessments -----
class AssessmentForm(JsonForm):
    institution_id = IntegerInput("Institution", validators=[Optional()])
    teacher_id = IntegerInput("Teacher", validators=[Optional()])
    name = StringField("Name", filters=[clean_text], validators=[DataRequired("Assessment name is required"), Length(max=200)])
    description = TextAreaField("Description", filters=[clean_text], validators=[DataRequired("Description is required")])
    difficulty_level = StringField("Difficulty", filters=[clean_text], validators=[DataRequired("Difficulty level is required")])
    educational_level = StringField("Educational level", filters=[clean_text], validators=[DataRequired("Educational level is required")])
    output_language = StringField(
        "Output language",
        filters=[clean_text],
        validators=[DataRequired("Output language is required"), AnyOf(LANGUAGES, "Invalid output language")],
    )
    evaluation_context = TextAreaField("Evaluation context", filters=[clean_text], validators=[DataRequired("Evaluation context is required")])
    case_text = TextAreaField("Case", filters=[clean_text], validators=[DataRequired("Case text is required")])
    questions_per_skill = IntegerInput(
        "Questions per skill",
        validators=[DataRequired("Questions per skill is required"), NumberRange(min=1, max=20)],
    )
    available_from = UtcDateTimeField("Available from", format=DATETIME_FORMATS, validators=[DataRequired("Available from is required")])
    available_until = UtcDateTimeField("Available until", format=DATETIME_FORMATS, validators=[DataRequired("Available until is required")])
    dispute_period = IntegerInput(
        "Dispute period",
        validators=[DataRequired("Dispute period is required"), NumberRange(min=3, message="Dispute period must be at least 3 days")],
    )
    status = StringField("Status", filters=[clean_text], validators=[Optional(), AnyOf(ASSESSMENT_STATUSES, "Invalid status")])
    show_teacher_name = BooleanField("Show teacher name")
    skill_ids = IntegerListField("Skills", validators=[DataRequired("At least one skill is required")])

    def validate_available_until(self, field):
        if self.available_from.data and field.data and field.data <= self.available_from.data:
            raise ValidationError("Available until date must be after available from date")


class LimitedAssessmentForm(JsonForm):
    """Fields that stay editable once students have started the assessment."""

    available_until = UtcDateTimeField("Available until", format=DATETIME_FORMATS, validators=[DataRequired("Available until is required")])
    dispute_period = IntegerInput(
        "Dispute period",
        validators=[DataRequired("Dispute period is required"), NumberRange(min=3, message="Dispute period must be at least 3 days")],
    )
    status = StringField(
        "Status",
        filters=[clean_text],
        validators=[DataRequired("Status is required"), AnyOf(("Active", "Inactive"), "Invalid status value")],
    )
    show_teacher_name = BooleanField("Show teacher name")


class GroupAssignmentForm(JsonForm):
    group_ids = IntegerListField("Groups")


# ----- Results & disputes -----
class ResultUpdateForm(JsonForm):
    skill_level_id = IntegerInput("Skill level", validators=[DataRequired("Skill level ID and feedback are required")])
    feedback = TextAreaField("Feedback", filters=[clean_text], validators=[DataRequired("Skill level ID and feedback are required")])


class DisputeCreateForm(JsonForm):
    result_id = IntegerInput("Result", validators=[DataRequired("Result ID and student argument are required")])
    student_argument = TextAreaField(
        "Argument",
        filters=[clean_text],
        validators=[DataRequired("Result ID and student argument are required"), Length(max=5000)],
    )


class DisputeUpdateForm(JsonForm):
    teacher_argument = TextAreaField("Teacher argument", filters=[clean_text], validators=[DataRequired("Teacher argument and status are required")])
    status = StringField(
        "Status",
        filters=[clean_text],
        validators=[DataRequired("Teacher argument and status are required"), AnyOf(DISPUTE_STATUSES, "Invalid dispute status")],
    )


class MessageForm(JsonForm):
    message = TextAreaField("Message", filters=[clean_text], validators=[DataRequired("Message is required"), Length(max=8000)])


def parse_levels(payload, field="levels"):
    """Validate an ordered list of ``{order, label, description}`` objects."""
    if not isinstance(payload, list) or not payload:
        raise ValidationFailed("Levels array is required", field=field)
    levels = []
    seen_orders = set()
    for index, item in enumerate(payload, start=1):
        if not isinstance(item, dict):
            raise ValidationFailed(f"Level {index} must be an object", field=field)
        try:
            order = int(item.get("order"))
        except (TypeError, ValueError):
            raise ValidationFailed(f"Level {index} needs a numeric order", field=field) from None
        label = clean_text(item.get("label"))
        description = clean_text(item.get("description"))
        if not label:
            raise ValidationFailed(f"Label is required for level {index}", field=field)
        if order in seen_orders:
            raise ValidationFailed(f"Duplicate order {order}", field=field)
        seen_orders.add(order)
        levels.append({"order": order, "label": label, "description": description or ""})
    return levels
