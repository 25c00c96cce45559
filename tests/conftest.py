import os
from datetime import timedelta

import pytest


@pytest.fixture(scope="session", autouse=True)
def _set_env():
    os.environ.setdefault("FLASK_DEBUG", "0")
    os.environ.setdefault("SECRET_KEY", "test-secret")
    os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite:///:memory:")
    yield


PASSWORD = "Password123!"


@pytest.fixture()
def app():
    from app import create_app
    from extensions import db

    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "OPENAI_API_KEY": "test-key",
            "MAIL_SERVER": None,
        }
    )
    app.config.update(WTF_CSRF_ENABLED=False)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def sent_mail(monkeypatch):
    from services import mailer

    outbox = []

    def fake_send(to_email, subject, body):
        outbox.append({"to": to_email, "subject": subject, "body": body})
        return True

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return outbox


@pytest.fixture()
def fake_storage(monkeypatch):
    """Replace the S3 calls with an in-memory bucket."""
    from services import storage

    bucket = {"objects": {}, "deleted": [], "fail_delete": False}

    def upload_file(data, key, content_type="application/pdf"):
        bucket["objects"][key] = data
        return key

    def download_file(key):
        if key not in bucket["objects"]:
            raise storage.StorageError(f"missing {key}")
        return bucket["objects"][key]

    def generate_presigned_url(key, ttl_seconds=None):
        return f"https://bucket.example/{key}?signature=test"

    def delete_file(key):
        if bucket["fail_delete"]:
            raise storage.StorageError("storage offline")
        bucket["objects"].pop(key, None)
        bucket["deleted"].append(key)

    monkeypatch.setattr(storage, "upload_file", upload_file)
    monkeypatch.setattr(storage, "download_file", download_file)
    monkeypatch.setattr(storage, "generate_presigned_url", generate_presigned_url)
    monkeypatch.setattr(storage, "delete_file", delete_file)
    return bucket


def _user(db, User, email, role, institution=None, given="Test"):
    user = User(
        email=email,
        given_name=given,
        family_name=role.capitalize(),
        role=role,
        institution=institution,
        is_active=True,
    )
    user.set_password(PASSWORD)
    db.session.add(user)
    return user


@pytest.fixture()
def world(app):
    """Two institutions with one user per role, a rubric skill and an open assessment."""
    from extensions import db
    from models import Assessment, Domain, Group, Institution, Skill, SkillLevel, User, utcnow

    with app.app_context():
        north = Institution(name="North College", contact_name="Nora", contact_email="nora@north.test")
        south = Institution(name="South College", contact_name="Sam", contact_email="sam@south.test")
        db.session.add_all([north, south])

        admin = _user(db, User, "admin@example.com", "admin", given="Ada")
        clerk = _user(db, User, "clerk@north.test", "clerk", north, given="Cleo")
        teacher = _user(db, User, "teacher@north.test", "teacher", north, given="Tom")
        other_teacher = _user(db, User, "teacher2@north.test", "teacher", north, given="Tina")
        south_teacher = _user(db, User, "teacher@south.test", "teacher", south, given="Stan")
        student = _user(db, User, "student@north.test", "student", north, given="Stella")
        south_student = _user(db, User, "student@south.test", "student", south, given="Sid")

        domain = Domain(institution=north, name="Communication", description="Talking and writing")
        skill = Skill(institution=north, domain=domain, name="Argumentation", description="Builds arguments")
        skill.levels = [
            SkillLevel(order=1, label="Novice", description="Needs guidance"),
            SkillLevel(order=2, label="Competent", description="Works alone"),
            SkillLevel(order=3, label="Expert", description="Teaches others"),
        ]
        group = Group(institution=north, name="Class A", description="Morning class")
        group.members.append(student)

        now = utcnow()
        assessment = Assessment(
            institution=north,
            teacher=teacher,
            name="Debate case",
            description="Argue a position",
            difficulty_level="Intermediate",
            educational_level="Bachelor",
            output_language="en",
            evaluation_context="First year debate course",
            case_text="Should cities ban cars from the centre?",
            questions_per_skill=2,
            available_from=now - timedelta(days=1),
            available_until=now + timedelta(days=7),
            dispute_period=3,
            status="Active",
        )
        assessment.skills = [skill]
        assessment.groups = [group]
        db.session.add_all([domain, skill, group, assessment])
        db.session.commit()

        ids = {
            "north": north.id,
            "south": south.id,
            "admin": admin.id,
            "clerk": clerk.id,
            "teacher": teacher.id,
            "other_teacher": other_teacher.id,
            "south_teacher": south_teacher.id,
            "student": student.id,
            "south_student": south_student.id,
            "domain": domain.id,
            "skill": skill.id,
            "levels": [level.id for level in skill.levels],
            "group": group.id,
            "assessment": assessment.id,
        }
        db.session.expunge_all()
    return ids


@pytest.fixture()
def headers_for(app):
    """Bearer-token headers for a user id."""
    from blueprints.auth.routes import issue_token
    from extensions import db
    from models import User

    def make(user_id):
        with app.app_context():
            token = issue_token(db.session.get(User, user_id))
        return {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture()
def grader(monkeypatch):
    """Script the evaluator replies returned by the OpenAI call."""
    from services import grading

    replies = []
    calls = []

    def fake_call(messages, max_tokens, temperature):
        calls.append(messages)
        if not replies:
            raise grading.GradingError("no scripted reply")
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(grading, "_call_openai", fake_call)
    return {"replies": replies, "calls": calls}
