from datetime import timedelta
from io import BytesIO

import pytest

from extensions import db
from models import (
    Attempt,
    ConversationMessage,
    Dispute,
    DisputeMessage,
    Result,
    Source,
    StorageCleanup,
    utcnow,
)


@pytest.fixture()
def graded_attempt(app, world):
    """A completed attempt of the world student with one result and a pending dispute."""
    with app.app_context():
        attempt = Attempt(
            assessment_id=world["assessment"],
            user_id=world["student"],
            status="Completed",
            final_grade=66.67,
            completed_at=utcnow() - timedelta(hours=1),
        )
        attempt.messages = [
            ConversationMessage(message_type="student", message_text="Cars pollute the centre."),
            ConversationMessage(message_type="ai", message_text="Thanks, that settles it."),
        ]
        result = Result(skill_id=world["skill"], skill_level_id=world["levels"][1], feedback="Clear argument")
        attempt.results = [result]
        dispute = Dispute(status="Pending", student_argument="I deserve Expert")
        dispute.messages = [DisputeMessage(message_type="student", message_text="I deserve Expert")]
        result.dispute = dispute
        db.session.add(attempt)
        db.session.commit()
        ids = {"attempt": attempt.id, "result": result.id, "dispute": dispute.id}
    return ids


def _upload(client, headers, **fields):
    data = {"title": "Rhetoric handbook", "authors": "Aristotle", "publication_year": "2001"}
    data.update(fields)
    data.setdefault("pdf_file", (BytesIO(b"%PDF-1.4 handbook"), "rhetoric handbook.pdf"))
    return client.post("/api/teacher/sources/upload", data=data, headers=headers, content_type="multipart/form-data")


def test_teacher_creates_student_in_own_institution(client, world, headers_for):
    payload = {"email": "pupil@north.test", "given_name": "Pia", "family_name": "Pupil", "password": "secret1"}
    resp = client.post("/api/teacher/users", json=payload, headers=headers_for(world["teacher"]))
    assert resp.status_code == 201
    user = resp.get_json()["user"]
    assert user["role"] == "student"
    assert user["institution_id"] == world["north"]


def test_teacher_cannot_create_teachers(client, world, headers_for):
    payload = {
        "email": "peer@north.test",
        "given_name": "Pe",
        "family_name": "Er",
        "password": "secret1",
        "role": "teacher",
    }
    resp = client.post("/api/teacher/users", json=payload, headers=headers_for(world["teacher"]))
    assert resp.status_code == 400


def test_group_created_in_callers_institution(client, world, headers_for):
    resp = client.post(
        "/api/teacher/groups",
        json={"name": "Evening class", "institution_id": world["south"]},
        headers=headers_for(world["teacher"]),
    )
    assert resp.status_code == 201
    assert resp.get_json()["group"]["institution_id"] == world["north"]


def test_duplicate_group_name_conflicts(client, world, headers_for):
    resp = client.post("/api/teacher/groups", json={"name": "Class A"}, headers=headers_for(world["teacher"]))
    assert resp.status_code == 409


def test_available_members_lists_unassigned_students(app, client, world, headers_for):
    headers = headers_for(world["teacher"])
    created = client.post(
        "/api/teacher/users",
        json={"email": "late@north.test", "given_name": "Lee", "family_name": "Late", "password": "secret1"},
        headers=headers,
    ).get_json()["user"]
    resp = client.get(f"/api/teacher/groups/{world['group']}/members/available", headers=headers)
    assert [u["id"] for u in resp.get_json()["users"]] == [created["id"]]

    added = client.post(f"/api/teacher/groups/{world['group']}/members", json={"user_id": created["id"]}, headers=headers)
    assert added.status_code == 201
    removed = client.delete(f"/api/teacher/groups/{world['group']}/members/{created['id']}", headers=headers)
    assert removed.status_code == 200


def test_delete_group_clears_assignments(app, client, world, headers_for):
    resp = client.delete(f"/api/teacher/groups/{world['group']}", headers=headers_for(world["teacher"]))
    assert resp.status_code == 200
    groups = client.get(f"/api/teacher/assessments/{world['assessment']}/groups", headers=headers_for(world["teacher"]))
    assert groups.get_json()["groups"] == []


def test_domain_skills_listing(client, world, headers_for):
    resp = client.get(f"/api/teacher/domains/{world['domain']}/skills", headers=headers_for(world["teacher"]))
    assert [s["name"] for s in resp.get_json()["skills"]] == ["Argumentation"]


def test_upload_source_stores_pdf_pending(app, client, world, headers_for, fake_storage):
    resp = _upload(client, headers_for(world["teacher"]), skill_id=str(world["skill"]))
    assert resp.status_code == 201
    source = resp.get_json()["source"]
    assert source["pdf_processing_status"] == "pending"
    assert source["skill_ids"] == [world["skill"]]
    assert source["pdf_s3_key"].startswith(f"sources/{source['id']}/")
    assert source["pdf_s3_key"].endswith("_rhetoric_handbook.pdf")
    assert fake_storage["objects"][source["pdf_s3_key"]] == b"%PDF-1.4 handbook"


def test_upload_rejects_non_pdf(client, world, headers_for, fake_storage):
    resp = _upload(client, headers_for(world["teacher"]), pdf_file=(BytesIO(b"hello"), "notes.txt"))
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Only PDF files are allowed."
    assert fake_storage["objects"] == {}


def test_upload_failure_leaves_no_row(app, client, world, headers_for, monkeypatch):
    from services import storage

    def broken_upload(data, key, content_type="application/pdf"):
        raise storage.StorageError("bucket unavailable")

    monkeypatch.setattr(storage, "upload_file", broken_upload)
    resp = _upload(client, headers_for(world["teacher"]))
    assert resp.status_code == 502
    with app.app_context():
        assert db.session.query(Source).count() == 0


def test_link_sources_is_idempotent(client, world, headers_for, fake_storage):
    headers = headers_for(world["teacher"])
    source = _upload(client, headers).get_json()["source"]
    unlinked = client.get("/api/teacher/sources/unlinked", headers=headers).get_json()["sources"]
    assert [s["id"] for s in unlinked] == [source["id"]]

    payload = {"skill_id": world["skill"], "source_ids": [source["id"]]}
    first = client.post("/api/teacher/sources/link", json=payload, headers=headers)
    second = client.post("/api/teacher/sources/link", json=payload, headers=headers)
    assert first.status_code == second.status_code == 200
    assert [s["id"] for s in second.get_json()["sources"]] == [source["id"]]
    assert client.get("/api/teacher/sources/unlinked", headers=headers).get_json()["sources"] == []

    listed = client.get(f"/api/teacher/sources?skill_id={world['skill']}", headers=headers).get_json()["sources"]
    assert [s["id"] for s in listed] == [source["id"]]

    unlink = client.delete("/api/teacher/sources/link", json=payload, headers=headers)
    assert unlink.status_code == 200
    assert len(client.get("/api/teacher/sources/unlinked", headers=headers).get_json()["sources"]) == 1


def test_link_unknown_source_fails_without_partial_link(app, client, world, headers_for, fake_storage):
    headers = headers_for(world["teacher"])
    source = _upload(client, headers).get_json()["source"]
    payload = {"skill_id": world["skill"], "source_ids": [source["id"], 9999]}
    resp = client.post("/api/teacher/sources/link", json=payload, headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Some sources do not exist"
    with app.app_context():
        assert db.session.get(Source, source["id"]).skills == []


def test_sources_hidden_from_other_institutions(client, world, headers_for, fake_storage):
    source = _upload(client, headers_for(world["teacher"])).get_json()["source"]
    south = headers_for(world["south_teacher"])
    assert client.get("/api/teacher/sources", headers=south).get_json()["sources"] == []
    assert client.get(f"/api/teacher/sources/{source['id']}/download", headers=south).status_code == 404


def test_download_returns_presigned_url(client, world, headers_for, fake_storage):
    headers = headers_for(world["teacher"])
    source = _upload(client, headers).get_json()["source"]
    resp = client.get(f"/api/teacher/sources/{source['id']}/download", headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["url"].startswith("https://bucket.example/sources/")


def test_delete_source_removes_object(app, client, world, headers_for, fake_storage):
    headers = headers_for(world["teacher"])
    source = _upload(client, headers, skill_id=str(world["skill"])).get_json()["source"]
    resp = client.delete(f"/api/teacher/sources/{source['id']}", headers=headers)
    assert resp.status_code == 200
    assert fake_storage["deleted"] == [source["pdf_s3_key"]]
    with app.app_context():
        assert db.session.get(Source, source["id"]) is None
        assert db.session.query(StorageCleanup).count() == 0


def test_delete_source_queues_failed_object_removal(app, client, world, headers_for, fake_storage):
    headers = headers_for(world["teacher"])
    source = _upload(client, headers).get_json()["source"]
    fake_storage["fail_delete"] = True
    resp = client.delete(f"/api/teacher/sources/{source['id']}", headers=headers)
    assert resp.status_code == 200
    with app.app_context():
        assert db.session.get(Source, source["id"]) is None
        queued = db.session.query(StorageCleanup).one()
        assert queued.s3_key == source["pdf_s3_key"]

    from services.storage import sweep_pending_deletions

    fake_storage["fail_delete"] = False
    with app.app_context():
        assert sweep_pending_deletions() == (1, 0)
        assert db.session.query(StorageCleanup).count() == 0


def test_process_pending_sources(app, client, world, headers_for, fake_storage, monkeypatch):
    from queries.sources import process_pending
    from services import pdf_text

    source = _upload(client, headers_for(world["teacher"])).get_json()["source"]
    monkeypatch.setattr(
        pdf_text, "extract_text", lambda blob: pdf_text.ExtractedText(text="Ethos, pathos, logos", page_count=2)
    )
    with app.app_context():
        assert process_pending() == (1, 0)
        stored = db.session.get(Source, source["id"])
        assert stored.pdf_processing_status == "completed"
        assert stored.pdf_page_count == 2


def test_process_marks_unreadable_source_failed(app, client, world, headers_for, fake_storage):
    from queries.sources import process_pending

    source = _upload(client, headers_for(world["teacher"])).get_json()["source"]
    fake_storage["objects"].clear()
    with app.app_context():
        assert process_pending() == (0, 1)
        assert db.session.get(Source, source["id"]).pdf_processing_status == "failed"


def test_assessment_with_attempts_cannot_be_edited(client, world, headers_for, graded_attempt):
    resp = client.delete(f"/api/teacher/assessments/{world['assessment']}", headers=headers_for(world["teacher"]))
    assert resp.status_code == 409


def _limited_payload(**overrides):
    payload = {
        "available_until": "2030-01-15T10:00:00Z",
        "dispute_period": 5,
        "status": "Inactive",
        "show_teacher_name": True,
    }
    payload.update(overrides)
    return payload


def test_limited_update_of_assessment_in_use(app, client, world, headers_for, graded_attempt):
    url = f"/api/teacher/assessments/{world['assessment']}/limited"
    resp = client.put(url, json=_limited_payload(), headers=headers_for(world["teacher"]))
    assert resp.status_code == 200
    assessment = resp.get_json()["assessment"]
    assert assessment["available_until"] == "2030-01-15T10:00:00+00:00"
    assert assessment["dispute_period"] == 5
    assert assessment["status"] == "Inactive"
    assert assessment["show_teacher_name"] is True
    assert assessment["name"] == "Debate case"
    with app.app_context():
        assert db.session.query(Result).count() == 1


def test_limited_update_needs_attempts(client, world, headers_for):
    url = f"/api/teacher/assessments/{world['assessment']}/limited"
    resp = client.put(url, json=_limited_payload(), headers=headers_for(world["teacher"]))
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "This assessment has no attempts. Use the full edit form instead."


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"available_until": "2000-01-01T00:00:00Z"}, "available_until"),
        ({"dispute_period": 2}, "dispute_period"),
        ({"status": "Draft"}, "status"),
    ],
)
def test_limited_update_validation(app, client, world, headers_for, graded_attempt, overrides, field):
    url = f"/api/teacher/assessments/{world['assessment']}/limited"
    resp = client.put(url, json=_limited_payload(**overrides), headers=headers_for(world["teacher"]))
    assert resp.status_code == 400
    assert resp.get_json()["field"] == field
    detail = client.get(f"/api/teacher/assessments/{world['assessment']}", headers=headers_for(world["teacher"]))
    assert detail.get_json()["assessment"]["status"] == "Active"


def test_limited_update_is_owner_scoped(client, world, headers_for, graded_attempt):
    url = f"/api/teacher/assessments/{world['assessment']}/limited"
    assert client.put(url, json=_limited_payload(), headers=headers_for(world["other_teacher"])).status_code == 404


def test_skill_levels_body_must_be_an_object(client, world, headers_for):
    resp = client.put(
        f"/api/teacher/skills/{world['skill']}/levels", json=[{"order": 1}], headers=headers_for(world["teacher"])
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Request body must be a JSON object"


def test_other_teacher_cannot_see_attempt(client, world, headers_for, graded_attempt):
    url = f"/api/teacher/attempts/{graded_attempt['attempt']}"
    assert client.get(url, headers=headers_for(world["teacher"])).status_code == 200
    assert client.get(url, headers=headers_for(world["other_teacher"])).status_code == 404
    assert client.get(url, headers=headers_for(world["clerk"])).status_code == 200


def test_update_result_recomputes_grade(app, client, world, headers_for, graded_attempt):
    resp = client.put(
        f"/api/teacher/results/{graded_attempt['result']}",
        json={"skill_level_id": world["levels"][2], "feedback": "Strong after review"},
        headers=headers_for(world["teacher"]),
    )
    assert resp.status_code == 200
    assert resp.get_json()["result"]["skill_level_label"] == "Expert"
    with app.app_context():
        assert db.session.get(Attempt, graded_attempt["attempt"]).final_grade == 100.0


def test_update_result_rejects_foreign_level(app, client, world, headers_for, graded_attempt):
    with app.app_context():
        from models import Skill, SkillLevel

        other = Skill(institution_id=world["north"], domain_id=world["domain"], name="Listening", description="Hears")
        other.levels = [SkillLevel(order=1, label="Any", description="x")]
        db.session.add(other)
        db.session.commit()
        foreign_level = other.levels[0].id
    resp = client.put(
        f"/api/teacher/results/{graded_attempt['result']}",
        json={"skill_level_id": foreign_level, "feedback": "Nope"},
        headers=headers_for(world["teacher"]),
    )
    assert resp.status_code == 400
    with app.app_context():
        assert db.session.get(Result, graded_attempt["result"]).skill_level_id == world["levels"][1]


def test_dispute_status_change_mails_student(client, world, headers_for, graded_attempt, sent_mail):
    resp = client.put(
        f"/api/teacher/disputes/{graded_attempt['dispute']}",
        json={"teacher_argument": "Evidence supports Competent", "status": "Rejected"},
        headers=headers_for(world["teacher"]),
    )
    assert resp.status_code == 200
    assert resp.get_json()["dispute"]["status"] == "Rejected"
    assert [mail["to"] for mail in sent_mail] == ["student@north.test"]


def test_dispute_update_without_status_change_sends_nothing(client, world, headers_for, graded_attempt, sent_mail):
    resp = client.put(
        f"/api/teacher/disputes/{graded_attempt['dispute']}",
        json={"teacher_argument": "Looking into it", "status": "Pending"},
        headers=headers_for(world["teacher"]),
    )
    assert resp.status_code == 200
    assert sent_mail == []


def test_dispute_rejects_unknown_status(client, world, headers_for, graded_attempt):
    resp = client.put(
        f"/api/teacher/disputes/{graded_attempt['dispute']}",
        json={"teacher_argument": "Hmm", "status": "Closed"},
        headers=headers_for(world["teacher"]),
    )
    assert resp.status_code == 400


def test_dispute_conversation(client, world, headers_for, graded_attempt):
    headers = headers_for(world["teacher"])
    url = f"/api/teacher/disputes/{graded_attempt['dispute']}/conversation"
    assert client.post(url, json={"message": "Please explain further."}, headers=headers).status_code == 201
    messages = client.get(url, headers=headers).get_json()["conversation"]
    assert [m["message_type"] for m in messages] == ["student", "teacher"]


def test_disputes_filtered_by_status(client, world, headers_for, graded_attempt):
    headers = headers_for(world["teacher"])
    pending = client.get("/api/teacher/disputes?status=Pending", headers=headers).get_json()["disputes"]
    accepted = client.get("/api/teacher/disputes?status=Accepted", headers=headers).get_json()["disputes"]
    assert [d["id"] for d in pending] == [graded_attempt["dispute"]]
    assert accepted == []
    by_attempt = client.get(f"/api/teacher/attempts/{graded_attempt['attempt']}/disputes", headers=headers)
    assert len(by_attempt.get_json()["disputes"]) == 1


def test_transcript_pdf(client, world, headers_for, graded_attempt):
    resp = client.get(
        f"/api/teacher/attempts/{graded_attempt['attempt']}/transcript.pdf", headers=headers_for(world["teacher"])
    )
    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"
    assert resp.data.startswith(b"%PDF")


def test_delete_attempt_cascades(app, client, world, headers_for, graded_attempt):
    resp = client.delete(f"/api/teacher/attempts/{graded_attempt['attempt']}", headers=headers_for(world["teacher"]))
    assert resp.status_code == 200
    with app.app_context():
        assert db.session.query(Result).count() == 0
        assert db.session.query(Dispute).count() == 0
        assert db.session.query(DisputeMessage).count() == 0
        assert db.session.query(ConversationMessage).count() == 0


def test_dashboard_stats(client, world, headers_for, graded_attempt):
    stats = client.get("/api/teacher/dashboard/stats", headers=headers_for(world["teacher"])).get_json()["stats"]
    assert stats == {
        "totalAssessments": 1,
        "totalAttempts": 1,
        "completedAttempts": 1,
        "totalStudents": 1,
        "totalGroups": 1,
        "pendingDisputes": 1,
    }
    other = client.get("/api/teacher/dashboard/stats", headers=headers_for(world["other_teacher"])).get_json()["stats"]
    assert other["totalAssessments"] == 0
    assert other["pendingDisputes"] == 0
