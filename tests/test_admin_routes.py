import pytest

from extensions import db
from models import Group, Institution, Skill, SkillLevel, User


def _institution_payload(name="East College"):
    return {"name": name, "contact_name": "Eve", "contact_email": "eve@east.test"}


def test_admin_creates_institution(client, world, headers_for):
    resp = client.post("/api/admin/institutions", json=_institution_payload(), headers=headers_for(world["admin"]))
    assert resp.status_code == 201
    assert resp.get_json()["institution"]["name"] == "East College"


def test_institution_contact_email_is_validated(client, world, headers_for):
    payload = _institution_payload()
    payload["contact_email"] = "not-an-email"
    resp = client.post("/api/admin/institutions", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "contact_email"


def test_duplicate_institution_name_conflicts(client, world, headers_for):
    resp = client.post(
        "/api/admin/institutions", json=_institution_payload("North College"), headers=headers_for(world["admin"])
    )
    assert resp.status_code == 409


def test_clerk_cannot_create_institution(client, world, headers_for):
    resp = client.post("/api/admin/institutions", json=_institution_payload(), headers=headers_for(world["clerk"]))
    assert resp.status_code == 403


def test_delete_institution_refused_while_referenced(app, client, world, headers_for):
    resp = client.delete(f"/api/admin/institutions/{world['south']}", headers=headers_for(world["admin"]))
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Cannot delete institution with associated users"
    with app.app_context():
        assert db.session.get(Institution, world["south"]) is not None


def test_delete_empty_institution(app, client, world, headers_for):
    created = client.post(
        "/api/admin/institutions", json=_institution_payload(), headers=headers_for(world["admin"])
    ).get_json()["institution"]
    resp = client.delete(f"/api/admin/institutions/{created['id']}", headers=headers_for(world["admin"]))
    assert resp.status_code == 200
    with app.app_context():
        assert db.session.get(Institution, created["id"]) is None


def test_level_settings_template_governs_skill_levels(client, world, headers_for):
    headers = headers_for(world["admin"])
    template = {
        "levels": [
            {"order": 1, "label": "Beginning", "description": "Starts"},
            {"order": 2, "label": "Proficient", "description": "Solid"},
        ]
    }
    resp = client.put(f"/api/admin/institutions/{world['north']}/level-settings", json=template, headers=headers)
    assert resp.status_code == 200
    assert [row["label"] for row in resp.get_json()["levels"]] == ["Beginning", "Proficient"]

    skill = client.post(
        "/api/admin/skills",
        json={"institution_id": world["north"], "domain_id": world["domain"], "name": "Listening", "description": "Hears"},
        headers=headers,
    ).get_json()["skill"]

    wrong = {"levels": [{"order": 1, "label": "Low", "description": "x"}]}
    assert client.post(f"/api/admin/skills/{skill['id']}/levels", json=wrong, headers=headers).status_code == 400

    right = client.post(f"/api/admin/skills/{skill['id']}/levels", json=template, headers=headers)
    assert right.status_code == 200
    assert [row["order"] for row in right.get_json()["levels"]] == [1, 2]


def test_admin_creates_user_in_institution(client, world, headers_for):
    payload = {
        "email": "New.Teacher@North.test",
        "given_name": "Nia",
        "family_name": "New",
        "role": "teacher",
        "institution_id": world["north"],
        "password": "secret1",
    }
    resp = client.post("/api/admin/users", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 201
    user = resp.get_json()["user"]
    assert user["email"] == "new.teacher@north.test"
    assert user["institution_name"] == "North College"


def test_user_email_must_be_unique(client, world, headers_for):
    payload = {
        "email": "teacher@north.test",
        "given_name": "Dup",
        "family_name": "Licate",
        "role": "teacher",
        "institution_id": world["north"],
        "password": "secret1",
    }
    resp = client.post("/api/admin/users", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 409


def test_user_create_requires_password(client, world, headers_for):
    payload = {
        "email": "nopass@north.test",
        "given_name": "No",
        "family_name": "Pass",
        "role": "student",
        "institution_id": world["north"],
    }
    resp = client.post("/api/admin/users", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "password"


def test_clerk_cannot_create_admin(client, world, headers_for):
    payload = {
        "email": "boss@north.test",
        "given_name": "Big",
        "family_name": "Boss",
        "role": "admin",
        "password": "secret1",
    }
    resp = client.post("/api/admin/users", json=payload, headers=headers_for(world["clerk"]))
    assert resp.status_code == 403


def test_clerk_cannot_place_user_in_other_institution(client, world, headers_for):
    payload = {
        "email": "moved@north.test",
        "given_name": "Mo",
        "family_name": "Ved",
        "role": "student",
        "institution_id": world["south"],
        "password": "secret1",
    }
    resp = client.post("/api/admin/users", json=payload, headers=headers_for(world["clerk"]))
    assert resp.status_code == 403


def test_user_search_escapes_wildcards(client, world, headers_for):
    headers = headers_for(world["admin"])
    resp = client.get("/api/admin/users?search=Stella", headers=headers)
    assert [u["email"] for u in resp.get_json()["users"]] == ["student@north.test"]
    resp = client.get("/api/admin/users?search=%25", headers=headers)
    assert resp.get_json()["users"] == []


def test_admin_cannot_delete_self(client, world, headers_for):
    resp = client.delete(f"/api/admin/users/{world['admin']}", headers=headers_for(world["admin"]))
    assert resp.status_code == 409


def test_delete_user_removes_memberships(app, client, world, headers_for):
    headers = headers_for(world["admin"])
    client.post(f"/api/admin/groups/{world['group']}/members", json={"user_id": world["other_teacher"]}, headers=headers)
    resp = client.delete(f"/api/admin/users/{world['other_teacher']}", headers=headers)
    assert resp.status_code == 200
    with app.app_context():
        assert db.session.get(User, world["other_teacher"]) is None
        group = db.session.get(Group, world["group"])
        assert [member.id for member in group.members] == [world["student"]]


def test_groups_list_member_counts(client, world, headers_for):
    resp = client.get("/api/admin/groups", headers=headers_for(world["admin"]))
    groups = resp.get_json()["groups"]
    assert [(g["name"], g["member_count"]) for g in groups] == [("Class A", 1)]


def test_group_member_must_share_institution(client, world, headers_for):
    resp = client.post(
        f"/api/admin/groups/{world['group']}/members",
        json={"user_id": world["south_student"]},
        headers=headers_for(world["admin"]),
    )
    assert resp.status_code == 400


def test_group_member_added_once(client, world, headers_for):
    resp = client.post(
        f"/api/admin/groups/{world['group']}/members",
        json={"user_id": world["student"]},
        headers=headers_for(world["admin"]),
    )
    assert resp.status_code == 409


def test_user_groups_listing(client, world, headers_for):
    resp = client.get(f"/api/admin/users/{world['student']}/groups", headers=headers_for(world["clerk"]))
    assert resp.status_code == 200
    assert [g["id"] for g in resp.get_json()["groups"]] == [world["group"]]


def test_domain_with_skills_cannot_be_deleted(client, world, headers_for):
    resp = client.delete(f"/api/admin/domains/{world['domain']}", headers=headers_for(world["admin"]))
    assert resp.status_code == 409


def test_domains_list_skills_count(client, world, headers_for):
    resp = client.get("/api/admin/domains", headers=headers_for(world["clerk"]))
    assert [(d["name"], d["skills_count"]) for d in resp.get_json()["domains"]] == [("Communication", 1)]


def test_duplicate_skill_name_in_domain_conflicts(app, client, world, headers_for):
    payload = {
        "institution_id": world["north"],
        "domain_id": world["domain"],
        "name": "Argumentation",
        "description": "Again",
    }
    resp = client.post("/api/admin/skills", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "A skill with this name already exists in this domain."
    with app.app_context():
        assert db.session.query(Skill).count() == 1


def test_skill_requires_existing_domain(client, world, headers_for):
    payload = {"institution_id": world["north"], "domain_id": 9999, "name": "Ghost", "description": "None"}
    resp = client.post("/api/admin/skills", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "domain_id"


def test_skill_with_levels_cannot_be_deleted(client, world, headers_for):
    resp = client.delete(f"/api/admin/skills/{world['skill']}", headers=headers_for(world["admin"]))
    assert resp.status_code == 409


def test_replace_levels_is_all_or_nothing(app, client, world, headers_for):
    payload = {
        "levels": [
            {"order": 1, "label": "Low", "description": "a"},
            {"order": 1, "label": "High", "description": "b"},
        ]
    }
    resp = client.post(f"/api/admin/skills/{world['skill']}/levels", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 400
    with app.app_context():
        labels = [lvl.label for lvl in db.session.query(SkillLevel).order_by(SkillLevel.order)]
    assert labels == ["Novice", "Competent", "Expert"]


def _assessment_payload(world, **overrides):
    payload = {
        "institution_id": world["north"],
        "teacher_id": world["teacher"],
        "name": "Essay case",
        "description": "Write an essay",
        "difficulty_level": "Basic",
        "educational_level": "Secondary",
        "output_language": "es",
        "evaluation_context": "Essay writing",
        "case_text": "Describe your city.",
        "questions_per_skill": 1,
        "available_from": "2026-01-01T00:00:00Z",
        "available_until": "2026-12-31T23:59:00Z",
        "dispute_period": 5,
        "skill_ids": [world["skill"]],
    }
    payload.update(overrides)
    return payload


def test_admin_creates_assessment(client, world, headers_for):
    resp = client.post("/api/admin/assessments", json=_assessment_payload(world), headers=headers_for(world["admin"]))
    assert resp.status_code == 201
    assessment = resp.get_json()["assessment"]
    assert assessment["teacher_id"] == world["teacher"]
    assert [skill["id"] for skill in assessment["skills"]] == [world["skill"]]


def test_assessment_window_must_be_ordered(client, world, headers_for):
    payload = _assessment_payload(world, available_until="2025-12-31T00:00:00Z")
    resp = client.post("/api/admin/assessments", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "available_until"


def test_assessment_dispute_period_minimum(client, world, headers_for):
    payload = _assessment_payload(world, dispute_period=1)
    resp = client.post("/api/admin/assessments", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "dispute_period"


def test_assessment_list_is_paginated(client, world, headers_for):
    headers = headers_for(world["admin"])
    for index in range(3):
        client.post("/api/admin/assessments", json=_assessment_payload(world, name=f"Case {index}"), headers=headers)
    resp = client.get("/api/admin/assessments?page=2&limit=2", headers=headers)
    body = resp.get_json()
    assert body["total"] == 4
    assert body["totalPages"] == 2
    assert body["currentPage"] == 2
    assert len(body["assessments"]) == 2


def test_assessment_groups_must_share_institution(app, client, world, headers_for):
    with app.app_context():
        group = Group(name="South class", institution_id=world["south"])
        db.session.add(group)
        db.session.commit()
        south_group = group.id
    resp = client.put(
        f"/api/admin/assessments/{world['assessment']}/groups",
        json={"group_ids": [south_group]},
        headers=headers_for(world["admin"]),
    )
    assert resp.status_code == 400


def test_attempt_listing_filters_by_assessment(client, world, headers_for):
    student_headers = headers_for(world["student"])
    client.post(f"/api/student/assessments/{world['assessment']}/attempt", headers=student_headers)
    resp = client.get(
        f"/api/admin/attempts?assessment_id={world['assessment']}&search=stella", headers=headers_for(world["clerk"])
    )
    body = resp.get_json()
    assert body["total"] == 1
    assert body["attempts"][0]["student_email"] == "student@north.test"
    by_assessment = client.get(f"/api/admin/attempts/assessment/{world['assessment']}", headers=headers_for(world["admin"]))
    assert len(by_assessment.get_json()["attempts"]) == 1


def test_institution_requires_contact_email(app, client, world, headers_for):
    payload = _institution_payload()
    del payload["contact_email"]
    resp = client.post("/api/admin/institutions", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "contact_email"
    with app.app_context():
        assert db.session.query(Institution).count() == 2


def _user_payload(world, **overrides):
    payload = {
        "email": "student@north.test",
        "given_name": "Stella",
        "family_name": "Tester",
        "role": "student",
        "institution_id": world["south"],
    }
    payload.update(overrides)
    return payload


def test_user_with_memberships_cannot_change_institution(app, client, world, headers_for):
    resp = client.put(
        f"/api/admin/users/{world['student']}", json=_user_payload(world), headers=headers_for(world["admin"])
    )
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Cannot move a user with group memberships to another institution"
    with app.app_context():
        student = db.session.get(User, world["student"])
        assert student.institution_id == world["north"]
        assert [g.id for g in student.groups] == [world["group"]]


def test_user_without_memberships_can_change_institution(app, client, world, headers_for):
    headers = headers_for(world["admin"])
    client.delete(f"/api/admin/groups/{world['group']}/members/{world['student']}", headers=headers)
    resp = client.put(f"/api/admin/users/{world['student']}", json=_user_payload(world), headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["user"]["institution_name"] == "South College"


def test_group_assigned_to_assessment_cannot_change_institution(app, client, world, headers_for):
    headers = headers_for(world["admin"])
    created = client.post(
        "/api/admin/groups", json={"name": "Class B", "institution_id": world["north"]}, headers=headers
    ).get_json()["group"]
    assigned = client.put(
        f"/api/admin/assessments/{world['assessment']}/groups",
        json={"group_ids": [world["group"], created["id"]]},
        headers=headers,
    )
    assert assigned.status_code == 200

    resp = client.put(
        f"/api/admin/groups/{created['id']}",
        json={"name": "Class B", "institution_id": world["south"]},
        headers=headers,
    )
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Cannot move a group assigned to assessments to another institution"
    with app.app_context():
        assert db.session.get(Group, created["id"]).institution_id == world["north"]


def test_skill_used_by_assessment_cannot_change_institution(app, client, world, headers_for):
    from models import Assessment, Domain

    with app.app_context():
        shared = Domain(name="Shared thinking", description="Available to every institution")
        skill = Skill(institution_id=world["north"], domain=shared, name="Reasoning", description="Draws conclusions")
        skill.levels = [SkillLevel(order=1, label="Basic", description="Starts")]
        db.session.add_all([shared, skill])
        db.session.get(Assessment, world["assessment"]).skills.append(skill)
        db.session.commit()
        skill_id, domain_id = skill.id, shared.id

    payload = {"institution_id": world["south"], "domain_id": domain_id, "name": "Reasoning", "description": "Moved"}
    resp = client.put(f"/api/admin/skills/{skill_id}", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Cannot move a skill used by assessments to another institution"
    with app.app_context():
        assert db.session.get(Skill, skill_id).institution_id == world["north"]


def test_unused_skill_in_shared_domain_can_change_institution(app, client, world, headers_for):
    from models import Domain

    with app.app_context():
        shared = Domain(name="Shared thinking", description="Available to every institution")
        skill = Skill(institution_id=world["north"], domain=shared, name="Reasoning", description="Draws conclusions")
        db.session.add_all([shared, skill])
        db.session.commit()
        skill_id, domain_id = skill.id, shared.id

    payload = {"institution_id": world["south"], "domain_id": domain_id, "name": "Reasoning", "description": "Moved"}
    resp = client.put(f"/api/admin/skills/{skill_id}", json=payload, headers=headers_for(world["admin"]))
    assert resp.status_code == 200
    assert resp.get_json()["skill"]["institution_id"] == world["south"]


@pytest.mark.parametrize("body", [[{"order": 1, "label": "Low"}], 5, "levels"])
def test_level_body_must_be_an_object(client, world, headers_for, body):
    resp = client.post(f"/api/admin/skills/{world['skill']}/levels", json=body, headers=headers_for(world["admin"]))
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Request body must be a JSON object"


def test_form_body_must_be_an_object(app, client, world, headers_for):
    resp = client.post("/api/admin/institutions", json=["East College"], headers=headers_for(world["admin"]))
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Request body must be a JSON object"
    with app.app_context():
        assert db.session.query(Institution).count() == 2
