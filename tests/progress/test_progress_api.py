"""HTTP tests for the progress endpoints."""

from uuid import uuid4


BASE = "/v1/progress"


def _enroll(client, headers, student_id, course):
    response = client.post(
        f"{BASE}/enroll",
        json={"student_id": str(student_id), "course_id": str(course.id)},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def _submit_c1(client, headers, student_id, catalog):
    progress = _enroll(client, headers, student_id, catalog.c1)
    client.put(
        f"{BASE}/{progress['id']}/sessions",
        json={"count": catalog.c1.required_sessions},
        headers=headers,
    )
    response = client.post(f"{BASE}/{progress['id']}/submit", headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["progress"]


class TestAuth:
    """Tests for the acting admin header."""

    def test_missing_admin_header_is_rejected(self, client, api_catalog):
        response = client.post(
            f"{BASE}/enroll",
            json={"student_id": str(uuid4()), "course_id": str(api_catalog.c1.id)},
        )

        assert response.status_code == 401

    def test_malformed_admin_header_is_rejected(self, client, api_catalog):
        response = client.post(
            f"{BASE}/enroll",
            json={"student_id": str(uuid4()), "course_id": str(api_catalog.c1.id)},
            headers={"X-Admin-ID": "not-a-uuid"},
        )

        assert response.status_code == 400


class TestProgressFlow:
    """End-to-end approval through the API."""

    def test_enroll_update_submit_approve(self, client, api_catalog, admin_headers, admin_id):
        student_id = uuid4()
        pending = _submit_c1(client, admin_headers, student_id, api_catalog)
        assert pending["status"] == "pending_approval"

        locked = _enroll(client, admin_headers, student_id, api_catalog.c2)
        assert locked["status"] == "locked"

        response = client.post(f"{BASE}/{pending['id']}/approve", headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["progress"]["status"] == "completed"
        assert body["progress"]["approved_by"] == str(admin_id)
        assert body["unlock"]["unlocked"] is True
        assert body["unlock"]["unlocked_course_id"] == str(api_catalog.c2.id)

        fetched = client.get(f"{BASE}/{student_id}/{api_catalog.c2.id}")
        assert fetched.json()["status"] == "not_started"

    def test_logs_are_newest_first(self, client, api_catalog, admin_headers):
        student_id = uuid4()
        _submit_c1(client, admin_headers, student_id, api_catalog)

        response = client.get(
            f"{BASE}/logs/{student_id}", params={"course_id": str(api_catalog.c1.id)}
        )

        assert response.status_code == 200
        actions = [item["action"] for item in response.json()["items"]]
        assert actions == ["submit_for_approval", "update_sessions"]

    def test_student_course_and_admin_queries(
        self, client, api_catalog, admin_headers, admin_id
    ):
        student_id = uuid4()
        pending = _submit_c1(client, admin_headers, student_id, api_catalog)
        locked = _enroll(client, admin_headers, student_id, api_catalog.c2)

        records = client.get(f"{BASE}/student/{student_id}")
        assert records.status_code == 200
        assert records.json()["total"] == 2
        assert {item["id"] for item in records.json()["items"]} == {
            pending["id"],
            locked["id"],
        }

        course_logs = client.get(f"{BASE}/logs/course/{api_catalog.c1.id}")
        assert course_logs.status_code == 200
        assert [item["action"] for item in course_logs.json()["items"]] == [
            "submit_for_approval",
            "update_sessions",
        ]

        admin_logs = client.get(f"{BASE}/logs/admin/{admin_id}")
        assert admin_logs.status_code == 200
        assert admin_logs.json()["total"] == 2

        unknown = client.get(f"{BASE}/logs/admin/{uuid4()}")
        assert unknown.json() == {"items": [], "total": 0}

    def test_pending_list_and_pass_condition(self, client, api_catalog, admin_headers):
        pending = _submit_c1(client, admin_headers, uuid4(), api_catalog)

        listed = client.get(f"{BASE}/pending", params={"course_id": str(api_catalog.c1.id)})
        assert [item["id"] for item in listed.json()["items"]] == [pending["id"]]

        condition = client.get(f"{BASE}/{pending['id']}/pass-condition")
        assert condition.status_code == 200
        assert condition.json()["is_met"] is True

    def test_project_links(self, client, api_catalog, admin_headers):
        student_id = uuid4()
        progress = _enroll(client, admin_headers, student_id, api_catalog.c1)

        added = client.post(
            f"{BASE}/{progress['id']}/links",
            json={"url": "https://example.com/p"},
            headers=admin_headers,
        )
        assert added.json()["project_links"] == ["https://example.com/p"]

        removed = client.delete(
            f"{BASE}/{progress['id']}/links",
            params={"url": "https://example.com/p"},
            headers=admin_headers,
        )
        assert removed.json()["project_links"] == []


class TestErrors:
    """Tests for error code mapping."""

    def test_invalid_url_is_422(self, client, api_catalog, admin_headers):
        progress = _enroll(client, admin_headers, uuid4(), api_catalog.c1)

        response = client.post(
            f"{BASE}/{progress['id']}/links",
            json={"url": "ftp://example.com/p"},
            headers=admin_headers,
        )

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_PROJECT_URL"

    def test_sessions_out_of_range_is_422(self, client, api_catalog, admin_headers):
        progress = _enroll(client, admin_headers, uuid4(), api_catalog.c1)

        response = client.put(
            f"{BASE}/{progress['id']}/sessions", json={"count": 99}, headers=admin_headers
        )

        assert response.status_code == 422
        assert response.json()["code"] == "SESSIONS_EXCEED_REQUIRED"

    def test_blank_rejection_reason_is_422(self, client, api_catalog, admin_headers):
        pending = _submit_c1(client, admin_headers, uuid4(), api_catalog)

        response = client.post(
            f"{BASE}/{pending['id']}/reject", json={"reason": "   "}, headers=admin_headers
        )

        assert response.status_code == 422
        assert response.json()["code"] == "REJECTION_REASON_REQUIRED"

    def test_approve_not_pending_is_409(self, client, api_catalog, admin_headers):
        progress = _enroll(client, admin_headers, uuid4(), api_catalog.c1)

        response = client.post(f"{BASE}/{progress['id']}/approve", headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "NOT_PENDING_APPROVAL"

    def test_double_approve_is_409(self, client, api_catalog, admin_headers):
        pending = _submit_c1(client, admin_headers, uuid4(), api_catalog)
        client.post(f"{BASE}/{pending['id']}/approve", headers=admin_headers)

        response = client.post(f"{BASE}/{pending['id']}/approve", headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_APPROVED"

    def test_duplicate_enrollment_is_409(self, client, api_catalog, admin_headers):
        student_id = uuid4()
        _enroll(client, admin_headers, student_id, api_catalog.c1)

        response = client.post(
            f"{BASE}/enroll",
            json={"student_id": str(student_id), "course_id": str(api_catalog.c1.id)},
            headers=admin_headers,
        )

        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_ENROLLED"

    def test_unknown_progress_is_404(self, client, api_catalog, admin_headers):
        response = client.post(f"{BASE}/{uuid4()}/submit", headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["code"] == "PROGRESS_NOT_FOUND"

    def test_unlock_past_last_semester_is_409(self, client, api_catalog, admin_headers):
        student_id = uuid4()
        progress = _enroll(client, admin_headers, student_id, api_catalog.c1)

        ok = client.post(
            f"{BASE}/{progress['id']}/unlock", json={"scope": "semester"}, headers=admin_headers
        )
        assert ok.status_code == 200
        assert ok.json()["unlocked_course_id"] == str(api_catalog.c4.id)

        opened = client.get(f"{BASE}/{student_id}/{api_catalog.c4.id}").json()
        response = client.post(
            f"{BASE}/{opened['id']}/unlock", json={"scope": "semester"}, headers=admin_headers
        )

        assert response.status_code == 409
        assert response.json()["code"] == "NO_NEXT_SEMESTER"
