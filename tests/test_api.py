import pytest
from fastapi.testclient import TestClient

from exam_awards.main import app, get_service


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    # no context manager: startup would build a service from the environment
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_submission_flow_over_http(client, store, seed):
    exam_id = seed.exam(title="Literature")
    q_mc, opts = seed.multiple_choice(exam_id=exam_id, max_points=5, correct_index=3)
    student = seed.student()
    headers = {"X-Student-Id": student}

    r = client.post(f"/api/exams/{exam_id}/start", headers=headers)
    assert r.status_code == 200
    attempt_id = r.json()["id"]

    r = client.post(
        f"/api/attempts/{attempt_id}/answers",
        json={"question_id": q_mc, "option_id": opts[3]},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json()["option_id"] == opts[3]

    r = client.post(f"/api/attempts/{attempt_id}/submit", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert (body["status"], body["score"], body["total_score"]) == ("COMPLETED", 5, 5)
    assert store.get_balance(student) == 10.0

    r = client.post(f"/api/students/{student}/prizes/check")
    assert r.status_code == 200
    assert r.json()["awarded"] == 0


def test_domain_errors_map_to_status_codes(client, seed):
    student = seed.student()
    headers = {"X-Student-Id": student}

    assert client.post("/api/exams/missing/start", headers=headers).status_code == 404
    draft = seed.exam(published_at=None)
    assert client.post(f"/api/exams/{draft}/start", headers=headers).status_code == 403
    assert client.post("/api/attempts/missing/submit", headers=headers).status_code == 404
    # header is required
    assert client.post(f"/api/exams/{draft}/start").status_code == 422


def test_manual_grade_endpoint(client, seed):
    exam_id = seed.exam()
    q_oe = seed.open_ended(exam_id=exam_id, max_points=4)
    student = seed.student()
    attempt_id = seed.attempt(exam_id, student, score=0, total_score=4)
    answer_id = seed.answer(attempt_id, q_oe, free_text="hmm")

    r = client.patch(f"/api/attempts/{attempt_id}/answers/{answer_id}/grade", json={"points": 9})
    assert r.status_code == 400

    r = client.patch(f"/api/attempts/{attempt_id}/answers/{answer_id}/grade", json={"points": 4})
    assert r.status_code == 200
    assert r.json() == {"answer_id": answer_id, "points": 4, "is_correct": True, "score": 4, "total_score": 4}


def test_award_and_expire_endpoints(client, seed):
    exam_id = seed.exam(published_at=None)
    r = client.post(f"/api/exams/{exam_id}/prizes")
    assert r.status_code == 200
    assert r.json()["outcome"] == "NOT_PUBLISHED"

    r = client.post("/api/attempts/expire")
    assert r.json() == {"timed_out": 0}


def test_result_and_attempt_list_endpoints(client, seed):
    exam_id = seed.exam(title="Art")
    q_mc, opts = seed.multiple_choice(exam_id=exam_id, max_points=2, correct_index=0)
    student = seed.student()
    headers = {"X-Student-Id": student}

    attempt_id = client.post(f"/api/exams/{exam_id}/start", headers=headers).json()["id"]
    assert client.get(f"/api/attempts/{attempt_id}/result", headers=headers).status_code == 400

    client.post(f"/api/attempts/{attempt_id}/answers", json={"question_id": q_mc, "option_id": opts[0]}, headers=headers)
    client.post(f"/api/attempts/{attempt_id}/submit", headers=headers)

    r = client.get(f"/api/attempts/{attempt_id}/result", headers=headers)
    assert r.status_code == 200
    assert r.json()["attempt"]["score"] == 2
    assert r.json()["exam_title"] == "Art"

    r = client.get("/api/attempts", headers=headers)
    assert [item["attempt"]["id"] for item in r.json()] == [attempt_id]
