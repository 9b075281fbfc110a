import csv
import io

import pytest
from fastapi.testclient import TestClient

from farms_cbt.database import get_db
from farms_cbt.main import app
from farms_cbt.routes.exam import get_registry, get_store, get_ticker_factory
from farms_cbt.services.registry import SessionRegistry
from farms_cbt.services.store import SqlExamStore

from conftest import ManualTicker

QUESTIONS = [
    {"subject": "Farm Machinery", "topic": "Tractors", "question": "Which part drives the rear wheels?",
     "question_type": "multiple_choice", "options": ["Differential", "Radiator", "Alternator"],
     "correct_answer": "Differential"},
    {"subject": "Farm Machinery", "topic": "Safety", "question": "Wear a seatbelt with a ROPS.",
     "question_type": "true_false", "correct_answer": "True"},
    {"subject": "Soil Science", "topic": "Nutrients", "question": "N in NPK stands for ____.",
     "question_type": "fill_blank", "correct_answer": "Nitrogen"},
    {"subject": "Soil Science", "topic": "pH", "question": "Lime lowers soil pH.",
     "question_type": "true_false", "correct_answer": "False"},
]

EXAM = {
    "title": "Agricultural Machinery NC II",
    "duration": 10,
    "total_questions": 3,
    "passing_score": 60,
    "subjects": ["Farm Machinery", "Soil Science"],
}


@pytest.fixture
def registry():
    return SessionRegistry(ttl=3600)


@pytest.fixture
def client(session_factory, registry):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_store] = lambda: SqlExamStore(session_factory)
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_ticker_factory] = lambda: ManualTicker
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def exam(client):
    for q in QUESTIONS:
        assert client.post("/api/admin/questions", json=q).status_code == 201
    response = client.post("/api/admin/exams", json=EXAM)
    assert response.status_code == 201
    return response.json()


def open_session(client, trainee_id="trainee-100"):
    response = client.post("/api/exam/sessions", json={
        "trainee_id": trainee_id, "trainee_name": "Ana Cruz", "trainee_email": "ana@example.com"})
    return response


def start(client, sid):
    assert client.post(f"/api/exam/sessions/{sid}/start/request").status_code == 200
    response = client.post(f"/api/exam/sessions/{sid}/start/confirm")
    assert response.status_code == 200
    return response.json()


def correct_answers():
    return {q["question"]: q["correct_answer"] for q in QUESTIONS}


# ── trainee flow ────────────────────────────────────────────

def test_no_exam_returns_404(client):
    assert open_session(client).status_code == 404


def test_full_exam_flow(client, exam):
    opened = open_session(client).json()
    assert opened["outcome"] == "ready"
    assert opened["status"] == "not_started"
    assert opened["exam"]["total_questions"] == 3
    assert opened["time_remaining_seconds"] == 600
    sid = opened["session_id"]

    assert client.post(f"/api/exam/sessions/{sid}/start/confirm").status_code == 422
    started = start(client, sid)
    assert started["status"] == "in_progress"
    assert started["attempt_id"]

    answers = correct_answers()
    for index in range(3):
        question = client.get(f"/api/exam/sessions/{sid}/questions/{index}").json()
        assert "correct_answer" not in question
        if index < 2:
            response = client.put(f"/api/exam/sessions/{sid}/answers/{question['id']}",
                                  json={"answer": answers[question["question"]]})
            assert response.status_code == 200

    moved = client.post(f"/api/exam/sessions/{sid}/navigate", json={"action": "next"}).json()
    assert moved["index"] == 1
    assert moved["saved_answer"]

    requested = client.post(f"/api/exam/sessions/{sid}/submit/request").json()
    assert requested["unanswered_count"] == 1
    assert requested["submit_requested"] is True

    submitted = client.post(f"/api/exam/sessions/{sid}/submit/confirm").json()
    assert submitted["status"] == "completed"
    result = submitted["result"]
    assert result["score"] == 67
    assert result["is_passed"] is True
    assert result["persisted"] is True
    assert result["correct_answers"] == 2
    assert result["unanswered"] == 1
    assert len(result["question_results"]) == 3

    # Stored results release the session; the record is authoritative now.
    assert client.get(f"/api/exam/sessions/{sid}").status_code == 404

    again = open_session(client).json()
    assert again["outcome"] == "already_taken"
    assert again["attempt"]["status"] == "completed"
    assert again["attempt"]["score"] == 67


def test_question_hidden_before_start(client, exam):
    sid = open_session(client).json()["session_id"]
    assert client.get(f"/api/exam/sessions/{sid}/questions/0").status_code == 422
    assert client.get(f"/api/exam/sessions/{sid}/result").status_code == 422


def test_pause_blocks_answers(client, exam):
    sid = open_session(client).json()["session_id"]
    state = start(client, sid)
    qid = state["question_ids"][0]

    paused = client.post(f"/api/exam/sessions/{sid}/pause").json()
    assert paused["status"] == "paused"
    response = client.put(f"/api/exam/sessions/{sid}/answers/{qid}", json={"answer": "x"})
    assert response.status_code == 422

    resumed = client.post(f"/api/exam/sessions/{sid}/pause").json()
    assert resumed["status"] == "in_progress"


def test_unknown_question_and_bad_jump(client, exam):
    sid = open_session(client).json()["session_id"]
    start(client, sid)

    response = client.put(f"/api/exam/sessions/{sid}/answers/nope", json={"answer": "x"})
    assert response.status_code == 404
    response = client.post(f"/api/exam/sessions/{sid}/navigate", json={"action": "jump", "index": 9})
    assert response.status_code == 422


def test_timer_expiry_through_registry(client, exam, registry):
    sid = open_session(client).json()["session_id"]
    start(client, sid)

    registry.get(sid).ticker.advance(600)

    state = client.get(f"/api/exam/sessions/{sid}").json()
    assert state["status"] == "completed"
    assert state["violation_reason"] == "time_expired"
    assert state["auto_submitted"] is True


def test_visibility_signal_submits(client, exam):
    sid = open_session(client).json()["session_id"]
    start(client, sid)

    body = client.post(f"/api/exam/sessions/{sid}/signals",
                       json={"type": "visibility", "hidden": True}).json()
    assert body["violation"] is True
    assert body["status"] == "completed"
    assert body["violation_reason"] == "visibility_change"


def test_signals_ignored_before_start(client, exam):
    sid = open_session(client).json()["session_id"]
    body = client.post(f"/api/exam/sessions/{sid}/signals",
                       json={"type": "key", "key": "F12"}).json()
    assert body["violation"] is False
    assert body["status"] == "not_started"


def test_dimension_signal_requires_all_values(client, exam):
    sid = open_session(client).json()["session_id"]
    response = client.post(f"/api/exam/sessions/{sid}/signals",
                           json={"type": "dimensions", "outer_width": 1200})
    assert response.status_code == 422


def test_second_session_cannot_start(client, exam, registry):
    first = open_session(client).json()["session_id"]
    second = open_session(client).json()["session_id"]
    start(client, first)

    client.post(f"/api/exam/sessions/{second}/start/request")
    response = client.post(f"/api/exam/sessions/{second}/start/confirm")
    assert response.status_code == 409
    assert registry.get(second) is None


def test_hidden_breakdown(client, exam):
    client.patch(f"/api/admin/exams/{exam['id']}/status", json={"is_active": False})
    hidden = client.post("/api/admin/exams", json=dict(EXAM, title="Hidden", show_results=False)).json()
    assert hidden["show_results"] is False

    sid = open_session(client).json()["session_id"]
    start(client, sid)
    client.post(f"/api/exam/sessions/{sid}/submit/request")
    result = client.post(f"/api/exam/sessions/{sid}/submit/confirm").json()["result"]
    assert "score" in result
    assert "question_results" not in result


# ── admin ───────────────────────────────────────────────────

def test_question_validation(client):
    bad = dict(QUESTIONS[0], correct_answer="Piston")
    assert client.post("/api/admin/questions", json=bad).status_code == 422
    assert client.post("/api/admin/questions", json=dict(QUESTIONS[0], question_type="essay")).status_code == 422

    tf = client.post("/api/admin/questions", json=QUESTIONS[1]).json()
    assert tf["options"] == ["True", "False"]


def test_question_update_and_delete(client):
    created = client.post("/api/admin/questions", json=QUESTIONS[0]).json()
    updated = client.put(f"/api/admin/questions/{created['id']}",
                         json=dict(QUESTIONS[0], is_active=False)).json()
    assert updated["is_active"] is False

    listing = client.get("/api/admin/questions", params={"active": True}).json()
    assert listing["total"] == 0

    assert client.delete(f"/api/admin/questions/{created['id']}").status_code == 200
    assert client.delete(f"/api/admin/questions/{created['id']}").status_code == 404


def test_exam_needs_enough_questions(client):
    client.post("/api/admin/questions", json=QUESTIONS[0])
    assert client.post("/api/admin/exams", json=EXAM).status_code == 422
    assert client.post("/api/admin/exams", json=dict(EXAM, subjects=["Irrigation"])).status_code == 422


def test_publishing_takes_other_exams_offline(client, exam):
    second = client.post("/api/admin/exams", json=dict(EXAM, title="Retake window")).json()
    exams = {e["id"]: e for e in client.get("/api/admin/exams").json()["data"]}
    assert exams[second["id"]]["is_active"] is True
    assert exams[exam["id"]]["is_active"] is False

    client.patch(f"/api/admin/exams/{exam['id']}/status", json={"is_active": True})
    exams = {e["id"]: e for e in client.get("/api/admin/exams").json()["data"]}
    assert exams[exam["id"]]["is_active"] is True
    assert exams[second["id"]]["is_active"] is False


def test_attempt_listing_and_csv(client, exam):
    sid = open_session(client).json()["session_id"]
    start(client, sid)
    client.post(f"/api/exam/sessions/{sid}/signals", json={"type": "context_menu"})

    listing = client.get(f"/api/admin/exams/{exam['id']}/attempts").json()
    assert listing["pagination"]["total"] == 1
    assert listing["summary"]["completed"] == 1
    assert listing["summary"]["auto_submitted"] == 1
    assert listing["data"][0]["violation_reason"] == "context_menu"

    response = client.get(f"/api/admin/exams/{exam['id']}/results.csv")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0][0] == "Student Name"
    assert rows[1][0] == "Ana Cruz"
    assert rows[1][4] == "0%"
    assert rows[1][9] == "context_menu"


def test_abandon_stale_stub(client, exam):
    sid = open_session(client).json()["session_id"]
    attempt_id = start(client, sid)["attempt_id"]

    abandoned = client.post(f"/api/admin/attempts/{attempt_id}/abandon")
    assert abandoned.status_code == 200
    assert abandoned.json()["status"] == "abandoned"
    assert client.post(f"/api/admin/attempts/{attempt_id}/abandon").status_code == 409

    again = open_session(client).json()
    assert again["outcome"] == "already_taken"
    assert again["attempt"]["status"] == "abandoned"


def test_health(client):
    response = client.get("/health", headers={"X-Request-ID": "req-1"})
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Request-ID"] == "req-1"
