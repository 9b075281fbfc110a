"""
Trainee exam API routes - the HTTP surface over the exam session.

Provides endpoints for:
- Loading the active exam (or the prior result when already taken)
- Two-step start, pause/resume and two-step submit
- Answering and navigating questions
- Receiving integrity signals from the exam page
- Reading the result and retrying a failed result write

The handlers are `async def` so every session mutation runs on the event
loop, the same thread that fires the countdown ticks.
Result writes run as background tasks; handlers that report a result
await the pending write first.
"""

import random
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from farms_cbt.database import SessionLocal
from farms_cbt.services.errors import (
    AttemptAlreadyExists, AttemptCompleted, CBTError, InsufficientQuestions,
    InvalidNavigation, InvalidTransition, NoExamAvailable, NoQuestionsForSubjects,
    StubCreationFailed, UnknownQuestion
)
from farms_cbt.services.gateway import AttemptGateway
from farms_cbt.services.loader import AlreadyTaken, ExamLoader
from farms_cbt.services.registry import SessionRegistry
from farms_cbt.services.scoring import subject_scores
from farms_cbt.services.session import AttemptStatus, ExamSession, Trainee
from farms_cbt.services.store import ExamStore, SqlExamStore
from farms_cbt.services.timer import AsyncioTicker, Ticker
from farms_cbt.logging_config import get_logger, log_with_context

router = APIRouter()
logger = get_logger("http")

_registry = SessionRegistry()


# ── Dependencies (overridden in tests) ──────────────────────

def get_store() -> ExamStore:
    return SqlExamStore(SessionLocal)


def get_registry() -> SessionRegistry:
    return _registry


def get_ticker_factory() -> Callable[[], Ticker]:
    return AsyncioTicker


def get_rng() -> Optional[random.Random]:
    return None


# ── Pydantic schemas ─────────────────────────────────────────

class LoadRequest(BaseModel):
    """Identity of the trainee opening the exam page."""
    trainee_id: str = Field(..., min_length=1)
    trainee_name: str = ""
    trainee_email: str = ""


class AnswerRequest(BaseModel):
    answer: str


class NavigateRequest(BaseModel):
    action: str = Field(..., pattern="^(next|previous|jump)$")
    index: Optional[int] = None


class SignalRequest(BaseModel):
    """A browser-side observation forwarded by the exam page."""
    type: str = Field(..., pattern="^(visibility|key|context_menu|dimensions)$")
    hidden: Optional[bool] = None
    key: Optional[str] = None
    ctrl: bool = False
    shift: bool = False
    alt: bool = False
    meta: bool = False
    outer_width: Optional[int] = None
    outer_height: Optional[int] = None
    inner_width: Optional[int] = None
    inner_height: Optional[int] = None


# ── Helpers ──────────────────────────────────────────────────

def _http_error(exc: CBTError) -> HTTPException:
    """Translate a service error into the matching HTTP status."""
    if isinstance(exc, NoExamAvailable):
        return HTTPException(status_code=404, detail=str(exc) or "No exam available")
    if isinstance(exc, (NoQuestionsForSubjects, InsufficientQuestions)):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, AttemptAlreadyExists):
        return HTTPException(status_code=409, detail="You have already taken this exam")
    if isinstance(exc, AttemptCompleted):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, StubCreationFailed):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, UnknownQuestion):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidTransition, InvalidNavigation)):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _get_session(sid: str, registry: SessionRegistry) -> ExamSession:
    session = registry.get(sid)
    if session is None:
        raise HTTPException(status_code=404, detail="Exam session not found")
    return session


def _question_to_dict(session: ExamSession, index: int) -> dict:
    """Question payload for the trainee; the correct answer is never sent."""
    q = session.questions[index]
    return {
        "id": q.id,
        "index": index,
        "total": session.question_count,
        "subject": q.subject,
        "topic": q.topic,
        "question": q.question,
        "question_type": q.question_type,
        "options": list(q.options),
        "difficulty": q.difficulty,
        "saved_answer": session.state.answers.get(q.id, ""),
    }


def serialize_result(session: ExamSession) -> Optional[dict]:
    if session.result is None:
        return None
    r = session.result
    data = {
        "score": r.breakdown.percentage,
        "is_passed": r.is_passed,
        "passing_score": session.exam.passing_score,
        "time_spent": r.time_spent_minutes,
        "auto_submitted": r.auto_submitted,
        "violation_reason": r.violation_reason,
        "persisted": session.persisted,
        "persistence_error": session.persistence_error,
    }
    if session.exam.show_results:
        data.update({
            "correct_answers": r.breakdown.correct,
            "wrong_answers": r.breakdown.wrong,
            "unanswered": r.breakdown.unanswered,
            "total_questions": r.breakdown.total_questions,
            "subject_scores": subject_scores(r.breakdown),
            "question_results": [
                {
                    "question_id": qr.question_id,
                    "question": qr.question,
                    "question_type": qr.question_type,
                    "user_answer": qr.user_answer if qr.answered else "Not answered",
                    "correct_answer": qr.correct_answer,
                    "is_correct": qr.is_correct,
                }
                for qr in r.breakdown.question_results
            ],
        })
    return data


def serialize_session(sid: str, session: ExamSession) -> dict:
    state = session.state
    return {
        "session_id": sid,
        "attempt_id": state.attempt_id,
        "status": state.status.value,
        "exam": {
            "id": session.exam.id,
            "title": session.exam.title,
            "description": session.exam.description,
            "duration": session.exam.duration,
            "passing_score": session.exam.passing_score,
            "total_questions": session.question_count,
        },
        "current_index": state.current_index,
        "time_remaining_seconds": state.time_remaining_seconds,
        "answered_count": len(state.answers),
        "answers": dict(state.answers),
        "question_ids": [q.id for q in session.questions],
        "start_requested": session.start_requested,
        "submit_requested": session.submit_requested,
        "started_at": state.started_at.isoformat() if state.started_at else None,
        "ended_at": state.ended_at.isoformat() if state.ended_at else None,
        "auto_submitted": state.auto_submitted,
        "violation_reason": state.violation_reason,
        "result": serialize_result(session),
    }


def _respond(sid: str, session: ExamSession, registry: SessionRegistry) -> dict:
    """Serialize the session; a completed, stored session is released afterwards."""
    body = serialize_session(sid, session)
    registry.release_if_persisted(sid)
    return body


# ── Endpoints ────────────────────────────────────────────────

@router.post("/api/exam/sessions")
async def open_session(
    request: LoadRequest,
    store: ExamStore = Depends(get_store),
    registry: SessionRegistry = Depends(get_registry),
    ticker_factory: Callable[[], Ticker] = Depends(get_ticker_factory),
    rng: Optional[random.Random] = Depends(get_rng),
):
    """Load the active exam for a trainee, or their prior result."""
    try:
        loaded = ExamLoader(store, rng=rng).load(request.trainee_id)
    except CBTError as exc:
        raise _http_error(exc)

    if isinstance(loaded, AlreadyTaken):
        return {
            "outcome": "already_taken",
            "attempt": loaded.record.to_dict() if loaded.record else None,
        }

    session = ExamSession(
        loaded,
        Trainee(request.trainee_id, request.trainee_name, request.trainee_email),
        AttemptGateway(store),
        ticker_factory(),
    )
    sid = registry.add(session)

    log_with_context(logger, "INFO", "Exam session opened",
        context={"session_id": sid, "exam_id": loaded.exam.id, "trainee_id": request.trainee_id},
        extra_data={"questions": session.question_count})
    return {"outcome": "ready", **serialize_session(sid, session)}


@router.get("/api/exam/sessions/{sid}")
async def get_session_state(sid: str, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    return _respond(sid, session, registry)


@router.get("/api/exam/sessions/{sid}/questions/{index}")
async def get_question(sid: str, index: int, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    if session.status != AttemptStatus.IN_PROGRESS:
        raise HTTPException(status_code=422, detail="Questions are only shown while the exam is running")
    if not 0 <= index < session.question_count:
        raise HTTPException(status_code=404, detail="Question not found")
    return _question_to_dict(session, index)


@router.post("/api/exam/sessions/{sid}/start/request")
async def request_start(sid: str, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    try:
        session.request_start()
    except CBTError as exc:
        raise _http_error(exc)
    return serialize_session(sid, session)


@router.post("/api/exam/sessions/{sid}/start/cancel")
async def cancel_start(sid: str, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    try:
        session.cancel_start()
    except CBTError as exc:
        raise _http_error(exc)
    return serialize_session(sid, session)


@router.post("/api/exam/sessions/{sid}/start/confirm")
async def confirm_start(sid: str, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    try:
        session.confirm_start()
    except AttemptAlreadyExists as exc:
        registry.discard(sid)
        raise _http_error(exc)
    except CBTError as exc:
        raise _http_error(exc)
    return serialize_session(sid, session)


@router.post("/api/exam/sessions/{sid}/pause")
async def pause_exam(sid: str, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    try:
        session.toggle_pause()
    except CBTError as exc:
        raise _http_error(exc)
    return serialize_session(sid, session)


@router.put("/api/exam/sessions/{sid}/answers/{question_id}")
async def save_answer(sid: str, question_id: str, request: AnswerRequest,
                      registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    try:
        session.set_answer(question_id, request.answer)
    except CBTError as exc:
        raise _http_error(exc)
    return {"ok": True, "answered_count": len(session.state.answers)}


@router.delete("/api/exam/sessions/{sid}/answers/{question_id}")
async def clear_answer(sid: str, question_id: str,
                       registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    try:
        session.clear_answer(question_id)
    except CBTError as exc:
        raise _http_error(exc)
    return {"ok": True, "answered_count": len(session.state.answers)}


@router.post("/api/exam/sessions/{sid}/navigate")
async def navigate(sid: str, request: NavigateRequest,
                   registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    try:
        if request.action == "next":
            index = session.next()
        elif request.action == "previous":
            index = session.previous()
        else:
            if request.index is None:
                raise HTTPException(status_code=422, detail="index is required for jump")
            index = session.jump_to(request.index)
    except CBTError as exc:
        raise _http_error(exc)
    return _question_to_dict(session, index)


@router.post("/api/exam/sessions/{sid}/submit/request")
async def request_submit(sid: str, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    try:
        session.request_submit()
    except CBTError as exc:
        raise _http_error(exc)
    unanswered = session.question_count - len(session.state.answers)
    return {**serialize_session(sid, session), "unanswered_count": unanswered}


@router.post("/api/exam/sessions/{sid}/submit/cancel")
async def cancel_submit(sid: str, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    try:
        session.cancel_submit()
    except CBTError as exc:
        raise _http_error(exc)
    return serialize_session(sid, session)


@router.post("/api/exam/sessions/{sid}/submit/confirm")
async def confirm_submit(sid: str, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    try:
        session.confirm_submit()
    except CBTError as exc:
        raise _http_error(exc)
    await session.flush()
    return _respond(sid, session, registry)


@router.post("/api/exam/sessions/{sid}/signals")
async def report_signal(sid: str, request: SignalRequest,
                        registry: SessionRegistry = Depends(get_registry)):
    """Feed one browser signal to the integrity monitor."""
    session = _get_session(sid, registry)
    monitor = session.monitor

    if request.type == "visibility":
        fired = monitor.visibility_changed(bool(request.hidden))
    elif request.type == "key":
        if not request.key:
            raise HTTPException(status_code=422, detail="key is required")
        fired = monitor.key_pressed(request.key, ctrl=request.ctrl, shift=request.shift,
                                    alt=request.alt, meta=request.meta)
    elif request.type == "context_menu":
        fired = monitor.context_menu()
    else:
        dims = (request.outer_width, request.outer_height,
                request.inner_width, request.inner_height)
        if any(d is None for d in dims):
            raise HTTPException(status_code=422, detail="all four window dimensions are required")
        fired = monitor.window_dimensions(*dims)

    if fired:
        await session.flush()

    return {"violation": fired, **_respond(sid, session, registry)}


@router.get("/api/exam/sessions/{sid}/result")
async def get_result(sid: str, registry: SessionRegistry = Depends(get_registry)):
    session = _get_session(sid, registry)
    try:
        session.results()
    except CBTError as exc:
        raise _http_error(exc)
    result = serialize_result(session)
    registry.release_if_persisted(sid)
    return result


@router.post("/api/exam/sessions/{sid}/finalize/retry")
async def retry_finalize(sid: str, registry: SessionRegistry = Depends(get_registry)):
    """Retry writing a result whose first write failed."""
    session = _get_session(sid, registry)
    try:
        session.retry_persist()
    except CBTError as exc:
        raise _http_error(exc)
    stored = await session.flush()
    if not stored:
        raise HTTPException(status_code=503, detail=session.persistence_error or "Result not saved")
    return _respond(sid, session, registry)
