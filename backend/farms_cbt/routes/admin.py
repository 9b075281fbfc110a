"""
Admin API routes - question bank, exam setup and attempt records.

Provides endpoints for:
- Creating, listing, updating and deleting questions
- Creating exams and publishing/unpublishing them (one exam is live at a time)
- Listing an exam's attempts with pagination and exporting them as CSV
- Closing a stale in-progress attempt as abandoned
"""

import csv
import io
import json
import time
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from farms_cbt.database import get_db
from farms_cbt.models.attempt import CBTExamAttempt
from farms_cbt.models.exam import CBTExam
from farms_cbt.models.question import CBTQuestion, DIFFICULTIES, QUESTION_TYPES
from farms_cbt.services.snapshots import AttemptRecord
from farms_cbt.logging_config import get_logger, log_with_context

router = APIRouter()
logger = get_logger("http")
db_logger = get_logger("db")


# ── Pydantic schemas ─────────────────────────────────────────

class QuestionRequest(BaseModel):
    """Schema for creating or replacing a bank question."""
    subject: str = Field(..., min_length=1)
    topic: str = ""
    question: str = Field(..., min_length=1)
    question_type: str = "multiple_choice"
    options: List[str] = Field(default_factory=list)
    correct_answer: str = Field(..., min_length=1)
    difficulty: str = "medium"
    is_active: bool = True

    @model_validator(mode="after")
    def validate_shape(self) -> "QuestionRequest":
        if self.question_type not in QUESTION_TYPES:
            raise ValueError("question_type must be one of {}".format(", ".join(QUESTION_TYPES)))
        if self.difficulty not in DIFFICULTIES:
            raise ValueError("difficulty must be one of {}".format(", ".join(DIFFICULTIES)))
        if self.question_type == "true_false" and not self.options:
            self.options = ["True", "False"]
        if self.question_type == "fill_blank":
            self.options = []
        else:
            if len(self.options) < 2:
                raise ValueError("options needs at least 2 entries")
            if self.correct_answer.strip() not in [o.strip() for o in self.options]:
                raise ValueError("correct_answer ('{}') is not one of the options".format(self.correct_answer))
        return self


class ExamRequest(BaseModel):
    """Schema for creating an exam."""
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    duration: int = Field(..., ge=1, description="Minutes")
    total_questions: int = Field(..., ge=1)
    passing_score: int = Field(60, ge=0, le=100)
    subjects: List[str] = Field(..., min_length=1)
    randomization: bool = False
    show_results: bool = True
    is_active: bool = True


class ExamStatusRequest(BaseModel):
    is_active: bool


def serialize_question(q: CBTQuestion) -> dict:
    return {
        "id": str(q.id),
        "subject": q.subject,
        "topic": q.topic,
        "question": q.question,
        "question_type": q.question_type,
        "options": q.option_list,
        "correct_answer": q.correct_answer,
        "difficulty": q.difficulty,
        "is_active": q.is_active,
        "created_at": q.created_at.isoformat() if q.created_at else None,
        "updated_at": q.updated_at.isoformat() if q.updated_at else None,
    }


def serialize_exam(exam: CBTExam) -> dict:
    return {
        "id": str(exam.id),
        "title": exam.title,
        "description": exam.description,
        "duration": exam.duration,
        "total_questions": exam.total_questions,
        "passing_score": exam.passing_score,
        "subjects": exam.subject_list,
        "randomization": exam.randomization,
        "show_results": exam.show_results,
        "is_active": exam.is_active,
        "created_at": exam.created_at.isoformat() if exam.created_at else None,
    }


def _deactivate_other_exams(db: Session, exam_id: str) -> int:
    return db.query(CBTExam).filter(
        CBTExam.id != exam_id, CBTExam.is_active.is_(True)
    ).update({CBTExam.is_active: False}, synchronize_session=False)


# ── Questions ────────────────────────────────────────────────

@router.post("/api/admin/questions", status_code=201)
def create_question(request: QuestionRequest, db: Session = Depends(get_db)):
    question = CBTQuestion(
        subject=request.subject.strip(),
        topic=request.topic.strip(),
        question=request.question.strip(),
        question_type=request.question_type,
        options=json.dumps(request.options),
        correct_answer=request.correct_answer.strip(),
        difficulty=request.difficulty,
        is_active=request.is_active,
    )
    db.add(question)
    db.commit()
    db.refresh(question)

    log_with_context(db_logger, "INFO", "Question created",
                     context={"question_id": str(question.id)},
                     extra_data={"subject": question.subject, "type": question.question_type})
    return serialize_question(question)


@router.get("/api/admin/questions")
def list_questions(
    subject: Optional[str] = Query(None, description="Filter by subject"),
    active: Optional[bool] = Query(None, description="Filter by active flag"),
    db: Session = Depends(get_db)
):
    query = db.query(CBTQuestion)
    if subject:
        query = query.filter(CBTQuestion.subject == subject)
    if active is not None:
        query = query.filter(CBTQuestion.is_active.is_(active))
    questions = query.order_by(CBTQuestion.created_at.desc()).all()
    return {
        "data": [serialize_question(q) for q in questions],
        "total": len(questions),
        "active": sum(1 for q in questions if q.is_active),
    }


@router.put("/api/admin/questions/{question_id}")
def update_question(question_id: str, request: QuestionRequest, db: Session = Depends(get_db)):
    question = db.query(CBTQuestion).filter(CBTQuestion.id == question_id).first()
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")

    question.subject = request.subject.strip()
    question.topic = request.topic.strip()
    question.question = request.question.strip()
    question.question_type = request.question_type
    question.options = json.dumps(request.options)
    question.correct_answer = request.correct_answer.strip()
    question.difficulty = request.difficulty
    question.is_active = request.is_active
    db.commit()
    db.refresh(question)
    return serialize_question(question)


@router.delete("/api/admin/questions/{question_id}")
def delete_question(question_id: str, db: Session = Depends(get_db)):
    question = db.query(CBTQuestion).filter(CBTQuestion.id == question_id).first()
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")
    db.delete(question)
    db.commit()
    log_with_context(db_logger, "INFO", "Question deleted", context={"question_id": question_id})
    return {"ok": True}


# ── Exams ────────────────────────────────────────────────────

@router.post("/api/admin/exams", status_code=201)
def create_exam(request: ExamRequest, db: Session = Depends(get_db)):
    available = db.query(CBTQuestion).filter(
        CBTQuestion.is_active.is_(True),
        CBTQuestion.subject.in_(request.subjects)
    ).count()
    if available == 0:
        raise HTTPException(status_code=422, detail="No active questions for the selected subjects")
    if request.total_questions > available:
        raise HTTPException(
            status_code=422,
            detail="Exam draws {} questions but only {} are available".format(
                request.total_questions, available))

    exam = CBTExam(
        title=request.title.strip(),
        description=request.description,
        duration=request.duration,
        total_questions=request.total_questions,
        passing_score=request.passing_score,
        subjects=json.dumps(request.subjects),
        randomization=request.randomization,
        show_results=request.show_results,
        is_active=request.is_active,
    )
    db.add(exam)
    db.flush()
    if exam.is_active:
        _deactivate_other_exams(db, exam.id)
    db.commit()
    db.refresh(exam)

    log_with_context(db_logger, "INFO", "Exam created: {}".format(exam.title),
                     context={"exam_id": str(exam.id)},
                     extra_data={"subjects": request.subjects, "available_questions": available})
    return serialize_exam(exam)


@router.get("/api/admin/exams")
def list_exams(db: Session = Depends(get_db)):
    exams = db.query(CBTExam).order_by(CBTExam.created_at.desc()).all()
    return {"data": [serialize_exam(e) for e in exams]}


@router.patch("/api/admin/exams/{exam_id}/status")
def set_exam_status(exam_id: str, request: ExamStatusRequest, db: Session = Depends(get_db)):
    """Publish or unpublish an exam. Publishing takes every other exam offline."""
    exam = db.query(CBTExam).filter(CBTExam.id == exam_id).first()
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")

    exam.is_active = request.is_active
    deactivated = _deactivate_other_exams(db, exam.id) if request.is_active else 0
    db.commit()
    db.refresh(exam)

    log_with_context(db_logger, "INFO",
        "Exam {}".format("published" if exam.is_active else "unpublished"),
        context={"exam_id": exam_id}, extra_data={"deactivated_others": deactivated})
    return serialize_exam(exam)


@router.delete("/api/admin/exams/{exam_id}")
def delete_exam(exam_id: str, db: Session = Depends(get_db)):
    exam = db.query(CBTExam).filter(CBTExam.id == exam_id).first()
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")
    db.delete(exam)
    db.commit()
    log_with_context(db_logger, "INFO", "Exam deleted", context={"exam_id": exam_id})
    return {"ok": True}


# ── Attempts ─────────────────────────────────────────────────

@router.get("/api/admin/exams/{exam_id}/attempts")
def list_attempts(
    exam_id: str,
    status: Optional[str] = Query(None, description="in_progress | completed | abandoned"),
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(20, ge=1, le=100, description="Results per page"),
    db: Session = Depends(get_db)
):
    start_time = time.time()
    exam = db.query(CBTExam).filter(CBTExam.id == exam_id).first()
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")

    query = db.query(CBTExamAttempt).filter(CBTExamAttempt.exam_id == exam_id)
    if status:
        query = query.filter(CBTExamAttempt.status == status.lower())

    total_count = query.count()
    offset = (page - 1) * per_page
    attempts = query.order_by(CBTExamAttempt.created_at.desc()).offset(offset).limit(per_page).all()

    completed = db.query(CBTExamAttempt).filter(
        CBTExamAttempt.exam_id == exam_id, CBTExamAttempt.status == "completed").all()
    passed = sum(1 for a in completed if a.is_passed)

    log_with_context(logger, "INFO",
        "Listed {} attempts (page {}, total {})".format(len(attempts), page, total_count),
        context={"exam_id": exam_id},
        extra_data={"duration_ms": round((time.time() - start_time) * 1000, 2)})

    return {
        "exam": serialize_exam(exam),
        "data": [AttemptRecord.from_row(a).to_dict() for a in attempts],
        "summary": {
            "completed": len(completed),
            "passed": passed,
            "pass_rate": round(passed / len(completed) * 100, 1) if completed else 0.0,
            "average_score": round(sum(a.score for a in completed) / len(completed), 1) if completed else 0.0,
            "auto_submitted": sum(1 for a in completed if a.auto_submitted),
        },
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total_count,
            "total_pages": (total_count + per_page - 1) // per_page
        }
    }


CSV_HEADER = [
    "Student Name", "Email", "Score", "Total Questions", "Percentage",
    "Start Time", "Submit Time", "Duration Taken", "Auto Submitted", "Violation",
]


@router.get("/api/admin/exams/{exam_id}/results.csv")
def export_results(exam_id: str, db: Session = Depends(get_db)):
    exam = db.query(CBTExam).filter(CBTExam.id == exam_id).first()
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")

    attempts = db.query(CBTExamAttempt).filter(
        CBTExamAttempt.exam_id == exam_id
    ).order_by(CBTExamAttempt.created_at.asc()).all()

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL)
    writer.writerow(CSV_HEADER)
    for a in attempts:
        submitted = a.status == "completed" and a.end_time is not None
        writer.writerow([
            a.trainee_name or "Unknown Student",
            a.trainee_email or "",
            a.correct_answers,
            a.total_questions,
            "{}%".format(a.score),
            a.start_time.isoformat() if a.start_time else "",
            a.end_time.isoformat() if submitted else "Not submitted",
            "{} minutes".format(a.time_spent) if submitted else "Incomplete",
            "yes" if a.auto_submitted else "no",
            a.violation_reason or "",
        ])

    filename = "{}_results.csv".format(exam.title.replace(" ", "_"))
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="{}"'.format(filename)},
    )


@router.post("/api/admin/attempts/{attempt_id}/abandon")
def abandon_attempt(attempt_id: str, db: Session = Depends(get_db)):
    """
    Close an in-progress stub left by an interrupted attempt. The record
    still blocks a retake.
    """
    attempt = db.query(CBTExamAttempt).filter(CBTExamAttempt.id == attempt_id).first()
    if not attempt:
        raise HTTPException(status_code=404, detail="Attempt not found")
    if attempt.status != "in_progress":
        raise HTTPException(status_code=409, detail="Only in-progress attempts can be abandoned")

    attempt.status = "abandoned"
    attempt.end_time = datetime.now(timezone.utc).replace(tzinfo=None)
    db.commit()
    db.refresh(attempt)

    log_with_context(logger, "INFO", "Attempt {} abandoned".format(attempt_id),
                     context={"attempt_id": attempt_id, "trainee_id": attempt.trainee_id})
    return AttemptRecord.from_row(attempt).to_dict()
