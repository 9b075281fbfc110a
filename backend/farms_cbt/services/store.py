"""
Exam Store - the persistence/query collaborator used by the exam session.

Six operations, nothing more: fetch the active exam, fetch the question
bank for a set of subjects, check for and fetch a trainee's attempt, write
the in-progress stub, and finalize it. Each call opens and closes its own
database session because an exam session outlives any single request.
"""

import json
import time
from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from farms_cbt.models.attempt import CBTExamAttempt
from farms_cbt.models.exam import CBTExam
from farms_cbt.models.question import CBTQuestion
from farms_cbt.services.errors import (
    AttemptAlreadyExists, AttemptAlreadyFinalized, AttemptNotFound
)
from farms_cbt.services.snapshots import AttemptRecord, ExamDefinition, Question
from farms_cbt.services.timer import utcnow
from farms_cbt.logging_config import get_logger, log_with_context

logger = get_logger("db")


class ExamStore(Protocol):
    def get_active_exam(self) -> Optional[ExamDefinition]: ...

    def get_questions(self, subjects: Sequence[str]) -> List[Question]: ...

    def has_attempt(self, trainee_id: str, exam_id: str) -> bool: ...

    def get_attempt(self, trainee_id: str, exam_id: str) -> Optional[AttemptRecord]: ...

    def create_attempt_stub(self, exam_id: str, trainee_id: str, trainee_name: str,
                            trainee_email: str, start_time: datetime = None,
                            total_questions: int = 0) -> str: ...

    def finalize_attempt(self, attempt_id: str, result_fields: dict) -> None: ...


class SqlExamStore:
    """ExamStore backed by the SQLAlchemy models."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_active_exam(self) -> Optional[ExamDefinition]:
        """Most recently created published exam, or None."""
        with self._session_factory() as db:
            row = db.query(CBTExam).filter(
                CBTExam.is_active.is_(True)
            ).order_by(CBTExam.created_at.desc()).first()
            return ExamDefinition.from_row(row) if row else None

    def get_questions(self, subjects: Sequence[str]) -> List[Question]:
        """Active questions for the given subjects, newest first."""
        subjects = list(subjects)
        if not subjects:
            return []
        with self._session_factory() as db:
            rows = db.query(CBTQuestion).filter(
                CBTQuestion.is_active.is_(True),
                CBTQuestion.subject.in_(subjects)
            ).order_by(CBTQuestion.created_at.desc()).all()
            return [Question.from_row(r) for r in rows]

    def has_attempt(self, trainee_id: str, exam_id: str) -> bool:
        """
        True when any record exists for the pair, including an in-progress
        stub left by an interrupted attempt.
        """
        with self._session_factory() as db:
            return db.query(CBTExamAttempt.id).filter(
                CBTExamAttempt.trainee_id == trainee_id,
                CBTExamAttempt.exam_id == exam_id
            ).first() is not None

    def get_attempt(self, trainee_id: str, exam_id: str) -> Optional[AttemptRecord]:
        with self._session_factory() as db:
            row = db.query(CBTExamAttempt).filter(
                CBTExamAttempt.trainee_id == trainee_id,
                CBTExamAttempt.exam_id == exam_id
            ).first()
            return AttemptRecord.from_row(row) if row else None

    def create_attempt_stub(self, exam_id: str, trainee_id: str, trainee_name: str,
                            trainee_email: str, start_time: datetime = None,
                            total_questions: int = 0) -> str:
        """
        Insert the in-progress record. The unique (exam_id, trainee_id)
        constraint turns a second start into AttemptAlreadyExists.
        """
        start_ts = time.time()
        row = CBTExamAttempt(
            exam_id=exam_id,
            trainee_id=trainee_id,
            trainee_name=trainee_name or "",
            trainee_email=trainee_email or "",
            start_time=start_time or utcnow(),
            total_questions=total_questions,
            unanswered=total_questions,
            answers="{}",
            status="in_progress",
        )
        with self._session_factory() as db:
            db.add(row)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise AttemptAlreadyExists(
                    "Trainee {} already has an attempt for exam {}".format(trainee_id, exam_id)
                ) from exc
            attempt_id = str(row.id)

        log_with_context(logger, "INFO", "Attempt stub created",
            context={"attempt_id": attempt_id, "exam_id": exam_id, "trainee_id": trainee_id},
            extra_data={"duration_ms": round((time.time() - start_ts) * 1000, 2)})
        return attempt_id

    def finalize_attempt(self, attempt_id: str, result_fields: dict) -> None:
        """
        Write the final result onto the stub, once. The update only matches
        a row that is still in progress, so a second finalize is rejected
        with AttemptAlreadyFinalized carrying the status the row has now
        (completed, or abandoned by an administrator).
        """
        values = dict(result_fields)
        if isinstance(values.get("answers"), dict):
            values["answers"] = json.dumps(values["answers"])
        values["status"] = "completed"

        with self._session_factory() as db:
            result = db.execute(
                update(CBTExamAttempt)
                .where(CBTExamAttempt.id == attempt_id,
                       CBTExamAttempt.status == "in_progress")
                .values(**values)
            )
            if result.rowcount == 0:
                db.rollback()
                current = db.query(CBTExamAttempt.status).filter(
                    CBTExamAttempt.id == attempt_id).scalar()
                if current is None:
                    raise AttemptNotFound("Attempt {} not found".format(attempt_id))
                raise AttemptAlreadyFinalized(
                    "Attempt {} is already {}".format(attempt_id, current), status=current)
            db.commit()

        log_with_context(logger, "INFO", "Attempt finalized",
            context={"attempt_id": attempt_id},
            extra_data={"score": values.get("score"), "is_passed": values.get("is_passed")})
