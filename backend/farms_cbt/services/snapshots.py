"""
Read-only snapshots of exam data handed to the session layer.

The ORM rows belong to a database session that lives for one request;
an exam session lives for the whole attempt, so it works on these frozen
copies taken once at load time.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

from farms_cbt.models.attempt import CBTExamAttempt
from farms_cbt.models.exam import CBTExam
from farms_cbt.models.question import CBTQuestion


@dataclass(frozen=True)
class ExamDefinition:
    id: str
    title: str
    duration: int
    passing_score: int
    subjects: Tuple[str, ...]
    randomization: bool
    total_questions: int
    description: Optional[str] = None
    show_results: bool = True

    @classmethod
    def from_row(cls, row: CBTExam) -> "ExamDefinition":
        return cls(
            id=str(row.id),
            title=row.title,
            duration=int(row.duration),
            passing_score=int(row.passing_score),
            subjects=tuple(row.subject_list),
            randomization=bool(row.randomization),
            total_questions=int(row.total_questions),
            description=row.description,
            show_results=bool(row.show_results),
        )


@dataclass(frozen=True)
class Question:
    id: str
    subject: str
    topic: str
    question: str
    question_type: str
    options: Tuple[str, ...]
    correct_answer: str
    difficulty: str = "medium"

    @classmethod
    def from_row(cls, row: CBTQuestion) -> "Question":
        return cls(
            id=str(row.id),
            subject=row.subject,
            topic=row.topic or "",
            question=row.question,
            question_type=row.question_type,
            options=tuple(row.option_list),
            correct_answer=row.correct_answer,
            difficulty=row.difficulty,
        )


@dataclass(frozen=True)
class AttemptRecord:
    id: str
    exam_id: str
    trainee_id: str
    trainee_name: str
    trainee_email: str
    status: str
    start_time: datetime
    end_time: Optional[datetime]
    time_spent: int
    score: int
    total_questions: int
    correct_answers: int
    wrong_answers: int
    unanswered: int
    is_passed: bool
    auto_submitted: bool
    violation_reason: Optional[str]
    answers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: CBTExamAttempt) -> "AttemptRecord":
        return cls(
            id=str(row.id),
            exam_id=str(row.exam_id),
            trainee_id=row.trainee_id,
            trainee_name=row.trainee_name,
            trainee_email=row.trainee_email,
            status=row.status,
            start_time=row.start_time,
            end_time=row.end_time,
            time_spent=row.time_spent,
            score=row.score,
            total_questions=row.total_questions,
            correct_answers=row.correct_answers,
            wrong_answers=row.wrong_answers,
            unanswered=row.unanswered,
            is_passed=bool(row.is_passed),
            auto_submitted=bool(row.auto_submitted),
            violation_reason=row.violation_reason,
            answers=dict(row.answers_dict),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "exam_id": self.exam_id,
            "trainee_id": self.trainee_id,
            "trainee_name": self.trainee_name,
            "trainee_email": self.trainee_email,
            "status": self.status,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "time_spent": self.time_spent,
            "score": self.score,
            "total_questions": self.total_questions,
            "correct_answers": self.correct_answers,
            "wrong_answers": self.wrong_answers,
            "unanswered": self.unanswered,
            "is_passed": self.is_passed,
            "auto_submitted": self.auto_submitted,
            "violation_reason": self.violation_reason,
        }
