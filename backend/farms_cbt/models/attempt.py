"""
CBTExamAttempt model - the persisted record of one trainee's exam attempt.

A stub row is written with status in_progress when the trainee confirms
the start, so an interrupted attempt is still attributable. The row is
finalized exactly once with the score and answers. The unique constraint
on (exam_id, trainee_id) is the idempotency key that prevents retakes.
"""

import uuid
import json
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Text, Integer, Boolean, DateTime, ForeignKey, Index, String,
    UniqueConstraint
)
from sqlalchemy.orm import relationship
from farms_cbt.database import Base

ATTEMPT_STATUSES = ("in_progress", "completed", "abandoned")


class CBTExamAttempt(Base):
    """
    SQLAlchemy model for the cbt_exam_attempts table.

    Status lifecycle:
    - in_progress: stub written at start
    - completed: finalized by the exam session
    - abandoned: stale stub closed by an administrator
    """
    __tablename__ = "cbt_exam_attempts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique attempt identifier")
    exam_id = Column(String(36), ForeignKey("cbt_exams.id"), nullable=False,
                     doc="Exam being attempted")
    trainee_id = Column(String(64), nullable=False,
                        doc="Trainee identifier issued by the portal")
    trainee_name = Column(Text, nullable=False, default="",
                          doc="Trainee display name at the time of the attempt")
    trainee_email = Column(Text, nullable=False, default="",
                           doc="Trainee email at the time of the attempt")
    start_time = Column(DateTime, nullable=False,
                        doc="When the trainee confirmed the start")
    end_time = Column(DateTime, nullable=True,
                      doc="When the attempt was submitted (NULL while in progress)")
    time_spent = Column(Integer, nullable=False, default=0,
                        doc="Minutes between start and submission, rounded")
    score = Column(Integer, nullable=False, default=0,
                   doc="Percentage score 0-100")
    total_questions = Column(Integer, nullable=False, default=0,
                             doc="Number of questions in the attempt")
    correct_answers = Column(Integer, nullable=False, default=0)
    wrong_answers = Column(Integer, nullable=False, default=0)
    unanswered = Column(Integer, nullable=False, default=0)
    is_passed = Column(Boolean, nullable=False, default=False)
    answers = Column(Text, nullable=False, default="{}",
                     doc="Answers as JSON: {question_id: answer}")
    status = Column(String(20), nullable=False, default="in_progress",
                    doc="in_progress | completed | abandoned")
    auto_submitted = Column(Boolean, nullable=False, default=False,
                            doc="Submitted by timer expiry or an integrity violation")
    violation_reason = Column(Text, nullable=True,
                              doc="Why the attempt was auto-submitted")
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        doc="When the stub was created")

    exam = relationship("CBTExam", back_populates="attempts")

    __table_args__ = (
        UniqueConstraint("exam_id", "trainee_id", name="uq_cbt_exam_attempts_exam_trainee"),
        Index("ix_cbt_exam_attempts_trainee_id", "trainee_id"),
        Index("ix_cbt_exam_attempts_status", "status"),
    )

    @property
    def answers_dict(self):
        """Parse answers JSON string to dict."""
        if isinstance(self.answers, dict):
            return self.answers
        try:
            return json.loads(self.answers) if self.answers else {}
        except (json.JSONDecodeError, TypeError):
            return {}

    def __repr__(self):
        return f"<CBTExamAttempt(id={self.id}, trainee={self.trainee_id}, exam={self.exam_id}, status='{self.status}')>"
