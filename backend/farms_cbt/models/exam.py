"""
CBTExam model - an exam definition configured by an administrator.

An exam draws its questions from the bank by subject. Only one exam is
active at a time; trainees are always served the most recently created
active exam.
"""

import uuid
import json
from datetime import datetime, timezone
from sqlalchemy import Column, Text, Integer, Boolean, DateTime, String, Index
from sqlalchemy.orm import relationship
from farms_cbt.database import Base


class CBTExam(Base):
    """
    SQLAlchemy model for the cbt_exams table.

    Immutable for the duration of a trainee session: the loader takes a
    snapshot of the row when the session is created.
    """
    __tablename__ = "cbt_exams"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique exam identifier")
    title = Column(Text, nullable=False,
                   doc="Exam title shown to trainees")
    description = Column(Text, nullable=True,
                         doc="Optional instructions shown before starting")
    duration = Column(Integer, nullable=False, default=60,
                      doc="Time limit in minutes")
    total_questions = Column(Integer, nullable=False, default=10,
                             doc="Number of questions drawn for each attempt")
    passing_score = Column(Integer, nullable=False, default=60,
                           doc="Minimum percentage required to pass")
    subjects = Column(Text, nullable=False, default="[]",
                      doc="Ordered subject list as JSON: [\"Soil Science\", ...]")
    randomization = Column(Boolean, nullable=False, default=False,
                           doc="Draw a random sample instead of the first N in bank order")
    show_results = Column(Boolean, nullable=False, default=True,
                          doc="Whether trainees see their score breakdown after submitting")
    is_active = Column(Boolean, nullable=False, default=True,
                       doc="Published exams are served to trainees")
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        doc="When the exam was created")
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc),
                        doc="When the exam was last modified")

    attempts = relationship("CBTExamAttempt", back_populates="exam",
                            cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_cbt_exams_is_active", "is_active"),
        Index("ix_cbt_exams_created_at", "created_at"),
    )

    @property
    def subject_list(self):
        """Parse the subjects JSON string into a list."""
        if isinstance(self.subjects, list):
            return self.subjects
        try:
            return json.loads(self.subjects) if self.subjects else []
        except (json.JSONDecodeError, TypeError):
            return []

    def __repr__(self):
        return f"<CBTExam(id={self.id}, title='{self.title}', active={self.is_active})>"
