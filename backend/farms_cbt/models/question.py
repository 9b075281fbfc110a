"""
CBTQuestion model - one item in the question bank.

Questions are grouped by subject and topic. Multiple-choice and
true/false questions carry their options; fill-in-the-blank questions
have none and may list several accepted answers separated by commas.
"""

import uuid
import json
from datetime import datetime, timezone
from sqlalchemy import Column, Text, Boolean, DateTime, String, Index
from farms_cbt.database import Base

QUESTION_TYPES = ("multiple_choice", "true_false", "fill_blank")
DIFFICULTIES = ("easy", "medium", "hard")


class CBTQuestion(Base):
    """SQLAlchemy model for the cbt_questions table."""
    __tablename__ = "cbt_questions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique question identifier")
    subject = Column(Text, nullable=False,
                     doc="Subject the question belongs to")
    topic = Column(Text, nullable=False, default="",
                   doc="Topic within the subject")
    question = Column(Text, nullable=False,
                      doc="Question text")
    question_type = Column(String(20), nullable=False, default="multiple_choice",
                           doc="multiple_choice | true_false | fill_blank")
    options = Column(Text, nullable=False, default="[]",
                     doc="Ordered option strings as JSON (empty for fill_blank)")
    correct_answer = Column(Text, nullable=False,
                            doc="Correct answer; comma-separated alternatives for fill_blank")
    difficulty = Column(String(10), nullable=False, default="medium",
                        doc="easy | medium | hard")
    is_active = Column(Boolean, nullable=False, default=True,
                       doc="Inactive questions are never drawn into an exam")
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        doc="When the question was created")
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc),
                        doc="When the question was last modified")

    __table_args__ = (
        Index("ix_cbt_questions_subject", "subject"),
        Index("ix_cbt_questions_is_active", "is_active"),
    )

    @property
    def option_list(self):
        """Parse the options JSON string into a list."""
        if isinstance(self.options, list):
            return self.options
        try:
            return json.loads(self.options) if self.options else []
        except (json.JSONDecodeError, TypeError):
            return []

    def __repr__(self):
        return f"<CBTQuestion(id={self.id}, subject='{self.subject}', type='{self.question_type}')>"
