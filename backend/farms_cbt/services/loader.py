"""
Exam Loader - prepares the fixed question list for a new attempt.

Steps:
1. Fetch the active exam (NoExamAvailable when none is published)
2. Refuse a retake: an existing record for (trainee, exam) is returned
   as AlreadyTaken and no session is created
3. Fetch the bank for the exam's subjects (NoQuestionsForSubjects when empty)
4. Select exactly exam.total_questions items, either a uniform random
   sample or the first N in bank order
"""

import random
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

from farms_cbt.services.errors import (
    InsufficientQuestions, NoExamAvailable, NoQuestionsForSubjects
)
from farms_cbt.services.snapshots import AttemptRecord, ExamDefinition, Question
from farms_cbt.services.store import ExamStore
from farms_cbt.logging_config import get_logger, log_with_context

logger = get_logger("loader")


@dataclass(frozen=True)
class LoadedExam:
    exam: ExamDefinition
    questions: Tuple[Question, ...]


@dataclass(frozen=True)
class AlreadyTaken:
    record: Optional[AttemptRecord]


def select_questions(bank: Sequence[Question], count: int, randomize: bool,
                     rng: random.Random = None) -> Tuple[Question, ...]:
    """
    Pick `count` questions from `bank`. Raises InsufficientQuestions rather
    than returning a shorter list.
    """
    if count > len(bank):
        raise InsufficientQuestions(count, len(bank))
    if randomize:
        return tuple((rng or random).sample(list(bank), count))
    return tuple(bank[:count])


class ExamLoader:
    def __init__(self, store: ExamStore, rng: random.Random = None):
        self.store = store
        self.rng = rng or random.Random()

    def load(self, trainee_id: str) -> Union[LoadedExam, AlreadyTaken]:
        start_time = time.time()

        exam = self.store.get_active_exam()
        if exam is None:
            log_with_context(logger, "WARNING", "No active exam",
                             context={"trainee_id": trainee_id})
            raise NoExamAvailable("There is no active exam at the moment")

        context = {"trainee_id": trainee_id, "exam_id": exam.id}

        if self.store.has_attempt(trainee_id, exam.id):
            record = self.store.get_attempt(trainee_id, exam.id)
            log_with_context(logger, "INFO", "Trainee has already taken the exam",
                             context=context,
                             extra_data={"status": record.status if record else None})
            return AlreadyTaken(record)

        bank = self.store.get_questions(exam.subjects)
        if not bank:
            log_with_context(logger, "ERROR", "No questions for exam subjects",
                             context=context, extra_data={"subjects": list(exam.subjects)})
            raise NoQuestionsForSubjects(exam.subjects)

        questions = select_questions(bank, exam.total_questions, exam.randomization, self.rng)

        log_with_context(logger, "INFO",
            "Loaded {} of {} questions".format(len(questions), len(bank)),
            context=context,
            extra_data={
                "randomization": exam.randomization,
                "duration_ms": round((time.time() - start_time) * 1000, 2)
            })
        return LoadedExam(exam=exam, questions=questions)
