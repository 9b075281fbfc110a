"""
Exam Session - the state machine for one trainee's attempt.

    not_started --request_start/confirm_start--> in_progress
    in_progress <--pause/resume--> paused
    in_progress | paused --submit--> completed

Three triggers reach completed: the trainee's confirmed submit, the
countdown reaching zero, and an integrity violation. All of them go
through submit(), which runs at most once per attempt; later calls are
no-ops. Once completed the state never changes again, even when the
result write fails: the failure is kept on the session for a retry.

Navigation is free in both directions and answers can be changed until
submission. The integrity monitor keeps running while the exam is paused.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from farms_cbt.services.errors import (
    AttemptAlreadyFinalized, AttemptCompleted, AttemptNotFound, InvalidNavigation,
    InvalidTransition, PersistenceError, UnknownQuestion
)
from farms_cbt.services.gateway import AttemptGateway
from farms_cbt.services.integrity import IntegrityMonitor
from farms_cbt.services.loader import LoadedExam
from farms_cbt.services.scoring import ScoreBreakdown, is_passed, score
from farms_cbt.services.timer import Ticker, utcnow
from farms_cbt.logging_config import get_logger, log_with_context

logger = get_logger("session")
scoring_logger = get_logger("scoring")

TIME_EXPIRED = "time_expired"
PAUSE_TIMEOUT = "pause_timeout"

PERSIST_ERRORS = (PersistenceError, AttemptAlreadyFinalized, AttemptNotFound)


class AttemptStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Trainee:
    trainee_id: str
    name: str = ""
    email: str = ""


@dataclass
class AttemptState:
    answers: Dict[str, str] = field(default_factory=dict)
    current_index: int = 0
    time_remaining_seconds: int = 0
    status: AttemptStatus = AttemptStatus.NOT_STARTED
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    auto_submitted: bool = False
    violation_reason: Optional[str] = None
    attempt_id: Optional[str] = None


@dataclass(frozen=True)
class SubmissionResult:
    breakdown: ScoreBreakdown
    is_passed: bool
    time_spent_minutes: int
    auto_submitted: bool
    violation_reason: Optional[str]


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes between two timestamps, halves rounded up."""
    seconds = max(0.0, (end - start).total_seconds())
    return int(seconds / 60 + 0.5)


class ExamSession:
    def __init__(self, loaded: LoadedExam, trainee: Trainee, gateway: AttemptGateway,
                 ticker: Ticker, clock: Callable[[], datetime] = utcnow):
        self.exam = loaded.exam
        self.questions = loaded.questions
        self.trainee = trainee
        self.gateway = gateway
        self.ticker = ticker
        self.clock = clock

        self.state = AttemptState(time_remaining_seconds=self.exam.duration * 60)
        self.result: Optional[SubmissionResult] = None
        self.persisted = False
        self.persistence_error: Optional[str] = None
        self.start_requested = False
        self.submit_requested = False
        self._submitted = False
        self._persist_task: Optional[asyncio.Task] = None
        self._question_ids = {q.id for q in self.questions}

        self.monitor = IntegrityMonitor(self._on_violation, context=self._context())

    # ── properties ──────────────────────────────────────────

    @property
    def status(self) -> AttemptStatus:
        return self.state.status

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def current_question(self):
        return self.questions[self.state.current_index]

    def _context(self) -> dict:
        return {
            "attempt_id": self.state.attempt_id,
            "exam_id": self.exam.id,
            "trainee_id": self.trainee.trainee_id,
        }

    def _require(self, *allowed: AttemptStatus) -> None:
        if self.state.status == AttemptStatus.COMPLETED:
            raise AttemptCompleted("The exam has already been submitted")
        if self.state.status not in allowed:
            raise InvalidTransition("Not allowed while the exam is {}".format(self.state.status.value))

    # ── start ───────────────────────────────────────────────

    def request_start(self) -> None:
        """First step of the start: the trainee clicked "Start"."""
        self._require(AttemptStatus.NOT_STARTED)
        self.start_requested = True

    def cancel_start(self) -> None:
        self._require(AttemptStatus.NOT_STARTED)
        self.start_requested = False

    def confirm_start(self) -> None:
        """
        Second step: write the in-progress stub, then start the countdown
        and the integrity monitor. If the stub cannot be written the
        session stays not_started.
        """
        self._require(AttemptStatus.NOT_STARTED)
        if not self.start_requested:
            raise InvalidTransition("Start must be requested before it is confirmed")

        started_at = self.clock()
        attempt_id = self.gateway.open_attempt(
            self.exam.id, self.trainee.trainee_id, self.trainee.name,
            self.trainee.email, started_at, self.question_count)

        self.state.attempt_id = attempt_id
        self.state.started_at = started_at
        self.state.time_remaining_seconds = self.exam.duration * 60
        self.state.status = AttemptStatus.IN_PROGRESS
        self.monitor.context = self._context()
        self.monitor.start()
        self.ticker.start(self.tick)

        log_with_context(logger, "INFO", "Exam started", context=self._context(),
                         extra_data={"questions": self.question_count,
                                     "time_limit_seconds": self.state.time_remaining_seconds})

    # ── pause ───────────────────────────────────────────────

    def pause(self) -> None:
        self._require(AttemptStatus.IN_PROGRESS)
        self.ticker.stop()
        self.state.status = AttemptStatus.PAUSED
        log_with_context(logger, "INFO", "Exam paused", context=self._context(),
                         extra_data={"time_remaining_seconds": self.state.time_remaining_seconds})

    def resume(self) -> None:
        self._require(AttemptStatus.PAUSED)
        self.state.status = AttemptStatus.IN_PROGRESS
        self.ticker.start(self.tick)
        log_with_context(logger, "INFO", "Exam resumed", context=self._context())

    def toggle_pause(self) -> None:
        if self.state.status == AttemptStatus.PAUSED:
            self.resume()
        else:
            self.pause()

    # ── answers and navigation ──────────────────────────────

    def set_answer(self, question_id: str, value: str) -> None:
        """Record an answer; the last write for a question wins."""
        self._require(AttemptStatus.IN_PROGRESS)
        if question_id not in self._question_ids:
            raise UnknownQuestion("Question {} is not part of this exam".format(question_id))
        self.state.answers[question_id] = value

    def clear_answer(self, question_id: str) -> None:
        self._require(AttemptStatus.IN_PROGRESS)
        if question_id not in self._question_ids:
            raise UnknownQuestion("Question {} is not part of this exam".format(question_id))
        self.state.answers.pop(question_id, None)

    def next(self) -> int:
        self._require(AttemptStatus.IN_PROGRESS)
        if self.state.current_index < self.question_count - 1:
            self.state.current_index += 1
        return self.state.current_index

    def previous(self) -> int:
        self._require(AttemptStatus.IN_PROGRESS)
        if self.state.current_index > 0:
            self.state.current_index -= 1
        return self.state.current_index

    def jump_to(self, index: int) -> int:
        self._require(AttemptStatus.IN_PROGRESS)
        if not 0 <= index < self.question_count:
            raise InvalidNavigation(
                "Question index {} is outside 0..{}".format(index, self.question_count - 1))
        self.state.current_index = index
        return index

    # ── timer ───────────────────────────────────────────────

    def tick(self) -> None:
        """One second of exam time. Submits when the countdown reaches zero."""
        if self.state.status != AttemptStatus.IN_PROGRESS:
            return
        self.state.time_remaining_seconds = max(0, self.state.time_remaining_seconds - 1)
        if self.state.time_remaining_seconds == 0:
            log_with_context(logger, "INFO", "Time expired", context=self._context())
            self.submit(auto_submitted=True, violation_reason=TIME_EXPIRED)

    # ── submission ──────────────────────────────────────────

    def request_submit(self) -> None:
        self._require(AttemptStatus.IN_PROGRESS, AttemptStatus.PAUSED)
        self.submit_requested = True

    def cancel_submit(self) -> None:
        self._require(AttemptStatus.IN_PROGRESS, AttemptStatus.PAUSED)
        self.submit_requested = False

    def confirm_submit(self) -> bool:
        """The trainee confirmed the manual submit."""
        if self._submitted:
            return False
        if not self.submit_requested:
            raise InvalidTransition("Submit must be requested before it is confirmed")
        return self.submit()

    def _on_violation(self, reason: str) -> None:
        self.submit(auto_submitted=True, violation_reason=reason)

    def submit(self, auto_submitted: bool = False, violation_reason: str = None) -> bool:
        """
        Complete the attempt, score it and write the result. Returns True
        for the call that performed the submission and False for every
        later call.
        """
        if self._submitted:
            return False
        if self.state.status == AttemptStatus.NOT_STARTED:
            raise InvalidTransition("The exam has not been started")
        self._submitted = True

        self.ticker.stop()
        self.monitor.stop()
        self.submit_requested = False

        ended_at = self.clock()
        self.state.status = AttemptStatus.COMPLETED
        self.state.ended_at = ended_at
        self.state.auto_submitted = auto_submitted
        self.state.violation_reason = violation_reason

        start_ts = time.time()
        breakdown = score(self.state.answers, self.questions)
        self.result = SubmissionResult(
            breakdown=breakdown,
            is_passed=is_passed(breakdown.percentage, self.exam.passing_score),
            time_spent_minutes=minutes_between(self.state.started_at, ended_at),
            auto_submitted=auto_submitted,
            violation_reason=violation_reason,
        )
        log_with_context(scoring_logger, "INFO",
            "Score computed: {}% (correct={}, wrong={}, unanswered={})".format(
                breakdown.percentage, breakdown.correct, breakdown.wrong, breakdown.unanswered),
            context=self._context(),
            extra_data={
                "duration_ms": round((time.time() - start_ts) * 1000, 2),
                "is_passed": self.result.is_passed,
                "auto_submitted": auto_submitted,
                "violation_reason": violation_reason,
            })

        self._persist()
        return True

    def results(self) -> SubmissionResult:
        """Read-only result of a completed attempt."""
        if self.result is None:
            raise InvalidTransition("The exam has not been submitted")
        return self.result

    def result_fields(self) -> dict:
        """The columns written to the attempt record on finalize."""
        r = self.result
        return {
            "exam_id": self.exam.id,
            "trainee_id": self.trainee.trainee_id,
            "trainee_name": self.trainee.name,
            "trainee_email": self.trainee.email,
            "start_time": self.state.started_at,
            "end_time": self.state.ended_at,
            "time_spent": r.time_spent_minutes,
            "answers": dict(self.state.answers),
            "score": r.breakdown.percentage,
            "total_questions": r.breakdown.total_questions,
            "correct_answers": r.breakdown.correct,
            "wrong_answers": r.breakdown.wrong,
            "unanswered": r.breakdown.unanswered,
            "is_passed": r.is_passed,
            "auto_submitted": r.auto_submitted,
            "violation_reason": r.violation_reason,
        }

    def _persist(self) -> None:
        """
        Write the result. On the event loop the write runs as a background
        task so ticks and requests of other sessions keep flowing; outside
        a loop it runs inline.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            try:
                self.gateway.finalize(self.state.attempt_id, self.result_fields())
            except PERSIST_ERRORS as exc:
                self._record_persist(exc)
                return
            self._record_persist(None)
            return

        self._persist_task = loop.create_task(self._persist_async())

    async def _persist_async(self) -> None:
        try:
            await self.gateway.finalize_async(self.state.attempt_id, self.result_fields())
        except PERSIST_ERRORS as exc:
            self._record_persist(exc)
            return
        self._record_persist(None)

    def _record_persist(self, exc: Optional[Exception]) -> None:
        if exc is None:
            self.persisted = True
            self.persistence_error = None
        else:
            self.persistence_error = str(exc)

    @property
    def persisting(self) -> bool:
        return self._persist_task is not None and not self._persist_task.done()

    async def flush(self) -> bool:
        """Wait for a pending result write. Returns whether the result is stored."""
        if self._persist_task is not None:
            await self._persist_task
        return self.persisted

    def retry_persist(self) -> bool:
        """
        Retry a failed result write. Returns True once the result is stored;
        on the event loop the retry is scheduled and flush() reports the outcome.
        """
        if self.state.status != AttemptStatus.COMPLETED:
            raise InvalidTransition("The exam has not been submitted")
        if not self.persisted and not self.persisting:
            self._persist()
        return self.persisted
