"""
Attempt Gateway - the two writes an exam session makes.

open_attempt() writes the in-progress stub when the trainee confirms the
start. finalize() writes the result exactly once per (exam, trainee), and
finalize_async() does the same for callers on the event loop. Transient
database errors are retried a bounded number of times with the
same attempt id; a rejection from the store is never retried. A result
that still cannot be written is logged in full on the reconcile channel
so an administrator can restore it.
"""

import asyncio
import os
from datetime import datetime

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from tenacity import (
    AsyncRetrying, Retrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_fixed
)

from farms_cbt.services.errors import (
    AttemptAlreadyExists, AttemptAlreadyFinalized, PersistenceError, StubCreationFailed
)
from farms_cbt.services.store import ExamStore
from farms_cbt.logging_config import get_logger, log_with_context

logger = get_logger("session")
reconcile_logger = get_logger("reconcile")

FINALIZE_MAX_ATTEMPTS = int(os.getenv("CBT_FINALIZE_MAX_ATTEMPTS", "3"))
FINALIZE_BACKOFF_SECONDS = float(os.getenv("CBT_FINALIZE_BACKOFF_SECONDS", "0.5"))


class AttemptGateway:
    def __init__(self, store: ExamStore,
                 max_attempts: int = FINALIZE_MAX_ATTEMPTS,
                 backoff_seconds: float = FINALIZE_BACKOFF_SECONDS):
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    def open_attempt(self, exam_id: str, trainee_id: str, trainee_name: str,
                     trainee_email: str, start_time: datetime,
                     total_questions: int) -> str:
        """Write the in-progress stub and return its id."""
        context = {"exam_id": exam_id, "trainee_id": trainee_id}
        try:
            return self.store.create_attempt_stub(
                exam_id, trainee_id, trainee_name, trainee_email,
                start_time=start_time, total_questions=total_questions)
        except AttemptAlreadyExists:
            log_with_context(logger, "WARNING", "Start rejected: attempt already exists",
                             context=context)
            raise
        except SQLAlchemyError as exc:
            log_with_context(logger, "ERROR", "Could not create attempt stub",
                             context=context, extra_data={"error": str(exc)})
            raise StubCreationFailed("The exam could not be started, please try again") from exc

    def finalize(self, attempt_id: str, result_fields: dict) -> None:
        """
        Write the result, blocking the caller. Raises AttemptAlreadyFinalized
        when the store rejects the first write, PersistenceError when every
        try failed or the stub was closed by an administrator.
        """
        context, fields = self._prepare(attempt_id, result_fields)
        tries = 0
        try:
            for attempt in self._retrying(Retrying, context):
                with attempt:
                    tries = attempt.retry_state.attempt_number
                    self.store.finalize_attempt(attempt_id, fields)
        except (AttemptAlreadyFinalized, SQLAlchemyError) as exc:
            self._resolve_failure(exc, tries, context, result_fields)
        log_with_context(logger, "INFO", "Attempt result persisted", context=context,
                         extra_data={"tries": tries})

    async def finalize_async(self, attempt_id: str, result_fields: dict) -> None:
        """
        Same as finalize(), for callers on the event loop: each write runs
        in a worker thread and the backoff sleeps with asyncio.
        """
        context, fields = self._prepare(attempt_id, result_fields)
        tries = 0
        try:
            async for attempt in self._retrying(AsyncRetrying, context):
                with attempt:
                    tries = attempt.retry_state.attempt_number
                    await asyncio.to_thread(self.store.finalize_attempt, attempt_id, fields)
        except (AttemptAlreadyFinalized, SQLAlchemyError) as exc:
            self._resolve_failure(exc, tries, context, result_fields)
        log_with_context(logger, "INFO", "Attempt result persisted", context=context,
                         extra_data={"tries": tries})

    @staticmethod
    def _prepare(attempt_id: str, result_fields: dict):
        context = {
            "attempt_id": attempt_id,
            "exam_id": result_fields.get("exam_id"),
            "trainee_id": result_fields.get("trainee_id"),
        }
        fields = {k: v for k, v in result_fields.items() if k not in ("exam_id", "trainee_id")}
        return context, fields

    def _retrying(self, retrying_cls, context: dict):
        return retrying_cls(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.backoff_seconds),
            retry=retry_if_exception_type(OperationalError),
            before_sleep=lambda state: self._log_retry(state, context),
            reraise=True,
        )

    def _resolve_failure(self, exc: Exception, tries: int, context: dict,
                         result_fields: dict) -> None:
        """
        Decide what a failed finalize means. Returns when the result is in
        fact stored, raises otherwise.
        """
        if isinstance(exc, AttemptAlreadyFinalized):
            if exc.status == "completed" and tries > 1:
                # An earlier try committed before its error surfaced.
                log_with_context(logger, "INFO",
                    "Attempt was finalized by an earlier try", context=context,
                    extra_data={"tries": tries})
                return
            if exc.status == "completed":
                log_with_context(logger, "ERROR",
                    "Finalize rejected: attempt already finalized", context=context)
                raise exc
            log_with_context(reconcile_logger, "ERROR",
                "Attempt record is {}; result dropped, manual reconciliation required".format(
                    exc.status),
                context=context,
                extra_data={"tries": tries, "status": exc.status, "result": result_fields})
            raise PersistenceError(
                "Attempt {} was closed as {} before its result was saved".format(
                    context["attempt_id"], exc.status)) from exc

        log_with_context(reconcile_logger, "ERROR",
            "Attempt result could not be persisted; manual reconciliation required",
            context=context,
            extra_data={"tries": tries, "error": str(exc), "result": result_fields})
        raise PersistenceError(
            "Result for attempt {} could not be saved".format(context["attempt_id"])) from exc

    def _log_retry(self, state: RetryCallState, context: dict) -> None:
        exc = state.outcome.exception() if state.outcome else None
        log_with_context(logger, "WARNING",
            "Finalize failed, retrying ({}/{})".format(state.attempt_number, self.max_attempts),
            context=context, extra_data={"error": str(exc)})
