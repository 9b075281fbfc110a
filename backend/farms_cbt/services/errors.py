"""
Exception hierarchy for the exam-session services.

Routes translate these into HTTP responses; services never swallow them.
"""


class CBTError(Exception):
    """Base class for all exam-session errors."""


# ── Configuration errors (need administrative action) ───────

class NoExamAvailable(CBTError):
    """No exam is currently published."""


class NoQuestionsForSubjects(CBTError):
    """The active exam's subjects have no active questions in the bank."""

    def __init__(self, subjects):
        self.subjects = list(subjects)
        super().__init__("No questions found for subjects: {}".format(", ".join(self.subjects)))


class InsufficientQuestions(CBTError):
    """The bank holds fewer questions than the exam draws."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            "Exam requires {} questions but only {} are available".format(requested, available))


# ── Persistence collaborator errors ─────────────────────────

class AttemptAlreadyExists(CBTError):
    """A record already exists for this (exam, trainee) pair."""


class AttemptAlreadyFinalized(CBTError):
    """The attempt record is no longer in progress and cannot be written again."""

    def __init__(self, message: str = "", status: str = "completed"):
        self.status = status
        super().__init__(message)


class AttemptNotFound(CBTError):
    """No attempt record with the given id."""


class StubCreationFailed(CBTError):
    """The in-progress stub could not be written; the attempt did not start."""


class PersistenceError(CBTError):
    """The final result could not be written after all retries."""


# ── Session state errors ────────────────────────────────────

class InvalidTransition(CBTError):
    """The operation is not allowed in the session's current status."""


class AttemptCompleted(InvalidTransition):
    """The attempt is completed; its state can no longer change."""


class UnknownQuestion(CBTError):
    """The question id is not part of this attempt."""


class InvalidNavigation(CBTError):
    """The requested question index is outside the attempt."""
