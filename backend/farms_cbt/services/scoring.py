"""
Scoring Service - grades an attempt's answers against its question list.

Matching rules:
1. Surrounding whitespace is trimmed from both sides.
2. A blank answer (missing, empty or whitespace only) is unanswered.
3. multiple_choice and true_false: exact, case-sensitive equality.
4. fill_blank: case-insensitive; the stored correct answer may list
   several accepted answers separated by commas.

percentage = round(correct / total * 100), halves rounded up.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Mapping, Sequence, Tuple

from farms_cbt.services.snapshots import Question


@dataclass(frozen=True)
class QuestionResult:
    question_id: str
    subject: str
    question: str
    question_type: str
    user_answer: str
    correct_answer: str
    is_correct: bool
    answered: bool


@dataclass(frozen=True)
class ScoreBreakdown:
    correct: int
    wrong: int
    unanswered: int
    percentage: int
    total_questions: int
    question_results: Tuple[QuestionResult, ...] = ()

    def counts(self) -> Dict[str, int]:
        return {
            "correct": self.correct,
            "wrong": self.wrong,
            "unanswered": self.unanswered,
            "percentage": self.percentage,
        }


def is_correct_answer(question: Question, answer: str) -> bool:
    """Compare one non-blank answer with the question's correct answer."""
    given = answer.strip()
    expected = question.correct_answer.strip()
    if question.question_type == "fill_blank":
        accepted = [a.strip().lower() for a in expected.split(",") if a.strip()]
        return given.lower() in accepted
    return given == expected


def percentage_of(correct: int, total: int) -> int:
    """Integer percentage rounded half up; 0 for an empty exam."""
    if total <= 0:
        return 0
    return (correct * 200 + total) // (2 * total)


def score(answers: Mapping[str, str], questions: Sequence[Question]) -> ScoreBreakdown:
    """
    Grade answers against questions. Pure: the same inputs always give
    the same breakdown. Answers for ids outside `questions` are ignored.
    """
    correct = wrong = unanswered = 0
    results: List[QuestionResult] = []

    for q in questions:
        given = (answers.get(q.id) or "").strip()
        if not given:
            unanswered += 1
            ok = False
        else:
            ok = is_correct_answer(q, given)
            if ok:
                correct += 1
            else:
                wrong += 1
        results.append(QuestionResult(
            question_id=q.id,
            subject=q.subject,
            question=q.question,
            question_type=q.question_type,
            user_answer=given,
            correct_answer=q.correct_answer.strip(),
            is_correct=ok,
            answered=bool(given),
        ))

    total = len(questions)
    return ScoreBreakdown(
        correct=correct,
        wrong=wrong,
        unanswered=unanswered,
        percentage=percentage_of(correct, total),
        total_questions=total,
        question_results=tuple(results),
    )


def is_passed(percentage: int, passing_score: int) -> bool:
    return percentage >= passing_score


def subject_scores(breakdown: ScoreBreakdown) -> List[Dict[str, object]]:
    """
    Per-subject totals, sorted by subject name:
    [{"subject", "total", "correct", "wrong", "unanswered", "percentage"}, ...]
    """
    buckets: Dict[str, Dict[str, int]] = defaultdict(
        lambda: {"total": 0, "correct": 0, "wrong": 0, "unanswered": 0}
    )
    for r in breakdown.question_results:
        b = buckets[r.subject or "General"]
        b["total"] += 1
        if not r.answered:
            b["unanswered"] += 1
        elif r.is_correct:
            b["correct"] += 1
        else:
            b["wrong"] += 1

    return [
        {"subject": subj, **buckets[subj],
         "percentage": percentage_of(buckets[subj]["correct"], buckets[subj]["total"])}
        for subj in sorted(buckets)
    ]
