import random
from datetime import timedelta

import pytest

from farms_cbt.services.errors import (
    InsufficientQuestions, NoExamAvailable, NoQuestionsForSubjects
)
from farms_cbt.services.loader import AlreadyTaken, ExamLoader, LoadedExam, select_questions
from farms_cbt.services.snapshots import Question

from conftest import BASE_TIME, add_exam


def bank_of(n):
    return [Question(id="b{}".format(i), subject="Farm Machinery", topic="", question="Q{}".format(i),
                     question_type="true_false", options=("True", "False"), correct_answer="True")
            for i in range(n)]


def test_no_active_exam(store, seed_bank):
    with pytest.raises(NoExamAvailable):
        ExamLoader(store).load("trainee-1")


def test_first_n_in_bank_order(store, seed_exam):
    loaded = ExamLoader(store).load("trainee-1")
    assert isinstance(loaded, LoadedExam)
    assert [q.id for q in loaded.questions] == ["q1", "q2", "q3"]
    assert loaded.exam.id == seed_exam
    assert loaded.exam.subjects == ("Farm Machinery",)


def test_latest_active_exam_is_served(store, session_factory, seed_exam):
    with session_factory() as db:
        add_exam(db, exam_id="exam-old", created_at=BASE_TIME - timedelta(days=1))
        add_exam(db, exam_id="exam-off", created_at=BASE_TIME + timedelta(days=1), is_active=False)
        db.commit()

    loaded = ExamLoader(store).load("trainee-1")
    assert loaded.exam.id == "exam-1"


def test_random_selection_uses_rng(store, session_factory, seed_bank):
    with session_factory() as db:
        add_exam(db, randomization=True, total_questions=4)
        db.commit()

    bank = store.get_questions(["Farm Machinery"])
    expected = [q.id for q in random.Random(7).sample(bank, 4)]

    loaded = ExamLoader(store, rng=random.Random(7)).load("trainee-1")
    assert [q.id for q in loaded.questions] == expected
    assert len(set(expected)) == 4


def test_already_taken_returns_record(store, seed_exam):
    store.create_attempt_stub(seed_exam, "trainee-1", "Ana Cruz", "ana@example.com",
                              start_time=BASE_TIME, total_questions=3)

    result = ExamLoader(store).load("trainee-1")
    assert isinstance(result, AlreadyTaken)
    assert result.record.trainee_id == "trainee-1"
    assert result.record.status == "in_progress"


def test_other_trainee_not_blocked(store, seed_exam):
    store.create_attempt_stub(seed_exam, "trainee-1", "", "", start_time=BASE_TIME)
    assert isinstance(ExamLoader(store).load("trainee-2"), LoadedExam)


def test_no_questions_for_subjects(store, session_factory, seed_bank):
    with session_factory() as db:
        add_exam(db, subjects=("Irrigation",))
        db.commit()

    with pytest.raises(NoQuestionsForSubjects) as excinfo:
        ExamLoader(store).load("trainee-1")
    assert excinfo.value.subjects == ["Irrigation"]


def test_insufficient_questions(store, session_factory, seed_bank):
    with session_factory() as db:
        add_exam(db, total_questions=10)
        db.commit()

    with pytest.raises(InsufficientQuestions) as excinfo:
        ExamLoader(store).load("trainee-1")
    assert excinfo.value.requested == 10
    assert excinfo.value.available == 5


@pytest.mark.parametrize("randomize", [True, False])
def test_select_questions_never_returns_short_list(randomize):
    bank = bank_of(3)
    with pytest.raises(InsufficientQuestions):
        select_questions(bank, 4, randomize, random.Random(1))


@pytest.mark.parametrize("count", [0, 1, 5])
def test_select_questions_exact_count(count):
    bank = bank_of(5)
    picked = select_questions(bank, count, True, random.Random(3))
    assert len(picked) == count
    assert len({q.id for q in picked}) == count
