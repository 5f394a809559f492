import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from env_validation import AnalysisConfig
from schemas import AnswerSheet, AttemptRecord, GradedSheet, QuestionRecord, RawResponse

BASE_TIME = datetime(2024, 3, 4, 9, 0, 0)


def make_question(exam_id="E1", number=1, difficulty="중", answer="1", detail_type="집합", **extra):
    return QuestionRecord(
        exam_id=exam_id,
        question_number=number,
        subject=extra.pop("subject", "공통수학1"),
        detail_type=detail_type,
        difficulty=difficulty,
        correct_answer=answer,
        **extra,
    )


def make_answers(student, exam_id="E1", answers=None, minutes=0, grade="고1"):
    return RawResponse(
        student_name=student,
        grade=grade,
        exam_id=exam_id,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        payload=AnswerSheet(answers=answers or {}),
    )


def make_graded(student, exam_id="T1", results=None, minutes=0, grade="고1"):
    return RawResponse(
        student_name=student,
        grade=grade,
        exam_id=exam_id,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        payload=GradedSheet(results=results or {}),
    )


def make_attempt(student="kim", detail_type="집합", difficulty="중", correct=True, minutes=0, exam_id="E1", number=1):
    return AttemptRecord(
        student_id=student,
        exam_id=exam_id,
        question_number=number,
        detail_type=detail_type,
        difficulty=difficulty,
        is_correct=correct,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
    )


@pytest.fixture
def config() -> AnalysisConfig:
    return AnalysisConfig()


@pytest.fixture
def scenario_a_questions():
    return [
        make_question("E1", 1, difficulty="상", answer="2", detail_type="집합"),
        make_question("E1", 2, difficulty="하", answer="1", detail_type="명제"),
    ]


@pytest.fixture(autouse=True)
def _clear_exam_env(monkeypatch):
    for var in ("EXAM_MIN_TEST_COUNT", "EXAM_RECENT_COUNT", "EXAM_GENERATE_AI_REPORT"):
        monkeypatch.delenv(var, raising=False)
