"""Pydantic schemas for question banks, responses, and derived analytics tables."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Annotated, Dict, List, Literal, Tuple, Union

from pydantic import BaseModel, Field, field_validator

__all__ = [
    "Difficulty",
    "DIFFICULTIES",
    "UNCLASSIFIED_LABEL",
    "GENERAL_SUB_UNIT_LABEL",
    "QuestionRecord",
    "AnswerSheet",
    "GradedSheet",
    "ResponsePayload",
    "RawResponse",
    "AttemptRecord",
    "MasteryRecord",
    "ScoredStudent",
    "QuestionStat",
    "ExamSummary",
    "ExamAnalysis",
    "ClassificationRow",
    "ScopeCounts",
    "ProcessResult",
]

Difficulty = Literal["상", "중", "하"]
DIFFICULTIES: Tuple[str, ...] = ("상", "중", "하")

UNCLASSIFIED_LABEL = "미분류"
GENERAL_SUB_UNIT_LABEL = "일반"

AttemptKey = Tuple[str, str, int]

_FROZEN = {
    "frozen": True,
    "str_strip_whitespace": True,
    "populate_by_name": True,
    "coerce_numbers_to_str": True,
}


def _as_utc(value: datetime) -> datetime:
    """Read naive timestamps as UTC and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class QuestionRecord(BaseModel):
    """Answer-key row of the question bank."""

    exam_id: str = Field(alias="examId")
    question_number: int = Field(alias="questionNumber", ge=0)
    subject: str = ""
    detail_type: str = Field(alias="detailType", description="Leaf topic the question belongs to.")
    difficulty: Difficulty
    correct_answer: str = Field(default="", alias="correctAnswer")
    unit: str | None = Field(
        default=None,
        description="Optional unit (대단원) used to place the question in the classification scope.",
    )
    sub_unit: str | None = Field(
        default=None,
        alias="subUnit",
        description="Optional sub-unit (소단원); falls back to the detail type when omitted.",
    )

    model_config = _FROZEN

    @field_validator("correct_answer", mode="before")
    @classmethod
    def _stringify_answer(cls, value: object) -> object:
        return "" if value is None else value

    @property
    def key(self) -> Tuple[str, int]:
        return self.exam_id, self.question_number

    @property
    def scope_path(self) -> str:
        subject = self.subject or UNCLASSIFIED_LABEL
        unit = self.unit or UNCLASSIFIED_LABEL
        sub_unit = self.sub_unit or self.detail_type or GENERAL_SUB_UNIT_LABEL
        return f"{subject}|{unit}|{sub_unit}"


class AnswerSheet(BaseModel):
    """Raw answers that still have to be graded against the answer key."""

    kind: Literal["answers"] = "answers"
    answers: Dict[int, str] = Field(default_factory=dict)

    model_config = _FROZEN

    @field_validator("answers", mode="before")
    @classmethod
    def _stringify_answers(cls, value: object) -> object:
        if isinstance(value, dict):
            return {k: "" if v is None else str(v) for k, v in value.items()}
        return value


class GradedSheet(BaseModel):
    """Pre-graded correctness flags, e.g. textbook O/X sheets."""

    kind: Literal["graded"] = "graded"
    results: Dict[int, bool] = Field(default_factory=dict)

    model_config = _FROZEN

    @field_validator("results", mode="before")
    @classmethod
    def _coerce_marks(cls, value: object) -> object:
        # O/X marks as written on textbook sheets
        if isinstance(value, dict):
            marks = {"O": True, "X": False}
            return {
                k: marks.get(v.strip().upper(), v) if isinstance(v, str) else v
                for k, v in value.items()
            }
        return value


ResponsePayload = Annotated[Union[AnswerSheet, GradedSheet], Field(discriminator="kind")]


class RawResponse(BaseModel):
    """One student's response row for a single exam or textbook attempt."""

    student_name: str = Field(alias="studentName")
    grade: str = ""
    exam_id: str = Field(alias="examId")
    timestamp: datetime
    payload: ResponsePayload

    model_config = _FROZEN

    @field_validator("grade", mode="before")
    @classmethod
    def _default_grade(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def student_id(self) -> str:
        return self.student_name


class AttemptRecord(BaseModel):
    """Transaction-log entry for a single question attempt."""

    student_id: str = Field(alias="studentId")
    exam_id: str = Field(alias="examId")
    question_number: int = Field(alias="questionNumber")
    detail_type: str = Field(alias="detailType")
    difficulty: Difficulty
    is_correct: bool = Field(alias="isCorrect")
    timestamp: datetime

    model_config = _FROZEN

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def key(self) -> AttemptKey:
        return self.student_id, self.exam_id, self.question_number


class MasteryRecord(BaseModel):
    """Progress-master entry for one (student, topic) pair."""

    student_id: str = Field(alias="studentId")
    detail_type: str = Field(alias="detailType")
    attempt_count: int = Field(alias="attemptCount", ge=1)
    weighted_accuracy: float = Field(alias="weightedAccuracy", ge=0.0, le=1.0)
    last_updated: datetime = Field(alias="lastUpdated")

    model_config = _FROZEN

    @field_validator("last_updated")
    @classmethod
    def _last_updated_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def key(self) -> Tuple[str, str]:
        return self.student_id, self.detail_type


class ScoredStudent(BaseModel):
    exam_id: str = Field(alias="examId")
    student_id: str = Field(alias="studentId")
    grade: str = ""
    correct_count: int = Field(alias="correctCount", ge=0)
    total_weighted_score: float = Field(alias="totalWeightedScore")
    rank: str = Field(description="Dense rank rendered as '<rank> / <participants>'.")
    exam_date: date = Field(alias="examDate")

    model_config = _FROZEN

    @property
    def rank_position(self) -> int:
        return int(self.rank.split("/", 1)[0].strip())


class QuestionStat(BaseModel):
    question_number: int = Field(alias="questionNumber")
    detail_type: str = Field(alias="detailType")
    difficulty: Difficulty
    point: float
    total_attempts: int = Field(alias="totalAttempts", ge=0)
    incorrect_count: int = Field(alias="incorrectCount", ge=0)
    incorrect_rate: int = Field(alias="incorrectRate", ge=0, le=100)

    model_config = _FROZEN


class ExamSummary(BaseModel):
    average: float = 0.0
    max_score: float = Field(default=0.0, alias="maxScore")
    participant_count: int = Field(default=0, alias="participantCount")

    model_config = _FROZEN


class ExamAnalysis(BaseModel):
    """Scoring result for a single exam; ``analyzable`` is False for an empty exam scope."""

    exam_id: str = Field(alias="examId")
    analyzable: bool = True
    results: List[ScoredStudent] = Field(default_factory=list)
    question_stats: List[QuestionStat] = Field(default_factory=list, alias="questionStats")
    summary: ExamSummary = Field(default_factory=ExamSummary)

    model_config = _FROZEN

    @classmethod
    def not_analyzable(cls, exam_id: str) -> "ExamAnalysis":
        return cls(exam_id=exam_id, analyzable=False)


class ClassificationRow(BaseModel):
    subject: str | None = None
    unit: str | None = None
    sub_unit: str | None = Field(default=None, alias="subUnit")

    model_config = _FROZEN


class ScopeCounts(BaseModel):
    all_sub_units: int = Field(default=0, alias="allSubUnits")
    selected_sub_units: int = Field(default=0, alias="selectedSubUnits")

    model_config = _FROZEN


class ProcessResult(BaseModel):
    """The three output tables plus the classification context for the report renderer."""

    attempts: List[AttemptRecord] = Field(default_factory=list)
    mastery: List[MasteryRecord] = Field(default_factory=list)
    exam_report: List[ScoredStudent] = Field(default_factory=list, alias="examReport")
    classification: Dict[str, Dict[str, List[str]]] = Field(default_factory=dict)
    scope: ScopeCounts = Field(default_factory=ScopeCounts)
    skipped_exams: List[str] = Field(default_factory=list, alias="skippedExams")

    model_config = _FROZEN
