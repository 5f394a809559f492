# app.py - exam analytics HTTP surface
# - Stateless: every request carries the prior attempt log and mastery ledger
# - Config is validated at the boundary; invalid settings map to 422

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from classification import build_classification_tree, resolve_selection, scope_counts
from engines.exam_scorer import score_exam, sort_question_stats, sort_results
from engines.roster import exam_attendance, exam_metadata, exam_subjects, grade_roster, subjects_for_student
from env_validation import AnalysisConfig, ConfigInvalidError, validate_environment
from pipeline import exam_ids_in_order, process
from schemas import (
    AttemptRecord,
    ClassificationRow,
    ExamAnalysis,
    MasteryRecord,
    ProcessResult,
    QuestionRecord,
    RawResponse,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        validate_environment()
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Exam Analytics", version="1.0.0", lifespan=_lifespan)


class ProcessRequest(BaseModel):
    question_db: List[QuestionRecord] = Field(default_factory=list, alias="questionDb")
    exam_responses: List[RawResponse] = Field(default_factory=list, alias="examResponses")
    textbook_responses: List[RawResponse] = Field(default_factory=list, alias="textbookResponses")
    prior_attempts: List[AttemptRecord] = Field(default_factory=list, alias="priorAttempts")
    prior_mastery: List[MasteryRecord] = Field(default_factory=list, alias="priorMastery")
    config: Dict[str, Any] = Field(default_factory=dict)
    classification_rows: List[ClassificationRow] = Field(default_factory=list, alias="classificationRows")

    model_config = {"populate_by_name": True}


class ScoreExamRequest(BaseModel):
    questions: List[QuestionRecord] = Field(default_factory=list)
    responses: List[RawResponse] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)
    result_order: str = Field(default="rank", alias="resultOrder")
    question_order: str = Field(default="number", alias="questionOrder")

    model_config = {"populate_by_name": True}


class ClassificationRequest(BaseModel):
    rows: List[ClassificationRow] = Field(default_factory=list)
    selected: List[str] = Field(default_factory=list)


class AttendanceRequest(BaseModel):
    questions: List[QuestionRecord] = Field(default_factory=list)
    responses: List[RawResponse] = Field(default_factory=list)
    grade: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class RosterRequest(BaseModel):
    questions: List[QuestionRecord] = Field(default_factory=list)
    responses: List[RawResponse] = Field(default_factory=list)
    mastery: List[MasteryRecord] = Field(default_factory=list)


def _config_or_422(data: Optional[Dict[str, Any]]) -> AnalysisConfig:
    try:
        return AnalysisConfig.from_mapping(data or {})
    except ConfigInvalidError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/config/defaults")
def config_defaults() -> Dict[str, Any]:
    return _config_or_422({}).model_dump(mode="json", by_alias=True)


@app.post("/classification/tree")
def classification_tree(body: ClassificationRequest) -> Dict[str, Any]:
    tree = build_classification_tree(body.rows)
    selection = resolve_selection(tree, body.selected)
    return {
        "tree": tree.as_dict(),
        "paths": list(tree.paths),
        "scope": scope_counts(tree, selection).model_dump(by_alias=True),
    }


@app.post("/process", response_model=ProcessResult)
def run_process(body: ProcessRequest) -> ProcessResult:
    config = _config_or_422(body.config)
    logger.info(
        "Processing %d exam and %d textbook responses against %d questions",
        len(body.exam_responses),
        len(body.textbook_responses),
        len(body.question_db),
    )
    return process(
        body.question_db,
        body.exam_responses,
        body.textbook_responses,
        body.prior_attempts,
        body.prior_mastery,
        config,
        body.classification_rows,
    )


@app.post("/exams/{exam_id}/score", response_model=ExamAnalysis)
def run_score_exam(exam_id: str, body: ScoreExamRequest) -> ExamAnalysis:
    config = _config_or_422(body.config)
    analysis = score_exam(body.questions, body.responses, exam_id, config)
    if not analysis.analyzable:
        return analysis
    try:
        results = sort_results(analysis.results, body.result_order)  # type: ignore[arg-type]
        stats = sort_question_stats(analysis.question_stats, body.question_order)  # type: ignore[arg-type]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return analysis.model_copy(update={"results": results, "question_stats": stats})


@app.post("/exams/{exam_id}/attendance")
def run_exam_attendance(exam_id: str, body: AttendanceRequest) -> Dict[str, Any]:
    """Who of the exam's grade took it and who is missing.

    Without an explicit ``grade`` the exam's majority grade is used.
    """

    config = _config_or_422(body.config)
    analysis = score_exam(body.questions, body.responses, exam_id, config)
    if not analysis.analyzable:
        raise HTTPException(status_code=404, detail=f"Exam {analysis.exam_id} has no question bank rows")
    meta = exam_metadata(body.responses, body.questions, [analysis.exam_id])[analysis.exam_id]
    grade = body.grade or meta.grade
    attendance = exam_attendance(analysis.exam_id, grade, analysis, body.responses, body.questions)
    return {
        "examId": analysis.exam_id,
        "subject": attendance.subject,
        "grade": grade,
        "latestDate": meta.latest_date.isoformat() if meta.latest_date else None,
        "took": attendance.took,
        "missing": attendance.missing,
    }


@app.post("/roster")
def run_roster(body: RosterRequest) -> Dict[str, Any]:
    known_exams = exam_subjects(body.questions)
    exam_ids = [exam_id for exam_id in exam_ids_in_order(body.responses) if exam_id in known_exams]
    roster = grade_roster(body.mastery, body.responses)
    students = sorted({record.student_id for record in body.mastery})
    exams = exam_metadata(body.responses, body.questions, exam_ids)
    return {
        "grades": roster,
        "subjects": {student: subjects_for_student(student, body.mastery, body.questions) for student in students},
        "exams": [
            {
                "examId": meta.exam_id,
                "subject": meta.subject,
                "grade": meta.grade,
                "latestDate": meta.latest_date.isoformat() if meta.latest_date else None,
            }
            for meta in exams.values()
        ],
    }
