"""Difficulty-weighted exam scoring with dense ranking and question statistics."""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from typing import Dict, Iterable, List, Literal, Mapping, Sequence

from env_validation import AnalysisConfig
from engines.normalizer import grade_response
from schemas import (
    ExamAnalysis,
    ExamSummary,
    QuestionRecord,
    QuestionStat,
    RawResponse,
    ScoredStudent,
)

_LOGGER = logging.getLogger(__name__)

TOTAL_POINTS = 100.0

ResultOrder = Literal["rank", "name"]
QuestionOrder = Literal["number", "error"]


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a spreadsheet does (0.5 goes up), not banker's rounding."""

    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def question_points(questions: Sequence[QuestionRecord], difficulty_ratio: Mapping[str, float]) -> Dict[int, float]:
    """Allocate ``TOTAL_POINTS`` across ``questions`` in proportion to their difficulty ratio."""

    total_ratio = math.fsum(difficulty_ratio[q.difficulty] for q in questions)
    if total_ratio <= 0:
        return {q.question_number: 0.0 for q in questions}
    return {
        q.question_number: TOTAL_POINTS * difficulty_ratio[q.difficulty] / total_ratio
        for q in questions
    }


def rank_positions(scores: Sequence[float]) -> List[int]:
    """Return each score's rank: 1 + the number of strictly higher scores.

    Equal scores share a rank and the next lower score skips past them,
    so 90, 90, 80 rank as 1, 1, 3.
    """

    return [1 + sum(1 for other in scores if other > score) for score in scores]


def _first_response_per_student(responses: Iterable[RawResponse]) -> List[RawResponse]:
    earliest: "OrderedDict[str, RawResponse]" = OrderedDict()
    for response in responses:
        current = earliest.get(response.student_id)
        if current is None or response.timestamp < current.timestamp:
            earliest[response.student_id] = response
    return list(earliest.values())


def score_exam(
    questions: Sequence[QuestionRecord],
    responses: Sequence[RawResponse],
    exam_id: str,
    config: AnalysisConfig,
) -> ExamAnalysis:
    """Score every participant of ``exam_id``.

    Questions and responses belonging to other exams are ignored, so callers
    may pass whole tables. With no question rows for the exam the result is
    marked not analyzable instead of raising.
    """

    exam_id = exam_id.strip()
    exam_questions: List[QuestionRecord] = []
    seen_numbers = set()
    for question in questions:
        if question.exam_id != exam_id or question.question_number in seen_numbers:
            continue
        seen_numbers.add(question.question_number)
        exam_questions.append(question)

    if not exam_questions:
        _LOGGER.info("Exam %s has no question bank rows; skipping", exam_id)
        return ExamAnalysis.not_analyzable(exam_id)

    exam_questions.sort(key=lambda q: q.question_number)
    index = {q.key: q for q in exam_questions}
    points = question_points(exam_questions, config.difficulty_ratio)
    participants = _first_response_per_student(r for r in responses if r.exam_id == exam_id)

    graded = [grade_response(response, index) for response in participants]
    raw_scores: List[float] = []
    correct_counts: List[int] = []
    for marks in graded:
        correct = [number for number in points if marks.get(number)]
        raw_scores.append(math.fsum(points[number] for number in correct))
        correct_counts.append(len(correct))

    # compare rounded scores so float noise never counts as strictly higher
    rank_scores = [round(score, 6) for score in raw_scores]
    ranks = rank_positions(rank_scores)
    participant_count = len(participants)

    results = [
        ScoredStudent(
            exam_id=exam_id,
            student_id=response.student_id,
            grade=response.grade,
            correct_count=correct_counts[idx],
            total_weighted_score=round(raw_scores[idx], 2),
            rank=f"{ranks[idx]} / {participant_count}",
            exam_date=response.timestamp.date(),
        )
        for idx, response in enumerate(participants)
    ]

    summary = ExamSummary(
        average=round_half_up(math.fsum(raw_scores) / participant_count, 1) if participant_count else 0.0,
        max_score=round(max(raw_scores), 2) if raw_scores else 0.0,
        participant_count=participant_count,
    )

    question_stats = _question_stats(exam_questions, points, graded)

    _LOGGER.info(
        "Scored exam %s: %d participants, %d questions, average %.1f",
        exam_id,
        participant_count,
        len(exam_questions),
        summary.average,
    )
    return ExamAnalysis(
        exam_id=exam_id,
        analyzable=True,
        results=results,
        question_stats=question_stats,
        summary=summary,
    )


def _question_stats(
    questions: Sequence[QuestionRecord],
    points: Mapping[int, float],
    graded: Sequence[Mapping[int, bool]],
) -> List[QuestionStat]:
    stats: List[QuestionStat] = []
    total = len(graded)
    for question in questions:
        incorrect = sum(1 for marks in graded if not marks.get(question.question_number))
        rate = int(round_half_up(100.0 * incorrect / total)) if total else 0
        stats.append(
            QuestionStat(
                question_number=question.question_number,
                detail_type=question.detail_type,
                difficulty=question.difficulty,
                point=round(points[question.question_number], 2),
                total_attempts=total,
                incorrect_count=incorrect,
                incorrect_rate=rate,
            )
        )
    return stats


def sort_results(results: Sequence[ScoredStudent], order: ResultOrder = "rank") -> List[ScoredStudent]:
    if order == "name":
        return sorted(results, key=lambda r: r.student_id)
    if order == "rank":
        return sorted(results, key=lambda r: r.rank_position)
    raise ValueError(f"Unknown result order: {order}")


def sort_question_stats(stats: Sequence[QuestionStat], order: QuestionOrder = "number") -> List[QuestionStat]:
    if order == "error":
        return sorted(stats, key=lambda s: s.incorrect_rate, reverse=True)
    if order == "number":
        return sorted(stats, key=lambda s: s.question_number)
    raise ValueError(f"Unknown question order: {order}")


__all__ = [
    "TOTAL_POINTS",
    "question_points",
    "rank_positions",
    "round_half_up",
    "score_exam",
    "sort_question_stats",
    "sort_results",
]
