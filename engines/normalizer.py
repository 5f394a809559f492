"""Convert raw response rows into canonical per-question attempt records.

Each response payload is a tagged variant: raw answers are graded against
the question bank's answer key, pre-graded sheets carry their correctness
flags. The tag is resolved once here; downstream stages only ever see
:class:`AttemptRecord` values.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from schemas import AnswerSheet, AttemptRecord, GradedSheet, QuestionRecord, RawResponse

_LOGGER = logging.getLogger(__name__)

QuestionIndex = Mapping[Tuple[str, int], QuestionRecord]


@dataclass
class NormalizationResult:
    """Attempts emitted from a batch of responses plus the soft-skip tally."""

    attempts: List[AttemptRecord] = field(default_factory=list)
    skipped: int = 0
    unresolved: List[Tuple[str, int]] = field(default_factory=list)


def index_question_bank(questions: Iterable[QuestionRecord]) -> Dict[Tuple[str, int], QuestionRecord]:
    """Build the ``(exam_id, question_number)`` lookup; the first record per key wins."""

    index: Dict[Tuple[str, int], QuestionRecord] = {}
    for question in questions:
        if question.key in index:
            _LOGGER.warning(
                "Duplicate question bank entry for exam %s question %s ignored",
                question.exam_id,
                question.question_number,
            )
            continue
        index[question.key] = question
    return index


def _as_number(text: str) -> Optional[float]:
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def answers_match(given: str, expected: str) -> bool:
    """Compare a student answer with the answer key.

    Blank answers never match. When both sides are numeric they are compared
    as numbers so ``"2"`` and ``"2.0"`` agree.
    """

    given = (given or "").strip()
    expected = (expected or "").strip()
    if not given or not expected:
        return False
    given_num = _as_number(given)
    expected_num = _as_number(expected)
    if given_num is not None and expected_num is not None:
        return given_num == expected_num
    return given == expected


def iter_graded(response: RawResponse) -> Iterator[Tuple[int, Optional[str], Optional[bool]]]:
    """Yield ``(question_number, answer, flag)`` for every question on the sheet.

    Exactly one of ``answer``/``flag`` is populated, depending on the payload tag.
    """

    payload = response.payload
    if isinstance(payload, AnswerSheet):
        for number in sorted(payload.answers):
            yield number, payload.answers[number], None
    elif isinstance(payload, GradedSheet):
        for number in sorted(payload.results):
            yield number, None, payload.results[number]
    else:  # pragma: no cover - discriminated union guards this
        raise TypeError(f"Unsupported response payload: {type(payload).__name__}")


def grade_answer(question: QuestionRecord, answer: Optional[str], flag: Optional[bool]) -> bool:
    if flag is not None:
        return bool(flag)
    return answers_match(answer or "", question.correct_answer)


def grade_response(response: RawResponse, index: QuestionIndex) -> Dict[int, bool]:
    """Return question number → correctness for the resolvable questions of ``response``."""

    graded: Dict[int, bool] = {}
    for number, answer, flag in iter_graded(response):
        question = index.get((response.exam_id, number))
        if question is None:
            continue
        graded[number] = grade_answer(question, answer, flag)
    return graded


def normalize_responses(
    responses: Sequence[RawResponse],
    questions: Iterable[QuestionRecord] | QuestionIndex,
) -> NormalizationResult:
    """Emit one attempt per resolvable question per response row."""

    index = questions if isinstance(questions, Mapping) else index_question_bank(questions)
    result = NormalizationResult()

    for response in responses:
        for number, answer, flag in iter_graded(response):
            question = index.get((response.exam_id, number))
            if question is None:
                _LOGGER.debug(
                    "Skipping unresolvable reference exam=%s question=%s (student %s)",
                    response.exam_id,
                    number,
                    response.student_id,
                )
                result.skipped += 1
                result.unresolved.append((response.exam_id, number))
                continue
            result.attempts.append(
                AttemptRecord(
                    student_id=response.student_id,
                    exam_id=response.exam_id,
                    question_number=number,
                    detail_type=question.detail_type,
                    difficulty=question.difficulty,
                    is_correct=grade_answer(question, answer, flag),
                    timestamp=response.timestamp,
                )
            )

    if result.skipped:
        _LOGGER.info(
            "Normalized %d attempts from %d responses; skipped %d unresolvable references",
            len(result.attempts),
            len(responses),
            result.skipped,
        )
    return result


__all__ = [
    "NormalizationResult",
    "answers_match",
    "grade_answer",
    "grade_response",
    "index_question_bank",
    "iter_graded",
    "normalize_responses",
]
