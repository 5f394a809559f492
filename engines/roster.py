"""Exam metadata, grade rosters and attendance derived from response tables."""

from __future__ import annotations

import re
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set

from schemas import UNCLASSIFIED_LABEL, ExamAnalysis, MasteryRecord, QuestionRecord, RawResponse

UNASSIGNED_GRADE = "미지정"
RECENT_EXAMS_PER_SUBJECT = 5

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ExamMetadata:
    exam_id: str
    subject: str
    grade: str
    latest_date: Optional[datetime]


@dataclass
class Attendance:
    subject: str
    took: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


def clean_grade(grade: Optional[str]) -> str:
    """Collapse whitespace so '고 1' and '고1' are the same grade."""

    return _WHITESPACE.sub("", grade or "") or UNCLASSIFIED_LABEL


def exam_subjects(questions: Iterable[QuestionRecord]) -> Dict[str, str]:
    """Map each exam id to the subject of its first question bank row."""

    subjects: Dict[str, str] = {}
    for question in questions:
        if question.exam_id and question.exam_id not in subjects:
            subjects[question.exam_id] = question.subject or UNCLASSIFIED_LABEL
    return subjects


def latest_student_grades(responses: Iterable[RawResponse]) -> Dict[str, str]:
    """Return each student's grade as written on their most recent response."""

    latest: Dict[str, RawResponse] = {}
    for response in responses:
        current = latest.get(response.student_id)
        if current is None or response.timestamp > current.timestamp:
            latest[response.student_id] = response
    return {student: clean_grade(response.grade) for student, response in latest.items()}


def exam_metadata(
    responses: Sequence[RawResponse],
    questions: Sequence[QuestionRecord],
    exam_ids: Iterable[str],
) -> Dict[str, ExamMetadata]:
    """Subject, majority grade and latest response date for each analyzable exam.

    The majority grade is the most frequent grade among the exam's responses;
    the grade seen first wins a tie.
    """

    subjects = exam_subjects(questions)
    wanted = list(OrderedDict.fromkeys(exam_ids))
    grade_counts: Dict[str, Counter] = {exam_id: Counter() for exam_id in wanted}
    latest: Dict[str, datetime] = {}

    for response in responses:
        counts = grade_counts.get(response.exam_id)
        if counts is None:
            continue
        counts[clean_grade(response.grade)] += 1
        if response.exam_id not in latest or response.timestamp > latest[response.exam_id]:
            latest[response.exam_id] = response.timestamp

    meta: Dict[str, ExamMetadata] = {}
    for exam_id in wanted:
        counts = grade_counts[exam_id]
        # Counter.most_common keeps insertion order among equal counts
        grade = counts.most_common(1)[0][0] if counts else UNCLASSIFIED_LABEL
        meta[exam_id] = ExamMetadata(
            exam_id=exam_id,
            subject=subjects.get(exam_id, UNCLASSIFIED_LABEL),
            grade=grade,
            latest_date=latest.get(exam_id),
        )
    return meta


def active_students_by_subject(
    responses: Sequence[RawResponse],
    questions: Sequence[QuestionRecord],
    recent_exams: int = RECENT_EXAMS_PER_SUBJECT,
) -> Dict[str, Set[str]]:
    """Students who sat at least one of each subject's ``recent_exams`` latest exams."""

    subjects = exam_subjects(questions)
    exam_dates: Dict[str, datetime] = {}
    for response in responses:
        if response.exam_id not in exam_dates or response.timestamp > exam_dates[response.exam_id]:
            exam_dates[response.exam_id] = response.timestamp

    by_subject: Dict[str, List[str]] = {}
    for exam_id, _ in sorted(exam_dates.items(), key=lambda item: item[1], reverse=True):
        by_subject.setdefault(subjects.get(exam_id, UNCLASSIFIED_LABEL), []).append(exam_id)

    active: Dict[str, Set[str]] = {}
    for subject, exam_ids in by_subject.items():
        recent = set(exam_ids[:recent_exams])
        active[subject] = {r.student_id for r in responses if r.exam_id in recent}
    return active


def exam_attendance(
    exam_id: str,
    grade: str,
    analysis: ExamAnalysis,
    responses: Sequence[RawResponse],
    questions: Sequence[QuestionRecord],
) -> Attendance:
    """Split the subject's active students of ``grade`` into takers and absentees."""

    subject = exam_subjects(questions).get(exam_id, UNCLASSIFIED_LABEL)
    active = active_students_by_subject(responses, questions).get(subject, set())
    took_exam = {result.student_id for result in analysis.results}
    wanted_grade = clean_grade(grade)

    attendance = Attendance(subject=subject)
    for student, student_grade in latest_student_grades(responses).items():
        if student_grade != wanted_grade or student not in active:
            continue
        if student in took_exam:
            attendance.took.append(student)
        else:
            attendance.missing.append(student)
    attendance.took.sort()
    attendance.missing.sort()
    return attendance


def grade_roster(mastery: Iterable[MasteryRecord], responses: Iterable[RawResponse]) -> Dict[str, List[str]]:
    """Group the students of the mastery ledger by the first grade recorded for them."""

    first_grade: Dict[str, str] = {}
    for response in responses:
        if response.student_id and response.student_id not in first_grade:
            first_grade[response.student_id] = response.grade or UNASSIGNED_GRADE

    roster: Dict[str, Set[str]] = {}
    for record in mastery:
        grade = first_grade.get(record.student_id, UNASSIGNED_GRADE)
        roster.setdefault(grade, set()).add(record.student_id)
    return {grade: sorted(roster[grade]) for grade in sorted(roster)}


def subjects_for_student(
    student_id: str,
    mastery: Iterable[MasteryRecord],
    questions: Iterable[QuestionRecord],
) -> List[str]:
    topic_subjects: Dict[str, str] = {}
    for question in questions:
        if question.detail_type and question.subject and question.detail_type not in topic_subjects:
            topic_subjects[question.detail_type] = question.subject
    found = {
        topic_subjects[record.detail_type]
        for record in mastery
        if record.student_id == student_id and record.detail_type in topic_subjects
    }
    return sorted(found)


__all__ = [
    "Attendance",
    "ExamMetadata",
    "active_students_by_subject",
    "clean_grade",
    "exam_attendance",
    "exam_metadata",
    "exam_subjects",
    "grade_roster",
    "latest_student_grades",
    "subjects_for_student",
]
