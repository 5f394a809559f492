"""Batch pipeline: normalize → merge → recompute mastery → score exams.

``process`` is a pure function of its inputs. Prior attempts and the prior
mastery ledger are supplied by the caller on every run and the returned
tables are fed back in as the next run's prior state.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Set, Union

from classification import ClassificationInput, build_classification_tree, resolve_selection, scope_counts
from engines.exam_scorer import score_exam
from engines.mastery import MasteryAggregator, compare_ledgers
from engines.merger import merge_attempts
from engines.normalizer import index_question_bank, normalize_responses
from env_validation import AnalysisConfig
from schemas import AttemptRecord, MasteryRecord, ProcessResult, QuestionRecord, RawResponse, ScoredStudent

_LOGGER = logging.getLogger(__name__)

ConfigInput = Union[AnalysisConfig, Mapping[str, Any], None]


class ProcessingCancelled(RuntimeError):
    """Raised when ``should_continue`` asks the pipeline to stop between stages."""


def _ensure_config(config: ConfigInput) -> AnalysisConfig:
    if isinstance(config, AnalysisConfig):
        return config
    return AnalysisConfig.from_mapping(config or {})


def _checkpoint(should_continue: Optional[Callable[[], bool]], stage: str) -> None:
    if should_continue is not None and not should_continue():
        raise ProcessingCancelled(f"Processing cancelled before {stage}")


def scoped_topics(questions: Iterable[QuestionRecord], selected: Set[str] | frozenset[str]) -> Set[str]:
    """Detail types of the questions whose classification path is selected."""

    return {q.detail_type for q in questions if q.scope_path in selected}


def exam_ids_in_order(responses: Iterable[RawResponse]) -> List[str]:
    return list(OrderedDict.fromkeys(r.exam_id for r in responses if r.exam_id))


def process(
    question_db: Sequence[QuestionRecord],
    exam_responses: Sequence[RawResponse],
    textbook_responses: Sequence[RawResponse],
    prior_attempts: Sequence[AttemptRecord],
    prior_mastery: Sequence[MasteryRecord],
    config: ConfigInput,
    classification_rows: Iterable[ClassificationInput] = (),
    *,
    should_continue: Optional[Callable[[], bool]] = None,
) -> ProcessResult:
    """Run the full pipeline and return the attempt log, mastery ledger and exam report.

    ``config`` may be an :class:`AnalysisConfig` or a raw mapping; a mapping
    is validated first and :class:`~env_validation.ConfigInvalidError` is the
    only error raised for bad settings. ``should_continue`` is polled between
    stages and between exams.
    """

    cfg = _ensure_config(config)

    tree = build_classification_tree(classification_rows)
    selection = frozenset(cfg.selected_sub_units)
    scope = scope_counts(tree, resolve_selection(tree, selection))

    index = index_question_bank(question_db)
    exam_batch = normalize_responses(exam_responses, index)
    textbook_batch = normalize_responses(textbook_responses, index)

    _checkpoint(should_continue, "merge")
    merged = merge_attempts(prior_attempts, exam_batch.attempts + textbook_batch.attempts)

    _checkpoint(should_continue, "mastery recompute")
    topics = scoped_topics(index.values(), selection) if selection else None
    mastery = MasteryAggregator.from_config(cfg).aggregate(merged.attempts, topics=topics)
    changes = compare_ledgers(prior_mastery, mastery)
    _LOGGER.info(
        "Mastery ledger vs prior: %d added, %d removed, %d changed, %d unchanged",
        changes.added,
        changes.removed,
        changes.changed,
        changes.unchanged,
    )

    exam_report: List[ScoredStudent] = []
    skipped: List[str] = []
    for exam_id in exam_ids_in_order(exam_responses):
        _checkpoint(should_continue, f"scoring exam {exam_id}")
        analysis = score_exam(question_db, exam_responses, exam_id, cfg)
        if not analysis.analyzable:
            skipped.append(exam_id)
            continue
        exam_report.extend(analysis.results)

    return ProcessResult(
        attempts=merged.attempts,
        mastery=mastery,
        exam_report=exam_report,
        classification=tree.as_dict(),
        scope=scope,
        skipped_exams=skipped,
    )


__all__ = ["ProcessingCancelled", "exam_ids_in_order", "process", "scoped_topics"]
