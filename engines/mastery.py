"""Recency-windowed, difficulty-weighted mastery ledger.

The ledger is recomputed from the complete attempt history on every run:
for each (student, topic) pair the most recent ``recent_count`` attempts are
kept and averaged with the configured difficulty weights. Pairs with fewer
kept attempts than ``min_test_count`` are left out entirely, which marks
insufficient evidence rather than zero mastery.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import AbstractSet, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from env_validation import AnalysisConfig
from schemas import AttemptRecord, MasteryRecord

_LOGGER = logging.getLogger(__name__)

PairKey = Tuple[str, str]


@dataclass(frozen=True)
class MasteryChanges:
    """Difference between a prior ledger and a recomputed one, by pair key."""

    added: int
    removed: int
    changed: int
    unchanged: int


class MasteryAggregator:
    """Compute :class:`MasteryRecord` rows from an attempt history.

    Parameters
    ----------
    weights:
        Difficulty label → positive weight.
    recent_count:
        Maximum number of most recent attempts considered per pair.
    min_test_count:
        Minimum number of kept attempts required before a record is emitted.
    """

    def __init__(
        self,
        weights: Mapping[str, float],
        recent_count: int = 5,
        min_test_count: int = 1,
    ) -> None:
        self.weights = dict(weights)
        self.recent_count = int(recent_count)
        self.min_test_count = int(min_test_count)

    @classmethod
    def from_config(cls, config: AnalysisConfig) -> "MasteryAggregator":
        return cls(
            weights=config.weights,
            recent_count=config.recent_count,
            min_test_count=config.min_test_count,
        )

    # ----- public API --------------------------------------------------
    def recent_window(self, attempts: Sequence[AttemptRecord]) -> List[AttemptRecord]:
        """Return the most recent ``recent_count`` attempts, newest first.

        The sort is stable, so attempts sharing a timestamp keep history order.
        """

        ordered = sorted(attempts, key=lambda attempt: attempt.timestamp, reverse=True)
        return ordered[: self.recent_count]

    def weighted_accuracy(self, attempts: Sequence[AttemptRecord]) -> float:
        total_weight = math.fsum(self.weights[a.difficulty] for a in attempts)
        if total_weight <= 0:
            return 0.0
        earned = math.fsum(self.weights[a.difficulty] for a in attempts if a.is_correct)
        return earned / total_weight

    def aggregate_pair(
        self, student_id: str, detail_type: str, attempts: Sequence[AttemptRecord]
    ) -> Optional[MasteryRecord]:
        kept = self.recent_window(attempts)
        if len(kept) < self.min_test_count:
            return None
        return MasteryRecord(
            student_id=student_id,
            detail_type=detail_type,
            attempt_count=len(kept),
            weighted_accuracy=self.weighted_accuracy(kept),
            last_updated=max(attempt.timestamp for attempt in kept),
        )

    def aggregate(
        self,
        attempts: Iterable[AttemptRecord],
        topics: Optional[AbstractSet[str]] = None,
    ) -> List[MasteryRecord]:
        """Recompute the ledger for every pair in ``attempts``.

        When ``topics`` is given, only pairs whose detail type is in it are
        emitted. Output is ordered by student id, then detail type.
        """

        grouped: Dict[PairKey, List[AttemptRecord]] = defaultdict(list)
        for attempt in attempts:
            if topics is not None and attempt.detail_type not in topics:
                continue
            grouped[(attempt.student_id, attempt.detail_type)].append(attempt)

        records: List[MasteryRecord] = []
        insufficient = 0
        for student_id, detail_type in sorted(grouped):
            record = self.aggregate_pair(student_id, detail_type, grouped[(student_id, detail_type)])
            if record is None:
                insufficient += 1
                continue
            records.append(record)

        _LOGGER.info(
            "Mastery recomputed for %d pairs: %d emitted, %d below min_test_count=%d",
            len(grouped),
            len(records),
            insufficient,
            self.min_test_count,
        )
        return records


def compare_ledgers(prior: Iterable[MasteryRecord], current: Iterable[MasteryRecord]) -> MasteryChanges:
    before = {record.key: record for record in prior}
    after = {record.key: record for record in current}
    changed = sum(
        1
        for key in before.keys() & after.keys()
        if (before[key].attempt_count, round(before[key].weighted_accuracy, 6))
        != (after[key].attempt_count, round(after[key].weighted_accuracy, 6))
    )
    shared = len(before.keys() & after.keys())
    return MasteryChanges(
        added=len(after.keys() - before.keys()),
        removed=len(before.keys() - after.keys()),
        changed=changed,
        unchanged=shared - changed,
    )


__all__ = ["MasteryAggregator", "MasteryChanges", "compare_ledgers"]
