"""Append-only merge of new attempts into the prior transaction log."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Set

from schemas import AttemptRecord

_LOGGER = logging.getLogger(__name__)


@dataclass
class MergeResult:
    attempts: List[AttemptRecord] = field(default_factory=list)
    admitted: int = 0
    rejected: int = 0


def merge_attempts(existing: Sequence[AttemptRecord], incoming: Iterable[AttemptRecord]) -> MergeResult:
    """Admit incoming attempts whose ``(student, exam, question)`` key is not yet logged.

    Existing records come first, untouched and in their prior order,
    followed by the admitted records in arrival order. A key repeated inside
    ``incoming`` is admitted once (first occurrence).
    """

    seen: Set = {record.key for record in existing}
    merged = list(existing)
    result = MergeResult()

    for record in incoming:
        if record.key in seen:
            result.rejected += 1
            continue
        seen.add(record.key)
        merged.append(record)
        result.admitted += 1

    result.attempts = merged
    _LOGGER.info(
        "Merged transaction log: %d existing, %d admitted, %d duplicates rejected",
        len(existing),
        result.admitted,
        result.rejected,
    )
    return result


__all__ = ["MergeResult", "merge_attempts"]
