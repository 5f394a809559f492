"""Subject → unit → sub-unit classification tree used to scope topic analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple, Union

from schemas import GENERAL_SUB_UNIT_LABEL, UNCLASSIFIED_LABEL, ClassificationRow, ScopeCounts

PATH_SEPARATOR = "|"

ClassificationInput = Union[ClassificationRow, Mapping[str, Any]]

# Column headers of the classification sheet, accepted alongside the field names.
_COLUMN_ALIASES = {
    "과목명": "subject",
    "대단원": "unit",
    "소단원": "sub_unit",
    "subUnit": "sub_unit",
}


@dataclass(frozen=True)
class ClassificationTree:
    """Ordered classification hierarchy.

    ``subjects`` keeps subject and unit keys in encounter order while each
    sub-unit list is sorted; ``paths`` lists every ``subject|unit|subUnit``
    in the order it was first seen.
    """

    subjects: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    paths: Tuple[str, ...] = ()

    @property
    def sub_unit_count(self) -> int:
        return sum(len(subs) for units in self.subjects.values() for subs in units.values())

    def contains(self, path: str) -> bool:
        return path in self.paths

    def units(self, subject: str) -> List[str]:
        return list(self.subjects.get(subject, {}))

    def sub_units(self, subject: str, unit: str) -> List[str]:
        return list(self.subjects.get(subject, {}).get(unit, []))

    def as_dict(self) -> Dict[str, Dict[str, List[str]]]:
        return {subject: {unit: list(subs) for unit, subs in units.items()} for subject, units in self.subjects.items()}

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths)

    def __bool__(self) -> bool:
        return bool(self.paths)


def make_path(subject: str, unit: str, sub_unit: str) -> str:
    return PATH_SEPARATOR.join((subject, unit, sub_unit))


def _coerce_row(row: ClassificationInput) -> ClassificationRow:
    if isinstance(row, ClassificationRow):
        return row
    data = {_COLUMN_ALIASES.get(key, key): value for key, value in row.items()}
    return ClassificationRow.model_validate(data)


def build_classification_tree(rows: Iterable[ClassificationInput]) -> ClassificationTree:
    """Build the classification tree from flat classification rows."""

    subjects: Dict[str, Dict[str, List[str]]] = {}
    paths: List[str] = []

    for raw in rows:
        row = _coerce_row(raw)
        subject = row.subject or UNCLASSIFIED_LABEL
        unit = row.unit or UNCLASSIFIED_LABEL
        sub_unit = row.sub_unit or GENERAL_SUB_UNIT_LABEL

        sub_units = subjects.setdefault(subject, {}).setdefault(unit, [])
        if sub_unit in sub_units:
            continue
        sub_units.append(sub_unit)
        paths.append(make_path(subject, unit, sub_unit))

    for units in subjects.values():
        for unit in units:
            units[unit] = sorted(units[unit])

    return ClassificationTree(subjects=subjects, paths=tuple(paths))


def resolve_selection(tree: ClassificationTree, selected: Iterable[str]) -> frozenset[str]:
    """Return the effective sub-unit selection.

    An empty selection means "select all" and resolves to every path in
    ``tree``; a populated selection is returned unchanged.
    """

    chosen = frozenset(selected)
    if chosen:
        return chosen
    return frozenset(tree.paths)


def scope_counts(tree: ClassificationTree, selected: Sequence[str] | frozenset[str]) -> ScopeCounts:
    return ScopeCounts(all_sub_units=tree.sub_unit_count, selected_sub_units=len(selected))


__all__ = [
    "ClassificationTree",
    "PATH_SEPARATOR",
    "build_classification_tree",
    "make_path",
    "resolve_selection",
    "scope_counts",
]
