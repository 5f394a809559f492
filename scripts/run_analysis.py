"""Run the exam analytics pipeline over a JSON input bundle and print the three output tables."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pydantic import TypeAdapter, ValidationError

from env_validation import AnalysisConfig, ConfigInvalidError, load_config_file
from pipeline import process
from schemas import AttemptRecord, ClassificationRow, MasteryRecord, QuestionRecord, RawResponse

_BUNDLE_TABLES = {
    "questionDb": List[QuestionRecord],
    "examResponses": List[RawResponse],
    "textbookResponses": List[RawResponse],
    "priorAttempts": List[AttemptRecord],
    "priorMastery": List[MasteryRecord],
    "classificationRows": List[ClassificationRow],
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--input",
        type=str,
        required=True,
        help="Path to the JSON bundle (questionDb, examResponses, textbookResponses, priorAttempts, priorMastery, classificationRows, config)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Optional JSON/YAML config file; overrides the bundle's 'config' entry",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Optional path to write the JSON result",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def _load_bundle(path: Path) -> Dict[str, Any]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Input bundle must be a JSON object")
    tables: Dict[str, Any] = {}
    for key, table_type in _BUNDLE_TABLES.items():
        tables[key] = TypeAdapter(table_type).validate_python(raw.get(key) or [])
    tables["config"] = raw.get("config") or {}
    return tables


def _write_output(report: dict, output_path: str | None) -> None:
    payload = json.dumps(report, indent=2, ensure_ascii=False)
    if output_path:
        Path(output_path).write_text(payload + "\n", encoding="utf-8")
    print(payload)


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        bundle = _load_bundle(Path(args.input))
        config = load_config_file(args.config) if args.config else AnalysisConfig.from_mapping(bundle["config"])
    except (ConfigInvalidError, ValidationError, ValueError, FileNotFoundError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    result = process(
        bundle["questionDb"],
        bundle["examResponses"],
        bundle["textbookResponses"],
        bundle["priorAttempts"],
        bundle["priorMastery"],
        config,
        bundle["classificationRows"],
    )
    _write_output(result.model_dump(mode="json", by_alias=True), args.output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
