import pytest

from conftest import make_attempt
from engines.mastery import MasteryAggregator, compare_ledgers
from env_validation import AnalysisConfig
from schemas import AttemptRecord

WEIGHTS = {"상": 1.2, "중": 1.0, "하": 0.8}


def test_weighted_accuracy_with_two_attempts():
    aggregator = MasteryAggregator(WEIGHTS, recent_count=3, min_test_count=2)
    attempts = [
        make_attempt("kim", difficulty="상", correct=True, number=1),
        make_attempt("kim", difficulty="하", correct=False, number=2, minutes=5),
    ]

    records = aggregator.aggregate(attempts)

    assert len(records) == 1
    record = records[0]
    assert record.weighted_accuracy == pytest.approx(0.6)
    assert record.attempt_count == 2
    assert record.last_updated == attempts[1].timestamp


def test_single_attempt_below_gate_emits_nothing():
    aggregator = MasteryAggregator(WEIGHTS, recent_count=3, min_test_count=2)
    assert aggregator.aggregate([make_attempt("kim", difficulty="상", correct=True)]) == []


def test_gate_boundary_exactly_min_test_count():
    aggregator = MasteryAggregator(WEIGHTS, recent_count=5, min_test_count=3)
    attempts = [make_attempt("kim", number=n, minutes=n) for n in range(3)]

    assert len(aggregator.aggregate(attempts)) == 1
    assert aggregator.aggregate(attempts[:2]) == []


def test_only_recent_window_counts():
    aggregator = MasteryAggregator(WEIGHTS, recent_count=2, min_test_count=1)
    recent = [
        make_attempt("kim", number=2, minutes=20, correct=True),
        make_attempt("kim", number=3, minutes=30, correct=False),
    ]
    old_wrong = make_attempt("kim", number=1, minutes=0, correct=False)
    old_right = make_attempt("kim", number=1, minutes=0, correct=True)

    with_wrong = aggregator.aggregate([old_wrong, *recent])
    with_right = aggregator.aggregate([old_right, *recent])

    assert with_wrong == with_right
    assert with_wrong[0].attempt_count == 2
    assert with_wrong[0].weighted_accuracy == pytest.approx(0.5)


def test_pairs_are_independent_and_ordered():
    aggregator = MasteryAggregator(WEIGHTS, recent_count=5, min_test_count=1)
    attempts = [
        make_attempt("lee", detail_type="함수", number=1),
        make_attempt("kim", detail_type="집합", number=1, correct=False),
        make_attempt("kim", detail_type="명제", number=2),
    ]

    records = aggregator.aggregate(attempts)

    assert [r.key for r in records] == [("kim", "명제"), ("kim", "집합"), ("lee", "함수")]
    assert records[1].weighted_accuracy == 0.0


def test_topic_scope_limits_output_not_history():
    aggregator = MasteryAggregator(WEIGHTS, recent_count=5, min_test_count=1)
    attempts = [
        make_attempt("kim", detail_type="집합", number=1),
        make_attempt("kim", detail_type="명제", number=2),
    ]

    records = aggregator.aggregate(attempts, topics={"명제"})

    assert [r.detail_type for r in records] == ["명제"]


def test_from_config_uses_mastery_weights():
    config = AnalysisConfig(weights={"상": 3.0}, recent_count=4, min_test_count=2)
    aggregator = MasteryAggregator.from_config(config)

    assert aggregator.weights == {"상": 3.0, "중": 1.0, "하": 0.8}
    assert aggregator.recent_count == 4
    assert aggregator.min_test_count == 2


def test_compare_ledgers_counts_changes():
    aggregator = MasteryAggregator(WEIGHTS, recent_count=5, min_test_count=1)
    before = aggregator.aggregate([make_attempt("kim", detail_type="집합")])
    after = aggregator.aggregate(
        [
            make_attempt("kim", detail_type="집합"),
            make_attempt("kim", detail_type="집합", number=2, correct=False),
            make_attempt("lee", detail_type="집합"),
        ]
    )

    changes = compare_ledgers(before, after)

    assert changes.added == 1
    assert changes.changed == 1
    assert changes.removed == 0
    assert changes.unchanged == 0


def test_mixed_offset_and_naive_timestamps_aggregate():
    def attempt(number, timestamp, correct):
        return AttemptRecord.model_validate(
            {
                "studentId": "kim",
                "examId": "E1",
                "questionNumber": number,
                "detailType": "집합",
                "difficulty": "중",
                "isCorrect": correct,
                "timestamp": timestamp,
            }
        )

    attempts = [attempt(1, "2024-03-04T09:00:00", False), attempt(2, "2024-03-05T09:00:00Z", True)]
    aggregator = MasteryAggregator(WEIGHTS, recent_count=1, min_test_count=1)

    records = aggregator.aggregate(attempts)

    assert records[0].attempt_count == 1
    assert records[0].weighted_accuracy == pytest.approx(1.0)
    assert records[0].last_updated == attempts[1].timestamp
