import asyncio
import json
from typing import Optional
from urllib.parse import urlencode

import app


async def _call_app(method: str, path: str, *, payload: Optional[dict] = None, query: Optional[dict] = None):
    body = b""
    headers = [(b"host", b"testserver")]
    if payload is not None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        headers.extend(
            [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(body)).encode()),
            ]
        )
    query_string = urlencode(query or {}, doseq=True).encode()
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method.upper(),
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "scheme": "http",
        "query_string": query_string,
        "headers": headers,
        "client": ("testclient", 12345),
        "server": ("testserver", 80),
        "state": {},
    }

    messages = []

    async def receive():
        nonlocal body
        if body:
            chunk, body = body, b""
            return {"type": "http.request", "body": chunk, "more_body": False}
        return {"type": "http.disconnect"}

    async def send(message):
        messages.append(message)

    await app.app(scope, receive, send)
    status = 500
    body_bytes = b""
    for message in messages:
        if message["type"] == "http.response.start":
            status = message["status"]
        elif message["type"] == "http.response.body":
            body_bytes += message.get("body", b"")
    data = json.loads(body_bytes.decode("utf-8") or "{}")
    return status, data


def _post(path: str, payload: dict) -> tuple[int, dict]:
    return asyncio.run(_call_app("POST", path, payload=payload))


def _get(path: str, query: Optional[dict] = None) -> tuple[int, dict]:
    return asyncio.run(_call_app("GET", path, query=query))


QUESTIONS = [
    {"examId": "E1", "questionNumber": 1, "subject": "공통수학1", "detailType": "집합", "difficulty": "상", "correctAnswer": "2"},
    {"examId": "E1", "questionNumber": 2, "subject": "공통수학1", "detailType": "명제", "difficulty": "하", "correctAnswer": "1"},
]


def _response(name: str, answers: dict, minute: int = 0) -> dict:
    return {
        "studentName": name,
        "grade": "고1",
        "examId": "E1",
        "timestamp": f"2024-03-04T09:{minute:02d}:00",
        "payload": {"kind": "answers", "answers": answers},
    }


def test_health_and_defaults():
    status, data = _get("/health")
    assert status == 200
    assert data == {"status": "ok"}

    status, data = _get("/config/defaults")
    assert status == 200
    assert data["recentCount"] == 5
    assert data["weights"]["상"] == 1.2


def test_process_endpoint_returns_three_tables():
    payload = {
        "questionDb": QUESTIONS,
        "examResponses": [_response("kim", {"1": "2", "2": "3"}), _response("lee", {"1": "2", "2": "1"}, 1)],
        "config": {"minTestCount": 1},
    }

    status, data = _post("/process", payload)

    assert status == 200
    assert len(data["attempts"]) == 4
    assert len(data["mastery"]) == 4
    ranks = {row["studentId"]: row["rank"] for row in data["examReport"]}
    assert ranks == {"kim": "2 / 2", "lee": "1 / 2"}


def test_process_endpoint_rejects_invalid_config():
    status, data = _post("/process", {"questionDb": QUESTIONS, "config": {"weights": {"상": -1}}})
    assert status == 422
    assert "Invalid analysis configuration" in data["detail"]


def test_score_exam_endpoint_orders_results():
    payload = {
        "questions": QUESTIONS,
        "responses": [_response("lee", {"1": "9"}), _response("kim", {"1": "2", "2": "1"}, 2)],
        "config": {"difficultyRatio": {"상": 1, "하": 1}},
        "resultOrder": "rank",
        "questionOrder": "error",
    }

    status, data = _post("/exams/E1/score", payload)

    assert status == 200
    assert data["analyzable"] is True
    assert [r["studentId"] for r in data["results"]] == ["kim", "lee"]
    assert data["summary"]["participantCount"] == 2
    assert data["summary"]["average"] == 50.0


def test_score_exam_endpoint_not_analyzable():
    status, data = _post("/exams/NOPE/score", {"questions": QUESTIONS, "responses": []})
    assert status == 200
    assert data["analyzable"] is False
    assert data["results"] == []


def test_classification_endpoint():
    rows = [
        {"subject": "대수", "unit": "지수", "sub_unit": "로그"},
        {"subject": "대수", "unit": "지수", "sub_unit": "거듭제곱근"},
    ]
    status, data = _post("/classification/tree", {"rows": rows})

    assert status == 200
    assert data["tree"] == {"대수": {"지수": ["거듭제곱근", "로그"]}}
    assert data["paths"] == ["대수|지수|로그", "대수|지수|거듭제곱근"]
    assert data["scope"] == {"allSubUnits": 2, "selectedSubUnits": 2}


def test_attendance_endpoint_defaults_to_majority_grade():
    questions = QUESTIONS + [
        {"examId": "E2", "questionNumber": 1, "subject": "공통수학1", "detailType": "집합", "difficulty": "중", "correctAnswer": "3"}
    ]
    responses = [
        _response("kim", {"1": "2"}),
        _response("lee", {"1": "1"}, 1),
        {**_response("choi", {"1": "2"}, 2), "grade": "고2"},
        {**_response("park", {"1": "3"}, 3), "examId": "E2"},
    ]

    status, data = _post("/exams/E1/attendance", {"questions": questions, "responses": responses})

    assert status == 200
    assert data["subject"] == "공통수학1"
    assert data["grade"] == "고1"
    assert data["took"] == ["kim", "lee"]
    assert data["missing"] == ["park"]
    assert data["latestDate"].startswith("2024-03-04T09:02:00")

    status, data = _post("/exams/E1/attendance", {"questions": questions, "responses": responses, "grade": "고2"})
    assert data["took"] == ["choi"]
    assert data["missing"] == []


def test_attendance_endpoint_unknown_exam_is_404():
    status, data = _post("/exams/NOPE/attendance", {"questions": QUESTIONS, "responses": []})
    assert status == 404
    assert "NOPE" in data["detail"]


def test_roster_endpoint_groups_students():
    mastery = [
        {"studentId": sid, "detailType": topic, "attemptCount": 1, "weightedAccuracy": 1.0, "lastUpdated": "2024-03-04T09:00:00"}
        for sid, topic in [("kim", "집합"), ("lee", "명제"), ("ghost", "명제")]
    ]
    responses = [
        _response("kim", {"1": "2"}),
        {**_response("lee", {"1": "2"}, 1), "grade": "고2"},
        {**_response("lee", {"1": "2"}, 2), "examId": "X9"},
    ]

    status, data = _post("/roster", {"questions": QUESTIONS, "responses": responses, "mastery": mastery})

    assert status == 200
    assert data["grades"] == {"고1": ["kim"], "고2": ["lee"], "미지정": ["ghost"]}
    assert data["subjects"] == {"ghost": ["공통수학1"], "kim": ["공통수학1"], "lee": ["공통수학1"]}
    assert [exam["examId"] for exam in data["exams"]] == ["E1"]
    assert data["exams"][0]["subject"] == "공통수학1"
