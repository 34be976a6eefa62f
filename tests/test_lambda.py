import json
import lambda_function
from lambda_function import lambda_handler, parse_args

BASELINE = {"name": "before", "metrics": {"responseTimeAvg": 100, "throughput": 1000, "cpu": 50}}
CURRENT = {"name": "after", "metrics": {"responseTimeAvg": 200, "throughput": 1200, "cpu": 51}}


# Argument parsing
def test_parse_args_defaults(monkeypatch):
    """max_metrics and include_suggestions fall back to their defaults"""
    monkeypatch.delenv("INCLUDE_SUGGESTIONS", raising=False)
    args = parse_args({"baseline": BASELINE, "current": CURRENT})
    assert args["max_metrics"] == lambda_function.MAX_METRICS
    assert args["include_suggestions"] is True
    assert args["system_context"] == {}


def test_parse_args_from_environment(monkeypatch):
    monkeypatch.setenv("INCLUDE_SUGGESTIONS", "false")
    assert parse_args({})["include_suggestions"] is False


def test_parse_args_from_body():
    event = {"body": json.dumps({"baseline": BASELINE, "current": CURRENT, "max_metrics": 2,
                                 "include_suggestions": "no", "system_context": {"env": "staging"}})}
    args = parse_args(event)
    assert args["baseline"] == BASELINE
    assert args["max_metrics"] == 2
    assert args["include_suggestions"] is False
    assert args["system_context"] == {"env": "staging"}


# Handler
def test_successful_comparison():
    response = lambda_handler({"baseline": BASELINE, "current": CURRENT, "system_context": {"env": "qa"}}, None)
    assert response["statusCode"] == 200
    body = json.loads(response["body"])
    assert body["comparison"]["summary"] == {"improved": 1, "worse": 1, "same": 1, "unknown": 0}
    assert body["baseline"]["name"] == "before"
    assert body["current"]["name"] == "after"
    assert len(body["selected"]) == 3
    assert body["impact"]["netImprovementScore"] == 0
    assert body["suggestions"]
    assert body["systemContext"] == {"env": "qa"}


def test_selected_metrics_are_truncated():
    response = lambda_handler({"baseline": BASELINE, "current": CURRENT, "max_metrics": 1,
                               "include_suggestions": False}, None)
    body = json.loads(response["body"])
    assert [diff["key"] for diff in body["selected"]] == ["responseTimeAvg"]
    assert body["suggestions"] == []


def test_invalid_report_is_rejected():
    response = lambda_handler({"baseline": BASELINE, "current": [1, 2]}, None)
    assert response["statusCode"] == 400
    body = json.loads(response["body"])
    assert body["details"] == ["Invalid data: must be a JSON object"]


def test_missing_reports_are_rejected():
    assert lambda_handler({}, None)["statusCode"] == 400


def test_invalid_json_body_is_rejected():
    assert lambda_handler({"body": "{not json"}, None)["statusCode"] == 400


def test_warnings_are_returned():
    current = {"metrics": dict(CURRENT["metrics"], status="ok")}
    body = json.loads(lambda_handler({"baseline": BASELINE, "current": current}, None)["body"])
    assert any(w.startswith('current: Skipping non-numeric metric "status"') for w in body["warnings"])


def test_non_integer_max_metrics_is_rejected():
    response = lambda_handler({"baseline": BASELINE, "current": CURRENT, "max_metrics": "abc"}, None)
    assert response["statusCode"] == 400
    assert json.loads(response["body"])["details"] == ["max_metrics must be an integer"]
