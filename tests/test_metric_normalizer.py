import pytest
from metric_normalizer import normalize, validate_report, load_report, InvalidInputError, PerformanceReport
from metric_normalizer import percentile_segment


def _nested(levels):
    node = {"leaf": 1}
    for i in range(levels):
        node = {f"l{i}": node}
    return node


# Flattening
def test_values_segment_is_elided():
    """latency.values.avg is flattened to latency.avg"""
    report = normalize({"metrics": {"latency": {"values": {"avg": 120}}}}, "baseline")
    assert dict(report.metrics) == {"latency.avg": 120.0}


def test_nested_metrics_use_dot_paths():
    report = normalize({"metrics": {"a": {"b": {"c": 1}}, "d": 2}}, "baseline")
    assert dict(report.metrics) == {"a.b.c": 1.0, "d": 2.0}


def test_bare_object_is_treated_as_metrics():
    """Top-level keys other than name/timestamp become metrics"""
    report = normalize({"name": "run-1", "timestamp": "2024-01-01T00:00:00Z",
                        "responseTimeAvg": 100, "cpu": "55.5"}, "fallback")
    assert report.name == "run-1"
    assert report.timestamp == "2024-01-01T00:00:00Z"
    assert dict(report.metrics) == {"responseTimeAvg": 100.0, "cpu": 55.5}


def test_duplicate_flattened_key_keeps_first_value():
    result = validate_report({"metrics": {"latency": {"values": {"avg": 1}, "avg": 2}}})
    assert dict(result["sanitized"].metrics) == {"latency.avg": 1.0}
    assert any("Duplicate metric" in warning for warning in result["warnings"])


# Numeric coercion
def test_non_finite_and_non_numeric_leaves_are_dropped():
    """NaN, infinities, booleans, lists and nulls are dropped, never defaulted to zero"""
    result = validate_report({"metrics": {
        "a": float("nan"), "b": float("inf"), "c": "inf", "d": " 12 ",
        "e": True, "f": [1, 2], "g": None, "h": 1
    }})
    assert result["valid"]
    assert dict(result["sanitized"].metrics) == {"d": 12.0, "h": 1.0}
    skipped = [w for w in result["warnings"] if w.startswith("Skipping non-numeric metric")]
    assert len(skipped) == 6
    assert any(w.startswith('Converted string metric "d"') for w in result["warnings"])


def test_no_numeric_metrics_returns_none():
    raw = {"metrics": {"a": "fast", "b": {"c": False}}}
    assert normalize(raw, "current") is None
    result = validate_report(raw, "current")
    assert not result["valid"]
    assert result["errors"] == ["No valid numeric metrics found"]


@pytest.mark.parametrize("raw", [[1, 2], 42, None, True])
def test_non_object_payload_is_invalid(raw):
    result = validate_report(raw)
    assert not result["valid"]
    assert result["errors"] == ["Invalid data: must be a JSON object"]
    assert normalize(raw, "x") is None


def test_json_string_payload_is_parsed():
    report = normalize('{"metrics": {"rps": 10}}', "current")
    assert dict(report.metrics) == {"rps": 10.0}


def test_invalid_json_string_is_reported():
    result = validate_report("{not json", "current")
    assert not result["valid"]
    assert result["errors"][0].startswith("JSON parsing error")


# Depth guard
def test_eight_levels_of_nesting_are_flattened():
    report = normalize({"metrics": _nested(8)}, "baseline")
    assert dict(report.metrics) == {"l7.l6.l5.l4.l3.l2.l1.l0.leaf": 1.0}


def test_deeper_nesting_is_ignored():
    result = validate_report({"metrics": dict(_nested(9), top=5)})
    assert dict(result["sanitized"].metrics) == {"top": 5.0}
    assert any("nested deeper than 8 levels" in w for w in result["warnings"])


# k6 exports
def test_k6_summary_is_flattened():
    raw = {"metrics": {
        "http_req_duration": {"type": "trend", "contains": "time",
                              "values": {"avg": 120.5, "p(95)": 300}},
        "http_req_failed": {"type": "rate", "contains": "default", "values": {"rate": 0.01},
                            "thresholds": {"rate<0.05": {"ok": True}}}
    }}
    result = validate_report(raw, "k6")
    assert "Detected k6 summary format" in result["warnings"]
    assert dict(result["sanitized"].metrics) == {
        "http_req_duration.avg": 120.5,
        "http_req_duration.p95": 300.0,
        "http_req_failed.rate": 0.01
    }
    assert not any('"http_req_duration.type"' in w for w in result["warnings"])


@pytest.mark.parametrize("segment, expected", [
    ("p(95)", "p95"),
    ("p(99.9)", "p99_9"),
    ("P(50)", "p50"),
    ("p95", "p95"),
    ("p(x)", "p(x)"),
])
def test_percentile_segment(segment, expected):
    assert percentile_segment(segment) == expected


# Report object
def test_name_falls_back_and_timestamp_is_stringified():
    report = normalize({"name": "", "timestamp": 1700000000, "metrics": {"a": 1}}, "baseline")
    assert report.name == "baseline"
    assert report.timestamp == "1700000000"
    assert report.to_dict() == {"name": "baseline", "timestamp": "1700000000", "metrics": {"a": 1.0}}


def test_report_metrics_are_read_only():
    report = PerformanceReport("r", {"a": 1.0})
    with pytest.raises(TypeError):
        report.metrics["b"] = 2.0


def test_load_report_raises_for_invalid_payload():
    with pytest.raises(InvalidInputError) as error:
        load_report({"metrics": {}}, "current")
    assert error.value.errors == ["No valid numeric metrics found"]
    assert "current" in str(error.value)


def test_load_report_prefixes_warnings():
    """Warnings land in the caller's list with the report name in front"""
    warnings = ["baseline: earlier"]
    report = load_report({"metrics": {"a": 1, "b": "n/a"}}, "current", warnings)
    assert dict(report.metrics) == {"a": 1.0}
    assert warnings == ["baseline: earlier", "current: Skipping non-numeric metric \"b\": 'n/a'"]


def test_load_report_error_keeps_collected_warnings():
    warnings = ["baseline: earlier"]
    with pytest.raises(InvalidInputError) as error:
        load_report({"metrics": {"b": "n/a"}}, "current", warnings)
    assert error.value.warnings == ["baseline: earlier", "current: Skipping non-numeric metric \"b\": 'n/a'"]
