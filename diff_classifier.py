# Copyright 2019 getcarrier.io

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import re
from directionality import better_when, LOWER

IMPROVED = "improved"
WORSE = "worse"
SAME = "same"
UNKNOWN = "unknown"
TRENDS = (IMPROVED, WORSE, SAME, UNKNOWN)

# Changes smaller than this (in percent) are treated as noise.
NOISE_FLOOR_PCT = 5

FRIENDLY_LABELS = {
    "responseTimeAvg": "Avg Response Time (ms)",
    "responseTimeP95": "p95 Response Time (ms)",
    "responseTimeP99": "p99 Response Time (ms)",
    "latencyAvg": "Avg Latency (ms)",
    "throughput": "Throughput (req/s)",
    "rps": "Requests per Second",
    "errorRate": "Error Rate (%)",
    "failures": "Failures (%)",
    "cpu": "CPU (%)",
    "mem": "Memory",
    "memory": "Memory (MB)",
}

CAMEL_CASE = re.compile(r"([a-z0-9])([A-Z])")
PERCENTILE = re.compile(r"\bp\(?\d{2}\)?(?=\b|$)", re.IGNORECASE)


def label_for_key(key):
    """Human readable label: friendly name when known, otherwise 'responseTime_p95' -> 'response Time P95'."""
    if key in FRIENDLY_LABELS:
        return FRIENDLY_LABELS[key]
    label = CAMEL_CASE.sub(r"\1 \2", key)
    label = re.sub(r"[_.]+", " ", label).strip()
    return PERCENTILE.sub(lambda m: m.group(0).upper(), label)


class MetricDiff:
    __slots__ = ("key", "label", "baseline", "current", "change", "pct", "better_when", "trend")

    def __init__(self, key, label, baseline, current, change, pct, better_when, trend):
        self.key = key
        self.label = label
        self.baseline = baseline
        self.current = current
        self.change = change
        self.pct = pct
        self.better_when = better_when
        self.trend = trend

    def normalized_pct(self):
        """Percent change with the sign flipped so that an improvement is always positive."""
        if self.pct is None:
            return None
        return -self.pct if self.better_when == LOWER else self.pct

    def to_dict(self):
        return {
            "key": self.key,
            "label": self.label,
            "baseline": self.baseline,
            "current": self.current,
            "change": self.change,
            "pct": self.pct,
            "betterWhen": self.better_when,
            "trend": self.trend
        }

    def __eq__(self, other):
        if not isinstance(other, MetricDiff):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"MetricDiff(key={self.key!r}, pct={self.pct!r}, trend={self.trend!r})"


class ComparisonResult:
    """Diffs sorted by label plus per-trend counts."""

    def __init__(self, diffs):
        self.diffs = diffs
        self.summary = summarize(diffs)

    def to_dict(self):
        return {
            "diffs": [diff.to_dict() for diff in self.diffs],
            "summary": dict(self.summary)
        }


def summarize(diffs):
    summary = {trend: 0 for trend in TRENDS}
    for diff in diffs:
        summary[diff.trend] += 1
    return summary


def classify_trend(change, pct, direction):
    if change is None:
        return UNKNOWN
    if pct is None:
        # baseline was zero, only the sign of the change is known
        if change == 0:
            return SAME
    elif abs(pct) < NOISE_FLOOR_PCT:
        return SAME
    if direction == LOWER:
        return IMPROVED if change < 0 else WORSE
    return IMPROVED if change > 0 else WORSE


def diff_metric(key, baseline_value, current_value):
    direction = better_when(key)
    change = pct = None
    if baseline_value is not None and current_value is not None:
        change = current_value - baseline_value
        if baseline_value != 0:
            pct = change / baseline_value * 100
    return MetricDiff(key, label_for_key(key), baseline_value, current_value, change, pct, direction,
                      classify_trend(change, pct, direction))


def compare_reports(baseline, current):
    """
    Compare two PerformanceReports metric by metric.

    Every key present in either report gets a MetricDiff. Keys missing
    on one side have a None value there and an 'unknown' trend.

    Returns:
        ComparisonResult: diffs sorted by label (ties broken by key) and trend counts
    """
    keys = set(baseline.metrics) | set(current.metrics)
    diffs = [diff_metric(key, baseline.metrics.get(key), current.metrics.get(key)) for key in keys]
    diffs.sort(key=lambda diff: (diff.label, diff.key))
    return ComparisonResult(diffs)
