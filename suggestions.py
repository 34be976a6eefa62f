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
from diff_classifier import WORSE, NOISE_FLOOR_PCT

SUGGESTION_RULES = [
    ("latency", re.compile(r"response|latency|p95|p99|time", re.IGNORECASE), [
        "Optimize slow endpoints: add caching (CDN/app), reduce payloads, and batch or parallelize "
        "dependent calls.",
        "Investigate database hotspots: add indexes, analyze slow queries, and consider pagination.",
    ]),
    ("throughput", re.compile(r"throughput|rps|tps", re.IGNORECASE), [
        "Scale horizontally: increase instances or use autoscaling.",
        "Enable keep-alive and connection pooling to reduce overhead.",
    ]),
    ("errors", re.compile(r"error|fail", re.IGNORECASE), [
        "Add circuit breakers, timeouts, and retries to improve resiliency.",
        "Check dependency health (DB, cache, 3rd-party) and increase capacity or rate limits.",
    ]),
    ("cpu", re.compile(r"cpu", re.IGNORECASE), [
        "Profile CPU hotspots; optimize algorithms and avoid unnecessary JSON/serialization.",
        "Enable gzip/br compression and HTTP/2 to reduce CPU spent on IO.",
    ]),
    ("memory", re.compile(r"mem|memory", re.IGNORECASE), [
        "Find leaks with heap snapshots; reuse buffers; stream large payloads instead of loading into memory.",
        "Tune GC and object lifetimes; avoid retaining large arrays/maps.",
    ]),
]

REBASELINE_TIP = ("Baseline again with controlled environment (same dataset, warm cache) "
                  "to ensure fair comparison.")

ANOMALY_PCT = 20
HIGH_SEVERITY_PCT = 50
ANOMALY_STEPS = [
    "Review recent deployments or configuration changes",
    "Check system resource utilization",
    "Analyze error logs for this time period",
]


def is_flagged(diff, threshold_pct=NOISE_FLOOR_PCT):
    """A worse diff is flagged when it moved at least ``threshold_pct``, or when its pct is undefined."""
    return diff.trend == WORSE and (diff.pct is None or abs(diff.pct) >= threshold_pct)


def suggest(diffs):
    """Static remediation tips for every regressed metric category, deduplicated, in rule order."""
    tips = {}
    for _, pattern, category_tips in SUGGESTION_RULES:
        if any(pattern.search(diff.key) and is_flagged(diff) for diff in diffs):
            tips.update(dict.fromkeys(category_tips))
    if any(diff.trend == WORSE for diff in diffs):
        tips[REBASELINE_TIP] = None
    return list(tips)


def fallback_insights(diffs):
    """Rule-based anomaly insights for when no LLM analysis is available."""
    insights = []
    for diff in diffs:
        magnitude = abs(diff.pct or 0)
        if diff.trend != WORSE or magnitude <= ANOMALY_PCT:
            continue
        insights.append({
            "type": "anomaly",
            "severity": "high" if magnitude > HIGH_SEVERITY_PCT else "medium",
            "confidence": 0.8,
            "title": f"Significant degradation in {diff.label}",
            "description": f"{diff.label} has degraded by {magnitude:.1f}%, which exceeds normal variation.",
            "actionable_steps": list(ANOMALY_STEPS),
            "affected_metrics": [diff.key]
        })
    return insights
