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
import logging
import numpy as np
from diff_classifier import IMPROVED, WORSE, SAME, UNKNOWN

logger = logging.getLogger(__name__)

LATENCY_PATTERN = re.compile(r"latency|response|time|duration|lcp|fcp|ttfb|load", re.IGNORECASE)
CENTRAL_PATTERN = re.compile(r"avg|median|p95|p99", re.IGNORECASE)

THROUGHPUT_PATTERN = re.compile(r"throughput|rps|tps", re.IGNORECASE)
ERROR_PATTERN = re.compile(r"error|fail", re.IGNORECASE)
CPU_PATTERN = re.compile(r"cpu", re.IGNORECASE)
MEMORY_PATTERN = re.compile(r"mem|heap|rss", re.IGNORECASE)

CATEGORY_PATTERNS = {
    "systemReliability": re.compile(r"error|fail|success|pass|check|uptime|availab", re.IGNORECASE),
    "performance": re.compile(r"latency|response|duration|time|throughput|rps|tps|p95|p99|cpu|mem|heap",
                              re.IGNORECASE),
    "userExperience": re.compile(r"lcp|fcp|cls|fid|inp|ttfb|load|paint|interaction", re.IGNORECASE),
}

# Google Core Web Vitals, "good" upper bounds (ms, CLS is unitless)
CORE_WEB_VITALS_THRESHOLDS = {
    "fcp": 1800,
    "lcp": 2500,
    "ttfb": 800,
    "fid": 100,
    "cls": 0.1,
}
POOR_MULTIPLIER = 1.5
VITAL_RANK = {"good": 0, "needs-improvement": 1, "poor": 2}

# (minimum regression %, label), checked top to bottom.
RISK_LEVELS = [(50, "critical"), (25, "high"), (10, "medium")]
UX_LEVELS = [(25, "poor"), (10, "degraded")]
HEALTH_LEVELS = [(50, "critical"), (10, "degraded")]
PRIORITY_LEVELS = [(50, "critical"), (25, "high"), (10, "medium")]
# (minimum share of non-regressed metrics %, status)
CATEGORY_LEVELS = [(80, "good"), (50, "warning")]

EXCELLENT_UX_IMPROVEMENT = 10
POSITIVE_SEO_IMPROVEMENT = 5
# A regression from a zero baseline has no percentage; count it as this much.
NULL_PCT_REGRESSION = 100.0
TOP_COUNT = 3


def key_tokens(key):
    """'browser_web_vital_lcp' -> {'browser', 'web', 'vital', 'lcp'}; 'lcpAvg' -> {'lcp', 'avg'}"""
    return {token.lower() for token in re.findall(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+", key)}


def _round(value):
    return None if value is None else round(float(value), 2)


def _ladder(value, levels, default):
    for minimum, label in levels:
        if value >= minimum:
            return label
    return default


def _regression(diff):
    """How much worse a diff got, as a positive percentage; 0 when it did not regress."""
    if diff.trend != WORSE:
        return 0.0
    normalized = diff.normalized_pct()
    if normalized is None:
        return NULL_PCT_REGRESSION
    return max(0.0, -normalized)


def _worst_regression(diffs, *patterns):
    regressions = [_regression(diff) for diff in diffs if any(p.search(diff.key) for p in patterns)]
    return max(regressions) if regressions else 0.0


def _best_improvement(diffs, *patterns):
    gains = [diff.normalized_pct() for diff in diffs
             if diff.trend == IMPROVED and diff.pct is not None and any(p.search(diff.key) for p in patterns)]
    return max(gains) if gains else 0.0


class ImpactAggregator:
    """
    Builds the ImpactSummary for a ComparisonResult.

    All thresholds come from the module-level tables so they can be
    read, tested and overridden without touching the scoring code.
    """

    def __init__(self, vitals_thresholds=None, poor_multiplier=POOR_MULTIPLIER):
        self.vitals_thresholds = dict(CORE_WEB_VITALS_THRESHOLDS if vitals_thresholds is None
                                      else vitals_thresholds)
        self.poor_multiplier = poor_multiplier

    def aggregate(self, result):
        """
        Args:
            result (ComparisonResult): full, untruncated comparison

        Returns:
            dict: ImpactSummary with camelCase keys
        """
        diffs = result.diffs
        improved = sum(1 for d in diffs if d.trend == IMPROVED)
        worse = sum(1 for d in diffs if d.trend == WORSE)
        latency = self.select_latency_metric(diffs)
        latency_ms, latency_pct = self.latency_improvement(latency)
        vitals = self.core_web_vitals(diffs)

        summary = {
            "improvedMetrics": improved,
            "worseMetrics": worse,
            "sameMetrics": sum(1 for d in diffs if d.trend == SAME),
            "unknownMetrics": sum(1 for d in diffs if d.trend == UNKNOWN),
            "avgPctImprovement": self.average_improvement(diffs),
            "netImprovementScore": improved - worse,
            "suggestionEffectivenessPct": _round(improved * 100 / (improved + worse)) if improved + worse else None,
            "latencyMetric": latency.key if latency else None,
            "latencyImprovementMs": latency_ms,
            "latencyImprovementPct": latency_pct,
            "performanceScore": self.performance_score(diffs),
            "categories": self.categories(diffs),
            "coreWebVitals": vitals,
            "businessImpact": self.business_impact(diffs, vitals),
            "systemHealth": self.system_health(diffs),
            "priorityIssues": self.priority_issues(diffs),
            "topImproved": self.top_metrics(diffs, improved=True),
            "topRegressed": self.top_metrics(diffs, improved=False),
        }
        return summary

    @staticmethod
    def select_latency_metric(diffs):
        """
        Pick one representative latency metric.

        Preference: an improved latency metric with an avg/median/p95/p99
        marker, then any latency metric with such a marker, then any
        latency metric. Only metrics present on both sides qualify.
        """
        candidates = [d for d in diffs if d.baseline is not None and d.current is not None
                      and LATENCY_PATTERN.search(d.key)]
        central = [d for d in candidates if CENTRAL_PATTERN.search(d.key)]
        for group in ([d for d in central if d.trend == IMPROVED], central, candidates):
            if group:
                logger.debug("Selected latency metric %s", group[0].key)
                return group[0]
        return None

    @staticmethod
    def latency_improvement(diff):
        if diff is None or diff.trend != IMPROVED:
            return None, None
        saved = diff.baseline - diff.current
        faster = saved / diff.baseline * 100 if diff.baseline else None
        return _round(saved), _round(faster)

    @staticmethod
    def average_improvement(diffs):
        gains = [d.normalized_pct() for d in diffs if d.trend == IMPROVED and d.pct is not None]
        gains = [gain for gain in gains if gain > 0]
        if not gains:
            return None
        return _round(np.mean(gains))

    @staticmethod
    def performance_score(diffs):
        """Net signed directionality in [-100, 100]: mean of normalized pct over improved and worse diffs."""
        values = np.array([d.normalized_pct() for d in diffs
                           if d.pct is not None and d.trend in (IMPROVED, WORSE)], dtype=float)
        if values.size == 0:
            return 0.0
        positive = values[values > 0].sum()
        negative = values[values < 0].sum()
        return _round(np.clip((positive + negative) / values.size, -100, 100))

    @staticmethod
    def categories(diffs):
        categories = {}
        for name, pattern in CATEGORY_PATTERNS.items():
            members = [d for d in diffs if pattern.search(d.key)]
            comparable = [d for d in members if d.trend != UNKNOWN]
            if comparable:
                healthy = sum(1 for d in comparable if d.trend != WORSE)
                score = _round(healthy * 100 / len(comparable))
                status = _ladder(score, CATEGORY_LEVELS, "critical")
            else:
                score, status = None, "unknown"
            categories[name] = {
                "score": score,
                "status": status,
                "metrics": [d.to_dict() for d in members]
            }
        return categories

    def classify_vital(self, name, value):
        threshold = self.vitals_thresholds[name]
        if value > threshold * self.poor_multiplier:
            return "poor"
        if value > threshold:
            return "needs-improvement"
        return "good"

    @staticmethod
    def find_vital(diffs, name):
        """First diff whose key has ``name`` as a word, preferring avg/median/p75/p95/p99 variants."""
        matches = [d for d in diffs if d.current is not None and name in key_tokens(d.key)]
        central = [d for d in matches if CENTRAL_PATTERN.search(d.key) or "p75" in d.key.lower()]
        if central:
            return central[0]
        return matches[0] if matches else None

    def core_web_vitals(self, diffs):
        """
        Classify current FCP/LCP/TTFB/FID/CLS values.

        Each vital found is its MetricDiff dict plus ``threshold``,
        ``status`` and ``normalizedPct``; a missing vital is None. The
        overall ``score`` is the worst status present, "good" when none is.
        """
        vitals = {}
        worst = "good"
        for name, threshold in self.vitals_thresholds.items():
            diff = self.find_vital(diffs, name)
            if diff is None:
                vitals[name] = None
                continue
            status = self.classify_vital(name, diff.current)
            vitals[name] = dict(diff.to_dict(), threshold=threshold, status=status,
                                normalizedPct=_round(diff.normalized_pct()))
            if VITAL_RANK[status] > VITAL_RANK[worst]:
                worst = status
        vitals["score"] = worst
        return vitals

    @staticmethod
    def business_impact(diffs, vitals):
        revenue_regression = _worst_regression(diffs, THROUGHPUT_PATTERN, ERROR_PATTERN)
        ux_patterns = (LATENCY_PATTERN, CPU_PATTERN, MEMORY_PATTERN)
        user_experience = _ladder(_worst_regression(diffs, *ux_patterns), UX_LEVELS, None)
        if user_experience is None:
            excellent = _best_improvement(diffs, *ux_patterns) >= EXCELLENT_UX_IMPROVEMENT
            user_experience = "excellent" if excellent else "good"

        score = vitals.get("score")
        if score == "poor":
            seo = "severe"
        elif score == "needs-improvement":
            seo = "negative"
        else:
            gains = [vital["normalizedPct"] for name, vital in vitals.items()
                     if name != "score" and vital and vital["normalizedPct"] is not None]
            seo = "positive" if gains and np.mean(gains) >= POSITIVE_SEO_IMPROVEMENT else "neutral"

        return {
            "revenueRisk": _ladder(revenue_regression, RISK_LEVELS, "low"),
            "userExperience": user_experience,
            "seoImpact": seo
        }

    @staticmethod
    def system_health(diffs):
        regression = _worst_regression(diffs, ERROR_PATTERN, CPU_PATTERN, MEMORY_PATTERN)
        return {"status": _ladder(regression, HEALTH_LEVELS, "healthy"), "worstRegressionPct": _round(regression)}

    @staticmethod
    def priority_issues(diffs):
        issues = {label: [] for _, label in PRIORITY_LEVELS}
        for diff in diffs:
            label = _ladder(_regression(diff), PRIORITY_LEVELS, None)
            if label:
                issues[label].append(diff.to_dict())
        return issues

    @staticmethod
    def top_metrics(diffs, improved=True):
        """Up to TOP_COUNT diffs whose trend and normalized sign both point the requested way."""
        trend = IMPROVED if improved else WORSE
        ranked = [(d.normalized_pct(), d) for d in diffs if d.pct is not None and d.trend == trend]
        if improved:
            ranked = sorted((r for r in ranked if r[0] > 0), key=lambda r: (-r[0], r[1].label))
        else:
            ranked = sorted((r for r in ranked if r[0] < 0), key=lambda r: (r[0], r[1].label))
        return [{"key": d.key, "label": d.label, "normalizedPct": _round(value)}
                for value, d in ranked[:TOP_COUNT]]


def aggregate(result):
    return ImpactAggregator().aggregate(result)
