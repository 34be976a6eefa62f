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
import json
import math
import logging
from types import MappingProxyType

logger = logging.getLogger(__name__)

MAX_DEPTH = 8
RESERVED_KEYS = ("name", "timestamp")
ELIDED_SEGMENT = "values"
K6_METRIC_TYPES = ("rate", "trend", "counter", "gauge")
K6_DESCRIPTOR_KEYS = ("type", "contains")
# k6 names percentiles "p(95)" or "p(99.9)"
K6_PERCENTILE = re.compile(r"^p\((\d+)(?:\.(\d+))?\)$", re.IGNORECASE)


class InvalidInputError(ValueError):
    """
    Raised when a payload cannot be turned into a PerformanceReport.
    Keeps the validation errors and warnings for the caller.
    """

    def __init__(self, message, errors=None, warnings=None):
        super().__init__(message)
        self.errors = errors or []
        self.warnings = warnings or []


class PerformanceReport:
    """
    Canonical flat report: name, optional timestamp and a read-only
    mapping of dot-separated metric paths to floats.
    """

    __slots__ = ("_name", "_timestamp", "_metrics")

    def __init__(self, name, metrics, timestamp=None):
        self._name = name
        self._timestamp = timestamp
        self._metrics = MappingProxyType(dict(metrics))

    @property
    def name(self):
        return self._name

    @property
    def timestamp(self):
        return self._timestamp

    @property
    def metrics(self):
        return self._metrics

    def to_dict(self):
        report = {"name": self._name, "metrics": dict(self._metrics)}
        if self._timestamp is not None:
            report["timestamp"] = self._timestamp
        return report

    def __eq__(self, other):
        if not isinstance(other, PerformanceReport):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"PerformanceReport(name={self._name!r}, metrics={len(self._metrics)})"


def coerce_number(value):
    """Return a finite float for numbers and numeric strings, otherwise None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def is_k6_format(data):
    metrics = data.get("metrics")
    if not isinstance(metrics, dict):
        return False
    return any(isinstance(metric, dict) and metric.get("type") in K6_METRIC_TYPES
               and isinstance(metric.get("values"), dict)
               for metric in metrics.values())


def percentile_segment(key):
    """'p(95)' -> 'p95', 'p(99.9)' -> 'p99_9'; other segments are returned as is."""
    match = K6_PERCENTILE.match(key)
    if not match:
        return key
    whole, fraction = match.groups()
    return f"p{whole}_{fraction}" if fraction else f"p{whole}"


def flatten_metrics(node, warnings, prefix="", depth=0, skip_keys=()):
    """
    Flatten nested dicts into dot-path keys.

    A segment named ``values`` is dropped from the path, so k6 style
    ``latency.values.avg`` ends up as ``latency.avg``, and k6 percentile
    segments lose their parentheses (``p(95)`` becomes ``p95``). Dicts
    nested deeper than MAX_DEPTH are ignored. Leaves that are not finite
    numbers are dropped and reported in ``warnings``.
    """
    metrics = {}
    for key, value in node.items():
        key = percentile_segment(str(key))
        if key == ELIDED_SEGMENT:
            path = prefix or key
        else:
            path = f"{prefix}.{key}" if prefix else key

        if isinstance(value, dict):
            if depth + 1 > MAX_DEPTH:
                warnings.append(f'Ignoring metrics nested deeper than {MAX_DEPTH} levels under "{path}"')
                logger.debug("Depth guard hit at %s", path)
                continue
            child_prefix = prefix if key == ELIDED_SEGMENT else path
            nested = flatten_metrics(value, warnings, child_prefix, depth + 1, skip_keys)
            for nested_key, number in nested.items():
                _add_metric(metrics, nested_key, number, warnings)
            continue

        if key in skip_keys:
            continue

        number = coerce_number(value)
        if number is None:
            warnings.append(f'Skipping non-numeric metric "{path}": {value!r}')
            logger.debug("Dropped metric %s=%r", path, value)
            continue
        if isinstance(value, str):
            warnings.append(f'Converted string metric "{path}" to number: {value!r} -> {number}')
        _add_metric(metrics, path, number, warnings)
    return metrics


def _add_metric(metrics, key, value, warnings):
    if key in metrics:
        warnings.append(f'Duplicate metric "{key}" ignored, keeping first value {metrics[key]}')
        return
    metrics[key] = value


def validate_report(data, report_name="Unknown"):
    """
    Validate a raw payload and build a PerformanceReport from it.

    Args:
        data: dict with a ``metrics`` object, a bare metrics dict, or a JSON string of either
        report_name (str): name used when the payload carries none

    Returns:
        dict: {'valid': bool, 'errors': [...], 'warnings': [...], 'sanitized': PerformanceReport or None}
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            return {"valid": False, "errors": [f"JSON parsing error: {e}"], "warnings": [], "sanitized": None}

    if not isinstance(data, dict):
        return {"valid": False, "errors": ["Invalid data: must be a JSON object"], "warnings": [],
                "sanitized": None}

    errors = []
    warnings = []
    skip_keys = ()
    if is_k6_format(data):
        warnings.append("Detected k6 summary format")
        skip_keys = K6_DESCRIPTOR_KEYS

    if isinstance(data.get("metrics"), dict):
        source = data["metrics"]
    else:
        source = {key: value for key, value in data.items() if key not in RESERVED_KEYS}

    metrics = flatten_metrics(source, warnings, skip_keys=skip_keys)
    if not metrics:
        errors.append("No valid numeric metrics found")
        return {"valid": False, "errors": errors, "warnings": warnings, "sanitized": None}

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        name = report_name
    timestamp = data.get("timestamp")
    if timestamp is not None and not isinstance(timestamp, str):
        timestamp = str(timestamp)

    return {
        "valid": True,
        "errors": errors,
        "warnings": warnings,
        "sanitized": PerformanceReport(name, metrics, timestamp)
    }


def normalize(raw, fallback_name):
    """Return a PerformanceReport, or None when no numeric metric could be extracted."""
    result = validate_report(raw, fallback_name)
    if not result["valid"]:
        logger.debug("Could not extract report %s: %s", fallback_name, result["errors"])
        return None
    return result["sanitized"]


def load_report(raw, fallback_name, warnings=None):
    """
    Strict variant of normalize: raises InvalidInputError instead of returning None.

    Validation warnings are prefixed with ``fallback_name`` and appended
    to ``warnings`` when a list is given. The raised error carries that list.
    """
    result = validate_report(raw, fallback_name)
    prefixed = [f"{fallback_name}: {warning}" for warning in result["warnings"]]
    if warnings is not None:
        warnings.extend(prefixed)
    if not result["valid"]:
        raise InvalidInputError(f"Invalid {fallback_name} report: {'; '.join(result['errors'])}",
                                result["errors"], prefixed if warnings is None else warnings)
    for warning in prefixed:
        logger.debug(warning)
    return result["sanitized"]
