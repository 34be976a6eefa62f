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

# Additive: a key collects the weight of every pattern it matches.
IMPORTANCE_WEIGHTS = [
    (re.compile(r"lcp|fcp|cls|fid|inp|ttfb"), 9),
    (re.compile(r"latency|response|duration|time|load"), 8),
    (re.compile(r"error|fail"), 8),
    (re.compile(r"throughput|rps|reqs?"), 7),
    (re.compile(r"cpu|memory|heap|rss"), 6),
    (re.compile(r"p95|p99"), 5),
    (re.compile(r"avg|median|med"), 3),
    (re.compile(r"rate"), 2),
]

# Keys with more dot segments than this lose a point per extra segment.
DEPTH_ALLOWANCE = 3


def score(key):
    lowered = key.lower()
    weight = sum(points for pattern, points in IMPORTANCE_WEIGHTS if pattern.search(lowered))
    depth = len(key.split("."))
    return weight - max(0, depth - DEPTH_ALLOWANCE)


def select_top(diffs, max_items):
    """
    Keep the ``max_items`` most important diffs, ordered by label.

    The input is returned unchanged when it already fits. Equal scores
    keep their input order.
    """
    if len(diffs) <= max_items:
        return diffs
    if max_items <= 0:
        return []
    ranked = sorted(diffs, key=lambda diff: score(diff.key), reverse=True)[:max_items]
    return sorted(ranked, key=lambda diff: (diff.label, diff.key))
