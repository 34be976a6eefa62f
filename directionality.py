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

LOWER = "lower"
HIGHER = "higher"

# Evaluated top to bottom, first match wins.
DIRECTION_RULES = [
    (re.compile(r"(throughput|rps|tps|success|pass)", re.IGNORECASE), HIGHER),
    (re.compile(r"(latency|response|time|p\d+|error|fail|cpu|mem(ory)?)", re.IGNORECASE), LOWER),
]

# Keys matching no rule are treated as costs: lower is better.
DEFAULT_DIRECTION = LOWER


def better_when(key, rules=None):
    """
    Decide whether a lower or a higher value of ``key`` is an improvement.

    Args:
        key (str): metric key, e.g. 'latency.p95' or 'throughput'
        rules (list): optional [(compiled pattern, direction)] table, defaults to DIRECTION_RULES

    Returns:
        str: 'lower' or 'higher'
    """
    for pattern, direction in (DIRECTION_RULES if rules is None else rules):
        if pattern.search(key):
            return direction
    return DEFAULT_DIRECTION
