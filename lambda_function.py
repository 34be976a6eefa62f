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

import json
import logging
from os import environ
from metric_normalizer import load_report, InvalidInputError
from diff_classifier import compare_reports
from importance import select_top
from impact_aggregator import ImpactAggregator
from suggestions import suggest, fallback_insights

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    logger.addHandler(handler)
    logger.setLevel(environ.get("LOG_LEVEL", "INFO").upper())

MAX_METRICS = int(environ.get("MAX_METRICS", 25))


def lambda_handler(event, context):
    try:
        args = parse_args(event)
        if args['baseline'] is None or args['current'] is None:
            raise InvalidInputError('baseline and current reports are required',
                                    ['baseline and current reports are required'])
        body = analyze(args)
    except InvalidInputError as e:
        logger.warning(f"Rejected comparison request: {e}")
        return {
            'statusCode': 400,
            'body': json.dumps({'error': str(e), 'details': e.errors, 'warnings': e.warnings})
        }
    except Exception as e:
        from traceback import format_exc
        print(format_exc())
        return {
            'statusCode': 500,
            'body': json.dumps(str(e))
        }
    return {
        'statusCode': 200,
        'body': json.dumps(body)
    }


def analyze(args):
    """Run the whole comparison pipeline on parsed arguments and return a JSON-ready dict."""
    warnings = []
    baseline = load_report(args['baseline'], 'baseline', warnings)
    current = load_report(args['current'], 'current', warnings)

    result = compare_reports(baseline, current)
    logger.info(f"Compared {len(result.diffs)} metrics: {result.summary}")
    selected = select_top(result.diffs, args['max_metrics'])

    return {
        'baseline': baseline.to_dict(),
        'current': current.to_dict(),
        'comparison': result.to_dict(),
        'selected': [diff.to_dict() for diff in selected],
        'impact': ImpactAggregator().aggregate(result),
        'suggestions': suggest(result.diffs) if args['include_suggestions'] else [],
        'insights': fallback_insights(result.diffs),
        'systemContext': args['system_context'],
        'warnings': warnings
    }


def _as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() not in ('0', 'false', 'no', 'off', '')
    return bool(value)


def parse_args(_event):
    args = {}

    # API Gateway or direct invocation
    try:
        event = _event if not _event.get('body') else json.loads(_event['body'])
    except json.JSONDecodeError as e:
        raise InvalidInputError(f'Request body is not valid JSON: {e}', [str(e)])

    # Reports
    args['baseline'] = event.get('baseline')
    args['current'] = event.get('current')

    # Output Config
    try:
        args['max_metrics'] = int(event.get('max_metrics', MAX_METRICS))
    except (TypeError, ValueError):
        raise InvalidInputError(f"max_metrics must be an integer, got {event.get('max_metrics')!r}",
                                ['max_metrics must be an integer'])
    if event.get('include_suggestions') is None:
        args['include_suggestions'] = _as_bool(environ.get('INCLUDE_SUGGESTIONS', 'true'))
    else:
        args['include_suggestions'] = _as_bool(event.get('include_suggestions'))

    # Passed through untouched to the insight builders
    args['system_context'] = event.get('system_context') or {}

    return args
