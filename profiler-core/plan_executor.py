#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Plan Executor - Re-runs extracted queries against MongoDB with
`explain` (executionStats verbosity) and turns the plans into verdicts.

Profiling never modifies data: update, replace and delete call-sites are
explained as a `find` over their filter, and every explained read is capped
at a fixed number of documents.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from bson.objectid import ObjectId
from pymongo.errors import PyMongoError

from literal_parser import LiteralSyntaxError, parse_arguments, parse_value
from performance_classifier import PerformanceClassifier
from plan_normalizer import PlanNormalizer
from query_extractor import PATTERN_CHAINED
from query_models import (
    ErrorKind,
    ProfileRun,
    ProfilingError,
    QueryDescriptor,
    RECOGNIZED_METHODS,
    ResultRecord,
    SkippedQuery,
    ThresholdConfig,
)

logger = logging.getLogger(__name__)


DEFAULT_RESULT_LIMIT = 500

EXPLAIN_VERBOSITY = 'executionStats'

# Lower-cased method name -> canonical name.
_METHODS = {name.lower(): name for name in RECOGNIZED_METHODS}

_FILTER_FIRST = {'find', 'findOne', 'countDocuments', 'updateOne', 'updateMany',
                 'replaceOne', 'deleteOne', 'deleteMany'}
_WITH_PROJECTION = {'find', 'findOne'}
_WRITE_ONLY = {'insertOne', 'insertMany'}

# Order in which chained cursor calls are applied to the find command.
_CHAIN_ORDER = (
    ('project', 'projection'),
    ('projection', 'projection'),
    ('sort', 'sort'),
    ('skip', 'skip'),
    ('limit', 'limit'),
    ('hint', 'hint'),
    ('collation', 'collation'),
)


class SkipMarker:
    """Informational outcome for methods without plan semantics."""

    def __init__(self, reason: str):
        self.reason = reason


def reconstruct_arguments(text: str) -> List[Any]:
    """Argument text -> list of values, or InvalidQuerySyntax."""
    try:
        return parse_arguments(text)
    except LiteralSyntaxError as e:
        raise ProfilingError(ErrorKind.INVALID_QUERY_SYNTAX, str(e))


def _as_filter(value, method) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ProfilingError(ErrorKind.INVALID_QUERY_SYNTAX,
                             f"{method} filter must be an object, got {type(value).__name__}")
    return value


def _as_id(value):
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


class PlanExecutor:
    """Explains each descriptor in order; one failure never stops the batch."""

    def __init__(self, database, thresholds: Optional[ThresholdConfig] = None,
                 result_limit: Optional[int] = None, normalizer=None, classifier=None):
        self.database = database
        self.thresholds = thresholds or ThresholdConfig()
        self.result_limit = result_limit or self.thresholds.max_docs_examined or DEFAULT_RESULT_LIMIT
        self.normalizer = normalizer or PlanNormalizer()
        self.classifier = classifier or PerformanceClassifier(self.thresholds)

    # -- command construction --------------------------------------------

    def build_command(self, descriptor: QueryDescriptor) -> Union[Dict[str, Any], SkipMarker]:
        """Builds the explainable command for one descriptor."""
        if not descriptor.collection:
            raise ProfilingError(ErrorKind.MISSING_COLLECTION, 'Collection name missing')

        method = _METHODS.get(descriptor.method.lower())
        if method is None:
            raise ProfilingError(ErrorKind.UNSUPPORTED_METHOD, f"Unsupported method {descriptor.method}")

        if method in _WRITE_ONLY:
            return SkipMarker(f"{method} has no query plan to analyze")

        if descriptor.pattern == PATTERN_CHAINED:
            return self._build_chained(descriptor.collection, method, descriptor.raw_argument)

        args = reconstruct_arguments(descriptor.raw_argument)

        if method == 'aggregate':
            pipeline = args[0] if args else None
            if not isinstance(pipeline, list):
                raise ProfilingError(ErrorKind.INVALID_PIPELINE_SHAPE, 'Aggregate argument is not an array')
            return {
                'aggregate': descriptor.collection,
                'pipeline': list(pipeline) + [{'$limit': self.result_limit}],
                'cursor': {},
            }

        if method == 'findById':
            query_filter = {'_id': _as_id(args[0])} if args else {}
        elif method == 'distinct':
            query_filter = _as_filter(args[1] if len(args) > 1 else None, method)
        else:
            query_filter = _as_filter(args[0] if args else None, method)

        command = {'find': descriptor.collection, 'filter': query_filter}
        if method in _WITH_PROJECTION and len(args) > 1 and isinstance(args[1], dict):
            command['projection'] = args[1]
        command['limit'] = 1 if method in ('findOne', 'findById') else self.result_limit
        return command

    def _build_chained(self, collection, method, raw_argument):
        try:
            operations = json.loads(raw_argument)
        except ValueError as e:
            raise ProfilingError(ErrorKind.INVALID_QUERY_SYNTAX, f"Invalid chained operations: {e}")
        if not isinstance(operations, dict):
            raise ProfilingError(ErrorKind.INVALID_QUERY_SYNTAX, 'Chained operations must be an object')

        primary = reconstruct_arguments(operations.get(method, ''))

        if method == 'aggregate':
            if not primary or not isinstance(primary[0], list):
                raise ProfilingError(ErrorKind.INVALID_PIPELINE_SHAPE, 'Aggregate argument is not an array')
            return {
                'aggregate': collection,
                'pipeline': list(primary[0]) + [{'$limit': self.result_limit}],
                'cursor': {},
            }

        command = {'find': collection, 'filter': _as_filter(primary[0] if primary else None, method)}
        if method in _WITH_PROJECTION and len(primary) > 1 and isinstance(primary[1], dict):
            command['projection'] = primary[1]

        for chained_name, field in _CHAIN_ORDER:
            if chained_name not in operations:
                continue
            try:
                command[field] = parse_value(operations[chained_name])
            except LiteralSyntaxError as e:
                raise ProfilingError(ErrorKind.INVALID_QUERY_SYNTAX, f"{chained_name}: {e}")

        # The cap always wins; a chained limit may only lower it.
        chained_limit = command.get('limit')
        if isinstance(chained_limit, int) and 0 < chained_limit < self.result_limit:
            command['limit'] = chained_limit
        else:
            command['limit'] = self.result_limit
        return command

    # -- execution --------------------------------------------------------

    def explain(self, command: Dict[str, Any]) -> Dict[str, Any]:
        """Runs the explain command; driver errors become ExecutionFailure."""
        try:
            return self.database.command('explain', command, verbosity=EXPLAIN_VERBOSITY)
        except PyMongoError as e:
            raise ProfilingError(ErrorKind.EXECUTION_FAILURE, str(e))

    def profile(self, descriptor: QueryDescriptor) -> Union[ResultRecord, SkippedQuery]:
        """Profiles a single descriptor. Never raises."""
        logger.info("explain_run collection=%s method=%s pattern=%s file=%s",
            descriptor.collection, descriptor.method, descriptor.pattern, descriptor.source_location)
        try:
            command = self.build_command(descriptor)
            if isinstance(command, SkipMarker):
                logger.info("explain_skipped collection=%s method=%s reason=%s",
                    descriptor.collection, descriptor.method, command.reason)
                return SkippedQuery(descriptor=descriptor, reason=command.reason)

            plan = self.explain(command)
            metrics = self.normalizer.normalize(plan)
            verdict = self.classifier.classify(metrics)
            logger.info("explain_done collection=%s method=%s score=%s time_ms=%s index=%s",
                descriptor.collection, descriptor.method, verdict.score.value,
                metrics.execution_time_ms, metrics.index_name)
            return ResultRecord(descriptor=descriptor, metrics=metrics, verdict=verdict)

        except ProfilingError as e:
            logger.warning("explain_failed collection=%s method=%s error=%s",
                descriptor.collection, descriptor.method, str(e))
            return ResultRecord(descriptor=descriptor, error_message=str(e))
        except Exception as e:
            logger.exception("explain_error collection=%s method=%s", descriptor.collection, descriptor.method)
            error = ProfilingError(ErrorKind.EXECUTION_FAILURE, str(e))
            return ResultRecord(descriptor=descriptor, error_message=str(error))

    def profile_all(self, descriptors: List[QueryDescriptor]) -> ProfileRun:
        """Profiles descriptors strictly one at a time, in list order."""
        run = ProfileRun()
        for descriptor in descriptors:
            outcome = self.profile(descriptor)
            if isinstance(outcome, SkippedQuery):
                run.skipped.append(outcome)
            else:
                run.results.append(outcome)

        counts = run.score_counts()
        logger.info("profile_done total=%s errors=%s skipped=%s good=%s fair=%s poor=%s",
            len(descriptors), run.error_count, len(run.skipped),
            counts['Good'], counts['Fair'], counts['Poor'])
        return run
