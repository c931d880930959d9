"""Shared fixtures: explain documents and an in-memory database double."""

import copy
import os
import tempfile

import pytest

# app.py configures file logging at import time.
os.environ.setdefault('LOG_DIR', tempfile.mkdtemp(prefix='mongo-profiler-logs-'))

from query_models import QueryDescriptor, ThresholdConfig


COLLSCAN_EXPLAIN = {
    'queryPlanner': {
        'namespace': 'live.loads',
        'winningPlan': {
            'stage': 'LIMIT',
            'limitAmount': 500,
            'inputStage': {'stage': 'COLLSCAN', 'direction': 'forward'},
        },
    },
    'executionStats': {
        'executionTimeMillis': 3,
        'totalDocsExamined': 40,
        'totalKeysExamined': 0,
        'nReturned': 20,
    },
}

IXSCAN_EXPLAIN = {
    'queryPlanner': {
        'winningPlan': {
            'stage': 'FETCH',
            'inputStage': {'stage': 'IXSCAN', 'indexName': 'reference_number_1'},
        },
    },
    'executionStats': {
        'executionTimeMillis': 1,
        'totalDocsExamined': 1,
        'totalKeysExamined': 1,
        'nReturned': 1,
    },
}

EOF_EXPLAIN = {
    'queryPlanner': {'winningPlan': {'stage': 'EOF'}},
    'executionStats': {'executionTimeMillis': 0, 'totalDocsExamined': 0, 'nReturned': 0},
}


class FakeDatabase:
    """Records explain commands and answers them from canned plans."""

    def __init__(self, plans=None, errors=None, default=None):
        self.plans = plans or {}
        self.errors = errors or {}
        self.default = default if default is not None else IXSCAN_EXPLAIN
        self.commands = []

    def command(self, name, value=1, **kwargs):
        self.commands.append((name, copy.deepcopy(value), kwargs))
        collection = value.get('find') or value.get('aggregate')
        if collection in self.errors:
            raise self.errors[collection]
        return copy.deepcopy(self.plans.get(collection, self.default))


@pytest.fixture
def thresholds():
    return ThresholdConfig()


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def make_descriptor():
    def _make(raw_argument, method='find', collection='loads', pattern='direct', source_location='queries/load.js'):
        return QueryDescriptor(
            collection=collection,
            method=method,
            raw_argument=raw_argument,
            pattern=pattern,
            source_location=source_location,
        )
    return _make
