"""Tests for query reconstruction and explain execution."""

import json

import pytest
from bson.objectid import ObjectId
from pymongo.errors import OperationFailure

from plan_executor import PlanExecutor
from query_models import PerformanceScore, ResultRecord, SkippedQuery, ThresholdConfig

from conftest import COLLSCAN_EXPLAIN, FakeDatabase


@pytest.fixture
def executor(fake_db, thresholds):
    return PlanExecutor(fake_db, thresholds)


def _chained(operations, method='find', collection='users'):
    return dict(raw_argument=json.dumps(operations), method=method, collection=collection, pattern='chained')


class TestFindCommands:

    def test_find_is_explained_with_cap(self, executor, fake_db, make_descriptor):
        record = executor.profile(make_descriptor('{ status: "open" }'))
        name, command, options = fake_db.commands[0]
        assert name == 'explain'
        assert options == {'verbosity': 'executionStats'}
        assert command == {'find': 'loads', 'filter': {'status': 'open'}, 'limit': 500}
        assert record.verdict.score is PerformanceScore.GOOD

    def test_unindexed_lookup_is_poor(self, make_descriptor):
        """A filter on an unindexed field reports a collection scan."""
        database = FakeDatabase(plans={'loads': COLLSCAN_EXPLAIN})
        record = PlanExecutor(database).profile(make_descriptor('{ reference_number: "M002110" }'))
        assert record.metrics.index_name == 'None'
        assert 'No index used - performs collection scan' in record.verdict.issues
        assert record.verdict.score is PerformanceScore.POOR

    def test_projection_argument(self, executor, fake_db, make_descriptor):
        executor.profile(make_descriptor('{ a: 1 }, { caller: 1, _id: 0 }'))
        assert fake_db.commands[0][1]['projection'] == {'caller': 1, '_id': 0}

    def test_method_is_case_insensitive(self, executor, fake_db, make_descriptor):
        record = executor.profile(make_descriptor('{ a: 1 }', method='FIND'))
        assert not record.failed
        assert fake_db.commands[0][1]['find'] == 'loads'

    def test_writes_are_explained_as_reads(self, executor, fake_db, make_descriptor):
        """Update filters are explained as a find; the update document is ignored."""
        executor.profile(make_descriptor('{ status: "open" }, { $set: { status: "closed" } }', method='updateMany'))
        command = fake_db.commands[0][1]
        assert command['find'] == 'loads'
        assert command['filter'] == {'status': 'open'}
        assert 'update' not in command and 'updates' not in command

    def test_find_by_id(self, executor, fake_db, make_descriptor):
        oid = '64b7f0c2a1b2c3d4e5f60718'
        executor.profile(make_descriptor('"%s"' % oid, method='findById', collection='user'))
        command = fake_db.commands[0][1]
        assert command['filter'] == {'_id': ObjectId(oid)}
        assert command['limit'] == 1

    def test_distinct_filter_is_second_argument(self, executor, fake_db, make_descriptor):
        executor.profile(make_descriptor("'status', { region: 'EU' }", method='distinct'))
        assert fake_db.commands[0][1]['filter'] == {'region': 'EU'}

    def test_cap_follows_max_docs_examined(self, fake_db, make_descriptor):
        PlanExecutor(fake_db, ThresholdConfig(max_docs_examined=50)).profile(make_descriptor('{ a: 1 }'))
        assert fake_db.commands[0][1]['limit'] == 50


class TestChainedCommands:

    def test_chain_applied_in_order(self, executor, fake_db, make_descriptor):
        descriptor = make_descriptor(**_chained({
            'find': '{ age: { $gt: 30 } }',
            'limit': '10',
            'skip': '20',
            'sort': '{ name: 1 }',
            'project': '{ name: 1 }',
        }))
        record = executor.profile(descriptor)
        assert not record.failed
        command = fake_db.commands[0][1]
        assert list(command) == ['find', 'filter', 'projection', 'sort', 'skip', 'limit']
        assert command['filter'] == {'age': {'$gt': 30}}
        assert command['limit'] == 10

    def test_chain_cannot_raise_cap(self, executor, fake_db, make_descriptor):
        executor.profile(make_descriptor(**_chained({'find': '{ a: 1 }', 'limit': '100000'})))
        assert fake_db.commands[0][1]['limit'] == 500

    def test_bad_chained_modifier(self, executor, make_descriptor):
        record = executor.profile(make_descriptor(**_chained({'find': '{ a: 1 }', 'sort': 'sortSpec'})))
        assert record.error_message.startswith('InvalidQuerySyntax')


class TestAggregate:

    def test_limit_stage_appended(self, executor, fake_db, make_descriptor):
        executor.profile(make_descriptor('[{ $match: { active: true } }, { $group: { _id: "$region" } }]',
                                         method='aggregate'))
        command = fake_db.commands[0][1]
        assert command['aggregate'] == 'loads'
        assert command['pipeline'][-1] == {'$limit': 500}
        assert command['pipeline'][0] == {'$match': {'active': True}}
        assert command['cursor'] == {}

    def test_non_array_pipeline_fails_and_batch_continues(self, executor, make_descriptor):
        run = executor.profile_all([
            make_descriptor('{ $match: { active: true } }', method='aggregate'),
            make_descriptor('{ a: 1 }'),
        ])
        assert len(run.results) == 2
        assert 'InvalidPipelineShape' in run.results[0].error_message
        assert not run.results[1].failed


class TestFailures:

    def test_invalid_syntax(self, executor, make_descriptor):
        record = executor.profile(make_descriptor('{ owner: currentUser.id }'))
        assert record.error_message.startswith('InvalidQuerySyntax')

    def test_out_of_range_date(self, executor, make_descriptor):
        record = executor.profile(make_descriptor('{ createdAt: { $gt: new Date(1e20) } }'))
        assert record.error_message.startswith('InvalidQuerySyntax')

    def test_missing_collection(self, executor, make_descriptor):
        record = executor.profile(make_descriptor('{ a: 1 }', collection=None))
        assert record.error_message == 'MissingCollection: Collection name missing'

    def test_unsupported_method(self, executor, make_descriptor):
        record = executor.profile(make_descriptor('{ a: 1 }', method='bulkWrite'))
        assert record.error_message.startswith('UnsupportedMethod')

    def test_driver_error(self, make_descriptor):
        database = FakeDatabase(errors={'loads': OperationFailure('unknown operator: $foo')})
        record = PlanExecutor(database).profile(make_descriptor('{ a: { $foo: 1 } }'))
        assert record.error_message == 'ExecutionFailure: unknown operator: $foo'

    def test_unexpected_error_is_contained(self, make_descriptor):
        database = FakeDatabase(errors={'loads': RuntimeError('socket closed')})
        run = PlanExecutor(database).profile_all([
            make_descriptor('{ a: 1 }'),
            make_descriptor('{ a: 1 }', collection='users'),
        ])
        assert run.results[0].error_message == 'ExecutionFailure: socket closed'
        assert not run.results[1].failed


class TestBatch:

    def test_inserts_are_skipped_not_failed(self, executor, fake_db, make_descriptor):
        run = executor.profile_all([
            make_descriptor('[{ name: "Alice" }]', method='insertMany', collection='users'),
            make_descriptor('{ a: 1 }'),
        ])
        assert len(run.skipped) == 1
        assert isinstance(run.skipped[0], SkippedQuery)
        assert len(run.results) == 1
        assert len(fake_db.commands) == 1

    def test_duplicates_are_profiled_independently(self, executor, fake_db, make_descriptor):
        descriptor = make_descriptor('{ a: 1 }')
        run = executor.profile_all([descriptor, descriptor])
        assert len(run.results) == 2
        assert len(fake_db.commands) == 2

    def test_every_record_is_discriminated(self, executor, make_descriptor):
        run = executor.profile_all([
            make_descriptor('{ a: 1 }'),
            make_descriptor('{ a: ', method='find'),
            make_descriptor('{}', method='aggregate'),
            make_descriptor('{ a: 1 }', method='nope'),
        ])
        for record in run.results:
            succeeded = record.metrics is not None and record.verdict is not None
            assert succeeded != (record.error_message is not None)

    def test_record_rejects_mixed_outcome(self, make_descriptor, executor):
        success = executor.profile(make_descriptor('{ a: 1 }'))
        with pytest.raises(ValueError):
            ResultRecord(descriptor=success.descriptor, metrics=success.metrics,
                         verdict=success.verdict, error_message='boom')
        with pytest.raises(ValueError):
            ResultRecord(descriptor=success.descriptor)
