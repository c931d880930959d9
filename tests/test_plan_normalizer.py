"""Tests for explain document normalization."""

import pytest

from plan_normalizer import PlanNodeKind, PlanNormalizer, build_plan_node, find_index_name

from conftest import COLLSCAN_EXPLAIN, EOF_EXPLAIN, IXSCAN_EXPLAIN


@pytest.fixture
def normalizer():
    return PlanNormalizer()


def _explain(winning_plan, **stats):
    return {'queryPlanner': {'winningPlan': winning_plan}, 'executionStats': stats}


class TestPlanNodes:

    def test_kinds(self):
        """Each raw shape maps to its node kind."""
        assert build_plan_node({'stage': 'COLLSCAN'}).kind is PlanNodeKind.LEAF
        assert build_plan_node({'stage': 'FETCH', 'inputStage': {'stage': 'IXSCAN'}}).kind is PlanNodeKind.WRAPPED
        assert build_plan_node({'stage': 'SHARD_MERGE', 'shards': [{'winningPlan': {'stage': 'EOF'}}]}).kind is PlanNodeKind.SHARDED
        assert build_plan_node({'stage': 'OR', 'inputStages': [{'stage': 'IXSCAN'}]}).kind is PlanNodeKind.BRANCHING

    def test_input_stage_searched_before_input_stages(self):
        """The wrapped input wins over the input stage list."""
        node = build_plan_node({
            'stage': 'X',
            'inputStage': {'stage': 'IXSCAN', 'indexName': 'a_1'},
            'inputStages': [{'stage': 'IXSCAN', 'indexName': 'b_1'}],
        })
        assert find_index_name(node) == 'a_1'


class TestNormalize:

    def test_index_scan(self, normalizer):
        metrics = normalizer.normalize(IXSCAN_EXPLAIN)
        assert metrics.index_name == 'reference_number_1'
        assert metrics.stage == 'FETCH'
        assert metrics.stages == ['FETCH', 'IXSCAN']
        assert (metrics.execution_time_ms, metrics.docs_examined, metrics.docs_returned, metrics.keys_examined) == (1, 1, 1, 1)

    def test_collection_scan_below_limit(self, normalizer):
        metrics = normalizer.normalize(COLLSCAN_EXPLAIN)
        assert metrics.index_name == 'None'
        assert metrics.stage == 'LIMIT'
        assert 'COLLSCAN' in metrics.stages
        assert metrics.efficiency == 0.5

    def test_empty_collection(self, normalizer):
        metrics = normalizer.normalize(EOF_EXPLAIN)
        assert metrics.stage == 'EOF'
        assert metrics.efficiency is None

    def test_sharded_plan(self, normalizer):
        """The first shard carrying an index supplies the index name."""
        explain = _explain({
            'stage': 'SHARD_MERGE',
            'shards': [
                {'shardName': 's0', 'winningPlan': {'stage': 'COLLSCAN'}},
                {'shardName': 's1', 'winningPlan': {'stage': 'FETCH', 'inputStage': {'stage': 'IXSCAN', 'indexName': 'status_1'}}},
                {'shardName': 's2', 'winningPlan': {'stage': 'IXSCAN', 'indexName': 'other_1'}},
            ],
        }, executionTimeMillis=7)
        metrics = normalizer.normalize(explain)
        assert metrics.index_name == 'status_1'
        assert metrics.stage == 'SHARD_MERGE'
        assert metrics.execution_time_ms == 7

    def test_sharded_plan_without_top_stage(self, normalizer):
        """The stage falls back to the first shard's winning plan."""
        explain = _explain({'shards': [{'winningPlan': {'stage': 'COLLSCAN'}}]})
        assert normalizer.normalize(explain).stage == 'COLLSCAN'

    def test_query_plan_wrapper(self, normalizer):
        """Slot based engine plans nest the tree under queryPlan."""
        explain = _explain({
            'queryPlan': {'stage': 'FETCH', 'inputStage': {'stage': 'IXSCAN', 'indexName': 'sku_1'}},
            'slotBasedPlan': {'slots': '...'},
        })
        metrics = normalizer.normalize(explain)
        assert metrics.index_name == 'sku_1'
        assert metrics.stage == 'FETCH'

    def test_aggregate_cursor_stage(self, normalizer):
        """Aggregate explains keep the find layer under $cursor."""
        explain = {'stages': [
            {'$cursor': IXSCAN_EXPLAIN},
            {'$group': {'_id': '$status'}},
        ]}
        metrics = normalizer.normalize(explain)
        assert metrics.index_name == 'reference_number_1'
        assert metrics.docs_returned == 1

    def test_branching_plan(self, normalizer):
        explain = _explain({'stage': 'SUBPLAN', 'inputStage': {'stage': 'OR', 'inputStages': [
            {'stage': 'COLLSCAN'},
            {'stage': 'IXSCAN', 'indexName': 'tags_1'},
        ]}})
        assert normalizer.normalize(explain).index_name == 'tags_1'

    def test_missing_sections_default(self, normalizer):
        """Absent statistics read as zero, absent plans as None/Unknown."""
        metrics = normalizer.normalize({})
        assert (metrics.execution_time_ms, metrics.docs_examined, metrics.docs_returned, metrics.keys_examined) == (0, 0, 0, 0)
        assert metrics.index_name == 'None'
        assert metrics.stage == 'Unknown'
        assert normalizer.normalize(None).stage == 'Unknown'

    def test_returned_count_fallback(self, normalizer):
        explain = _explain({'stage': 'COLLSCAN'}, totalDocsReturned=4, totalDocsExamined='12')
        metrics = normalizer.normalize(explain)
        assert metrics.docs_returned == 4
        assert metrics.docs_examined == 12
