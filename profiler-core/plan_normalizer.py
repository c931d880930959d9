#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Plan Normalizer - Flattens a MongoDB explain document into PlanMetrics.

Explain output comes in several shapes: a plain stage tree, a stage tree
wrapped in `queryPlan` (slot based engine), a sharded result whose winning
plan lists one winning plan per shard, and aggregate explains that nest the
find layer under `stages[0].$cursor`. The tree is first classified into
PlanNode values and then walked depth first.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from query_models import PlanMetrics

logger = logging.getLogger(__name__)


class PlanNodeKind(Enum):
    LEAF = 'leaf'            # no children (COLLSCAN, IXSCAN, EOF, ...)
    WRAPPED = 'wrapped'      # single inputStage / queryPlan child
    SHARDED = 'sharded'      # shards[].winningPlan
    BRANCHING = 'branching'  # inputStages list (OR, SORT_MERGE, ...)


@dataclass
class PlanNode:
    kind: PlanNodeKind
    stage: Optional[str] = None
    index_name: Optional[str] = None
    children: List['PlanNode'] = field(default_factory=list)


def build_plan_node(raw: Dict[str, Any]) -> PlanNode:
    """
    Converts one raw plan object into a PlanNode tree. Children are ordered
    the way the index search visits them: the wrapped input first, then
    shard plans, then the input stage list.
    """
    kind = PlanNodeKind.LEAF
    children = []

    wrapped = raw.get('queryPlan') or raw.get('inputStage')
    if isinstance(wrapped, dict):
        kind = PlanNodeKind.WRAPPED
        children.append(build_plan_node(wrapped))

    shards = raw.get('shards')
    if isinstance(shards, list):
        for shard in shards:
            plan = shard.get('winningPlan') if isinstance(shard, dict) else None
            if isinstance(plan, dict):
                if kind is PlanNodeKind.LEAF:
                    kind = PlanNodeKind.SHARDED
                children.append(build_plan_node(plan))

    inputs = raw.get('inputStages')
    if isinstance(inputs, list):
        for child in inputs:
            if isinstance(child, dict):
                if kind is PlanNodeKind.LEAF:
                    kind = PlanNodeKind.BRANCHING
                children.append(build_plan_node(child))

    return PlanNode(kind, raw.get('stage'), raw.get('indexName'), children)


def find_index_name(node: Optional[PlanNode]) -> Optional[str]:
    """First index name found depth first; the search stops at the first hit."""
    if node is None:
        return None
    if node.index_name:
        return node.index_name
    for child in node.children:
        found = find_index_name(child)
        if found:
            return found
    return None


def find_stage(node: Optional[PlanNode]) -> Optional[str]:
    """Stage of the outermost plan, or of the first shard's plan when sharded."""
    if node is None:
        return None
    if node.stage:
        return node.stage
    if node.kind in (PlanNodeKind.SHARDED, PlanNodeKind.WRAPPED) and node.children:
        return find_stage(node.children[0])
    return None


def collect_stages(node: Optional[PlanNode]) -> List[str]:
    stages = []
    if node is None:
        return stages
    if node.stage:
        stages.append(node.stage)
    for child in node.children:
        stages.extend(collect_stages(child))
    return stages


def _to_count(value) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


class PlanNormalizer:
    """Produces a PlanMetrics record from a raw explain document."""

    def unwrap(self, explain: Dict[str, Any]) -> Dict[str, Any]:
        """Returns the section holding queryPlanner/executionStats."""
        if 'queryPlanner' in explain or 'executionStats' in explain:
            return explain
        stages = explain.get('stages')
        if isinstance(stages, list) and stages:
            first = stages[0]
            if isinstance(first, dict) and isinstance(first.get('$cursor'), dict):
                return first['$cursor']
        return explain

    def normalize(self, explain: Optional[Dict[str, Any]]) -> PlanMetrics:
        section = self.unwrap(explain or {})

        winning = (section.get('queryPlanner') or {}).get('winningPlan')
        root = build_plan_node(winning) if isinstance(winning, dict) else None

        stats = section.get('executionStats') or {}
        returned = stats.get('nReturned', stats.get('totalDocsReturned'))

        metrics = PlanMetrics(
            execution_time_ms=_to_count(stats.get('executionTimeMillis')),
            docs_examined=_to_count(stats.get('totalDocsExamined')),
            docs_returned=_to_count(returned),
            keys_examined=_to_count(stats.get('totalKeysExamined')),
            index_name=find_index_name(root) or 'None',
            stage=find_stage(root) or 'Unknown',
            stages=collect_stages(root),
        )
        logger.debug("plan_normalized stage=%s index=%s time_ms=%s examined=%s returned=%s",
            metrics.stage, metrics.index_name, metrics.execution_time_ms,
            metrics.docs_examined, metrics.docs_returned)
        return metrics
