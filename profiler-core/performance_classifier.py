#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Performance Classifier - Scores PlanMetrics against ThresholdConfig.
Score: Poor when any issue fired, Fair when only warnings fired, else Good.
"""

import logging

from query_models import PerformanceScore, PlanMetrics, ThresholdConfig, Verdict

logger = logging.getLogger(__name__)


EMPTY_COLLECTION_STAGE = 'EOF'
COLLECTION_SCAN_STAGE = 'COLLSCAN'


class PerformanceClassifier:
    """Pure rule evaluation; every rule runs and the findings are merged."""

    def __init__(self, thresholds: ThresholdConfig):
        self.thresholds = thresholds

    def classify(self, metrics: PlanMetrics) -> Verdict:
        t = self.thresholds

        # Nothing to scan: the other rules would only measure an empty collection.
        if metrics.stage == EMPTY_COLLECTION_STAGE:
            return Verdict(
                score=PerformanceScore.GOOD,
                suggestions=['Consider adding test data to validate query performance'],
            )

        issues = []
        warnings = []
        suggestions = []

        if metrics.execution_time_ms > t.max_execution_time_ms:
            issues.append(f"Slow query: {metrics.execution_time_ms}ms execution time "
                          f"(threshold: {t.max_execution_time_ms}ms)")
            suggestions.append('Consider optimizing query filters and adding appropriate indexes')
        elif metrics.execution_time_ms > t.warn_execution_time_ms:
            warnings.append(f"Moderate execution time: {metrics.execution_time_ms}ms "
                            f"(warning threshold: {t.warn_execution_time_ms}ms)")

        if metrics.index_name == 'None' or COLLECTION_SCAN_STAGE in (metrics.stage, *metrics.stages):
            issues.append('No index used - performs collection scan')
            suggestions.append('Consider adding an appropriate index for this query')

        if metrics.docs_examined > t.max_docs_examined:
            issues.append(f"High document examination: {metrics.docs_examined} documents scanned "
                          f"(threshold: {t.max_docs_examined})")
            suggestions.append('Query examines too many documents - consider more selective filters or better indexing')

        if metrics.docs_examined > 0 and metrics.docs_returned > 0:
            efficiency = metrics.efficiency
            if efficiency < t.min_query_efficiency:
                warnings.append(f"Low query efficiency: {efficiency * 100:.1f}% "
                                f"({metrics.docs_returned}/{metrics.docs_examined} docs, "
                                f"threshold: {t.min_query_efficiency * 100:.1f}%)")
                suggestions.append('Query examines many documents but returns few - consider more selective filters')

        if metrics.docs_examined > 0 and metrics.docs_returned == 0:
            warnings.append(f"Query examined {metrics.docs_examined} documents but returned none "
                            f"- possible inefficient query")
            suggestions.append('Review query filters to ensure they match actual data or add appropriate indexes')

        if issues:
            score = PerformanceScore.POOR
        elif warnings:
            score = PerformanceScore.FAIR
        else:
            score = PerformanceScore.GOOD

        logger.debug("classified score=%s issues=%s warnings=%s", score.value, len(issues), len(warnings))
        return Verdict(score=score, issues=issues, warnings=warnings, suggestions=suggestions)
