#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Report Generator - Renders a ProfileRun as a pull-request markdown report
and as a plain-text summary. No classification happens here.
"""

import logging
from typing import List

from query_models import PerformanceScore, ProfileRun, ThresholdConfig

logger = logging.getLogger(__name__)


_SCORE_ICONS = {
    PerformanceScore.GOOD: '✅',
    PerformanceScore.FAIR: '⚠️',
    PerformanceScore.POOR: '❌',
}

NO_QUERIES_COMMENT = """## 🔍 MongoDB Query Profiler Results

**No MongoDB queries detected** in this PR.

The profiler scans for:
- MongoDB Driver patterns: `db.collection('name').find({})`
- Chained operations: `db.collection('name').find({}).project().sort()`
- Model calls: `User.findById()`, `Product.aggregate([])`
"""


class ReportGenerator:

    def __init__(self, thresholds: ThresholdConfig):
        self.thresholds = thresholds

    def render_markdown(self, run: ProfileRun) -> str:
        """Markdown report for a PR comment."""
        t = self.thresholds
        lines = [
            '# MongoDB Query Performance Report',
            '',
            'This report analyzes the performance of MongoDB queries found in the codebase.',
            '',
            '## Performance Thresholds',
            '',
            f"- **Slow Query**: > {t.max_execution_time_ms}ms execution time",
            f"- **Warning**: > {t.warn_execution_time_ms}ms execution time",
            f"- **High Document Examination**: > {t.max_docs_examined} documents scanned",
            f"- **Low Efficiency**: < {t.min_query_efficiency * 100:.1f}% query efficiency",
            '',
            '## Summary',
            '',
            f"- **Total Queries Analyzed**: {len(run.results)}",
            f"- **Successful Analysis**: {run.success_count}",
            f"- **Errors**: {run.error_count}",
        ]
        if run.skipped:
            lines.append(f"- **Skipped (no query plan)**: {len(run.skipped)}")
        lines.append('')

        counts = run.score_counts()
        lines.extend([
            '## Performance Overview',
            '',
            f"- 🟢 **Good Performance**: {counts['Good']} queries",
            f"- 🟡 **Fair Performance**: {counts['Fair']} queries",
            f"- 🔴 **Poor Performance**: {counts['Poor']} queries",
            '',
        ])
        if run.success_count == 0:
            lines.extend(['⚠️ No queries could be analyzed successfully.', ''])

        lines.extend(['## Detailed Query Analysis', ''])
        for number, record in enumerate(run.results, start=1):
            lines.extend(self._render_record(number, record))

        lines.extend(self._render_recommendations(counts))
        return '\n'.join(lines)

    def _render_record(self, number, record) -> List[str]:
        descriptor = record.descriptor
        if record.failed:
            return [
                f"### Query {number}: ❌ Error",
                f"**File**: `{descriptor.source_location}`",
                f"**Collection**: `{descriptor.collection or 'unknown'}`",
                f"**Method**: `{descriptor.method}`",
                f"**Error**: {record.error_message}",
                '',
            ]

        metrics, verdict = record.metrics, record.verdict
        lines = [
            f"### Query {number}: {_SCORE_ICONS[verdict.score]} {verdict.score.value} Performance",
            f"**File**: `{descriptor.source_location}`",
            f"**Collection**: `{descriptor.collection}`",
            f"**Method**: `{descriptor.method}`",
            f"**Execution Time**: {metrics.execution_time_ms}ms",
            f"**Index Used**: `{metrics.index_name}`",
            f"**Documents Examined**: {metrics.docs_examined}",
            f"**Documents Returned**: {metrics.docs_returned}",
        ]
        if metrics.docs_examined > 0 and metrics.docs_returned > 0:
            lines.append(f"**Query Efficiency**: {metrics.efficiency * 100:.1f}%")
        lines.append('')

        for title, entries in (('**🔴 Issues:**', verdict.issues),
                               ('**🟡 Warnings:**', verdict.warnings),
                               ('**💡 Suggestions:**', verdict.suggestions)):
            if entries:
                lines.append(title)
                lines.extend(f"- {entry}" for entry in entries)
                lines.append('')

        lines.extend([f"**Query**: `{descriptor.raw_argument}`", '', '---', ''])
        return lines

    def _render_recommendations(self, counts) -> List[str]:
        lines = ['## 🚀 Optimization Recommendations', '']
        if counts['Poor'] == 0 and counts['Fair'] == 0:
            lines.extend(['No optimization needed for the analyzed queries.', ''])
            return lines
        if counts['Poor'] > 0:
            lines.extend([
                '### High Priority',
                '- Review queries marked as "Poor Performance"',
                '- Add indexes for queries performing collection scans',
                '- Optimize query filters to be more selective',
                f"- Reduce document examination below {self.thresholds.max_docs_examined} documents",
                '',
            ])
        if counts['Fair'] > 0:
            lines.extend([
                '### Medium Priority',
                '- Monitor queries with "Fair Performance" under load',
                '- Consider compound indexes for better efficiency',
                '- Review query patterns for potential optimization',
                '',
            ])
        return lines

    def render_summary(self, run: ProfileRun) -> str:
        """Plain-text summary, one block per result."""
        lines = []
        for record in run.results:
            descriptor = record.descriptor
            if record.failed:
                lines.append(f"Error in query from file {descriptor.source_location}: {record.error_message}")
                continue
            metrics, verdict = record.metrics, record.verdict
            lines.extend([
                f"File: {descriptor.source_location}",
                f"Collection: {descriptor.collection}",
                f"Method: {descriptor.method}",
                f"Performance: {verdict.score.value}",
                f"Execution Time (ms): {metrics.execution_time_ms}",
                f"Index Used: {metrics.index_name}",
                f"Documents Examined/Returned: {metrics.docs_examined}/{metrics.docs_returned}",
            ])
            if verdict.issues:
                lines.append(f"Issues: {', '.join(verdict.issues)}")
            lines.extend([f"Query: {descriptor.raw_argument}", '---'])
        for skipped in run.skipped:
            lines.append(f"Skipped query in {skipped.descriptor.source_location}: {skipped.reason}")

        counts = run.score_counts()
        lines.append(f"Good: {counts['Good']} | Fair: {counts['Fair']} | Poor: {counts['Poor']} "
                     f"| Errors: {run.error_count}")
        logger.debug("summary_rendered results=%s", len(run.results))
        return '\n'.join(lines)
