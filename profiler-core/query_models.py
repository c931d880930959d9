#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Query Models - Data shapes shared by the extractor, the plan executor,
the classifier and the report generator.
"""

import logging
import os
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


# Methods the extractor recognizes and the executor knows how to profile.
RECOGNIZED_METHODS = (
    'find', 'findOne', 'findById', 'aggregate',
    'updateOne', 'updateMany', 'replaceOne',
    'deleteOne', 'deleteMany',
    'insertOne', 'insertMany',
    'countDocuments', 'distinct',
)


class ErrorKind(str, Enum):
    """Per-descriptor failure categories. None of them aborts a batch."""

    INVALID_QUERY_SYNTAX = 'InvalidQuerySyntax'
    MISSING_COLLECTION = 'MissingCollection'
    INVALID_PIPELINE_SHAPE = 'InvalidPipelineShape'
    UNSUPPORTED_METHOD = 'UnsupportedMethod'
    EXECUTION_FAILURE = 'ExecutionFailure'


class ProfilingError(Exception):
    """Raised while reconstructing or executing a single descriptor."""

    def __init__(self, kind: ErrorKind, detail: str):
        super().__init__(f"{kind.value}: {detail}")
        self.kind = kind
        self.detail = detail


class PerformanceScore(str, Enum):
    GOOD = 'Good'
    FAIR = 'Fair'
    POOR = 'Poor'


class QueryDescriptor(BaseModel):
    """One query call-site recovered from source text."""

    model_config = ConfigDict(frozen=True)

    collection: Optional[str] = None
    method: str
    raw_argument: str
    pattern: str
    source_location: str


class PlanMetrics(BaseModel):
    """Flat summary of one executed plan."""

    model_config = ConfigDict(frozen=True)

    execution_time_ms: int = Field(default=0, ge=0)
    docs_examined: int = Field(default=0, ge=0)
    docs_returned: int = Field(default=0, ge=0)
    keys_examined: int = Field(default=0, ge=0)
    index_name: str = 'None'
    stage: str = 'Unknown'
    stages: List[str] = Field(default_factory=list)

    @property
    def efficiency(self) -> Optional[float]:
        """Returned/examined ratio, undefined when nothing was examined."""
        if self.docs_examined > 0:
            return self.docs_returned / self.docs_examined
        return None


class Verdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: PerformanceScore
    issues: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class ThresholdConfig(BaseModel):
    """Performance thresholds. Built once at startup, never mutated."""

    model_config = ConfigDict(frozen=True)

    max_execution_time_ms: int = Field(default=100, gt=0)
    warn_execution_time_ms: int = Field(default=50, gt=0)
    max_docs_examined: int = Field(default=500, gt=0)
    min_query_efficiency: float = Field(default=0.1, ge=0.0, le=1.0)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'ThresholdConfig':
        """
        Reads MAX_EXECUTION_TIME_MS, WARN_EXECUTION_TIME_MS, MAX_DOCS_EXAMINED
        and MIN_QUERY_EFFICIENCY. Missing or unusable values keep the default.
        """
        environ = os.environ if environ is None else environ
        defaults = cls()

        def read(name, cast, default, upper=None):
            raw = environ.get(name)
            if raw is None or not raw.strip():
                return default
            try:
                value = cast(raw.strip())
            except ValueError:
                logger.warning("threshold_invalid name=%s value=%s using_default=%s", name, raw, default)
                return default
            if value <= 0 or (upper is not None and value > upper):
                logger.warning("threshold_out_of_range name=%s value=%s using_default=%s", name, raw, default)
                return default
            return value

        config = cls(
            max_execution_time_ms=read('MAX_EXECUTION_TIME_MS', int, defaults.max_execution_time_ms),
            warn_execution_time_ms=read('WARN_EXECUTION_TIME_MS', int, defaults.warn_execution_time_ms),
            max_docs_examined=read('MAX_DOCS_EXAMINED', int, defaults.max_docs_examined),
            min_query_efficiency=read('MIN_QUERY_EFFICIENCY', float, defaults.min_query_efficiency, upper=1.0),
        )
        logger.info("thresholds configured max_time_ms=%s warn_time_ms=%s max_docs=%s min_efficiency=%.2f",
            config.max_execution_time_ms, config.warn_execution_time_ms,
            config.max_docs_examined, config.min_query_efficiency)
        return config


class ResultRecord(BaseModel):
    """
    Outcome of profiling one descriptor. Either the success side
    (metrics and verdict) or error_message is set, never both.
    """

    model_config = ConfigDict(frozen=True)

    descriptor: QueryDescriptor
    metrics: Optional[PlanMetrics] = None
    verdict: Optional[Verdict] = None
    error_message: Optional[str] = None

    @model_validator(mode='after')
    def _check_outcome(self):
        succeeded = self.metrics is not None and self.verdict is not None
        partial = (self.metrics is None) != (self.verdict is None)
        if partial:
            raise ValueError('metrics and verdict must be set together')
        if succeeded == (self.error_message is not None):
            raise ValueError('exactly one of metrics+verdict or error_message must be set')
        return self

    @property
    def failed(self) -> bool:
        return self.error_message is not None


class SkippedQuery(BaseModel):
    """Descriptor attempted but without plan semantics (inserts)."""

    model_config = ConfigDict(frozen=True)

    descriptor: QueryDescriptor
    reason: str


class ProfileRun(BaseModel):
    """Everything a profiling batch produced, in descriptor order."""

    results: List[ResultRecord] = Field(default_factory=list)
    skipped: List[SkippedQuery] = Field(default_factory=list)

    def score_counts(self) -> Dict[str, int]:
        counts = {score.value: 0 for score in PerformanceScore}
        for record in self.results:
            if record.verdict is not None:
                counts[record.verdict.score.value] += 1
        return counts

    @property
    def error_count(self) -> int:
        return sum(1 for record in self.results if record.failed)

    @property
    def success_count(self) -> int:
        return len(self.results) - self.error_count
