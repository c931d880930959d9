#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Mongo Profiler - HTTP service.
Exposes query extraction, plan classification and full profiling runs.
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

import os
import logging
import threading

from mongo_connector import MongoConnectionError, MongoConnector
from performance_classifier import PerformanceClassifier
from plan_executor import PlanExecutor
from profiler_logging import configure_logging
from query_extractor import QueryExtractor
from query_models import PlanMetrics, QueryDescriptor, ThresholdConfig, Verdict
from report_generator import NO_QUERIES_COMMENT, ReportGenerator


configure_logging('mongo-profiler-service.log')

logger = logging.getLogger(__name__)


VERSION = '1.0.0'

thresholds = ThresholdConfig.from_env()
query_extractor = QueryExtractor()
classifier = PerformanceClassifier(thresholds)
report_generator = ReportGenerator(thresholds)
connector = MongoConnector()

# Network callers may only scan below this directory.
scan_root = os.path.realpath(os.getenv('SCAN_ROOT', '.'))

# One client per process, and profiling batches run one after another.
_connect_lock = threading.Lock()
_profile_lock = threading.Lock()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("mongo_profiler starting version=%s db=%s", VERSION, connector.db_name)
    yield
    connector.close()
    logger.info("mongo_profiler shutting down")


app = FastAPI(title="Mongo Profiler", version=VERSION, lifespan=lifespan)


class ExtractRequest(BaseModel):
    root: str


class ClassifyRequest(BaseModel):
    metrics: PlanMetrics


class ProfileRequest(BaseModel):
    root: Optional[str] = None
    queries: Optional[List[QueryDescriptor]] = None


def get_database():
    """Database handle, connected on first use and shared afterwards."""
    with _connect_lock:
        if connector.client is not None:
            return connector.client[connector.db_name]
        try:
            return connector.connect()
        except MongoConnectionError as e:
            logger.error("database_unavailable error=%s", str(e))
            raise HTTPException(status_code=503, detail={'error': 'Database unavailable', 'message': str(e)})


def _resolve_root(root):
    """Resolves a requested root against scan_root; anything outside it is rejected."""
    resolved = os.path.realpath(os.path.join(scan_root, root))
    if os.path.commonpath([resolved, scan_root]) != scan_root:
        logger.warning("root_rejected root=%s scan_root=%s", root, scan_root)
        raise HTTPException(status_code=400, detail={'error': 'Root outside scan directory', 'root': root})
    if not os.path.isdir(resolved):
        raise HTTPException(status_code=400, detail={'error': 'Root directory not found', 'root': root})
    return resolved


@app.get('/health')
def health():
    """Health check endpoint."""
    return {
        'status': 'healthy',
        'service': 'mongo-profiler',
        'version': VERSION,
        'thresholds': thresholds.model_dump(),
    }


@app.post('/api/v1/extract')
def extract_queries(request_data: ExtractRequest):
    """Scans a source tree and returns the query descriptors found."""
    root = _resolve_root(request_data.root)
    try:
        descriptors = query_extractor.extract(root)
    except Exception as e:
        logger.exception("extract_request error=%s", str(e))
        raise HTTPException(status_code=500, detail={'error': 'Extraction failed', 'message': str(e)})
    return {'count': len(descriptors), 'queries': [d.model_dump() for d in descriptors]}


@app.post('/api/v1/classify', response_model=Verdict)
def classify_metrics(request_data: ClassifyRequest):
    """Classifies one set of plan metrics against the configured thresholds."""
    return classifier.classify(request_data.metrics)


@app.post('/api/v1/profile')
def profile_queries(request_data: ProfileRequest, database=Depends(get_database)):
    """
    Runs a full profiling batch: extraction (when a root is given),
    explain of every descriptor, classification and report rendering.
    """
    if request_data.queries is not None:
        descriptors = request_data.queries
    elif request_data.root is not None:
        descriptors = query_extractor.extract(_resolve_root(request_data.root))
    else:
        raise HTTPException(status_code=400, detail={'error': 'Either root or queries is required'})

    logger.info("profile_request queries=%s", len(descriptors))
    try:
        with _profile_lock:
            run = PlanExecutor(database, thresholds).profile_all(descriptors)
    except Exception as e:
        logger.exception("profile_request error=%s", str(e))
        raise HTTPException(status_code=500, detail={'error': 'Profiling failed', 'message': str(e)})

    report = report_generator.render_markdown(run) if descriptors else NO_QUERIES_COMMENT
    return {'run': run.model_dump(mode='json'), 'report': report}


if __name__ == '__main__':
    import uvicorn
    port = int(os.getenv('PORT', 5000))
    uvicorn.run(app, host='0.0.0.0', port=port)
