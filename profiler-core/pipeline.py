#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Mongo Profiler pipeline - command line entry point.

    extract    scan a source tree and write queries.json
    analyze    explain every query in queries.json against MongoDB
    report     render profiler-output.json as summary and PR report
    profile    extract + analyze + report
    load-data  seed the database with Extended JSON test data
    comment    post the PR report to the current pull request
"""

import argparse
import logging
import os
import sys

from dotenv import load_dotenv
from pydantic import ValidationError

from data_loader import DataLoader
from github_reporter import GitHubReporter
from mongo_connector import MongoConnectionError, MongoConnector
from plan_executor import PlanExecutor
from profiler_logging import configure_logging
from query_extractor import QueryExtractor, QueryFileError, load_queries, save_queries
from query_models import ProfileRun, ThresholdConfig
from report_generator import NO_QUERIES_COMMENT, ReportGenerator

logger = logging.getLogger(__name__)


QUERIES_FILE = 'queries.json'
OUTPUT_FILE = 'profiler-output.json'
SUMMARY_FILE = 'profiler-summary.log'
PR_REPORT_FILE = 'pr-query-report.md'


def _reports_path(args, name):
    return os.path.join(args.reports_dir, name)


def _write_text(path, text):
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(text)


def run_extract(args) -> int:
    descriptors = QueryExtractor().extract(args.root)
    save_queries(descriptors, _reports_path(args, QUERIES_FILE))
    return 0


def run_analyze(args) -> int:
    thresholds = ThresholdConfig.from_env()
    queries_path = _reports_path(args, QUERIES_FILE)
    try:
        descriptors = load_queries(queries_path)
    except QueryFileError as e:
        logger.error("analyze_aborted error=%s", str(e))
        return 1

    if not descriptors:
        logger.info("analyze_no_queries path=%s", queries_path)
        _write_text(_reports_path(args, OUTPUT_FILE), ProfileRun().model_dump_json(indent=2))
        return 0

    connector = MongoConnector()
    try:
        database = connector.connect()
        run = PlanExecutor(database, thresholds).profile_all(descriptors)
    except MongoConnectionError as e:
        logger.error("analyze_aborted error=%s", str(e))
        return 1
    finally:
        connector.close()

    _write_text(_reports_path(args, OUTPUT_FILE), run.model_dump_json(indent=2))
    logger.info("analyze_saved path=%s results=%s", _reports_path(args, OUTPUT_FILE), len(run.results))
    return 0


def run_report(args) -> int:
    thresholds = ThresholdConfig.from_env()
    output_path = _reports_path(args, OUTPUT_FILE)
    try:
        with open(output_path, 'r', encoding='utf-8') as f:
            run = ProfileRun.model_validate_json(f.read())
    except (OSError, ValidationError) as e:
        logger.error("report_aborted path=%s error=%s", output_path, str(e))
        return 1

    generator = ReportGenerator(thresholds)
    if not run.results and not run.skipped:
        markdown = NO_QUERIES_COMMENT
    else:
        markdown = generator.render_markdown(run)

    _write_text(_reports_path(args, SUMMARY_FILE), generator.render_summary(run))
    _write_text(_reports_path(args, PR_REPORT_FILE), markdown)

    counts = run.score_counts()
    logger.info("report_saved dir=%s good=%s fair=%s poor=%s errors=%s",
        args.reports_dir, counts['Good'], counts['Fair'], counts['Poor'], run.error_count)
    if counts['Poor'] > 0:
        logger.warning("report_poor_queries count=%s see=%s", counts['Poor'], _reports_path(args, PR_REPORT_FILE))
    return 0


def run_profile(args) -> int:
    for step in (run_extract, run_analyze, run_report):
        status = step(args)
        if status != 0:
            return status
    return 0


def run_load_data(args) -> int:
    connector = MongoConnector()
    try:
        connector.connect()
        loaded = DataLoader(connector.client, data_dir=args.data_dir).load_all()
    except MongoConnectionError as e:
        logger.error("load_data_aborted error=%s", str(e))
        return 1
    finally:
        connector.close()
    logger.info("load_data_done collections=%s", len(loaded))
    return 0


def run_comment(args) -> int:
    report_path = _reports_path(args, PR_REPORT_FILE)
    try:
        with open(report_path, 'r', encoding='utf-8') as f:
            body = f.read()
    except OSError as e:
        logger.error("comment_aborted path=%s error=%s", report_path, str(e))
        return 1
    return 0 if GitHubReporter().post_comment(body) else 1


def build_parser():
    parser = argparse.ArgumentParser(prog='mongo-profiler', description='MongoDB query profiler')
    parser.add_argument('--reports-dir', default=os.getenv('REPORTS_DIR', 'reports'),
                        help='directory for queries.json and report artifacts')
    commands = parser.add_subparsers(dest='command', required=True)

    for name, handler, help_text in (
        ('extract', run_extract, 'scan source files for queries'),
        ('profile', run_profile, 'extract, analyze and report'),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument('--root', default='.', help='source tree to scan')
        sub.set_defaults(handler=handler)

    for name, handler, help_text in (
        ('analyze', run_analyze, 'explain extracted queries'),
        ('report', run_report, 'render the profiling reports'),
        ('comment', run_comment, 'post the report to the pull request'),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.set_defaults(handler=handler)

    load = commands.add_parser('load-data', help='load Extended JSON test data')
    load.add_argument('--data-dir', default=None, help='directory of <db>.<collection>.json files')
    load.set_defaults(handler=run_load_data)
    return parser


def main(argv=None) -> int:
    load_dotenv()
    configure_logging()
    args = build_parser().parse_args(argv)
    return args.handler(args)


if __name__ == '__main__':
    sys.exit(main())
