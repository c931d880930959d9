#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Data Loader - Seeds a MongoDB instance with Extended JSON test data so the
profiler has something realistic to explain against.

Files are named `<database>.<collection>.json` and hold one document or an
array of documents in Extended JSON.
"""

import os
import logging
from typing import Dict

from bson import json_util
from pymongo.errors import BulkWriteError, PyMongoError

logger = logging.getLogger(__name__)


BATCH_SIZE = 1000

# Fields that get an ascending index when the first document carries them.
INDEXED_FIELDS = ('createdAt', 'updatedAt')


class DataLoader:
    """Loads every data file of a directory into its target collection."""

    def __init__(self, client, data_dir=None, force_reload=None):
        self.client = client
        self.data_dir = data_dir or os.getenv('DATA_DIR', 'datas')
        if force_reload is None:
            force_reload = os.getenv('FORCE_RELOAD', '').lower() in ('y', 'yes', 'true', '1')
        self.force_reload = force_reload

    def load_all(self) -> Dict[str, int]:
        """Returns inserted document counts keyed by `db.collection`."""
        if not os.path.isdir(self.data_dir):
            logger.error("data_dir_missing path=%s", self.data_dir)
            return {}

        files = sorted(f for f in os.listdir(self.data_dir) if f.endswith('.json'))
        if not files:
            logger.warning("data_dir_empty path=%s", self.data_dir)
            return {}

        loaded = {}
        for filename in files:
            target = self.load_file(filename)
            if target is not None:
                loaded[target[0]] = target[1]
        return loaded

    def load_file(self, filename):
        name = filename[:-len('.json')]
        parts = name.split('.')
        if len(parts) < 2:
            logger.warning("data_file_skipped file=%s reason=expected database.collection.json", filename)
            return None

        db_name, collection_name = parts[0], '.'.join(parts[1:])
        path = os.path.join(self.data_dir, filename)

        try:
            with open(path, 'r', encoding='utf-8') as f:
                documents = json_util.loads(f.read())
        except (OSError, ValueError) as e:
            logger.error("data_file_unreadable file=%s error=%s", filename, str(e))
            return None

        if not isinstance(documents, list):
            documents = [documents]
        if not documents:
            logger.warning("data_file_empty file=%s", filename)
            return None

        collection = self.client[db_name][collection_name]
        target = f"{db_name}.{collection_name}"

        try:
            existing = collection.count_documents({})
            if existing > 0:
                if not self.force_reload:
                    logger.warning("collection_populated target=%s documents=%s skipping", target, existing)
                    return None
                logger.info("collection_clearing target=%s documents=%s", target, existing)
                collection.delete_many({})

            inserted = 0
            for start in range(0, len(documents), BATCH_SIZE):
                batch = documents[start:start + BATCH_SIZE]
                try:
                    result = collection.insert_many(batch, ordered=False)
                    inserted += len(result.inserted_ids)
                except BulkWriteError as e:
                    inserted += e.details.get('nInserted', 0)
                    logger.warning("batch_partial target=%s errors=%s", target, len(e.details.get('writeErrors', [])))
            logger.info("collection_loaded target=%s documents=%s", target, inserted)

            first = documents[0]
            for field in INDEXED_FIELDS:
                if isinstance(first, dict) and field in first:
                    collection.create_index([(field, 1)])
                    logger.info("index_created target=%s field=%s", target, field)

        except PyMongoError as e:
            logger.error("data_file_load_failed file=%s error=%s", filename, str(e))
            return None

        return target, inserted
