#!/usr/bin/env python3
# -*- coding: utf-8 -*-


"""
Mongo Connector - Opens the MongoDB connection used for profiling.
"""

import os
import time
import logging

from pymongo import MongoClient
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class MongoConnectionError(Exception):
    """The database could not be reached; profiling cannot start."""


class MongoConnector:
    """Owns one MongoClient for the lifetime of a run."""


    def __init__(self, uri=None, db_name=None, retries=None, retry_delay=None, client_factory=MongoClient):

        self.uri = uri or os.getenv('MONGO_URI', 'mongodb://localhost:27017')

        self.db_name = db_name or os.getenv('DB_NAME', 'test')

        self.retries = retries if retries is not None else int(os.getenv('MONGO_CONNECT_RETRIES', '5'))

        self.retry_delay = retry_delay if retry_delay is not None else float(os.getenv('MONGO_CONNECT_RETRY_DELAY', '2'))

        self.client_factory = client_factory

        self.client = None


    def connect(self):
        """Connects and pings, retrying a few times. Returns the database handle."""

        options = {'serverSelectionTimeoutMS': 5000}
        # Credentials in the URI live in the admin database unless stated otherwise.
        if '@' in self.uri and 'authSource=' not in self.uri:
            options['authSource'] = 'admin'

        last_error = None
        attempts = max(1, self.retries)

        for attempt in range(1, attempts + 1):
            client = self.client_factory(self.uri, **options)
            try:
                client.admin.command('ping')
                self.client = client
                logger.info("mongo_connected db=%s attempt=%s", self.db_name, attempt)
                return client[self.db_name]
            except PyMongoError as e:
                last_error = e
                client.close()
                logger.warning("mongo_connect_failed attempt=%s/%s error=%s", attempt, attempts, str(e))
                if attempt < attempts:
                    time.sleep(self.retry_delay)

        raise MongoConnectionError(f"cannot connect to MongoDB after {attempts} attempts: {last_error}")


    def close(self):

        if self.client is not None:
            self.client.close()
            self.client = None
            logger.info("mongo_closed db=%s", self.db_name)


    def __enter__(self):
        return self.connect()


    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
