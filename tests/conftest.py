from __future__ import annotations

import logging

import mongomock
import pytest

from worker.app.config import AppConfig
from worker.app.mongo import ensure_indexes
from worker.app.sources import LiveSourceStore
from worker.app.store import JobStore


@pytest.fixture
def db():
    database = mongomock.MongoClient()["segment_analysis_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("tests")


@pytest.fixture
def store(db, logger) -> JobStore:
    # no retry delay so a failed job is claimable again right away
    return JobStore(db, backoff_base_seconds=0, lease_seconds=60, logger=logger)


@pytest.fixture
def sources(db) -> LiveSourceStore:
    return LiveSourceStore(db)


@pytest.fixture
def cfg() -> AppConfig:
    return AppConfig.model_validate({"worker": {"max_attempts": 3}})
