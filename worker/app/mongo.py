from __future__ import annotations
from pymongo import MongoClient, ASCENDING, DESCENDING

def get_mongo(mongo_uri: str, db_name: str):
    client = MongoClient(mongo_uri)
    db = client[db_name]
    return client, db

def ensure_indexes(db):
    jobs = db.analysis_jobs
    # One row per (source, window) in the job's own key space
    jobs.create_index([("windowKey", ASCENDING)], unique=True)
    # Claim order + lease sweep
    jobs.create_index([("status", ASCENDING), ("availableAt", ASCENDING), ("createdAt", ASCENDING)])
    jobs.create_index([("status", ASCENDING), ("leaseExpiresAt", ASCENDING)])
    jobs.create_index([("sourceType", ASCENDING), ("sourceId", ASCENDING)])

    db.analysis_results.create_index([("jobId", ASCENDING)], unique=True)
    db.analysis_results.create_index([("createdAt", DESCENDING)])

    events = db.analysis_events
    events.create_index([("jobId", ASCENDING)])
    events.create_index([("sourceId", ASCENDING), ("timestampSeconds", ASCENDING)])
    events.create_index([("severity", ASCENDING), ("type", ASCENDING)])

    db.live_sources.create_index([("status", ASCENDING)])
