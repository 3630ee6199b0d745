"""
Data Ingestion Module
"""
from .sync_job import SyncSummary, run_sync, sync_once

__all__ = [
    "SyncSummary",
    "run_sync",
    "sync_once",
]
