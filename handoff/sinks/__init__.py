"""Handoff sinks: HTTP APIs and relational databases."""

from .api import ApiSink, auth_headers
from .base import extract_submission_id
from .database import BackendDatabaseInserter, DatabaseInserter, DatabaseSink, build_row

__all__ = [
    "ApiSink",
    "BackendDatabaseInserter",
    "DatabaseInserter",
    "DatabaseSink",
    "auth_headers",
    "build_row",
    "extract_submission_id",
]
