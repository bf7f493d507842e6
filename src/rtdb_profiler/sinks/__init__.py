"""Result sinks for RTDB Profiler.

Async HTTP clients that forward parsed results to:
- Cloud Storage: the full result set as one JSON object per run
- Cloud Logging: one log entry per record
"""

from rtdb_profiler.sinks.base import BaseSinkClient
from rtdb_profiler.sinks.cloud_logging import CloudLoggingSink, LogEntry, entries_from_records
from rtdb_profiler.sinks.storage import StorageSink

__all__ = [
    "BaseSinkClient",
    "CloudLoggingSink",
    "LogEntry",
    "StorageSink",
    "entries_from_records",
]
