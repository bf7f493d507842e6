"""Cloud Logging sink — writes one log entry per parsed record.

Uses `POST /v2/entries:write`. Decoded JSON objects become `jsonPayload`;
anything else (scalars, arrays, unparsed lines) becomes `textPayload`.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from rtdb_profiler.credentials import Credential
from rtdb_profiler.parser import Decoded, Record, Unparsed
from rtdb_profiler.sinks.base import BaseSinkClient

logger = logging.getLogger(__name__)

# entries:write request size limit is generous, but keep batches bounded
_MAX_BATCH = 1000


@dataclass(frozen=True)
class LogEntry:
    """One entry for the log sink."""

    resource: dict[str, Any]
    payload: Record
    labels: dict[str, str] = field(default_factory=dict)


def default_resource(project: str) -> dict[str, Any]:
    """Monitored resource used for profiler entries."""
    return {"type": "global", "labels": {"project_id": project}}


def entries_from_records(
    records: tuple[Record, ...] | list[Record],
    resource: dict[str, Any],
) -> list[LogEntry]:
    """Wrap records as log entries sharing one resource."""
    return [LogEntry(resource=resource, payload=r) for r in records]


def _entry_body(entry: LogEntry) -> dict[str, Any]:
    body: dict[str, Any] = {"resource": entry.resource}
    payload = entry.payload
    if isinstance(payload, Decoded):
        if isinstance(payload.value, dict):
            body["jsonPayload"] = payload.value
        else:
            body["textPayload"] = json.dumps(payload.value)
        labels = {"parsed": "true"}
    elif isinstance(payload, Unparsed):
        body["textPayload"] = payload.raw_line
        body["severity"] = "WARNING"
        labels = {"parsed": "false"}
    else:
        raise TypeError(f"Unsupported log payload: {payload!r}")
    body["labels"] = {**labels, **entry.labels}
    return body


class CloudLoggingSink(BaseSinkClient):
    """Writes entries to a Cloud Logging log.

    Args:
        project: Project that owns the log
        credential: Credential providing the bearer token
        base_url: Logging API root (overridable for emulators/tests)
    """

    sink_name = "cloud-logging"

    def __init__(
        self,
        project: str,
        credential: Credential | None = None,
        base_url: str = "https://logging.googleapis.com",
        **kwargs,
    ) -> None:
        super().__init__(base_url=base_url, credential=credential, **kwargs)
        self.project = project

    def log_name(self, stream_name: str) -> str:
        return f"projects/{self.project}/logs/{quote(stream_name, safe='')}"

    async def write_entries(self, stream_name: str, entries: list[LogEntry]) -> int:
        """Write entries to the named log, in batches.

        Returns:
            Number of entries written

        Raises:
            SinkError: If any batch fails
        """
        if not entries:
            logger.info("No entries to write to %s", stream_name)
            return 0

        log_name = self.log_name(stream_name)
        for start in range(0, len(entries), _MAX_BATCH):
            batch = entries[start:start + _MAX_BATCH]
            await self._request(
                "POST",
                "/v2/entries:write",
                json_data={
                    "logName": log_name,
                    "entries": [_entry_body(e) for e in batch],
                },
            )
            logger.debug("Wrote %d entries to %s", len(batch), log_name)

        logger.info("Successfully wrote %d entries to %s", len(entries), log_name)
        return len(entries)
