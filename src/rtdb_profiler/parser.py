"""ResultParser — raw profiler output → ordered records.

`firebase database:profile --raw` writes one JSON document per line. Each line
becomes a Record:

- Decoded(value): the line parsed as JSON
- Unparsed(raw_line): the line could not be parsed (this includes NaN and
  Infinity, which are not JSON); kept verbatim

Blank lines are dropped. Order is preserved, nothing is deduplicated.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rtdb_profiler.errors import EmptyInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decoded:
    """A line that decoded to a JSON value."""

    value: Any


@dataclass(frozen=True)
class Unparsed:
    """A line that failed to decode, kept as raw text."""

    raw_line: str


Record = Decoded | Unparsed


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are not JSON and cannot be re-encoded for the sinks
    raise ValueError(f"Non-standard JSON constant: {name}")


def parse_results(raw: bytes | str, source: str = "<bytes>") -> list[Record]:
    """Parse line-delimited JSON output into records.

    Malformed lines never abort the parse; they become Unparsed records
    and are logged with their line index.

    Args:
        raw: Raw output, as bytes or text
        source: Name used in log and error messages (e.g. a file path)

    Returns:
        Records in line order, one per non-blank line

    Raises:
        EmptyInputError: If the input is empty or whitespace-only
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    if not text.strip():
        raise EmptyInputError(source)

    lines = text.split("\n")
    total = len(lines)
    logger.info("Parsing %d lines from %s...", total, source)

    records: list[Record] = []
    for idx, line in enumerate(lines):
        line = line.rstrip("\r")
        if not line.strip():
            continue
        try:
            records.append(Decoded(json.loads(line, parse_constant=_reject_constant)))
        except ValueError:
            logger.warning("Error parsing line %d/%d from %s: %r", idx, total, source, line[:200])
            records.append(Unparsed(line))

    return records


async def read_results(path: str | Path) -> list[Record]:
    """Read an output file from disk and parse it.

    Raises:
        OSError: If the file cannot be read
        EmptyInputError: If the file is empty
    """
    path = Path(path)
    raw = await asyncio.to_thread(path.read_bytes)
    return parse_results(raw, source=str(path))


def record_to_json(record: Record) -> Any:
    """JSON-ready form of a record: the decoded value or the raw line."""
    if isinstance(record, Decoded):
        return record.value
    if isinstance(record, Unparsed):
        return record.raw_line
    raise TypeError(f"Not a record: {record!r}")


def records_to_json(records: list[Record] | tuple[Record, ...]) -> bytes:
    """Serialize records as an indented JSON array (upload payload)."""
    payload = [record_to_json(r) for r in records]
    return json.dumps(payload, indent=2).encode("utf-8")
