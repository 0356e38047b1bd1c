"""
Minimal server-sent events reader for streaming completions.

Vendors stream newline-delimited records; the only ones that matter are
`data: <json>` lines. `[DONE]` ends the stream. Lines that are not data
records, and data records that are not valid JSON, are skipped.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
_DATA_PREFIX = "data:"


def parse_data_line(line: str) -> str | None:
    """Payload of a `data:` record, or None for any other line."""
    line = line.strip()
    if not line.startswith(_DATA_PREFIX):
        return None
    return line[len(_DATA_PREFIX):].strip()


def decode_payload(payload: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("sse_malformed_chunk", extra={"chunk": payload[:80]})
        return None
    return parsed if isinstance(parsed, dict) else None


async def iter_sse_json(lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    """Yield decoded JSON objects from an async line iterator until [DONE]."""
    async for line in lines:
        payload = parse_data_line(line)
        if not payload:
            continue
        if payload == DONE_SENTINEL:
            return
        parsed = decode_payload(payload)
        if parsed is not None:
            yield parsed

