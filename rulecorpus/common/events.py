"""
Pipeline event log.

Every per-document outcome (DocumentFetched, DocumentFetchFailed,
DocumentConverted, DocumentConvertFailed) and every corpus rebuild
(CorpusCombined) is appended to <DATA_ROOT>/events.jsonl as one JSON object
per line. Events of one stage run share a correlationId (see new_run_id), so
`grep` on a run id reconstructs that run; the last event for a document is
its current state.
"""

import json
import logging
import os
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rulecorpus.common.config import settings

logger = logging.getLogger("events")


@dataclass
class EventEnvelope:
    """One line of the event log; field names are the JSON keys."""
    eventType: str
    eventId: str
    timestamp: str
    correlationId: Optional[str]   # "<stage>:<uuid>" of the run that emitted it
    source: str
    version: str
    payload: Dict[str, Any]        # DownloadRecord / ConvertRecord dump, or combine stats


def now_iso() -> str:
    """UTC timestamp, e.g. "2025-10-26T20:15:23.742123+00:00"."""
    return datetime.now(tz=timezone.utc).isoformat()


def new_run_id(stage: str) -> str:
    """Correlation ID shared by every event of one stage run."""
    return f"{stage}:{uuid.uuid4()}"


def new_event(
    event_type: str,
    payload: Dict[str, Any],
    correlation_id: Optional[str],
    *,
    version: str = "1.0",
    source: Optional[str] = None,
) -> EventEnvelope:
    """Stamp a payload with a fresh id and timestamp; source defaults to SERVICE_NAME."""
    return EventEnvelope(
        eventType=event_type,
        eventId=str(uuid.uuid4()),
        timestamp=now_iso(),
        correlationId=correlation_id,
        source=source or settings.service_name,
        version=version,
        payload=payload,
    )


def publish_event(event: EventEnvelope, path: Optional[str] = None) -> None:
    """
    Append one event as a JSON line to the event log.
    The log is append-only; the LAST event for a document is its current state.
    """
    path = path or settings.events_path
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(asdict(event), ensure_ascii=False) + "\n")
    logger.debug("Published %s id=%s corr=%s", event.eventType, event.eventId, event.correlationId)
