"""
stagecue.api.routes.events — Event ingestion
=============================================

The event relay posts every Twitch / Streamlabs event here, in the same
JSON shape the event server emits.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from stagecue.api.deps import get_runtime
from stagecue.engine.events import EventParseError, event_from_payload
from stagecue.runtime import Runtime

router = APIRouter(prefix="/events", tags=["events"])
logger = logging.getLogger(__name__)


@router.post("")
async def ingest_event(
    payload: dict[str, Any] = Body(...),
    runtime: Runtime = Depends(get_runtime),
):
    try:
        event = event_from_payload(payload)
    except EventParseError as exc:
        raise HTTPException(422, str(exc))

    matched = await runtime.ingest(event)
    return {
        "type": event.type,
        "matched_tasks": matched,
        "active": len(runtime.handler.active_rewards),
        "queued": len(runtime.handler.reward_queue),
    }


@router.get("/recent")
def recent_events(
    tail: int = Query(50, ge=1, le=1000),
    type: str | None = Query(None),
    runtime: Runtime = Depends(get_runtime),
):
    return {"events": runtime.event_log.get_entries(tail=tail, event_type=type)}
