"""
stagecue.api.routes.tasks — Task, overlay & avatar catalogue endpoints
=======================================================================

Tasks are replaced as a whole list: the editor sends everything it has,
the server parses every record before writing, then reloads the handler.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from stagecue.api.deps import get_runtime
from stagecue.database.engine import run_db
from stagecue.engine.surface import OverlayItem
from stagecue.runtime import Runtime
from stagecue.services import task_service

router = APIRouter(tags=["tasks"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class TaskIn(BaseModel):
    id: str | None = None
    name: str = Field(min_length=1, max_length=200)
    enabled: bool = True
    trigger: dict[str, Any]
    rewards: list[dict[str, Any]] = Field(default_factory=list)


class OverlayIn(BaseModel):
    id: int
    name: str
    url: str = ""
    visible: bool = False


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------
@router.get("/tasks")
async def list_tasks(runtime: Runtime = Depends(get_runtime)):
    records = await run_db(task_service.list_task_records, runtime.engine)
    return {"tasks": records}


@router.put("/tasks")
async def replace_tasks(body: list[TaskIn], runtime: Runtime = Depends(get_runtime)):
    records = [t.model_dump() for t in body]
    try:
        stored = await run_db(task_service.replace_tasks, runtime.engine, records)
    except ValueError as exc:
        raise HTTPException(422, str(exc))

    loaded = await runtime.reload_tasks()
    logger.info("Tasks replaced via API: %d stored, %d enabled", stored, loaded)
    return {"stored": stored, "loaded": loaded}


@router.post("/tasks/reload")
async def reload_tasks(runtime: Runtime = Depends(get_runtime)):
    return {"loaded": await runtime.reload_tasks()}


@router.get("/tasks/validation")
async def validate_tasks(runtime: Runtime = Depends(get_runtime)):
    runtime.refresh_avatars()
    problems = await run_db(task_service.validate_stored_tasks, runtime.engine, runtime.env.catalogue)
    return {"valid": not problems, "problems": problems}


# ---------------------------------------------------------------------------
# Overlays
# ---------------------------------------------------------------------------
@router.get("/overlays")
def list_overlays(runtime: Runtime = Depends(get_runtime)):
    visibility = runtime.env.state.overlay_visibility
    return {
        "overlays": [
            {
                "id": o.id,
                "name": o.name,
                "url": o.url,
                "visible": o.visible,
                "currently_visible": visibility.get(o.id, o.visible),
            }
            for o in runtime.env.catalogue.overlays
        ],
    }


@router.put("/overlays")
async def replace_overlays(body: list[OverlayIn], runtime: Runtime = Depends(get_runtime)):
    overlays = [OverlayItem(id=o.id, name=o.name, url=o.url, visible=o.visible) for o in body]
    try:
        stored = await run_db(task_service.replace_overlays, runtime.engine, overlays)
    except ValueError as exc:
        raise HTTPException(422, str(exc))
    await runtime.reload_overlays()
    return {"stored": stored}


# ---------------------------------------------------------------------------
# Avatars
# ---------------------------------------------------------------------------
@router.get("/avatars")
def list_avatars(
    refresh: bool = Query(False),
    runtime: Runtime = Depends(get_runtime),
):
    runtime.refresh_avatars(force=refresh)
    return {
        "avatars": [{"id": a.id, "name": a.name} for a in runtime.env.catalogue.avatars],
        "current_avatar_id": runtime.env.state.current_avatar_id(),
    }


@router.get("/avatars/{avatar_id}/parameters")
def avatar_parameters(avatar_id: str, runtime: Runtime = Depends(get_runtime)):
    runtime.refresh_avatars()
    if not runtime.env.catalogue.has_avatar(avatar_id):
        raise HTTPException(404, "Unknown avatar")
    return {"avatar_id": avatar_id, "parameters": runtime.avatars.parameters(avatar_id)}
