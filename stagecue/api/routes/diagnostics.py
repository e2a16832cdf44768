"""
stagecue.api.routes.diagnostics — Scheduler & live-state inspection
====================================================================

Read-only views of the reward handler (active list, queue, global
values) and of the last-known external state.  Global values are the one
thing writable here.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from stagecue.api.deps import get_runtime
from stagecue.runtime import Runtime

router = APIRouter(tags=["diagnostics"])


class GlobalValue(BaseModel):
    value: str


@router.get("/rewards/active")
def active_rewards(runtime: Runtime = Depends(get_runtime)):
    return {"rewards": runtime.handler.describe_active()}


@router.get("/rewards/queue")
def queued_rewards(runtime: Runtime = Depends(get_runtime)):
    return {"rewards": runtime.handler.describe_queue()}


@router.get("/globals")
def global_values(runtime: Runtime = Depends(get_runtime)):
    return {"values": dict(runtime.handler.global_values)}


@router.put("/globals/{key}")
def set_global_value(key: str, body: GlobalValue, runtime: Runtime = Depends(get_runtime)):
    runtime.handler.set_global_value(key, body.value)
    return {"key": key, "value": body.value}


@router.get("/state")
def live_state(runtime: Runtime = Depends(get_runtime)):
    state = runtime.env.state.snapshot()
    state["draining"] = runtime.handler.draining
    state["base_avatar_id"] = runtime.env.base_avatar_id
    state["osc_listener"] = runtime.listener_status
    return state
