"""
stagecue.api.deps — FastAPI dependency injection
=================================================
"""

from __future__ import annotations

import os
from functools import lru_cache

from fastapi import HTTPException, Request
from sqlalchemy import Engine

from stagecue.config import StagecueConfig, load_config
from stagecue.database.engine import create_db_engine
from stagecue.runtime import Runtime


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> StagecueConfig:
    return load_config(os.getenv("STAGECUE_CONFIG", "config.yaml"))


def get_runtime(request: Request) -> Runtime:
    """The runtime the lifespan attached to the app."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(503, "Runtime not started")
    return runtime
