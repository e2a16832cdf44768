"""
stagecue.database.engine — Database Connection & Async Helper
==============================================================

The scheduler runs on an ``asyncio`` event loop while SQLAlchemy is
synchronous.  Task loading and saving are shipped to a thread pool with
:func:`run_db` so a slow disk never stalls effect timers.

Usage::

    from stagecue.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    tasks = await run_db(load_tasks, engine)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine

from stagecue.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_DATABASE_URL = "sqlite:///stagecue.db"


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine`.

    Resolution order: the *url* argument, the ``DATABASE_URL`` env var,
    then a SQLite file in the working directory.  SQLite connections are
    opened with ``check_same_thread=False`` because :func:`run_db` uses a
    worker thread.
    """
    url = url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL

    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(
        url,
        echo=False,        # Set True for SQL debugging
        pool_pre_ping=True,
        connect_args=connect_args,
    )
    logger.info("Database engine created → %s", engine.url.render_as_string(hide_password=True))
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`stagecue.database.models`.

    Safe to call on every startup.  Alembic owns the schema for upgrades;
    ``create_all`` covers fresh installs and tests.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(fn: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a synchronous DB function on a worker thread and await it."""
    return await asyncio.to_thread(fn, *args, **kwargs)
