"""
stagecue.services.task_service — Task & Overlay Persistence
============================================================

Converts between stored ``tasks`` / ``overlays`` rows and the engine's
:class:`~stagecue.engine.context.Task` and
:class:`~stagecue.engine.surface.OverlayItem` objects.

Loading fails closed: a row naming an unknown trigger or reward kind, or
carrying malformed params, is logged and skipped so one bad row never
keeps the scheduler from starting.  Saving is all-or-nothing: every
record is parsed before anything is written.

All functions are synchronous; call them through
:func:`stagecue.database.engine.run_db` from async code.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from stagecue.database.models import OverlayRow, TaskRow
from stagecue.engine.context import Task
from stagecue.engine.rewards import reward_from_dict
from stagecue.engine.surface import Catalogue, OverlayItem
from stagecue.engine.triggers import trigger_from_dict, trigger_to_dict

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Record conversion
# ---------------------------------------------------------------------------
def task_from_dict(record: dict[str, Any]) -> Task:
    """Build a :class:`Task` from ``{id, name, trigger, rewards}``.

    Raises
    ------
    UnknownKindError
        A trigger or reward kind is not registered.
    ValueError, TypeError
        The record or its params are malformed.
    """
    if not isinstance(record, dict):
        raise ValueError("Task record must be an object")
    if "trigger" not in record:
        raise ValueError("Task record has no trigger")

    rewards = record.get("rewards") or []
    if not isinstance(rewards, list):
        raise ValueError("Task rewards must be a list")

    return Task(
        id=str(record.get("id") or uuid.uuid4()),
        name=str(record.get("name") or "Untitled task"),
        trigger=trigger_from_dict(record["trigger"]),
        rewards=tuple(reward_from_dict(r) for r in rewards),
    )


def task_to_dict(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "name": task.name,
        "trigger": trigger_to_dict(task.trigger),
        "rewards": [r.to_stored() for r in task.rewards],
    }


def _row_to_record(row: TaskRow) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "position": row.position,
        "enabled": row.enabled,
        "trigger": row.trigger,
        "rewards": row.rewards,
    }


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------
def list_task_records(engine: Engine) -> list[dict[str, Any]]:
    """Every stored task as a plain dict, in evaluation order."""
    with Session(engine) as session:
        rows = session.scalars(select(TaskRow).order_by(TaskRow.position, TaskRow.name)).all()
        return [_row_to_record(row) for row in rows]


def load_tasks(engine: Engine) -> list[Task]:
    """Enabled tasks ready for the scheduler.  Unparseable rows are skipped."""
    tasks: list[Task] = []
    for record in list_task_records(engine):
        if not record["enabled"]:
            continue
        try:
            tasks.append(task_from_dict(record))
        except (ValueError, TypeError) as exc:
            logger.warning("Skipping task %s (%r): %s", record["id"], record["name"], exc)

    logger.info("Loaded %d task(s)", len(tasks))
    return tasks


def replace_tasks(engine: Engine, records: list[dict[str, Any]]) -> int:
    """Replace every stored task with *records*.

    Records are parsed first; if any fails nothing is written and the
    error propagates.  Stored documents are normalised to
    ``{kind, params}`` form.
    """
    prepared: list[tuple[Task, bool]] = []
    for index, record in enumerate(records):
        try:
            task = task_from_dict(record)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"Task #{index}: {exc}") from exc
        prepared.append((task, bool(record.get("enabled", True))))

    ids = [task.id for task, _ in prepared]
    if len(ids) != len(set(ids)):
        raise ValueError("Task ids must be unique")

    with Session(engine) as session:
        session.execute(delete(TaskRow))
        for position, (task, enabled) in enumerate(prepared):
            stored = task_to_dict(task)
            session.add(TaskRow(
                id=task.id,
                name=task.name,
                position=position,
                enabled=enabled,
                trigger=stored["trigger"],
                rewards=stored["rewards"],
            ))
        session.commit()

    logger.info("Stored %d task(s)", len(prepared))
    return len(prepared)


def validate_tasks(tasks: list[Task], catalogue: Catalogue) -> list[dict[str, Any]]:
    """Configuration problems, one entry per failing reward.

    Purely informational; invalid rewards are still scheduled.
    """
    problems: list[dict[str, Any]] = []
    for task in tasks:
        for index, reward in enumerate(task.rewards):
            error = reward.validate(catalogue)
            if error:
                problems.append({
                    "task_id": task.id,
                    "task_name": task.name,
                    "reward_index": index,
                    "kind": str(reward.kind),
                    "error": error,
                })
    return problems


def validate_stored_tasks(engine: Engine, catalogue: Catalogue) -> list[dict[str, Any]]:
    """Problems across every stored task, disabled ones included.

    A row that cannot be parsed at all is reported once with
    ``reward_index`` and ``kind`` left as ``None``.
    """
    problems: list[dict[str, Any]] = []
    for record in list_task_records(engine):
        try:
            task = task_from_dict(record)
        except (ValueError, TypeError) as exc:
            problems.append({
                "task_id": record["id"],
                "task_name": record["name"],
                "reward_index": None,
                "kind": None,
                "error": str(exc),
            })
            continue
        problems.extend(validate_tasks([task], catalogue))
    return problems


# ---------------------------------------------------------------------------
# Overlays
# ---------------------------------------------------------------------------
def load_overlays(engine: Engine) -> list[OverlayItem]:
    with Session(engine) as session:
        rows = session.scalars(select(OverlayRow).order_by(OverlayRow.id)).all()
        return [OverlayItem(id=r.id, name=r.name, url=r.url, visible=r.visible) for r in rows]


def replace_overlays(engine: Engine, overlays: list[OverlayItem]) -> int:
    """Replace the overlay catalogue.  Ids must be unique."""
    ids = [o.id for o in overlays]
    if len(ids) != len(set(ids)):
        raise ValueError("Overlay ids must be unique")

    with Session(engine) as session:
        session.execute(delete(OverlayRow))
        for overlay in overlays:
            session.add(OverlayRow(
                id=overlay.id,
                name=overlay.name,
                url=overlay.url,
                visible=overlay.visible,
            ))
        session.commit()

    logger.info("Stored %d overlay(s)", len(overlays))
    return len(overlays)
