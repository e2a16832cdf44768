"""
stagecue.database.seed — Default Task Seeder
=============================================

Two starter tasks seeded on first startup so a fresh install reacts to
something out of the box: a channel-point / bits "Furry Mode" and a
bits / Streamlabs "Maid Mode", each switching the avatar for five
minutes and returning to whatever was worn before.

Idempotent — only seeds when the tasks table is empty.  Tasks edited or
deleted later are never recreated.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from stagecue.database.models import RewardKind, TaskRow, TriggerKind

logger = logging.getLogger(__name__)

FIVE_MINUTES_MS = 300_000


# ---------------------------------------------------------------------------
# Default task catalogue
# ---------------------------------------------------------------------------
DEFAULT_TASKS: list[dict] = [
    {
        "name": "Furry Mode",
        "trigger": {
            "kind": TriggerKind.OR,
            "params": {
                "subtriggers": [
                    {
                        "kind": TriggerKind.CHANNEL_POINTS,
                        "params": {"reward_id": "f4a6e0a9-72c2-4590-83b8-6c631e6e57c7"},
                    },
                    {
                        "kind": TriggerKind.BIT_DONATION,
                        "params": {"minimum_amount": 500, "message_contains": "!FurryMode"},
                    },
                ],
            },
        },
        "rewards": [
            {
                "kind": RewardKind.SET_AVATAR,
                "params": {
                    "avatar_id": "avtr_66069c77-8ecb-439c-9643-cfb1fbfb1363",
                    "return_to": "previous",
                    "timeout_ms": FIVE_MINUTES_MS,
                },
            },
        ],
    },
    {
        "name": "Maid Mode",
        "trigger": {
            "kind": TriggerKind.OR,
            "params": {
                "subtriggers": [
                    {
                        "kind": TriggerKind.BIT_DONATION,
                        "params": {"minimum_amount": 500, "message_contains": "MaidMode"},
                    },
                    {
                        "kind": TriggerKind.STREAMLABS_DONATION,
                        "params": {"minimum_amount": 5, "message_contains": "MaidMode"},
                    },
                ],
            },
        },
        "rewards": [
            {
                "kind": RewardKind.SET_AVATAR,
                "params": {
                    "avatar_id": "avtr_da3a3a4d-4936-4652-aa2b-442650e99f5c",
                    "return_to": "previous",
                    "timeout_ms": FIVE_MINUTES_MS,
                },
            },
        ],
    },
]


def seed_default_tasks(engine: Engine) -> int:
    """Insert :data:`DEFAULT_TASKS` when no task exists yet.

    Returns the number of rows inserted (0 if the table was not empty).
    """
    with Session(engine) as session:
        existing = session.scalar(select(func.count()).select_from(TaskRow)) or 0
        if existing:
            return 0

        for position, task in enumerate(DEFAULT_TASKS):
            session.add(TaskRow(
                id=str(uuid.uuid4()),
                name=task["name"],
                position=position,
                enabled=True,
                trigger=_plain(task["trigger"]),
                rewards=_plain(task["rewards"]),
            ))
        session.commit()

    logger.info("Seeded %d default tasks", len(DEFAULT_TASKS))
    return len(DEFAULT_TASKS)


def _plain(value):
    """Strip StrEnum subclasses so the JSON column stores plain strings."""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, str):
        return str(value)
    return value
