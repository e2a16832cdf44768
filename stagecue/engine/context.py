"""
stagecue.engine.context — Scheduling Context Plumbing
======================================================

Small data types shared by triggers, rewards and the handler:

* ``KV`` — string → string mapping used for trigger values and the
  handler-wide global values.
* :class:`Task` — one configured trigger → rewards binding.
* :class:`TaskContext` — what an enqueued reward remembers about the
  event that produced it.
* :class:`RewardContext` — the view passed into every lifecycle call.

A ``RewardContext`` is a snapshot.  Anything that crosses an ``await``
must call :meth:`RewardContext.refreshed` before touching the running
list or the queue again.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stagecue.engine.events import Event
    from stagecue.engine.handler import RewardHandler
    from stagecue.engine.rewards import RewardInstance
    from stagecue.engine.surface import EffectEnvironment
    from stagecue.engine.triggers import Trigger

KV = dict[str, str]


@dataclass(frozen=True, slots=True)
class Task:
    """A named binding of one trigger to an ordered list of reward templates."""

    id: str
    name: str
    trigger: Trigger
    rewards: tuple[RewardInstance, ...] = ()


@dataclass(frozen=True, slots=True)
class TaskContext:
    """Fixed for an instance's whole lifetime once it is enqueued."""

    kv: KV
    source: Event
    task_id: str = ""
    task_name: str = ""


@dataclass
class RewardContext:
    source: Event
    running_rewards: list[RewardInstance]
    reward_queue: list[RewardInstance]
    trigger_values: KV
    global_values: KV
    env: EffectEnvironment
    task: TaskContext | None = None
    handler: RewardHandler | None = field(default=None, repr=False, compare=False)

    def refreshed(self) -> RewardContext:
        """The same invocation, re-read from the handler's current state."""
        if self.handler is None:
            return self
        task = self.task or TaskContext(kv=self.trigger_values, source=self.source)
        return self.handler.build_context(task)

    def without(self, reward: RewardInstance) -> RewardContext:
        """A hypothetical view in which *reward* is no longer running."""
        return dataclasses.replace(
            self,
            running_rewards=[r for r in self.running_rewards if r is not reward],
        )

    async def request_drain(self) -> None:
        """Ask the handler to re-run its queue drain."""
        if self.handler is not None:
            await self.handler.process_queue()
