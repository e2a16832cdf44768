"""
stagecue.engine.handler — Reward Scheduler
===========================================

The :class:`RewardHandler` owns the active list and the pending queue.
It is constructed once by the runtime and handed to whatever delivers
events; there is no module-level instance.

Drain algorithm (one *pass*):

1. Cleanse — drop active entries whose ``is_still_running`` is now False.
2. Scan the queue front to back.  Ready entries are started; entries
   still running afterwards move to the active list, the rest are
   dropped.  Either way they leave the queue without advancing the scan.
3. If any entry left the queue this pass, or someone asked for another
   drain meanwhile, run another pass.  A start can unblock an entry
   scanned earlier in the same pass (a parameter effect waiting for the
   avatar that was just put on).

:meth:`RewardHandler.process_queue` is re-entrant: a call that arrives
while a drain is in progress (a timer firing, a force-cancel, a new
event) only flags that another pass is needed.  Every lifecycle call
gets a context built from the lists as they are at that moment.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from stagecue.engine.context import KV, RewardContext, Task, TaskContext
from stagecue.engine.events import Event
from stagecue.engine.rewards import RewardInstance, TimedReward
from stagecue.engine.surface import EffectEnvironment
from stagecue.engine.triggers import evaluate, extract_context

logger = logging.getLogger(__name__)

Entry = tuple[RewardInstance, TaskContext]


def _remove(entries: list[Entry], reward: RewardInstance) -> bool:
    for index, (candidate, _) in enumerate(entries):
        if candidate is reward:
            del entries[index]
            return True
    return False


class RewardHandler:
    """Evaluates tasks against events and schedules their rewards."""

    def __init__(self, env: EffectEnvironment, tasks: Iterable[Task] = ()) -> None:
        self.env = env
        self.tasks: list[Task] = list(tasks)
        self.active_rewards: list[Entry] = []
        self.reward_queue: list[Entry] = []
        self.global_values: KV = {}
        self._draining = False
        self._drain_requested = False

    @property
    def draining(self) -> bool:
        return self._draining

    def set_tasks(self, tasks: Iterable[Task]) -> None:
        """Swap the task list.  Already queued or active rewards are kept."""
        self.tasks = list(tasks)
        logger.info("Reward handler now has %d task(s)", len(self.tasks))

    def set_global_value(self, key: str, value: str) -> None:
        self.global_values[key] = value

    def build_context(self, task: TaskContext) -> RewardContext:
        return RewardContext(
            source=task.source,
            running_rewards=[reward for reward, _ in self.active_rewards],
            reward_queue=[reward for reward, _ in self.reward_queue],
            trigger_values=task.kv,
            global_values=self.global_values,
            env=self.env,
            task=task,
            handler=self,
        )

    # -----------------------------------------------------------------------
    # Event ingestion
    # -----------------------------------------------------------------------
    async def handle_event(self, event: Event) -> int:
        """Enqueue the rewards of every task whose trigger matches *event*.

        Returns the number of matched tasks.
        """
        matched = 0
        for task in list(self.tasks):
            try:
                if not evaluate(task.trigger, event):
                    continue
                probe = TaskContext(kv={}, source=event, task_id=task.id, task_name=task.name)
                kv = extract_context(task.trigger, self.build_context(probe))
            except Exception:
                logger.exception("Trigger of task %r failed on %s event", task.name, event.type)
                continue

            matched += 1
            logger.info(
                "Task %r matched %s event, enqueuing %d reward(s)",
                task.name, event.type, len(task.rewards),
            )
            task_ctx = TaskContext(kv=kv, source=event, task_id=task.id, task_name=task.name)
            for template in task.rewards:
                self.reward_queue.append((template.clone(), task_ctx))

        if matched:
            await self.process_queue()
        return matched

    # -----------------------------------------------------------------------
    # Queue draining
    # -----------------------------------------------------------------------
    async def process_queue(self) -> None:
        """Drain the queue to a fixed point, or flag a re-run if already draining."""
        if self._draining:
            self._drain_requested = True
            return

        self._draining = True
        try:
            while True:
                self._drain_requested = False
                progressed = await self._drain_pass()
                if not progressed and not self._drain_requested:
                    break
        finally:
            self._draining = False

    async def _cleanse(self) -> None:
        for reward, task_ctx in list(self.active_rewards):
            try:
                alive = await reward.is_still_running(self.build_context(task_ctx))
            except Exception:
                logger.exception("%s liveness check failed, dropping it", reward.title)
                alive = False
            if not alive:
                _remove(self.active_rewards, reward)
                logger.info("Reward has completed: %s", reward.kind)

    async def _drain_pass(self) -> bool:
        await self._cleanse()
        departed = 0
        logger.debug("Drain pass: %d active, %d queued", len(self.active_rewards), len(self.reward_queue))

        index = 0
        while index < len(self.reward_queue):
            entry = self.reward_queue[index]
            reward, task_ctx = entry

            try:
                ready = await reward.ready_to_start(self.build_context(task_ctx))
            except Exception:
                logger.exception("%s readiness check failed, dropping it", reward.title)
                _remove(self.reward_queue, reward)
                departed += 1
                continue
            if not ready:
                index += 1
                continue

            logger.info("Starting reward: %s", reward.kind)
            try:
                await reward.on_start(self.build_context(task_ctx))
                running = await reward.is_still_running(self.build_context(task_ctx))
            except Exception:
                logger.exception("%s failed to start, dropping it", reward.title)
                running = False

            _remove(self.reward_queue, reward)
            departed += 1
            if running:
                self.active_rewards.append(entry)
                logger.info("Reward is now active: %s", reward.kind)

        return departed > 0

    # -----------------------------------------------------------------------
    # Shutdown & diagnostics
    # -----------------------------------------------------------------------
    def stop_timers(self) -> None:
        """Disarm every active timer without restoring anything."""
        for reward, _ in self.active_rewards:
            if isinstance(reward, TimedReward):
                reward.disarm_timer()

    @staticmethod
    def _describe(entry: Entry) -> dict[str, Any]:
        reward, task_ctx = entry
        info = reward.describe()
        info["task_id"] = task_ctx.task_id
        info["task_name"] = task_ctx.task_name
        info["trigger_values"] = dict(task_ctx.kv)
        info["source"] = task_ctx.source.type
        return info

    def describe_active(self) -> list[dict[str, Any]]:
        return [self._describe(entry) for entry in self.active_rewards]

    def describe_queue(self) -> list[dict[str, Any]]:
        return [self._describe(entry) for entry in self.reward_queue]
