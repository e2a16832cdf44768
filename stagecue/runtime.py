"""
stagecue.runtime — Composition Root
====================================

Builds the single :class:`~stagecue.engine.handler.RewardHandler` and
everything it depends on, and owns their start/stop lifecycle.  The API
lifespan creates one :class:`Runtime` and keeps it on ``app.state``;
nothing else constructs a handler.

Startup order:
  1. Create tables and seed the default tasks on an empty database.
  2. Load the overlay catalogue and set each overlay to its baseline
     (overlays held by an active effect keep their current value).
  3. Scan the avatar directory.
  4. Load enabled tasks into the handler.
  5. Start the OSC listener (optional, off in tests).  A bind failure is
     logged and reported through ``listener_status``; the API still starts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import Engine

from stagecue.config import StagecueConfig
from stagecue.database.engine import init_db, run_db
from stagecue.database.seed import seed_default_tasks
from stagecue.engine.events import Event
from stagecue.engine.handler import RewardHandler
from stagecue.engine.rewards import SetOverlayReward
from stagecue.engine.surface import Catalogue, EffectEnvironment, EffectSurface, LiveState
from stagecue.services.avatar_service import AvatarDirectory
from stagecue.services.event_log import EventLog
from stagecue.services.osc_service import OscEffectSurface, OscListener, OscSender
from stagecue.services.task_service import load_overlays, load_tasks

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: StagecueConfig
    engine: Engine
    env: EffectEnvironment
    handler: RewardHandler
    avatars: AvatarDirectory
    event_log: EventLog
    listener: OscListener | None = None
    started: bool = field(default=False, init=False)
    # "disabled", "listening", "stopped" or "error: <reason>"
    listener_status: str = field(default="disabled", init=False)

    async def start(self) -> None:
        await run_db(init_db, self.engine)
        await run_db(seed_default_tasks, self.engine)
        await self.reload_overlays()
        self.refresh_avatars()
        await self.reload_tasks()
        if self.listener is not None:
            await self._start_listener()
        self.started = True
        logger.info("Stagecue runtime started with %d task(s)", len(self.handler.tasks))

    async def _start_listener(self) -> None:
        """Bind the OSC listener.  Scheduling keeps working if it cannot."""
        try:
            await self.listener.start()
        except OSError as exc:
            logger.exception(
                "OSC listener failed to start on %s:%d", self.listener.host, self.listener.port
            )
            self.listener_status = f"error: {exc}"
        else:
            self.listener_status = "listening"

    async def stop(self) -> None:
        self.handler.stop_timers()
        if self.listener is not None:
            self.listener.stop()
            self.listener_status = "stopped"
        close = getattr(self.env.surface, "close", None)
        if callable(close):
            close()
        self.started = False
        logger.info("Stagecue runtime stopped")

    async def reload_tasks(self) -> int:
        tasks = await run_db(load_tasks, self.engine)
        self.handler.set_tasks(tasks)
        return len(tasks)

    async def reload_overlays(self) -> int:
        overlays = await run_db(load_overlays, self.engine)
        self.env.catalogue.overlays = overlays

        # Overlays under an active effect keep their value until it restores
        held = {
            reward.params.overlay_id
            for reward, _ in self.handler.active_rewards
            if isinstance(reward, SetOverlayReward)
        }
        visibility = self.env.state.overlay_visibility
        known = {overlay.id for overlay in overlays}
        for overlay_id in [i for i in visibility if i not in known and i not in held]:
            del visibility[overlay_id]
        for overlay in overlays:
            if overlay.id not in held:
                visibility[overlay.id] = overlay.visible
        return len(overlays)

    def refresh_avatars(self, force: bool = False) -> None:
        self.env.catalogue.avatars = self.avatars.list_avatars(force=force)

    async def ingest(self, event: Event) -> int:
        """Hand *event* to the scheduler and record it in the event log."""
        matched = await self.handler.handle_event(event)
        self.event_log.record(event, matched)
        return matched


def build_runtime(
    cfg: StagecueConfig,
    engine: Engine,
    surface: EffectSurface | None = None,
    listen: bool = True,
) -> Runtime:
    """Wire a :class:`Runtime` from configuration.

    *surface* defaults to OSC over UDP.  With ``listen=False`` no socket
    is bound for VRChat feedback.
    """
    if surface is None:
        surface = OscEffectSurface(
            vrchat=OscSender(cfg.osc_host, cfg.osc_send_port),
            warudo=OscSender(cfg.aux_osc_host, cfg.aux_osc_port),
        )

    state = LiveState()
    env = EffectEnvironment(
        surface=surface,
        state=state,
        catalogue=Catalogue(),
        base_avatar_id=cfg.base_avatar_id,
    )
    listener = OscListener(state, cfg.osc_host, cfg.osc_listen_port) if listen else None

    return Runtime(
        config=cfg,
        engine=engine,
        env=env,
        handler=RewardHandler(env),
        avatars=AvatarDirectory(cfg.resolved_avatar_osc_dir),
        event_log=EventLog(cfg.event_log_size),
        listener=listener,
    )
