"""
stagecue.engine.rewards — Reward Variants & Lifecycle
======================================================

Every reward is a :class:`RewardInstance` with a four-phase lifecycle
driven exclusively by :class:`~stagecue.engine.handler.RewardHandler`:

  readyToStart → onStart → isStillRunning … → onCancel

``ready_to_start`` is the only place conflicts are enforced.  It may
"catch" the value a displaced predecessor would have restored, because
that value is gone by the time this instance starts.

Timed variants (:class:`TimedReward`) own at most one asyncio timer.
When it fires, or a force-cancel reward targets them, ``on_cancel``
restores the prior state and asks the handler to drain again.

External calls go through :meth:`TimedReward._effect`, which logs a
failure and reports it instead of raising, so one rejected OSC call
never wedges the queue.

Stored form is ``{"kind": <stable id>, "params": {...}}``; the registry
:data:`REWARD_TYPES` maps each kind to its class.
"""

from __future__ import annotations

import abc
import asyncio
import copy
import dataclasses
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from stagecue.database.models import RewardKind
from stagecue.engine.surface import format_osc_value
from stagecue.engine.triggers import UnknownKindError

if TYPE_CHECKING:
    from stagecue.engine.context import KV, RewardContext
    from stagecue.engine.surface import Catalogue

logger = logging.getLogger(__name__)

AVATAR_RETURN_MODES = ("default", "previous", "specific")
PARAMETER_RETURN_MODES = ("previous", "specific")


def _kv(value: Any, name: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be an object of key/value pairs")
    return {str(k): v if isinstance(v, str) else format_osc_value(v) for k, v in value.items()}


def _timeout(value: Any) -> int:
    timeout_ms = int(value or 0)
    if timeout_ms < 0:
        raise ValueError("timeout_ms cannot be negative")
    return timeout_ms


# ---------------------------------------------------------------------------
# Base lifecycle
# ---------------------------------------------------------------------------
class RewardInstance(abc.ABC):
    """One schedulable effect.  Templates live in Tasks; the handler
    only ever schedules :meth:`clone` copies."""

    kind: ClassVar[str]
    title: ClassVar[str]
    description: ClassVar[str] = ""
    params_type: ClassVar[type]

    def __init__(self, params: Any = None) -> None:
        self.params = params if params is not None else self.params_type()

    @classmethod
    def from_params(cls, raw: dict[str, Any] | None) -> RewardInstance:
        raw = raw or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{cls.kind} params must be an object")
        known = {f.name for f in dataclasses.fields(cls.params_type)}
        for key in raw.keys() - known:
            logger.debug("Ignoring unknown %s param %r", cls.kind, key)
        return cls(cls.params_type(**{k: v for k, v in raw.items() if k in known}))

    def clone(self) -> RewardInstance:
        return type(self)(copy.deepcopy(self.params))

    def to_stored(self) -> dict[str, Any]:
        return {"kind": str(self.kind), "params": dataclasses.asdict(self.params)}

    def conflict_key(self) -> str | None:
        """Scope within which only one instance of this kind may be active."""
        return None

    def describe(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "title": self.title,
            "conflict_key": self.conflict_key(),
            "params": dataclasses.asdict(self.params),
        }

    def validate(self, catalogue: Catalogue) -> str | None:
        """Configuration error message, or None when the reward is usable."""
        return None

    @abc.abstractmethod
    async def ready_to_start(self, ctx: RewardContext) -> bool: ...

    @abc.abstractmethod
    async def on_start(self, ctx: RewardContext) -> None: ...

    @abc.abstractmethod
    async def is_still_running(self, ctx: RewardContext) -> bool: ...


class TimedReward(RewardInstance):
    """A reward that stays active until its timer fires or it is force-cancelled.

    A ``timeout_ms`` of zero means no timer: the effect holds its slot
    until a force-cancel reward ends it.
    """

    def __init__(self, params: Any = None) -> None:
        super().__init__(params)
        self._timer: asyncio.Task | None = None
        self._running = False
        self._cancelled = False

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def is_still_running(self, ctx: RewardContext) -> bool:
        return self._running

    def describe(self) -> dict[str, Any]:
        info = super().describe()
        info["timer_armed"] = self.timer_armed
        return info

    # -- timer ---------------------------------------------------------------
    def _arm_timer(self, ctx: RewardContext) -> None:
        self.disarm_timer()
        timeout_ms = self.params.timeout_ms
        if timeout_ms > 0:
            self._timer = asyncio.get_running_loop().create_task(
                self._expire(ctx, timeout_ms / 1000)
            )

    def disarm_timer(self) -> None:
        if self._timer is None or self._timer is asyncio.current_task():
            return
        self._timer.cancel()
        self._timer = None

    async def _expire(self, ctx: RewardContext, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            logger.info("%s expired after %d ms", self.title, self.params.timeout_ms)
            try:
                await self.on_cancel(ctx.refreshed())
            except Exception:
                logger.exception("Timed cancel of %s failed", self.title)
        finally:
            # The handle stays referenced until the restore has finished
            if self._timer is asyncio.current_task():
                self._timer = None

    # -- cancel --------------------------------------------------------------
    async def on_cancel(self, ctx: RewardContext) -> None:
        """Disarm, restore prior state, then request a drain.

        Safe to call more than once; only the first call restores.
        """
        self.disarm_timer()
        if not self._running or self._cancelled:
            return
        self._cancelled = True
        try:
            await self._restore(ctx)
        finally:
            self._running = False
        await ctx.request_drain()

    @abc.abstractmethod
    async def _restore(self, ctx: RewardContext) -> None: ...

    def _started(self, ctx: RewardContext) -> None:
        self._running = True
        self._cancelled = False
        self._arm_timer(ctx)

    async def _effect(self, description: str, call: Awaitable[None]) -> bool:
        try:
            await call
        except Exception:
            logger.exception("%s: %s failed", self.title, description)
            return False
        return True

    async def _set_all(
        self, values: KV, setter: Callable[[str, str], Awaitable[None]]
    ) -> bool:
        """Send every key concurrently.  True unless all calls failed."""
        if not values:
            return True
        results = await asyncio.gather(
            *(self._effect(f"set {key}={value}", setter(key, value)) for key, value in values.items())
        )
        return any(results)


# ---------------------------------------------------------------------------
# Avatar
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class SetAvatarParams:
    avatar_id: str = ""
    return_to: str = "default"
    return_avatar_id: str | None = None
    timeout_ms: int = 0

    def __post_init__(self) -> None:
        if self.return_to not in AVATAR_RETURN_MODES:
            raise ValueError(f"return_to must be one of {AVATAR_RETURN_MODES}")
        self.timeout_ms = _timeout(self.timeout_ms)


class SetAvatarReward(TimedReward):
    kind = RewardKind.SET_AVATAR
    title = "Set Avatar Reward"
    description = "Set avatar for a duration"
    params_type = SetAvatarParams

    def __init__(self, params: SetAvatarParams | None = None) -> None:
        super().__init__(params)
        # Restore target of a displaced predecessor, caught while queued
        self._caught_avatar_id: str | None = None
        self._return_avatar_id: str | None = None

    def conflict_key(self) -> str:
        return "avatar"

    def validate(self, catalogue: Catalogue) -> str | None:
        if not self.params.avatar_id:
            return "Avatar ID cannot be empty."
        if not catalogue.has_avatar(self.params.avatar_id):
            return "Invalid Avatar ID."
        if self.params.return_avatar_id and not catalogue.has_avatar(self.params.return_avatar_id):
            return "Invalid Return Avatar ID."
        return None

    async def ready_to_start(self, ctx: RewardContext) -> bool:
        running = next((r for r in ctx.running_rewards if isinstance(r, SetAvatarReward)), None)
        if running is None:
            return True
        if self._caught_avatar_id is None and running.params.return_to == "previous":
            self._caught_avatar_id = running._return_avatar_id
        return False

    def _resolve_return_target(self, ctx: RewardContext) -> str | None:
        mode = self.params.return_to
        if mode == "default":
            return ctx.env.base_avatar_id
        if mode == "specific":
            return self.params.return_avatar_id
        if self._caught_avatar_id:
            return self._caught_avatar_id
        current = ctx.env.state.current_avatar_id()
        if current is None:
            logger.info("No current avatar known, %s will not restore one", self.title)
        return current

    async def on_start(self, ctx: RewardContext) -> None:
        self._return_avatar_id = self._resolve_return_target(ctx)
        self._caught_avatar_id = None

        avatar_id = self.params.avatar_id
        if not await self._effect(f"change avatar to {avatar_id}", ctx.env.surface.change_avatar(avatar_id)):
            return
        self._started(ctx)

    async def _restore(self, ctx: RewardContext) -> None:
        # A queued avatar effect owns the slot next; restoring would flicker
        if any(isinstance(r, SetAvatarReward) for r in ctx.reward_queue):
            logger.info("Avatar effect queued behind %s, skipping restore", self.params.avatar_id)
            return
        if self._return_avatar_id:
            await self._effect(
                f"restore avatar {self._return_avatar_id}",
                ctx.env.surface.change_avatar(self._return_avatar_id),
            )

    def describe(self) -> dict[str, Any]:
        info = super().describe()
        info["return_avatar_id"] = self._return_avatar_id
        return info


# ---------------------------------------------------------------------------
# Avatar OSC parameters
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class SetParametersParams:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    # Empty matches whatever avatar is worn
    for_avatar: str = ""
    params: dict[str, str] = field(default_factory=dict)
    channel_id: str = ""
    return_to: str = "previous"
    return_params: dict[str, str] = field(default_factory=dict)
    timeout_ms: int = 0

    def __post_init__(self) -> None:
        if self.return_to not in PARAMETER_RETURN_MODES:
            raise ValueError(f"return_to must be one of {PARAMETER_RETURN_MODES}")
        self.for_avatar = self.for_avatar or ""
        self.channel_id = self.channel_id or ""
        self.params = _kv(self.params, "params")
        self.return_params = _kv(self.return_params, "return_params")
        self.timeout_ms = _timeout(self.timeout_ms)


class SetParametersReward(TimedReward):
    kind = RewardKind.SET_PARAMETERS
    title = "Set OSC Reward"
    description = "Set OSC parameters for a duration"
    params_type = SetParametersParams

    def __init__(self, params: SetParametersParams | None = None) -> None:
        super().__init__(params)
        self._caught_values: dict[str, str] | None = None
        self._restore_values: dict[str, str] = {}

    def conflict_key(self) -> str | None:
        return f"osc:{self.params.channel_id}" if self.params.channel_id else None

    def _avatar_matches(self, ctx: RewardContext) -> bool:
        wanted = self.params.for_avatar
        return not wanted or ctx.env.state.current_avatar_id() == wanted

    def admissible(self, ctx: RewardContext) -> bool:
        """Readiness without side effects; used for hypothetical contexts."""
        if not self._avatar_matches(ctx):
            return False
        channel = self.params.channel_id
        if not channel:
            return True
        return not any(
            isinstance(r, SetParametersReward) and r.params.channel_id == channel
            for r in ctx.running_rewards
        )

    def _catch_previous(self, running: list[RewardInstance]) -> dict[str, str]:
        caught: dict[str, str] = {}
        others = [
            r for r in running
            if isinstance(r, SetParametersReward) and r.params.return_to == "previous"
        ]
        for key in self.params.params:
            for other in others:
                if other._restore_values.get(key):
                    caught[key] = other._restore_values[key]
                    break
        return caught

    async def ready_to_start(self, ctx: RewardContext) -> bool:
        if not self._avatar_matches(ctx):
            return False
        if self._caught_values is None and self.params.return_to == "previous":
            self._caught_values = self._catch_previous(ctx.running_rewards)
        return self.admissible(ctx)

    async def on_start(self, ctx: RewardContext) -> None:
        restore = dict(self.params.return_params)
        if self.params.return_to == "previous":
            caught = self._caught_values or {}
            for key in self.params.params:
                if caught.get(key):
                    restore[key] = caught[key]
                    continue
                current = ctx.env.state.parameter_text(key)
                if current is None:
                    logger.info("No current value for %s, it will not be restored", key)
                else:
                    restore[key] = current
        self._restore_values = restore
        self._caught_values = None

        if not await self._set_all(self.params.params, ctx.env.surface.set_parameter):
            return
        self._started(ctx)

    async def _restore(self, ctx: RewardContext) -> None:
        # Keys a queued instance is about to overwrite are left alone
        hypothetical = ctx.without(self)
        skipped: set[str] = set()
        for queued in ctx.reward_queue:
            if isinstance(queued, SetParametersReward) and queued.admissible(hypothetical):
                skipped.update(queued.params.params)
        if skipped:
            logger.info("Skipping restore of %s, queued rewards will set them", sorted(skipped))

        restore = {k: v for k, v in self._restore_values.items() if k not in skipped}
        await self._set_all(restore, ctx.env.surface.set_parameter)

    def describe(self) -> dict[str, Any]:
        info = super().describe()
        info["restore_values"] = dict(self._restore_values)
        return info


# ---------------------------------------------------------------------------
# Auxiliary (Warudo) OSC parameters
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class SetAuxParametersParams:
    params: dict[str, str] = field(default_factory=dict)
    channel_id: str = ""
    return_params: dict[str, str] = field(default_factory=dict)
    timeout_ms: int = 0

    def __post_init__(self) -> None:
        self.channel_id = self.channel_id or ""
        self.params = _kv(self.params, "params")
        self.return_params = _kv(self.return_params, "return_params")
        self.timeout_ms = _timeout(self.timeout_ms)


class SetAuxParametersReward(TimedReward):
    kind = RewardKind.SET_AUX_PARAMETERS
    title = "Set Warudo OSC Reward"
    description = "Set Warudo OSC parameters for a duration"
    params_type = SetAuxParametersParams

    def conflict_key(self) -> str | None:
        return f"aux:{self.params.channel_id}" if self.params.channel_id else None

    async def ready_to_start(self, ctx: RewardContext) -> bool:
        channel = self.params.channel_id
        if not channel:
            return True
        return not any(
            isinstance(r, SetAuxParametersReward) and r.params.channel_id == channel
            for r in ctx.running_rewards
        )

    async def on_start(self, ctx: RewardContext) -> None:
        if not await self._set_all(self.params.params, ctx.env.surface.set_aux_parameter):
            return
        self._started(ctx)

    async def _restore(self, ctx: RewardContext) -> None:
        await self._set_all(self.params.return_params, ctx.env.surface.set_aux_parameter)


# ---------------------------------------------------------------------------
# Overlay visibility
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class SetOverlayParams:
    overlay_id: int = 0
    timeout_ms: int = 0
    show: bool = True

    def __post_init__(self) -> None:
        self.overlay_id = int(self.overlay_id)
        self.show = bool(self.show)
        self.timeout_ms = _timeout(self.timeout_ms)


class SetOverlayReward(TimedReward):
    kind = RewardKind.SET_OVERLAY
    title = "Set Overlay Reward"
    description = "Set overlay for a duration"
    params_type = SetOverlayParams

    def conflict_key(self) -> str:
        return f"overlay:{self.params.overlay_id}"

    def validate(self, catalogue: Catalogue) -> str | None:
        if catalogue.get_overlay(self.params.overlay_id) is None:
            return "Invalid Overlay ID."
        return None

    async def ready_to_start(self, ctx: RewardContext) -> bool:
        return not any(
            isinstance(r, SetOverlayReward) and r.params.overlay_id == self.params.overlay_id
            for r in ctx.running_rewards
        )

    async def on_start(self, ctx: RewardContext) -> None:
        ctx.env.state.set_overlay_visible(self.params.overlay_id, self.params.show)
        self._started(ctx)

    async def _restore(self, ctx: RewardContext) -> None:
        overlay = ctx.env.catalogue.get_overlay(self.params.overlay_id)
        if overlay is None:
            logger.info("Overlay %d no longer exists, hiding it", self.params.overlay_id)
        ctx.env.state.set_overlay_visible(
            self.params.overlay_id, overlay.visible if overlay is not None else False
        )


# ---------------------------------------------------------------------------
# Force-cancel variants
# ---------------------------------------------------------------------------
class ForceCancelReward(RewardInstance):
    """Never queues and never runs: on start it cancels every matching
    running instance of ``target_type``."""

    target_type: ClassVar[type[TimedReward]]

    def targets(self, reward: TimedReward) -> bool:
        return True

    async def ready_to_start(self, ctx: RewardContext) -> bool:
        return True

    async def on_start(self, ctx: RewardContext) -> None:
        victims = [
            r for r in ctx.running_rewards
            if isinstance(r, self.target_type) and self.targets(r)
        ]
        logger.info("%s cancelling %d running reward(s)", self.title, len(victims))
        for reward in victims:
            await reward.on_cancel(ctx.refreshed())

    async def is_still_running(self, ctx: RewardContext) -> bool:
        return False


@dataclass(slots=True)
class CancelAvatarParams:
    pass


class CancelAvatarReward(ForceCancelReward):
    kind = RewardKind.CANCEL_AVATAR
    title = "Cancel Avatar Reward"
    description = "Cancel any active avatar rewards"
    params_type = CancelAvatarParams
    target_type = SetAvatarReward


@dataclass(slots=True)
class CancelParametersParams:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    # Empty cancels every channel
    channel_id: str = ""


class CancelParametersReward(ForceCancelReward):
    kind = RewardKind.CANCEL_PARAMETERS
    title = "Cancel OSC Reward"
    description = "Cancel any active OSC rewards (optionally for a specific channel)"
    params_type = CancelParametersParams
    target_type = SetParametersReward

    def targets(self, reward: TimedReward) -> bool:
        return not self.params.channel_id or reward.params.channel_id == self.params.channel_id


@dataclass(slots=True)
class CancelAuxParametersParams:
    channel_id: str = ""


class CancelAuxParametersReward(ForceCancelReward):
    kind = RewardKind.CANCEL_AUX_PARAMETERS
    title = "Cancel Warudo OSC Reward"
    description = "Cancel any active Warudo OSC rewards (optionally for a specific channel)"
    params_type = CancelAuxParametersParams
    target_type = SetAuxParametersReward

    def targets(self, reward: TimedReward) -> bool:
        return not self.params.channel_id or reward.params.channel_id == self.params.channel_id


@dataclass(slots=True)
class CancelOverlayParams:
    # None cancels every overlay
    overlay_id: int | None = None

    def __post_init__(self) -> None:
        if self.overlay_id is not None:
            self.overlay_id = int(self.overlay_id)


class CancelOverlayReward(ForceCancelReward):
    kind = RewardKind.CANCEL_OVERLAY
    title = "Cancel Overlay Reward"
    description = "Cancel any active overlay rewards (optionally for a specific overlay)"
    params_type = CancelOverlayParams
    target_type = SetOverlayReward

    def targets(self, reward: TimedReward) -> bool:
        return self.params.overlay_id is None or reward.params.overlay_id == self.params.overlay_id


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
REWARD_TYPES: dict[str, type[RewardInstance]] = {
    cls.kind: cls
    for cls in (
        SetAvatarReward,
        CancelAvatarReward,
        SetParametersReward,
        CancelParametersReward,
        SetOverlayReward,
        CancelOverlayReward,
        SetAuxParametersReward,
        CancelAuxParametersReward,
    )
}


def reward_from_dict(record: dict[str, Any]) -> RewardInstance:
    """Rebuild a reward template from its stored ``{kind, params}`` record.

    Older records name the kind under ``id``; both are accepted.

    Raises
    ------
    UnknownKindError
        No reward is registered under the record's kind.
    ValueError, TypeError
        The params are malformed.
    """
    if not isinstance(record, dict):
        raise ValueError("Reward record must be an object")
    kind = record.get("kind") or record.get("id")
    cls = REWARD_TYPES.get(kind)
    if cls is None:
        raise UnknownKindError(f"Unknown reward kind: {kind!r}")
    return cls.from_params(record.get("params"))


def reward_to_dict(reward: RewardInstance) -> dict[str, Any]:
    return reward.to_stored()
