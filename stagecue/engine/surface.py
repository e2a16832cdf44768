"""
stagecue.engine.surface — The Outside World, as Rewards See It
===============================================================

Rewards never talk to VRChat, Warudo or the overlay server directly.
They go through an :class:`EffectEnvironment`:

* :class:`EffectSurface` — the asynchronous command surface (change the
  avatar, set an OSC parameter on either channel).
* :class:`LiveState` — last-known values reported back by VRChat plus
  current overlay visibility, used to capture "what to restore".
* :class:`Catalogue` — known avatars and overlays, used by ``validate``
  and for overlay baselines.

The environment is built once by the composition root and handed to the
:class:`~stagecue.engine.handler.RewardHandler`; nothing here is global.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field

from stagecue.constants import AVATAR_CHANGE_ADDRESS

logger = logging.getLogger(__name__)

OscValue = str | bool | int | float


class EffectError(Exception):
    """An external effect call was rejected or could not be delivered."""


# ---------------------------------------------------------------------------
# Command surface
# ---------------------------------------------------------------------------
class EffectSurface(abc.ABC):
    """Asynchronous effect commands.  Implementations raise EffectError."""

    @abc.abstractmethod
    async def change_avatar(self, avatar_id: str) -> None:
        """Switch the worn avatar."""

    @abc.abstractmethod
    async def set_parameter(self, address: str, value: str) -> None:
        """Set one avatar OSC parameter."""

    @abc.abstractmethod
    async def set_aux_parameter(self, address: str, value: str) -> None:
        """Set one parameter on the auxiliary (Warudo) channel."""


# ---------------------------------------------------------------------------
# Live state
# ---------------------------------------------------------------------------
def format_osc_value(value: OscValue) -> str:
    """Render an OSC value the way parameter strings are stored.

    Booleans become ``"true"``/``"false"``; whole floats drop the ``.0``.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class LiveState:
    """Last-known external state, updated by the OSC listener and rewards."""

    def __init__(self) -> None:
        # address → value, as last reported by VRChat
        self.osc_values: dict[str, OscValue] = {}
        # overlay id → currently visible
        self.overlay_visibility: dict[int, bool] = {}

    def record(self, address: str, value: OscValue) -> None:
        self.osc_values[address] = value
        if address == AVATAR_CHANGE_ADDRESS:
            logger.info("Avatar is now %s", value)

    def current_avatar_id(self) -> str | None:
        value = self.osc_values.get(AVATAR_CHANGE_ADDRESS)
        return value if isinstance(value, str) else None

    def parameter_text(self, address: str) -> str | None:
        """The current value of *address* as a string, or None if unknown."""
        value = self.osc_values.get(address)
        if value is None:
            return None
        return format_osc_value(value)

    def set_overlay_visible(self, overlay_id: int, visible: bool) -> None:
        self.overlay_visibility[overlay_id] = visible

    def snapshot(self) -> dict:
        return {
            "current_avatar_id": self.current_avatar_id(),
            "osc_values": dict(self.osc_values),
            "overlay_visibility": {str(k): v for k, v in self.overlay_visibility.items()},
        }


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Avatar:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class OverlayItem:
    """An overlay and its baseline visibility."""

    id: int
    name: str
    url: str = ""
    visible: bool = False


@dataclass
class Catalogue:
    """What currently exists: avatars on disk and configured overlays."""

    avatars: list[Avatar] = field(default_factory=list)
    overlays: list[OverlayItem] = field(default_factory=list)

    def has_avatar(self, avatar_id: str) -> bool:
        return any(a.id == avatar_id for a in self.avatars)

    def get_overlay(self, overlay_id: int) -> OverlayItem | None:
        for overlay in self.overlays:
            if overlay.id == overlay_id:
                return overlay
        return None


# ---------------------------------------------------------------------------
# Environment bundle
# ---------------------------------------------------------------------------
@dataclass
class EffectEnvironment:
    """Everything a reward may touch outside the scheduler."""

    surface: EffectSurface
    state: LiveState = field(default_factory=LiveState)
    catalogue: Catalogue = field(default_factory=Catalogue)
    # Target of "return to default" avatar effects
    base_avatar_id: str | None = None
