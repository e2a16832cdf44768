"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import Engine

from stagecue.constants import AVATAR_CHANGE_ADDRESS
from stagecue.database.engine import create_db_engine, init_db
from stagecue.engine.handler import RewardHandler
from stagecue.engine.surface import (
    Avatar,
    Catalogue,
    EffectEnvironment,
    EffectError,
    EffectSurface,
    LiveState,
    OverlayItem,
)

BASE_AVATAR = "avtr_base"


class RecordingSurface(EffectSurface):
    """Effect surface that records every call and echoes it into LiveState
    the way VRChat reports changes back over OSC."""

    def __init__(self, state: LiveState) -> None:
        self.state = state
        self.calls: list[tuple] = []
        # Call kinds ("avatar", "param", "aux") that should be rejected
        self.failing: set[str] = set()

    async def change_avatar(self, avatar_id: str) -> None:
        self.calls.append(("avatar", avatar_id))
        if "avatar" in self.failing:
            raise EffectError("avatar change rejected")
        self.state.record(AVATAR_CHANGE_ADDRESS, avatar_id)

    async def set_parameter(self, address: str, value: str) -> None:
        self.calls.append(("param", address, value))
        if "param" in self.failing:
            raise EffectError("parameter rejected")
        self.state.record(address, value)

    async def set_aux_parameter(self, address: str, value: str) -> None:
        self.calls.append(("aux", address, value))
        if "aux" in self.failing:
            raise EffectError("aux parameter rejected")

    def avatar_calls(self) -> list[str]:
        return [c[1] for c in self.calls if c[0] == "avatar"]


@pytest.fixture
def state() -> LiveState:
    """Live state with the base avatar worn."""
    live = LiveState()
    live.record(AVATAR_CHANGE_ADDRESS, BASE_AVATAR)
    return live


@pytest.fixture
def surface(state: LiveState) -> RecordingSurface:
    return RecordingSurface(state)


@pytest.fixture
def catalogue() -> Catalogue:
    return Catalogue(
        avatars=[
            Avatar(id=BASE_AVATAR, name="Base"),
            Avatar(id="avtr_1", name="Fox"),
            Avatar(id="avtr_2", name="Maid"),
        ],
        overlays=[
            OverlayItem(id=1, name="Alerts", url="http://localhost/alerts", visible=True),
            OverlayItem(id=2, name="Cam frame", visible=False),
        ],
    )


@pytest.fixture
def env(surface: RecordingSurface, state: LiveState, catalogue: Catalogue) -> EffectEnvironment:
    return EffectEnvironment(
        surface=surface,
        state=state,
        catalogue=catalogue,
        base_avatar_id=BASE_AVATAR,
    )


@pytest.fixture
def handler(env: EffectEnvironment) -> RewardHandler:
    return RewardHandler(env)


@pytest.fixture
def db_engine(tmp_path) -> Engine:
    """File-backed SQLite so worker threads from ``run_db`` share the data."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'stagecue-test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()
