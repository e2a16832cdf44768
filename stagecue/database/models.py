"""
stagecue.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- tasks     — User-configured trigger → rewards bindings, stored as
              ``{kind, params}`` JSON documents so new variants need no
              schema change.
- overlays  — Overlay catalogue with each overlay's baseline visibility.

The kind enums live here because they are the persisted identifiers the
engine's registries are keyed on.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Stagecue ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class TriggerKind(enum.StrEnum):
    """Stable identifiers for trigger variants in stored tasks."""
    AND = "and-trigger"
    OR = "or-trigger"
    CHANNEL_POINTS = "twitch-channel-points-trigger"
    BIT_DONATION = "twitch-bit-donation-trigger"
    CHAT_MESSAGE = "twitch-message-trigger"
    WHISPER = "twitch-whisper-trigger"
    STREAMLABS_DONATION = "streamlabs-donation-trigger"


class RewardKind(enum.StrEnum):
    """Stable identifiers for reward variants in stored tasks."""
    SET_AVATAR = "set-avatar-reward"
    CANCEL_AVATAR = "cancel-avatar-reward"
    SET_PARAMETERS = "set-osc-reward"
    CANCEL_PARAMETERS = "cancel-osc-reward"
    SET_OVERLAY = "set-overlay-reward"
    CANCEL_OVERLAY = "cancel-overlay-reward"
    SET_AUX_PARAMETERS = "set-warudo-osc-reward"
    CANCEL_AUX_PARAMETERS = "cancel-warudo-osc-reward"


# ---------------------------------------------------------------------------
# Tasks — one row per configured trigger/rewards binding
# ---------------------------------------------------------------------------
class TaskRow(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # Evaluation order; lower runs first
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    trigger: Mapped[dict] = mapped_column(JSON, nullable=False)
    rewards: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<TaskRow id={self.id} name={self.name!r} pos={self.position}>"


# ---------------------------------------------------------------------------
# Overlays — catalogue + baseline visibility
# ---------------------------------------------------------------------------
class OverlayRow(Base):
    __tablename__ = "overlays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    visible: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<OverlayRow id={self.id} name={self.name!r} visible={self.visible}>"
