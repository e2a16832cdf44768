"""
stagecue.engine.triggers — Trigger Evaluation Pipeline
=======================================================

Handler-registry implementation of trigger evaluation.  Each trigger
variant is a frozen dataclass holding only its configuration; behaviour
lives in a pair of pure functions registered in :data:`TRIGGER_HANDLERS`:

* ``evaluate(trigger, event) -> bool`` — does this event satisfy the rule?
* ``extract(trigger, event) -> KV``   — values exposed to rewards on match.

Leaf filters are optional and conjunctive: an unset (falsy) filter always
passes.  Combinators hold sub-triggers and recurse through the registry.

This module is pure calculation — no I/O, no engine state.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from stagecue.database.models import TriggerKind
from stagecue.engine.events import (
    BitDonation,
    ChannelPoints,
    ChatMessage,
    DonationMessage,
    Event,
    StreamlabsDonation,
    Whisper,
)

if TYPE_CHECKING:
    from stagecue.engine.context import KV, RewardContext

logger = logging.getLogger(__name__)


class UnknownKindError(ValueError):
    """A stored record names a trigger or reward kind nobody registered."""


def _number_text(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _contains(needle: str | None, haystack: str | None) -> bool:
    return not needle or needle in (haystack or "")


# ---------------------------------------------------------------------------
# Trigger variants
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ChannelPointsTrigger:
    kind: ClassVar[str] = TriggerKind.CHANNEL_POINTS
    title: ClassVar[str] = "Twitch Channel Points Trigger"

    reward_id: str | None = None


@dataclass(frozen=True, slots=True)
class BitDonationTrigger:
    kind: ClassVar[str] = TriggerKind.BIT_DONATION
    title: ClassVar[str] = "Twitch Bit Donation Trigger"

    minimum_amount: int | None = None
    message_contains: str | None = None


@dataclass(frozen=True, slots=True)
class ChatMessageTrigger:
    kind: ClassVar[str] = TriggerKind.CHAT_MESSAGE
    title: ClassVar[str] = "Twitch Message Trigger"

    sender: str | None = None
    message_contains: str | None = None


@dataclass(frozen=True, slots=True)
class WhisperTrigger:
    kind: ClassVar[str] = TriggerKind.WHISPER
    title: ClassVar[str] = "Twitch Whisper Trigger"

    sender: str | None = None
    message_contains: str | None = None


@dataclass(frozen=True, slots=True)
class StreamlabsDonationTrigger:
    kind: ClassVar[str] = TriggerKind.STREAMLABS_DONATION
    title: ClassVar[str] = "Streamlabs Donation Trigger"

    minimum_amount: float | None = None
    message_contains: str | None = None


@dataclass(frozen=True, slots=True)
class AndTrigger:
    """Group that requires every subtrigger to fire."""

    kind: ClassVar[str] = TriggerKind.AND
    title: ClassVar[str] = "AND Trigger"

    subtriggers: tuple[Trigger, ...] = ()


@dataclass(frozen=True, slots=True)
class OrTrigger:
    """Group that requires any subtrigger to fire."""

    kind: ClassVar[str] = TriggerKind.OR
    title: ClassVar[str] = "OR Trigger"

    subtriggers: tuple[Trigger, ...] = ()


Trigger = (
    ChannelPointsTrigger
    | BitDonationTrigger
    | ChatMessageTrigger
    | WhisperTrigger
    | StreamlabsDonationTrigger
    | AndTrigger
    | OrTrigger
)


# ---------------------------------------------------------------------------
# Leaf handlers
# ---------------------------------------------------------------------------
def _eval_channel_points(trigger: ChannelPointsTrigger, event: Event) -> bool:
    if not isinstance(event, ChannelPoints):
        return False
    return not trigger.reward_id or trigger.reward_id == event.reward_id


def _extract_channel_points(trigger: ChannelPointsTrigger, event: Event) -> KV:
    if not isinstance(event, ChannelPoints):
        return {}
    return {"reward_id": event.reward_id or "", "reward_name": event.reward_name or ""}


def _eval_bit_donation(trigger: BitDonationTrigger, event: Event) -> bool:
    if not isinstance(event, BitDonation):
        return False
    if trigger.minimum_amount and event.amount < trigger.minimum_amount:
        return False
    return _contains(trigger.message_contains, event.message)


def _extract_bit_donation(trigger: BitDonationTrigger, event: Event) -> KV:
    if not isinstance(event, BitDonation):
        return {}
    return {"donation_amount": _number_text(event.amount), "donation_message": event.message or ""}


def _eval_message(trigger: ChatMessageTrigger | WhisperTrigger, event: Event, event_type: type) -> bool:
    if not isinstance(event, event_type):
        return False
    if trigger.sender and trigger.sender != event.sender:
        return False
    return _contains(trigger.message_contains, event.message)


def _extract_message(event: Event, event_type: type) -> KV:
    if not isinstance(event, event_type):
        return {}
    return {"message_sender": event.sender, "message": event.message}


def _matched_donation(trigger: StreamlabsDonationTrigger, event: Event) -> DonationMessage | None:
    """First wrapped provider message satisfying the filters, if any."""
    if not isinstance(event, StreamlabsDonation):
        return None
    for msg in event.messages:
        if trigger.minimum_amount and msg.amount < trigger.minimum_amount:
            continue
        if not _contains(trigger.message_contains, msg.message):
            continue
        return msg
    return None


def _eval_streamlabs_donation(trigger: StreamlabsDonationTrigger, event: Event) -> bool:
    return _matched_donation(trigger, event) is not None


def _extract_streamlabs_donation(trigger: StreamlabsDonationTrigger, event: Event) -> KV:
    matched = _matched_donation(trigger, event)
    if matched is None:
        return {}
    return {
        "donation_amount": _number_text(matched.amount),
        "donation_message": matched.message,
        "donation_currency": matched.currency,
        "donation_from": matched.from_name,
    }


# ---------------------------------------------------------------------------
# Combinator handlers
# ---------------------------------------------------------------------------
def _eval_and(trigger: AndTrigger, event: Event) -> bool:
    return all(evaluate(sub, event) for sub in trigger.subtriggers)


def _extract_and(trigger: AndTrigger, event: Event) -> KV:
    combined: KV = {}
    for sub in trigger.subtriggers:
        combined.update(_extract(sub, event))
    return combined


def _eval_or(trigger: OrTrigger, event: Event) -> bool:
    return any(evaluate(sub, event) for sub in trigger.subtriggers)


def _extract_or(trigger: OrTrigger, event: Event) -> KV:
    # Only subtriggers that match on their own may contribute keys
    combined: KV = {}
    for sub in trigger.subtriggers:
        if evaluate(sub, event):
            combined.update(_extract(sub, event))
    return combined


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------
TRIGGER_HANDLERS: dict[str, tuple[Callable[[Any, Event], bool], Callable[[Any, Event], KV]]] = {
    TriggerKind.CHANNEL_POINTS: (_eval_channel_points, _extract_channel_points),
    TriggerKind.BIT_DONATION: (_eval_bit_donation, _extract_bit_donation),
    TriggerKind.CHAT_MESSAGE: (
        lambda t, e: _eval_message(t, e, ChatMessage),
        lambda t, e: _extract_message(e, ChatMessage),
    ),
    TriggerKind.WHISPER: (
        lambda t, e: _eval_message(t, e, Whisper),
        lambda t, e: _extract_message(e, Whisper),
    ),
    TriggerKind.STREAMLABS_DONATION: (_eval_streamlabs_donation, _extract_streamlabs_donation),
    TriggerKind.AND: (_eval_and, _extract_and),
    TriggerKind.OR: (_eval_or, _extract_or),
}

TRIGGER_TYPES: dict[str, type] = {
    cls.kind: cls
    for cls in (
        ChannelPointsTrigger,
        BitDonationTrigger,
        ChatMessageTrigger,
        WhisperTrigger,
        StreamlabsDonationTrigger,
        AndTrigger,
        OrTrigger,
    )
}


def _handlers(trigger: Trigger):
    handlers = TRIGGER_HANDLERS.get(trigger.kind)
    if handlers is None:
        raise UnknownKindError(f"No handler registered for trigger kind {trigger.kind!r}")
    return handlers


def evaluate(trigger: Trigger, event: Event) -> bool:
    """Does *event* satisfy *trigger*?  Pure; safe to call repeatedly."""
    return _handlers(trigger)[0](trigger, event)


def _extract(trigger: Trigger, event: Event) -> KV:
    return _handlers(trigger)[1](trigger, event)


def extract_context(trigger: Trigger, context: RewardContext) -> KV:
    """Values *trigger* exposes to rewards for the event in *context*."""
    return _extract(trigger, context.source)


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------
_NUMERIC_FIELDS = {"minimum_amount"}


def trigger_from_dict(record: dict[str, Any]) -> Trigger:
    """Rebuild a trigger from its stored ``{kind, params}`` record.

    Raises
    ------
    UnknownKindError
        The record (or a nested subtrigger) names an unregistered kind.
    ValueError
        The params are malformed.
    """
    if not isinstance(record, dict):
        raise ValueError("Trigger record must be an object")
    kind = record.get("kind") or record.get("id")
    cls = TRIGGER_TYPES.get(kind)
    if cls is None:
        raise UnknownKindError(f"Unknown trigger kind: {kind!r}")

    params = record.get("params") or {}
    if not isinstance(params, dict):
        raise ValueError(f"{kind} params must be an object")

    if cls in (AndTrigger, OrTrigger):
        subs = params.get("subtriggers") or []
        return cls(subtriggers=tuple(trigger_from_dict(sub) for sub in subs))

    known = {f.name for f in dataclasses.fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in params.items():
        if key not in known:
            logger.debug("Ignoring unknown %s param %r", kind, key)
            continue
        if key in _NUMERIC_FIELDS and value is not None:
            value = float(value) if cls is StreamlabsDonationTrigger else int(value)
        kwargs[key] = value
    return cls(**kwargs)


def trigger_to_dict(trigger: Trigger) -> dict[str, Any]:
    """Inverse of :func:`trigger_from_dict`."""
    if isinstance(trigger, (AndTrigger, OrTrigger)):
        params: dict[str, Any] = {"subtriggers": [trigger_to_dict(s) for s in trigger.subtriggers]}
    else:
        params = {
            f.name: getattr(trigger, f.name)
            for f in dataclasses.fields(trigger)
            if getattr(trigger, f.name) is not None
        }
    return {"kind": str(trigger.kind), "params": params}
