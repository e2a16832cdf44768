"""
stagecue.engine.events — Stream Event Envelope
===============================================

Every event delivered by the event server (Twitch EventSub relays and
Streamlabs socket relays) is normalized into one of the frozen
dataclasses below before triggers see it.  The ``type`` tags match the
JSON the server emits, so :func:`event_from_payload` is a direct mapping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "BitDonation",
    "ChannelPoints",
    "ChatMessage",
    "DonationMessage",
    "Event",
    "EventParseError",
    "StreamlabsDonation",
    "Whisper",
    "event_from_payload",
    "event_to_payload",
]


class EventParseError(ValueError):
    """Raised when an incoming payload is not a recognised event."""


# ---------------------------------------------------------------------------
# Twitch events
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ChatMessage:
    """A chat message in the broadcaster's channel."""

    sender: str
    message: str
    type: str = field(default="Message", init=False)


@dataclass(frozen=True, slots=True)
class Whisper:
    """A whisper sent to the broadcaster."""

    sender: str
    message: str
    type: str = field(default="Whisper", init=False)


@dataclass(frozen=True, slots=True)
class BitDonation:
    """A cheer.  ``message`` is None when the cheer had no text."""

    amount: int
    message: str | None = None
    emojis: tuple[str, ...] = ()
    type: str = field(default="BitDonation", init=False)


@dataclass(frozen=True, slots=True)
class ChannelPoints:
    """A channel-point custom reward redemption."""

    reward_id: str
    reward_name: str = ""
    type: str = field(default="ChannelPoints", init=False)


# ---------------------------------------------------------------------------
# Streamlabs events
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DonationMessage:
    """One raw provider message wrapped inside a Streamlabs donation event."""

    amount: float
    message: str = ""
    currency: str = ""
    from_name: str = ""
    name: str = ""
    formatted_amount: str = ""
    id: str = ""
    from_user_id: int | None = None
    is_test: bool = False
    is_preview: bool = False


@dataclass(frozen=True, slots=True)
class StreamlabsDonation:
    """A Streamlabs donation envelope.

    Streamlabs batches donations, so a single event may wrap several
    provider messages.
    """

    messages: tuple[DonationMessage, ...] = ()
    type: str = field(default="donation", init=False)


Event = ChatMessage | Whisper | BitDonation | ChannelPoints | StreamlabsDonation


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------
def _donation_message(raw: dict[str, Any]) -> DonationMessage:
    try:
        amount = float(raw["amount"])
    except (KeyError, TypeError, ValueError) as exc:
        raise EventParseError(f"Donation message without a numeric amount: {raw!r}") from exc

    return DonationMessage(
        amount=amount,
        message=raw.get("message") or "",
        currency=raw.get("currency") or "",
        from_name=raw.get("from") or "",
        name=raw.get("name") or "",
        formatted_amount=raw.get("formattedAmount") or "",
        id=raw.get("_id") or "",
        from_user_id=raw.get("from_user_id"),
        is_test=bool(raw.get("isTest", False)),
        is_preview=bool(raw.get("isPreview", False)),
    )


def event_from_payload(payload: dict[str, Any]) -> Event:
    """Build an :data:`Event` from the JSON emitted by the event server.

    Twitch payloads carry their fields next to ``type``; Streamlabs
    donations carry a ``message`` list of raw provider messages.

    Raises
    ------
    EventParseError
        Unknown ``type`` or missing required fields.
    """
    if not isinstance(payload, dict):
        raise EventParseError("Event payload must be an object")

    event_type = payload.get("type")
    try:
        if event_type == "Message":
            return ChatMessage(sender=payload["sender"], message=payload["message"])
        if event_type == "Whisper":
            return Whisper(sender=payload["sender"], message=payload["message"])
        if event_type == "BitDonation":
            return BitDonation(
                amount=int(payload["amount"]),
                message=payload.get("message"),
                emojis=tuple(payload.get("emojis") or ()),
            )
        if event_type == "ChannelPoints":
            return ChannelPoints(
                reward_id=payload["reward_id"],
                reward_name=payload.get("reward_name") or "",
            )
        if event_type == "donation":
            raw_messages = payload.get("message") or []
            if not isinstance(raw_messages, list):
                raise EventParseError("Donation 'message' must be a list")
            return StreamlabsDonation(
                messages=tuple(_donation_message(m) for m in raw_messages),
            )
    except EventParseError:
        raise
    except KeyError as exc:
        raise EventParseError(f"{event_type} event is missing field {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise EventParseError(f"Malformed {event_type} event: {exc}") from exc

    raise EventParseError(f"Unknown event type: {event_type!r}")


def event_to_payload(event: Event) -> dict[str, Any]:
    """Inverse of :func:`event_from_payload`, for logs and the API."""
    if isinstance(event, StreamlabsDonation):
        return {
            "type": event.type,
            "message": [
                {
                    "_id": m.id,
                    "amount": m.amount,
                    "currency": m.currency,
                    "formattedAmount": m.formatted_amount,
                    "from": m.from_name,
                    "from_user_id": m.from_user_id,
                    "isPreview": m.is_preview,
                    "isTest": m.is_test,
                    "message": m.message,
                    "name": m.name,
                }
                for m in event.messages
            ],
        }
    if isinstance(event, BitDonation):
        return {
            "type": event.type,
            "amount": event.amount,
            "message": event.message,
            "emojis": list(event.emojis),
        }
    if isinstance(event, ChannelPoints):
        return {"type": event.type, "reward_id": event.reward_id, "reward_name": event.reward_name}
    return {"type": event.type, "sender": event.sender, "message": event.message}
