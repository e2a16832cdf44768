"""
stagecue.services.osc_service — OSC Transport for VRChat & Warudo
==================================================================

The only code that puts bytes on the wire.

* :func:`encode_message` / :func:`decode_packet` — the subset of OSC 1.0
  VRChat speaks: one argument per message, ``i``/``f``/``s``/``T``/``F``
  type tags, and bundles on the receive side.
* :class:`OscEffectSurface` — the engine's
  :class:`~stagecue.engine.surface.EffectSurface` over UDP.  Avatar and
  parameter changes go to VRChat; auxiliary parameters go to Warudo.
* :class:`OscListener` — receives VRChat's parameter feedback and writes
  every value into :class:`~stagecue.engine.surface.LiveState`.

Reward params store values as strings; :func:`coerce_value` turns them
back into OSC types (numbers become floats, ``true``/``false`` booleans).
"""

from __future__ import annotations

import asyncio
import logging
import struct

from stagecue.constants import AVATAR_CHANGE_ADDRESS
from stagecue.engine.surface import EffectError, EffectSurface, LiveState, OscValue

logger = logging.getLogger(__name__)

BUNDLE_TAG = b"#bundle\0"


class OscDecodeError(ValueError):
    """The datagram is not a well-formed OSC packet."""


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------
def _osc_string(text: str) -> bytes:
    raw = text.encode("utf-8")
    # Null-terminated, padded to a multiple of four
    return raw + b"\0" * (4 - len(raw) % 4)


def _read_string(data: bytes, offset: int) -> tuple[str, int]:
    end = data.find(b"\0", offset)
    if end < 0:
        raise OscDecodeError("Unterminated OSC string")
    text = data[offset:end].decode("utf-8", errors="replace")
    offset = end + 1
    return text, offset + (-offset) % 4


def coerce_value(text: str) -> OscValue:
    """Parse a stored parameter string into the OSC value to send."""
    try:
        return float(text)
    except ValueError:
        pass
    if text == "true":
        return True
    if text == "false":
        return False
    return text


def encode_message(address: str, value: OscValue) -> bytes:
    """Encode a single-argument OSC message."""
    if isinstance(value, bool):
        return _osc_string(address) + _osc_string(",T" if value else ",F")
    if isinstance(value, int):
        return _osc_string(address) + _osc_string(",i") + struct.pack(">i", value)
    if isinstance(value, float):
        return _osc_string(address) + _osc_string(",f") + struct.pack(">f", value)
    return _osc_string(address) + _osc_string(",s") + _osc_string(str(value))


def _decode_message(data: bytes) -> tuple[str, list[OscValue]]:
    address, offset = _read_string(data, 0)
    if not address.startswith("/"):
        raise OscDecodeError(f"Bad OSC address {address!r}")
    if offset >= len(data):
        return address, []

    tags, offset = _read_string(data, offset)
    if not tags.startswith(","):
        raise OscDecodeError(f"Bad OSC type tag string {tags!r}")

    args: list[OscValue] = []
    try:
        for tag in tags[1:]:
            if tag == "i":
                args.append(struct.unpack_from(">i", data, offset)[0])
                offset += 4
            elif tag == "f":
                args.append(struct.unpack_from(">f", data, offset)[0])
                offset += 4
            elif tag == "s":
                text, offset = _read_string(data, offset)
                args.append(text)
            elif tag == "T":
                args.append(True)
            elif tag == "F":
                args.append(False)
            else:
                logger.debug("Unsupported OSC type tag %r on %s", tag, address)
                break
    except struct.error as exc:
        raise OscDecodeError(f"Truncated OSC message for {address}") from exc
    return address, args


def decode_packet(data: bytes) -> list[tuple[str, list[OscValue]]]:
    """Decode a message or a (possibly nested) bundle into messages."""
    if not data.startswith(BUNDLE_TAG):
        return [_decode_message(data)]

    messages: list[tuple[str, list[OscValue]]] = []
    offset = len(BUNDLE_TAG) + 8  # skip the time tag
    while offset < len(data):
        try:
            (size,) = struct.unpack_from(">i", data, offset)
        except struct.error as exc:
            raise OscDecodeError("Truncated OSC bundle") from exc
        offset += 4
        if size <= 0 or offset + size > len(data):
            raise OscDecodeError("Bad OSC bundle element size")
        messages.extend(decode_packet(data[offset:offset + size]))
        offset += size
    return messages


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------
class _SendProtocol(asyncio.DatagramProtocol):
    def error_received(self, exc: Exception) -> None:
        logger.warning("OSC send error: %s", exc)


class OscSender:
    """Fire-and-forget UDP sender bound to one endpoint."""

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self._transport: asyncio.DatagramTransport | None = None
        self._connect_lock = asyncio.Lock()

    async def _endpoint(self) -> asyncio.DatagramTransport:
        # Concurrent first sends must share one socket
        async with self._connect_lock:
            if self._transport is None or self._transport.is_closing():
                loop = asyncio.get_running_loop()
                self._transport, _ = await loop.create_datagram_endpoint(
                    _SendProtocol, remote_addr=(self.host, self.port)
                )
            return self._transport

    async def send(self, address: str, value: OscValue) -> None:
        try:
            transport = await self._endpoint()
            transport.sendto(encode_message(address, value))
        except OSError as exc:
            raise EffectError(f"OSC send to {self.host}:{self.port} failed: {exc}") from exc
        logger.debug("OSC → %s:%d %s = %r", self.host, self.port, address, value)

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None


class OscEffectSurface(EffectSurface):
    """Effect commands over OSC: VRChat for avatars, Warudo for aux params."""

    def __init__(self, vrchat: OscSender, warudo: OscSender) -> None:
        self.vrchat = vrchat
        self.warudo = warudo

    async def change_avatar(self, avatar_id: str) -> None:
        logger.info("Changing avatar to %s", avatar_id)
        await self.vrchat.send(AVATAR_CHANGE_ADDRESS, avatar_id)

    async def set_parameter(self, address: str, value: str) -> None:
        await self.vrchat.send(address, coerce_value(value))

    async def set_aux_parameter(self, address: str, value: str) -> None:
        await self.warudo.send(address, coerce_value(value))

    def close(self) -> None:
        self.vrchat.close()
        self.warudo.close()


# ---------------------------------------------------------------------------
# Receiving
# ---------------------------------------------------------------------------
class _ListenProtocol(asyncio.DatagramProtocol):
    def __init__(self, state: LiveState) -> None:
        self.state = state

    def datagram_received(self, data: bytes, addr) -> None:
        try:
            messages = decode_packet(data)
        except OscDecodeError as exc:
            logger.debug("Dropping malformed OSC packet from %s: %s", addr, exc)
            return
        for address, args in messages:
            if not args:
                logger.warning("OSC message has no arguments: %s", address)
                continue
            self.state.record(address, args[0])


class OscListener:
    """UDP listener that mirrors VRChat's OSC output into :class:`LiveState`."""

    def __init__(self, state: LiveState, host: str = "127.0.0.1", port: int = 9001) -> None:
        self.state = state
        self.host = host
        self.port = port
        self._transport: asyncio.DatagramTransport | None = None

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _ListenProtocol(self.state), local_addr=(self.host, self.port)
        )
        logger.info("OSC listener bound to %s:%d", self.host, self.port)

    def stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            logger.info("OSC listener stopped")
