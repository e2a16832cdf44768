"""
stagecue.constants — Shared Constants & Helpers
================================================

Single source of truth for OSC addresses, default ports and the VRChat
OSC config location.  Import from here instead of repeating literals in
rewards, services and the API.
"""

from __future__ import annotations

from pathlib import Path

# ---------------------------------------------------------------------------
# OSC addresses
# ---------------------------------------------------------------------------
# VRChat reports (and accepts) the active avatar id on this address
AVATAR_CHANGE_ADDRESS = "/avatar/change"

# ---------------------------------------------------------------------------
# Default endpoints
# ---------------------------------------------------------------------------
DEFAULT_OSC_SEND_PORT = 9000
DEFAULT_OSC_LISTEN_PORT = 9001
DEFAULT_AUX_OSC_PORT = 19190  # Warudo

DEFAULT_EVENT_LOG_SIZE = 200

# Avatar catalogue scans are cached this long
AVATAR_CACHE_SECONDS = 5 * 60


def default_avatar_osc_dir() -> Path:
    """Where VRChat writes per-avatar OSC configs on Windows.

    ``%USERPROFILE%\\AppData\\LocalLow\\VRChat\\VRChat\\OSC``
    """
    return Path.home() / "AppData" / "LocalLow" / "VRChat" / "VRChat" / "OSC"
