"""
stagecue.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for the desktop-side settings: the default avatar,
the diagnostics API bind address, and the OSC endpoints for VRChat and
Warudo.  Tasks and overlays are *not* configured here; they live in the
database and are edited through the API.

Usage::

    from stagecue.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.base_avatar_id)    # "avtr_da3a3a4d-..."
    print(cfg.osc_send_port)     # 9000
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from stagecue.constants import (
    DEFAULT_AUX_OSC_PORT,
    DEFAULT_EVENT_LOG_SIZE,
    DEFAULT_OSC_LISTEN_PORT,
    DEFAULT_OSC_SEND_PORT,
    default_avatar_osc_dir,
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StagecueConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Avatar every "return to default" effect goes back to
    base_avatar_id: str | None = None

    # Diagnostics API
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # VRChat OSC
    osc_host: str = "127.0.0.1"
    osc_send_port: int = DEFAULT_OSC_SEND_PORT
    osc_listen_port: int = DEFAULT_OSC_LISTEN_PORT

    # Warudo OSC (auxiliary parameter channel)
    aux_osc_host: str = "127.0.0.1"
    aux_osc_port: int = DEFAULT_AUX_OSC_PORT

    # Where VRChat writes per-avatar OSC configs (None → platform default)
    avatar_osc_dir: Path | None = None

    # Number of received events kept for the diagnostics view
    event_log_size: int = DEFAULT_EVENT_LOG_SIZE

    @property
    def resolved_avatar_osc_dir(self) -> Path:
        return self.avatar_osc_dir or default_avatar_osc_dir()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> StagecueConfig:
    """Read *path* and return a :class:`StagecueConfig` instance.

    Every key is optional; omitted keys fall back to the defaults above.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a numeric setting cannot be converted.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = StagecueConfig()
    osc_dir = raw.get("avatar_osc_dir")

    return StagecueConfig(
        base_avatar_id=raw.get("base_avatar_id") or None,
        api_host=raw.get("api_host", defaults.api_host),
        api_port=int(raw.get("api_port", defaults.api_port)),
        osc_host=raw.get("osc_host", defaults.osc_host),
        osc_send_port=int(raw.get("osc_send_port", defaults.osc_send_port)),
        osc_listen_port=int(raw.get("osc_listen_port", defaults.osc_listen_port)),
        aux_osc_host=raw.get("aux_osc_host", defaults.aux_osc_host),
        aux_osc_port=int(raw.get("aux_osc_port", defaults.aux_osc_port)),
        avatar_osc_dir=Path(osc_dir).expanduser() if osc_dir else None,
        event_log_size=int(raw.get("event_log_size", defaults.event_log_size)),
    )
