"""
stagecue.services.avatar_service — VRChat Avatar Directory
===========================================================

VRChat writes one JSON file per avatar under
``<OSC dir>/<user id>/Avatars/<avatar id>.json``.  Those files are the
only local record of which avatars exist and which OSC parameters each
exposes, so they back both the avatar catalogue and the parameter
picker in the API.

Files sometimes start with a BOM or junk before the JSON object; content
is read from the first ``{``.  Scans are cached for
:data:`~stagecue.constants.AVATAR_CACHE_SECONDS`.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from stagecue.constants import AVATAR_CACHE_SECONDS
from stagecue.engine.surface import Avatar

logger = logging.getLogger(__name__)


def _read_avatar_file(path: Path) -> dict[str, Any] | None:
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.warning("Cannot read avatar config %s: %s", path, exc)
        return None

    start = content.find("{")
    if start < 0:
        return None
    try:
        data = json.loads(content[start:].strip())
    except json.JSONDecodeError as exc:
        logger.warning("Invalid avatar config %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


class AvatarDirectory:
    """Cached view over VRChat's per-avatar OSC configs."""

    def __init__(
        self,
        root: Path,
        ttl_seconds: float = AVATAR_CACHE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.root = Path(root)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: list[Avatar] | None = None
        self._cached_at = 0.0

    def invalidate(self) -> None:
        self._cache = None

    def list_avatars(self, force: bool = False) -> list[Avatar]:
        now = self._clock()
        if not force and self._cache is not None and now - self._cached_at < self.ttl_seconds:
            return list(self._cache)

        self._cache = self._scan()
        self._cached_at = now
        return list(self._cache)

    def _scan(self) -> list[Avatar]:
        if not self.root.is_dir():
            logger.info("Avatar OSC directory %s does not exist", self.root)
            return []

        logger.info("Looking for avatars in %s", self.root)
        seen: dict[str, Avatar] = {}
        for path in sorted(self.root.glob("*/Avatars/*.json")):
            data = _read_avatar_file(path)
            if not data or not data.get("id"):
                continue
            avatar_id = str(data["id"])
            seen.setdefault(avatar_id, Avatar(id=avatar_id, name=str(data.get("name") or avatar_id)))
        return list(seen.values())

    def parameters(self, avatar_id: str) -> list[str]:
        """OSC parameter names the given avatar exposes (empty if unknown)."""
        names: list[str] = []
        if not self.root.is_dir():
            return names
        for path in sorted(self.root.glob(f"*/Avatars/{avatar_id}.json")):
            data = _read_avatar_file(path) or {}
            for param in data.get("parameters") or []:
                name = param.get("name") if isinstance(param, dict) else None
                if name and name not in names:
                    names.append(name)
        return names
