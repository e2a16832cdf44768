"""
stagecue.__main__ — Entry point for ``python -m stagecue``
===========================================================

Wiring:
1. Load .env (``DATABASE_URL``, ``STAGECUE_CONFIG``).
2. Load config.yaml for the API bind address.
3. Serve the API with uvicorn; its lifespan builds the runtime
   (database, tasks, overlays, avatar scan, OSC listener).

Run with::

    python -m stagecue
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("stagecue")


def main() -> None:
    """Bootstrap and serve Stagecue."""

    # 1. Environment variables.
    load_dotenv()

    # 2. Soft configuration.
    from stagecue.api.deps import get_config

    try:
        cfg = get_config()
    except FileNotFoundError as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    logger.info("Config loaded — base avatar: %s", cfg.base_avatar_id or "(none)")

    # 3. Serve (blocks until Ctrl+C).
    from stagecue.api.main import app

    uvicorn.run(app, host=cfg.api_host, port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    main()
