from __future__ import annotations

import logging
import os
from typing import Optional


def setup_logging(level: Optional[str] = None) -> None:
    """Configure stdlib logging for the server and the client.

    The client console prints session status lines itself; this config targets
    diagnostic logs (aiortc and websockets log through the same root logger).
    """

    effective_level = (level or os.environ.get("COWATCH_LOG_LEVEL") or "INFO").upper()

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=effective_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    else:
        root.setLevel(effective_level)

    # aioice/aiortc are chatty at DEBUG; only follow our level when debugging.
    if effective_level != "DEBUG":
        for noisy in ("aioice", "aiortc"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
