from __future__ import annotations

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stdout handler to the root logger."""
    root = logging.getLogger()
    root.setLevel(level.upper())

    # Uvicorn reloads and repeated lifespans must not stack handlers.
    if any(getattr(h, "_triage_monitor", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    )
    handler._triage_monitor = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
