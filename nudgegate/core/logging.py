"""
Logging setup.

One stdout handler on the root logger; every module logs through
`logging.getLogger(__name__)`. Gunicorn captures stdout in production.
"""
from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if any(getattr(h, "_nudgegate", False) for h in root.handlers):
        root.setLevel(level.upper())
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler._nudgegate = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level.upper())
