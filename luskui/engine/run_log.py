"""Per-run activity log lines."""
from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger("luskui.runs")


def _serialize(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    try:
        return json.dumps(data, default=str)
    except (TypeError, ValueError):
        return str(data)


def log_run(run_id: str, message: str, data: Any = None) -> None:
    """Log ``[run <id>] message: data`` at INFO."""
    serialized = _serialize(data)
    if serialized:
        logger.info("[run %s] %s: %s", run_id, message, serialized)
    else:
        logger.info("[run %s] %s", run_id, message)


def preview(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."
