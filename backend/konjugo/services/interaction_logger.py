"""Append-only JSONL log of learner-facing events (tasks served, answers submitted)."""

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from konjugo.config import settings


def _get_log_path() -> Path:
    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return log_dir / f"interactions_{today}.jsonl"


def log_interaction(
    event: str,
    task_id: str | None = None,
    task_type: str | None = None,
    device_id: str | None = None,
    user_id: str | None = None,
    result: str | None = None,
    response_ms: int | None = None,
    **extra,
) -> None:
    if os.environ.get("TESTING"):
        return

    entry = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "task_id": task_id,
        "task_type": task_type,
        "device_id": device_id,
        "user_id": user_id,
        "result": result,
        "response_ms": response_ms,
        **extra,
    }
    entry = {k: v for k, v in entry.items() if v is not None}

    log_path = _get_log_path()
    with open(log_path, "a") as f:
        f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
