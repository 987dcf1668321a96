"""Recency log of practice attempts, read by task selection for short-window suppression."""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from konjugo.models import PracticeLog

UNSPECIFIED_CEFR_LEVEL = "__"


def serialise_practice_log_level(level: Optional[str]) -> str:
    return level or UNSPECIFIED_CEFR_LEVEL


def log_practice_attempt(
    db: Session,
    task_id: str,
    lexeme_id: str,
    pos: str,
    task_type: str,
    attempted_at: datetime,
    device_id: Optional[str] = None,
    user_id: Optional[str] = None,
    cefr_level: Optional[str] = None,
) -> PracticeLog:
    """Append one attempt. The caller owns the transaction."""
    entry = PracticeLog(
        task_id=task_id,
        lexeme_id=lexeme_id,
        pos=pos,
        task_type=task_type,
        device_id=device_id,
        user_id=user_id,
        cefr_level=serialise_practice_log_level(cefr_level),
        attempted_at=attempted_at,
    )
    db.add(entry)
    return entry
