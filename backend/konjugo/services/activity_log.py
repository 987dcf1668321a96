"""Activity log for sync runs and other maintenance operations."""

from sqlalchemy.orm import Session

from konjugo.models import ActivityLog


def log_activity(
    db: Session,
    event_type: str,
    summary: str,
    detail: dict | None = None,
    commit: bool = True,
) -> ActivityLog:
    entry = ActivityLog(
        event_type=event_type,
        summary=summary,
        detail_json=detail,
    )
    db.add(entry)
    if commit:
        db.commit()
    return entry


def recent_activity(db: Session, limit: int = 20, event_type: str | None = None) -> list[ActivityLog]:
    query = db.query(ActivityLog)
    if event_type:
        query = query.filter(ActivityLog.event_type == event_type)
    return query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
