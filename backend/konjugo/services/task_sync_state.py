"""Persisted sync checkpoint plus in-process bookkeeping about sync runs."""

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from konjugo.models import TaskSyncState
from konjugo.services.task_source import to_utc
from konjugo.services.task_sync_plan import TaskSyncCheckpoint

TASK_SPECS_SYNC_ID = "task_specs"


def load_checkpoint(db: Session) -> Optional[TaskSyncCheckpoint]:
    row = db.get(TaskSyncState, TASK_SPECS_SYNC_ID)
    if row is None or row.last_synced_at is None:
        return None
    return TaskSyncCheckpoint(
        last_synced_at=to_utc(row.last_synced_at),
        version_hash=row.version_hash,
    )


def store_checkpoint(db: Session, checkpoint: TaskSyncCheckpoint, commit: bool = True) -> TaskSyncCheckpoint:
    """Upsert the checkpoint row. ``last_synced_at`` never moves backwards."""
    row = db.get(TaskSyncState, TASK_SPECS_SYNC_ID)
    last_synced_at = checkpoint.last_synced_at
    if row is None:
        row = TaskSyncState(id=TASK_SPECS_SYNC_ID)
        db.add(row)
    elif row.last_synced_at is not None:
        last_synced_at = max(last_synced_at, to_utc(row.last_synced_at))

    row.last_synced_at = last_synced_at
    row.version_hash = checkpoint.version_hash
    row.updated_at = datetime.now(timezone.utc)
    if commit:
        db.commit()
    return replace(checkpoint, last_synced_at=last_synced_at)


def clear_checkpoint(db: Session, commit: bool = True) -> None:
    db.query(TaskSyncState).filter(TaskSyncState.id == TASK_SPECS_SYNC_ID).delete()
    if commit:
        db.commit()


@dataclass
class SyncMetadata:
    in_progress: bool = False
    last_run_started_at: Optional[datetime] = None
    last_run_completed_at: Optional[datetime] = None
    last_checkpoint: Optional[TaskSyncCheckpoint] = None

    def to_dict(self) -> dict:
        checkpoint = self.last_checkpoint
        return {
            "inProgress": self.in_progress,
            "lastRunStartedAt": self.last_run_started_at.isoformat() if self.last_run_started_at else None,
            "lastRunCompletedAt": self.last_run_completed_at.isoformat() if self.last_run_completed_at else None,
            "lastCheckpoint": {
                "lastSyncedAt": checkpoint.last_synced_at.isoformat(),
                "versionHash": checkpoint.version_hash,
            } if checkpoint else None,
        }


class SyncTracker:
    """Tracks the sync runs of this process. ``run_lock`` serializes them."""

    def __init__(self):
        self.run_lock = threading.Lock()
        self._meta_lock = threading.Lock()
        self._meta = SyncMetadata()

    def snapshot(self) -> SyncMetadata:
        with self._meta_lock:
            return replace(self._meta)

    def mark_start(self, started_at: datetime) -> None:
        with self._meta_lock:
            self._meta.in_progress = True
            self._meta.last_run_started_at = started_at

    def mark_success(self, completed_at: datetime, checkpoint: Optional[TaskSyncCheckpoint]) -> None:
        with self._meta_lock:
            self._meta.in_progress = False
            self._meta.last_run_completed_at = completed_at
            self._meta.last_checkpoint = checkpoint

    def mark_failure(self) -> None:
        with self._meta_lock:
            self._meta.in_progress = False

    def is_fresh(self, ttl_seconds: float, now: Optional[datetime] = None) -> bool:
        with self._meta_lock:
            completed = self._meta.last_run_completed_at
        if completed is None:
            return False
        now = now or datetime.now(timezone.utc)
        return (now - completed).total_seconds() < ttl_seconds

    def reset(self) -> None:
        with self._meta_lock:
            self._meta = SyncMetadata()


sync_tracker = SyncTracker()
