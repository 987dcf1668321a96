from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from konjugo.database import get_db
from konjugo.deps import get_task_registry
from konjugo.services.task_registry import TaskRegistry
from konjugo.services.task_sync_state import load_checkpoint, sync_tracker
from konjugo.services.task_synchronizer import ensure_task_specs_synced

router = APIRouter(prefix="/api/task-sync", tags=["task-sync"])


@router.get("")
def sync_status(db: Session = Depends(get_db)):
    stored = load_checkpoint(db)
    return {
        **sync_tracker.snapshot().to_dict(),
        "storedCheckpoint": {
            "lastSyncedAt": stored.last_synced_at.isoformat(),
            "versionHash": stored.version_hash,
        } if stored else None,
    }


@router.post("")
def run_sync(
    full: bool = Query(False),
    db: Session = Depends(get_db),
    registry: TaskRegistry = Depends(get_task_registry),
):
    """Run a sync now. Without ``full`` only lexemes changed since the stored checkpoint are read."""
    checkpoint = None if full else load_checkpoint(db)
    since = checkpoint.last_synced_at if checkpoint else None
    result = ensure_task_specs_synced(db, since=since, registry=registry)
    return result.to_dict()
