"""Regenerate stored task specs from lexemes and inflections.

A run reads lexemes (all supported ones, or only those touched after the
stored checkpoint), computes a plan with ``calculate_task_sync_plan`` and
applies it in chunks: stale rows are deleted, generated rows upserted, and the
checkpoint advanced when it changed.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from sqlalchemy import and_, case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from konjugo.config import settings
from konjugo.models import Inflection, Lexeme, TaskSpec, Word
from konjugo.services.activity_log import log_activity
from konjugo.services.task_registry import DEFAULT_TASK_REGISTRY, SUPPORTED_POS, TaskRegistry
from konjugo.services.task_source import InflectionRow, LexemeRow
from konjugo.services.task_sync_plan import (
    ExistingTaskSpecRow,
    TaskSyncCheckpoint,
    TaskSyncPlan,
    TaskSyncStats,
    calculate_task_sync_plan,
)
from konjugo.services.task_sync_state import (
    SyncTracker,
    load_checkpoint,
    store_checkpoint,
    sync_tracker,
)
from konjugo.services.task_templates import GeneratedTaskSpec

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Legacy words table uses short pos tags.
_WORD_POS = case(
    (Lexeme.pos == "verb", "V"),
    (Lexeme.pos == "noun", "N"),
    (Lexeme.pos == "adjective", "Adj"),
    else_="",
)


@dataclass
class TaskSyncResult:
    full: bool
    stats: TaskSyncStats = field(default_factory=TaskSyncStats)
    latest_touched_at: Optional[datetime] = None
    checkpoint: Optional[TaskSyncCheckpoint] = None
    checkpoint_changed: bool = False

    def to_dict(self) -> dict:
        s = self.stats
        return {
            "mode": "full" if self.full else "delta",
            "latestTouchedAt": self.latest_touched_at.isoformat() if self.latest_touched_at else None,
            "checkpoint": {
                "lastSyncedAt": self.checkpoint.last_synced_at.isoformat(),
                "versionHash": self.checkpoint.version_hash,
            } if self.checkpoint else None,
            "checkpointChanged": self.checkpoint_changed,
            "stats": {
                "lexemesConsidered": s.lexemes_considered,
                "lexemesProcessed": s.lexemes_processed,
                "lexemesSkipped": s.lexemes_skipped,
                "taskSpecsProcessed": s.task_specs_processed,
                "taskSpecsSkipped": s.task_specs_skipped,
                "taskSpecsInserted": s.task_specs_inserted,
                "taskSpecsUpdated": s.task_specs_updated,
                "taskSpecsDeleted": s.task_specs_deleted,
            },
        }


def chunked(values: Sequence[T], size: int) -> list[list[T]]:
    size = max(size, 1)
    return [list(values[i:i + size]) for i in range(0, len(values), size)]


def process_chunks_with_retry(
    db: Session,
    chunks: list[list[T]],
    handler: Callable[[Session, list[T]], None],
    operation: str,
    attempts: Optional[int] = None,
    delay_ms: Optional[int] = None,
) -> None:
    """Apply handler to each chunk, retrying a failed chunk with linear back-off."""
    attempts = max(attempts if attempts is not None else settings.task_sync_retry_attempts, 1)
    delay_ms = max(delay_ms if delay_ms is not None else settings.task_sync_retry_delay_ms, 0)

    for index, chunk in enumerate(chunks):
        attempt = 0
        while True:
            try:
                handler(db, chunk)
                break
            except SQLAlchemyError:
                db.rollback()
                attempt += 1
                if attempt >= attempts:
                    raise
                logger.warning(
                    "%s: retrying chunk %d/%d (attempt %d/%d, %d rows)",
                    operation, index + 1, len(chunks), attempt, attempts, len(chunk),
                    exc_info=True,
                )
                if delay_ms:
                    time.sleep(delay_ms * attempt / 1000)


# --- Reads ---

def fetch_updated_lexeme_ids(
    db: Session,
    since: datetime,
    supported_pos: Sequence[str] = SUPPORTED_POS,
) -> set[str]:
    ids = {
        row.id
        for row in db.query(Lexeme.id).filter(Lexeme.updated_at > since).all()
    }
    inflected = (
        db.query(Inflection.lexeme_id)
        .join(Lexeme, Inflection.lexeme_id == Lexeme.id)
        .filter(Lexeme.pos.in_(supported_pos), Inflection.updated_at > since)
        .distinct()
        .all()
    )
    ids.update(row.lexeme_id for row in inflected)
    return ids


def fetch_lexeme_rows(
    db: Session,
    supported_pos: Sequence[str] = SUPPORTED_POS,
    lexeme_ids: Optional[Iterable[str]] = None,
) -> list[LexemeRow]:
    query = (
        db.query(Lexeme, Word.example_de, Word.example_en)
        .outerjoin(
            Word,
            and_(func.lower(Word.lemma) == func.lower(Lexeme.lemma), Word.pos == _WORD_POS),
        )
    )

    if lexeme_ids is not None:
        ids = list(lexeme_ids)
        results = []
        for chunk in chunked(ids, settings.task_sync_chunk_size):
            results.extend(query.filter(Lexeme.id.in_(chunk)).all())
    else:
        results = query.filter(func.lower(Lexeme.pos).in_(supported_pos)).order_by(Lexeme.id).all()

    rows: dict[str, LexemeRow] = {}
    for lexeme, example_de, example_en in results:
        if lexeme.id in rows:
            continue
        rows[lexeme.id] = LexemeRow(
            id=lexeme.id,
            lemma=lexeme.lemma,
            pos=lexeme.pos,
            gender=lexeme.gender,
            metadata=lexeme.metadata_json or {},
            frequency_rank=lexeme.frequency_rank,
            updated_at=lexeme.updated_at,
            fallback_example_de=example_de,
            fallback_example_en=example_en,
        )
    return list(rows.values())


def fetch_inflection_rows(db: Session, lexeme_ids: Sequence[str]) -> list[InflectionRow]:
    rows: list[InflectionRow] = []
    for chunk in chunked(lexeme_ids, settings.task_sync_chunk_size):
        for inflection in (
            db.query(Inflection)
            .filter(Inflection.lexeme_id.in_(chunk))
            .order_by(Inflection.created_at, Inflection.id)
            .all()
        ):
            rows.append(InflectionRow(
                id=inflection.id,
                lexeme_id=inflection.lexeme_id,
                form=inflection.form,
                features=inflection.features_json or {},
                updated_at=inflection.updated_at,
            ))
    return rows


def fetch_existing_task_rows(
    db: Session,
    lexeme_ids: Optional[Sequence[str]] = None,
) -> list[ExistingTaskSpecRow]:
    query = db.query(TaskSpec.id, TaskSpec.lexeme_id, TaskSpec.task_type)
    if lexeme_ids is None:
        results = query.all()
    else:
        results = []
        for chunk in chunked(lexeme_ids, settings.task_sync_chunk_size):
            results.extend(query.filter(TaskSpec.lexeme_id.in_(chunk)).all())
    return [
        ExistingTaskSpecRow(id=r.id, lexeme_id=r.lexeme_id, task_type=r.task_type)
        for r in results
    ]


# --- Writes ---

def upsert_task_spec_chunk(db: Session, chunk: list[GeneratedTaskSpec]) -> None:
    if not chunk:
        return
    existing = {
        t.id: t
        for t in db.query(TaskSpec).filter(TaskSpec.id.in_([task.id for task in chunk])).all()
    }
    now = datetime.now(timezone.utc)
    for task in chunk:
        row = existing.get(task.id)
        if row is None:
            db.add(TaskSpec(
                id=task.id,
                lexeme_id=task.lexeme_id,
                pos=task.pos,
                task_type=task.task_type,
                renderer=task.renderer,
                prompt_json=task.prompt,
                solution_json=task.solution,
                hints_json=task.hints,
                metadata_json=task.metadata,
                revision=task.revision,
                created_at=now,
                updated_at=now,
            ))
        else:
            row.prompt_json = task.prompt
            row.solution_json = task.solution
            row.hints_json = task.hints
            row.metadata_json = task.metadata
            row.revision = task.revision
            row.updated_at = now
    db.commit()


def delete_task_specs_by_id(db: Session, ids: list[str]) -> None:
    if not ids:
        return
    db.query(TaskSpec).filter(TaskSpec.id.in_(ids)).delete(synchronize_session=False)
    db.commit()


# --- Orchestration ---

def build_sync_plan(
    db: Session,
    since: Optional[datetime] = None,
    registry: TaskRegistry = DEFAULT_TASK_REGISTRY,
) -> Optional[TaskSyncPlan]:
    """Read the relevant rows and compute the plan without applying it.

    Returns None when there is nothing to look at: no lexeme touched after
    ``since``, or no supported lexemes at all.
    """
    if since is not None:
        lexeme_ids = fetch_updated_lexeme_ids(db, since)
        if not lexeme_ids:
            return None
        lexeme_rows = fetch_lexeme_rows(db, lexeme_ids=sorted(lexeme_ids))
    else:
        lexeme_rows = fetch_lexeme_rows(db)

    if not lexeme_rows:
        return None

    ids = [row.id for row in lexeme_rows]
    inflection_rows = fetch_inflection_rows(db, ids)
    existing = fetch_existing_task_rows(db, ids if since is not None else None)

    return calculate_task_sync_plan(
        lexeme_rows,
        inflection_rows,
        existing,
        previous_checkpoint=load_checkpoint(db),
        fetched_all_lexemes=since is None,
        registry=registry,
    )


def apply_sync_plan(db: Session, plan: TaskSyncPlan) -> Optional[TaskSyncCheckpoint]:
    chunk_size = settings.task_sync_chunk_size
    # Stale rows go first: a regenerated task can take over the
    # (lexeme, type, revision) slot of the row it replaces.
    process_chunks_with_retry(
        db, chunked(plan.stale_task_ids, chunk_size), delete_task_specs_by_id, "task_sync.delete",
    )
    process_chunks_with_retry(
        db, chunked(plan.inserts, chunk_size), upsert_task_spec_chunk, "task_sync.upsert",
    )
    if plan.checkpoint_changed and plan.checkpoint is not None:
        return store_checkpoint(db, plan.checkpoint)
    return None


def _run_sync(db: Session, since: Optional[datetime], registry: TaskRegistry) -> TaskSyncResult:
    previous = load_checkpoint(db)
    plan = build_sync_plan(db, since, registry)
    if plan is None:
        return TaskSyncResult(full=since is None, checkpoint=previous)

    stored = apply_sync_plan(db, plan)
    result = TaskSyncResult(
        full=since is None,
        stats=plan.stats,
        latest_touched_at=plan.latest_touched_at,
        checkpoint=stored or previous,
        checkpoint_changed=plan.checkpoint_changed,
    )

    stats = plan.stats
    logger.info(
        "Task sync (%s): %d lexemes processed, %d skipped, %d inserted, %d updated, %d deleted",
        "full" if result.full else "delta",
        stats.lexemes_processed, stats.lexemes_skipped,
        stats.task_specs_inserted, stats.task_specs_updated, stats.task_specs_deleted,
    )
    if stats.task_specs_inserted or stats.task_specs_deleted or plan.checkpoint_changed:
        log_activity(
            db,
            event_type="task_sync",
            summary=(
                f"Synced task specs: {stats.task_specs_inserted} inserted, "
                f"{stats.task_specs_updated} updated, {stats.task_specs_deleted} deleted"
            ),
            detail=result.to_dict(),
        )
    return result


def ensure_task_specs_synced(
    db: Session,
    since: Optional[datetime] = None,
    registry: TaskRegistry = DEFAULT_TASK_REGISTRY,
    tracker: SyncTracker = sync_tracker,
) -> TaskSyncResult:
    """Run one sync pass. Passes in the same process run one at a time."""
    with tracker.run_lock:
        tracker.mark_start(datetime.now(timezone.utc))
        try:
            result = _run_sync(db, since, registry)
        except Exception:
            tracker.mark_failure()
            raise
        tracker.mark_success(datetime.now(timezone.utc), result.checkpoint)
        return result


def ensure_task_specs_fresh(
    db: Session,
    registry: TaskRegistry = DEFAULT_TASK_REGISTRY,
    tracker: SyncTracker = sync_tracker,
) -> Optional[TaskSyncResult]:
    """Sync before serving tasks when the last completed run is older than the TTL."""
    if not settings.task_sync_on_read:
        return None
    if tracker.is_fresh(settings.task_spec_cache_ttl_seconds) or tracker.snapshot().in_progress:
        return None

    checkpoint = load_checkpoint(db)
    since = checkpoint.last_synced_at if checkpoint else None
    return ensure_task_specs_synced(db, since=since, registry=registry, tracker=tracker)
