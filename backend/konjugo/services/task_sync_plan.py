"""Diff freshly generated task specs against what is stored.

``calculate_task_sync_plan`` is pure: it takes already-fetched rows and
returns what to upsert, what to delete, and the new checkpoint. No database
access happens here.
"""

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from konjugo.services.task_registry import DEFAULT_TASK_REGISTRY, SUPPORTED_POS, TaskRegistry
from konjugo.services.task_source import (
    InflectionRow,
    LexemeRow,
    as_lexeme_pos,
    build_task_source,
)
from konjugo.services.task_templates import GeneratedTaskSpec, generate_task_specs


@dataclass(frozen=True)
class TaskSyncCheckpoint:
    last_synced_at: datetime
    version_hash: Optional[str] = None


@dataclass
class ExistingTaskSpecRow:
    id: str
    lexeme_id: str
    task_type: str


@dataclass
class TaskSyncStats:
    lexemes_considered: int = 0
    lexemes_processed: int = 0
    lexemes_skipped: int = 0
    task_specs_processed: int = 0
    task_specs_skipped: int = 0
    task_specs_inserted: int = 0
    task_specs_updated: int = 0
    task_specs_deleted: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TaskSyncPlan:
    inserts: list[GeneratedTaskSpec] = field(default_factory=list)
    stale_task_ids: list[str] = field(default_factory=list)
    latest_touched_at: Optional[datetime] = None
    stats: TaskSyncStats = field(default_factory=TaskSyncStats)
    checkpoint: Optional[TaskSyncCheckpoint] = None
    checkpoint_changed: bool = False


def _epoch_ms(value: Optional[datetime]) -> int:
    return int(value.timestamp() * 1000) if value is not None else 0


def compute_sync_version_hash(
    lexeme_rows: Iterable[LexemeRow],
    inflection_rows: Iterable[InflectionRow],
) -> Optional[str]:
    tokens = [f"lexeme:{row.id}:{_epoch_ms(row.updated_at)}" for row in lexeme_rows if row.id]
    tokens.extend(
        f"inflection:{row.lexeme_id}:{row.id}:{_epoch_ms(row.updated_at)}"
        for row in inflection_rows if row.id
    )
    if not tokens:
        return None

    digest = hashlib.sha1()
    for token in sorted(tokens):
        digest.update(token.encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


def _later(current: Optional[datetime], candidate: Optional[datetime]) -> Optional[datetime]:
    if candidate is None:
        return current
    if current is None or candidate > current:
        return candidate
    return current


def calculate_task_sync_plan(
    lexeme_rows: Sequence[LexemeRow],
    inflection_rows: Sequence[InflectionRow],
    existing_tasks: Sequence[ExistingTaskSpecRow],
    previous_checkpoint: Optional[TaskSyncCheckpoint] = None,
    fetched_all_lexemes: bool = True,
    registry: TaskRegistry = DEFAULT_TASK_REGISTRY,
    supported_pos: Sequence[str] = SUPPORTED_POS,
) -> TaskSyncPlan:
    """Compute upserts, stale ids, stats and checkpoint for one sync pass.

    ``fetched_all_lexemes`` must only be True when ``lexeme_rows`` is the full
    set of supported lexemes: rows whose lexeme is absent are then treated as
    orphaned and deleted. For a partial (delta) fetch they are left alone.
    """
    stats = TaskSyncStats(lexemes_considered=len(lexeme_rows))
    latest: Optional[datetime] = None

    inflections_by_lexeme: dict[str, list[InflectionRow]] = {}
    for row in inflection_rows:
        latest = _later(latest, row.updated_at)
        inflections_by_lexeme.setdefault(row.lexeme_id, []).append(row)

    inserts: list[GeneratedTaskSpec] = []
    expected_ids: dict[str, set[str]] = {}
    expected_types: dict[str, set[str]] = {}

    for lexeme in lexeme_rows:
        latest = _later(latest, lexeme.updated_at)
        ids = expected_ids.setdefault(lexeme.id, set())
        types = expected_types.setdefault(lexeme.id, set())

        pos = as_lexeme_pos(lexeme.pos)
        source = None
        tasks: list[GeneratedTaskSpec] = []
        if pos is not None and pos in supported_pos:
            source = build_task_source(lexeme, inflections_by_lexeme.get(lexeme.id, []))
        if source is not None:
            tasks = generate_task_specs(source, registry)
        if not tasks:
            stats.lexemes_skipped += 1
            stats.task_specs_skipped += 1
            continue

        stats.lexemes_processed += 1
        stats.task_specs_processed += len(tasks)
        for task in tasks:
            ids.add(task.id)
            types.add(task.task_type)
            inserts.append(task)

    stale_task_ids: list[str] = []
    for task in existing_tasks:
        if fetched_all_lexemes and task.lexeme_id not in expected_ids:
            stale_task_ids.append(task.id)
            continue
        ids = expected_ids.get(task.lexeme_id)
        types = expected_types.get(task.lexeme_id)
        if ids is None or types is None or task.id not in ids or task.task_type not in types:
            stale_task_ids.append(task.id)

    existing_ids = {task.id for task in existing_tasks}
    updated = sum(1 for task in inserts if task.id in existing_ids)
    stats.task_specs_updated = updated
    stats.task_specs_inserted = len(inserts) - updated
    stats.task_specs_deleted = len(stale_task_ids)

    checkpoint = None
    if latest is not None and lexeme_rows:
        checkpoint = TaskSyncCheckpoint(
            last_synced_at=latest,
            version_hash=compute_sync_version_hash(lexeme_rows, inflection_rows),
        )

    checkpoint_changed = checkpoint is not None and (
        previous_checkpoint is None
        or checkpoint.last_synced_at != previous_checkpoint.last_synced_at
        or checkpoint.version_hash != previous_checkpoint.version_hash
    )

    return TaskSyncPlan(
        inserts=inserts,
        stale_task_ids=stale_task_ids,
        latest_touched_at=latest,
        stats=stats,
        checkpoint=checkpoint,
        checkpoint_changed=checkpoint_changed,
    )
