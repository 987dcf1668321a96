"""
Task selection: choose the next practice tasks for a learner.

Candidates are filtered by part of speech, task type(s), and CEFR level. When
the caller is identified (session user or device id) ordering favours:
1. Tasks without an attempt inside the recency window (default 6h)
2. Tasks never practiced, then least recently practiced
3. Most recently updated task spec, then task id

Several task types are queried independently and interleaved round-robin so
one type cannot crowd out the others.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy import case, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from konjugo.config import settings
from konjugo.errors import InvalidPosFilter, InvalidTaskType
from konjugo.models import Lexeme, PracticeHistory, PracticeLog, TaskSpec
from konjugo.services.interaction_logger import log_interaction
from konjugo.services.practice_log import UNSPECIFIED_CEFR_LEVEL
from konjugo.services.task_registry import DEFAULT_TASK_REGISTRY, TaskRegistry

logger = logging.getLogger(__name__)

CEFR_LEVELS = ("A1", "A2", "B1", "B2", "C1", "C2")

_POS_ALIASES = {
    "verb": "verb", "verbs": "verb", "v": "verb",
    "noun": "noun", "nouns": "noun", "n": "noun",
    "adjective": "adjective", "adjectives": "adjective", "adj": "adjective",
}


def normalise_pos_filter(value: Optional[str]) -> Optional[str]:
    """Map a loose pos string onto verb/noun/adjective. Raises InvalidPosFilter."""
    if value is None or not value.strip():
        return None
    pos = _POS_ALIASES.get(value.strip().lower())
    if pos is None:
        raise InvalidPosFilter(f"Unsupported part-of-speech filter: {value}")
    return pos


def resolve_task_types(values: Sequence[str], registry: TaskRegistry) -> list[str]:
    """Validate and de-duplicate requested task types, keeping request order."""
    resolved: list[str] = []
    for value in values:
        key = value.strip()
        if not key:
            continue
        if key not in registry:
            raise InvalidTaskType(f"Unsupported task type filter: {key}")
        if key not in resolved:
            resolved.append(key)
    return resolved


def normalise_cefr_level(value: object) -> Optional[str]:
    if not isinstance(value, str):
        return None
    upper = value.strip().upper()
    return upper if upper in CEFR_LEVELS else None


def _example_record(example: object) -> Optional[dict]:
    if not isinstance(example, dict):
        return None
    de = example.get("de").strip() if isinstance(example.get("de"), str) else None
    en = example.get("en").strip() if isinstance(example.get("en"), str) else None
    if not de and not en:
        return None
    return {"de": de or None, "en": en or None}


def _with_normalised_example(record: object) -> Optional[dict]:
    if not isinstance(record, dict):
        return None
    result = dict(record)
    if "example" in result:
        example = _example_record(result["example"])
        if example:
            result["example"] = example
        else:
            del result["example"]
    return result


def resolve_task_level(task: dict) -> Optional[str]:
    """Same precedence as the SQL filter: lexeme metadata level, then prompt cefrLevel."""
    metadata = task["lexeme"]["metadata"] or {}
    for value in (metadata.get("level"), (task["prompt"] or {}).get("cefrLevel")):
        if value is not None:
            return str(value).upper()
    return None


def merge_task_groups(groups: Sequence[Sequence[dict]], per_type_limit: int) -> list[dict]:
    """Interleave per-type queues round-robin, skipping empty queues and duplicate ids.

    Each queue contributes at most ``per_type_limit`` tasks.
    """
    if not groups:
        return []
    queues = [list(tasks)[:per_type_limit] for tasks in groups]
    total_limit = per_type_limit * len(groups)
    merged: list[dict] = []
    seen: set[str] = set()

    while len(merged) < total_limit and any(queues):
        for queue in queues:
            if not queue:
                continue
            candidate = queue.pop(0)
            if candidate["taskId"] in seen:
                continue
            seen.add(candidate["taskId"])
            merged.append(candidate)
            if len(merged) >= total_limit:
                break
    return merged


@dataclass
class TaskQuery:
    pos: Optional[str] = None
    task_types: list[str] = field(default_factory=list)
    levels: list[str] = field(default_factory=list)
    limit: int = 25
    device_id: Optional[str] = None
    user_id: Optional[str] = None


def _level_expression():
    return func.upper(func.coalesce(
        Lexeme.metadata_json["level"].as_string(),
        TaskSpec.prompt_json["cefrLevel"].as_string(),
    ))


def _identity_filter(column_user, column_device, query: TaskQuery):
    clauses = []
    if query.user_id:
        clauses.append(column_user == query.user_id)
    if query.device_id:
        clauses.append(column_device == query.device_id)
    if not clauses:
        return None
    return clauses[0] if len(clauses) == 1 else or_(*clauses)


def build_task_query(
    db: Session,
    query: TaskQuery,
    task_types: Sequence[str],
    levels: Sequence[str],
    now: datetime,
):
    """Ordered candidate query for the given task types and level filter."""
    q = (
        db.query(TaskSpec, Lexeme.lemma, Lexeme.metadata_json)
        .join(Lexeme, TaskSpec.lexeme_id == Lexeme.id)
    )
    if query.pos:
        q = q.filter(TaskSpec.pos == query.pos)
    if len(task_types) == 1:
        q = q.filter(TaskSpec.task_type == task_types[0])
    elif task_types:
        q = q.filter(TaskSpec.task_type.in_(task_types))
    if len(levels) == 1:
        q = q.filter(_level_expression() == levels[0])
    elif levels:
        q = q.filter(_level_expression().in_(levels))

    history_identity = _identity_filter(PracticeHistory.user_id, PracticeHistory.device_id, query)
    if history_identity is None:
        return q.order_by(TaskSpec.updated_at.desc(), TaskSpec.id.asc())

    history_filters = [history_identity]
    if query.pos:
        history_filters.append(PracticeHistory.pos == query.pos)
    if task_types:
        history_filters.append(PracticeHistory.task_type.in_(task_types))
    history = (
        db.query(
            PracticeHistory.task_id.label("task_id"),
            func.max(PracticeHistory.submitted_at).label("last_practiced_at"),
        )
        .filter(*history_filters)
        .group_by(PracticeHistory.task_id)
        .subquery("practice_history_summary")
    )

    threshold = now - timedelta(hours=settings.recent_attempt_window_hours)
    recency_filters = [
        _identity_filter(PracticeLog.user_id, PracticeLog.device_id, query),
        PracticeLog.attempted_at >= threshold,
    ]
    if query.pos:
        recency_filters.append(PracticeLog.pos == query.pos)
    if task_types:
        recency_filters.append(PracticeLog.task_type.in_(task_types))
    if query.levels:
        recency_filters.append(PracticeLog.cefr_level.in_(sorted({UNSPECIFIED_CEFR_LEVEL, *query.levels})))
    recent = (
        db.query(
            PracticeLog.task_id.label("task_id"),
            func.max(PracticeLog.attempted_at).label("recent_attempted_at"),
        )
        .filter(*recency_filters)
        .group_by(PracticeLog.task_id)
        .subquery("recent_attempts")
    )

    return (
        q.outerjoin(history, history.c.task_id == TaskSpec.id)
        .outerjoin(recent, recent.c.task_id == TaskSpec.id)
        .order_by(
            case((recent.c.recent_attempted_at.is_(None), 0), else_=1).asc(),
            recent.c.recent_attempted_at.asc(),
            history.c.last_practiced_at.asc().nulls_first(),
            TaskSpec.updated_at.desc(),
            TaskSpec.id.asc(),
        )
    )


def prune_task_spec(db: Session, task_id: str, task_type: str) -> None:
    """Delete a stored task whose type is gone from the registry. Failures are logged only."""
    logger.warning("Pruning task %s with unsupported type %s", task_id, task_type)
    try:
        db.query(TaskSpec).filter(TaskSpec.id == task_id).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to delete unsupported task spec %s", task_id)
        return
    log_interaction("task_pruned", task_id=task_id, task_type=task_type)


def _to_payload(db: Session, rows, registry: TaskRegistry) -> list[dict]:
    payload = []
    for spec, lemma, lexeme_metadata in rows:
        entry = registry.find(spec.task_type)
        if entry is None:
            prune_task_spec(db, spec.id, spec.task_type)
            continue
        payload.append({
            "taskId": spec.id,
            "taskType": spec.task_type,
            "renderer": spec.renderer or entry.renderer,
            "pos": spec.pos,
            "prompt": _with_normalised_example(spec.prompt_json) or {},
            "solution": spec.solution_json,
            "queueCap": entry.default_queue_cap,
            "lexeme": {
                "id": spec.lexeme_id,
                "lemma": lemma or spec.lexeme_id,
                "metadata": _with_normalised_example(lexeme_metadata),
            },
        })
    return payload


def select_tasks(
    db: Session,
    query: TaskQuery,
    registry: TaskRegistry = DEFAULT_TASK_REGISTRY,
    now: Optional[datetime] = None,
    push_down_level_filter: bool = True,
) -> dict:
    """Return ``{"tasks": [...], "tasksByType": {type: [...]}}`` for the query.

    Level filtering is done in SQL when ``push_down_level_filter`` is set and
    in Python over the fetched rows otherwise; both keep only tasks whose
    resolved level equals the requested one.
    """
    now = now or datetime.now(timezone.utc)
    types = list(query.task_types)
    levels = list(query.levels)

    # Requested types pair positionally with levels: type[i] <-> level[i], else level[0].
    level_by_type: dict[str, str] = {}
    global_levels: list[str] = levels
    if types and levels:
        level_by_type = {t: levels[i] if i < len(levels) else levels[0] for i, t in enumerate(types)}
        global_levels = []

    def run(type_group: list[str], sql_levels: list[str]) -> list[dict]:
        post_filter = bool(sql_levels) and not push_down_level_filter
        candidates = build_task_query(db, query, type_group, [] if post_filter else sql_levels, now)
        # The Python level filter runs before the limit.
        if not post_filter:
            candidates = candidates.limit(query.limit)
        tasks = _to_payload(db, candidates.all(), registry)
        if post_filter:
            allowed = set(sql_levels)
            tasks = [t for t in tasks if resolve_task_level(t) in allowed]
        return tasks[:query.limit]

    if len(types) > 1:
        grouped = {
            t: run([t], [level_by_type[t]] if t in level_by_type else global_levels)
            for t in types
        }
        merged = merge_task_groups([grouped[t] for t in types], query.limit)
    else:
        merged = run(types, [level_by_type[types[0]]] if level_by_type else global_levels)
        grouped = {}
        for task in merged:
            grouped.setdefault(task["taskType"], []).append(task)
        for t in types:
            grouped.setdefault(t, [])

    log_interaction(
        "tasks_served",
        device_id=query.device_id,
        user_id=query.user_id,
        count=len(merged),
        task_types=types or None,
        pos=query.pos,
    )
    return {"tasks": merged, "tasksByType": grouped}
