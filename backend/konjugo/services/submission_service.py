"""Record a learner's answer to a practice task.

The submitted task id is resolved first; ids held by clients can go stale when
task specs are regenerated, so a miss falls back to the lexeme + task type
pair. A resolved attempt writes one practice_history row and one practice_log
row in the same transaction.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from konjugo.errors import SubmissionFailed, TaskInvalidPos, TaskInvalidType, TaskNotFound
from konjugo.models import Lexeme, PracticeHistory, TaskSpec
from konjugo.schemas import SubmissionIn
from konjugo.services.interaction_logger import log_interaction
from konjugo.services.practice_log import log_practice_attempt
from konjugo.services.task_registry import DEFAULT_TASK_REGISTRY, TaskRegistry
from konjugo.services.task_selector import normalise_cefr_level
from konjugo.services.task_source import as_lexeme_pos, to_utc

logger = logging.getLogger(__name__)


def fetch_task_row(db: Session, task_id: str) -> Optional[tuple[TaskSpec, Optional[int]]]:
    row = (
        db.query(TaskSpec, Lexeme.frequency_rank)
        .join(Lexeme, TaskSpec.lexeme_id == Lexeme.id)
        .filter(TaskSpec.id == task_id)
        .first()
    )
    return (row[0], row[1]) if row else None


def find_task_id_by_lexeme_and_type(db: Session, lexeme_id: str, task_type: str) -> Optional[str]:
    row = (
        db.query(TaskSpec.id)
        .filter(TaskSpec.lexeme_id == lexeme_id, TaskSpec.task_type == task_type)
        .order_by(TaskSpec.revision.asc(), TaskSpec.id.asc())
        .first()
    )
    return row.id if row else None


def resolve_task(db: Session, payload: SubmissionIn) -> tuple[TaskSpec, Optional[int]]:
    task_id = payload.task_id.strip()
    found = fetch_task_row(db, task_id) if task_id else None
    if found is None:
        fallback_id = find_task_id_by_lexeme_and_type(db, payload.lexeme_id, payload.task_type)
        if fallback_id:
            found = fetch_task_row(db, fallback_id)
    if found is None:
        raise TaskNotFound("Task not found")
    return found


def record_submission(
    db: Session,
    payload: SubmissionIn,
    user_id: Optional[str] = None,
    registry: TaskRegistry = DEFAULT_TASK_REGISTRY,
) -> dict:
    task, frequency_rank = resolve_task(db, payload)

    if not task.pos:
        logger.error("Task %s is missing part of speech", task.id)
        raise TaskInvalidPos("Task configuration invalid")
    if as_lexeme_pos(task.pos) is None:
        logger.error("Task %s has unsupported part of speech %s", task.id, task.pos)
        raise TaskInvalidPos("Task configuration invalid")

    entry = registry.find(task.task_type)
    if entry is None:
        logger.error("Task %s has unsupported task type %s", task.id, task.task_type)
        raise TaskInvalidType("Task configuration invalid")

    if task.id != payload.task_id:
        logger.warning(
            "Resolved submission task identifier %s -> %s (device %s)",
            payload.task_id, task.id, payload.device_id,
        )

    submitted_at = to_utc(payload.submitted_at)
    answered_at = to_utc(payload.answered_at) or submitted_at
    attempted_at = submitted_at or datetime.now(timezone.utc)
    response_ms = payload.response_ms if payload.response_ms is not None else payload.time_spent_ms
    cefr_level = normalise_cefr_level(payload.cefr_level)
    submitted_response = payload.submitted_response
    if submitted_response is None:
        submitted_response = payload.answer

    try:
        db.add(PracticeHistory(
            task_id=task.id,
            lexeme_id=task.lexeme_id,
            pos=task.pos,
            task_type=task.task_type,
            renderer=task.renderer,
            device_id=payload.device_id,
            user_id=user_id,
            result=payload.result,
            response_ms=response_ms or 0,
            submitted_at=attempted_at,
            answered_at=answered_at,
            queued_at=to_utc(payload.queued_at),
            cefr_level=cefr_level,
            hints_used=bool(payload.hints_used),
            metadata_json={
                "submittedResponse": submitted_response,
                "expectedResponse": payload.expected_response,
                "promptSummary": payload.prompt_summary,
                "queueCap": entry.default_queue_cap,
                "frequencyRank": frequency_rank,
            },
        ))
        log_practice_attempt(
            db,
            task_id=task.id,
            lexeme_id=task.lexeme_id,
            pos=task.pos,
            task_type=task.task_type,
            attempted_at=attempted_at,
            device_id=payload.device_id,
            user_id=user_id,
            cefr_level=cefr_level,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record submission for task %s", task.id)
        raise SubmissionFailed("Failed to record submission")

    log_interaction(
        "task_submitted",
        task_id=task.id,
        task_type=task.task_type,
        device_id=payload.device_id,
        user_id=user_id,
        result=payload.result,
        response_ms=response_ms,
        submitted_task_id=payload.task_id if payload.task_id != task.id else None,
    )

    return {
        "status": "recorded",
        "taskId": task.id,
        "deviceId": payload.device_id,
        "queueCap": entry.default_queue_cap,
    }
