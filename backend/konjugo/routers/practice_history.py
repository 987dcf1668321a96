from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.orm import Session

from konjugo.database import get_db
from konjugo.deps import get_session_user_id
from konjugo.errors import DeviceIdRequired, InvalidHistoryQuery
from konjugo.models import Lexeme, PracticeHistory, PracticeLog
from konjugo.schemas import PracticeHistoryQuery, validation_details
from konjugo.services.activity_log import log_activity
from konjugo.services.task_selector import normalise_cefr_level
from konjugo.services.task_source import optional_str, to_utc

router = APIRouter(prefix="/api/practice-history", tags=["practice-history"])

_AUXILIARIES = {"haben", "sein", "haben / sein"}


def _identity_filter(model, user_id: Optional[str], device_id: Optional[str]):
    clauses = []
    if user_id:
        clauses.append(model.user_id == user_id)
    if device_id:
        clauses.append(model.device_id == device_id)
    if not clauses:
        raise DeviceIdRequired("Device identifier required")
    return clauses[0] if len(clauses) == 1 else or_(*clauses)


def _lexeme_snapshot(entry: PracticeHistory, lemma: Optional[str], metadata: Optional[dict]) -> dict:
    metadata = metadata if isinstance(metadata, dict) else {}
    example = metadata.get("example") if isinstance(metadata.get("example"), dict) else {}
    example_de = optional_str(example.get("de"))
    example_en = optional_str(example.get("en"))
    auxiliary = optional_str(metadata.get("auxiliary"))
    return {
        "id": entry.lexeme_id,
        "lemma": lemma or entry.lexeme_id,
        "pos": entry.pos,
        "level": normalise_cefr_level(entry.cefr_level or metadata.get("level")),
        "english": optional_str(metadata.get("english")),
        "example": {"de": example_de, "en": example_en} if example_de or example_en else None,
        "auxiliary": auxiliary if auxiliary in _AUXILIARIES else None,
    }


def _history_item(entry: PracticeHistory, lemma: Optional[str], lexeme_metadata: Optional[dict]) -> dict:
    metadata = entry.metadata_json or {}
    lexeme = _lexeme_snapshot(entry, lemma, lexeme_metadata)
    answered_at = to_utc(entry.answered_at or entry.submitted_at)
    prompt_summary = optional_str(metadata.get("promptSummary")) or (
        f"{lexeme['lemma']}: {entry.task_type.replace('_', ' ')}"
    )
    return {
        "id": f"practice_history:{entry.id}",
        "taskId": entry.task_id,
        "lexemeId": entry.lexeme_id,
        "taskType": entry.task_type,
        "pos": entry.pos,
        "renderer": entry.renderer,
        "result": entry.result,
        "submittedResponse": metadata.get("submittedResponse"),
        "expectedResponse": metadata.get("expectedResponse"),
        "promptSummary": prompt_summary,
        "answeredAt": answered_at.isoformat() if answered_at else None,
        "timeSpentMs": entry.response_ms,
        "cefrLevel": normalise_cefr_level(entry.cefr_level or lexeme["level"]),
        "hintsUsed": bool(entry.hints_used),
        "lexeme": lexeme,
    }


@router.get("")
def list_practice_history(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_session_user_id),
):
    try:
        params = PracticeHistoryQuery.model_validate(dict(request.query_params))
    except ValidationError as e:
        raise InvalidHistoryQuery("Invalid history query", details=validation_details(e))

    query = (
        db.query(PracticeHistory, Lexeme.lemma, Lexeme.metadata_json)
        .join(Lexeme, PracticeHistory.lexeme_id == Lexeme.id)
        .filter(_identity_filter(PracticeHistory, user_id, params.device_id))
    )
    if params.result:
        query = query.filter(PracticeHistory.result == params.result)
    if params.level:
        query = query.filter(PracticeHistory.cefr_level == params.level)

    rows = (
        query.order_by(PracticeHistory.submitted_at.desc(), PracticeHistory.id.desc())
        .limit(params.limit)
        .all()
    )
    response.headers["Cache-Control"] = "no-store"
    return {"history": [_history_item(entry, lemma, metadata) for entry, lemma, metadata in rows]}


@router.delete("", status_code=204)
def clear_practice_history(
    request: Request,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_session_user_id),
):
    try:
        params = PracticeHistoryQuery.model_validate(
            {k: v for k, v in request.query_params.items() if k == "deviceId"}
        )
    except ValidationError as e:
        raise InvalidHistoryQuery("Invalid clear history request", details=validation_details(e))

    history_filter = _identity_filter(PracticeHistory, user_id, params.device_id)
    log_filter = _identity_filter(PracticeLog, user_id, params.device_id)

    removed = db.query(PracticeHistory).filter(history_filter).delete(synchronize_session=False)
    db.query(PracticeLog).filter(log_filter).delete(synchronize_session=False)
    log_activity(
        db,
        event_type="history_cleared",
        summary=f"Cleared {removed} practice history entries",
        detail={"deviceId": params.device_id, "userId": user_id, "removed": removed},
    )
    return Response(status_code=204)
