from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Request, Response
from pydantic import ValidationError
from sqlalchemy.orm import Session

from konjugo.database import get_db
from konjugo.deps import get_session_user_id, get_task_registry
from konjugo.errors import InvalidSubmission, InvalidTaskQuery
from konjugo.schemas import SubmissionIn, SubmissionOut, TaskQueryParams, validation_details
from konjugo.services.submission_service import record_submission
from konjugo.services.task_registry import TaskRegistry
from konjugo.services.task_selector import (
    TaskQuery,
    normalise_pos_filter,
    resolve_task_types,
    select_tasks,
)
from konjugo.services.task_synchronizer import ensure_task_specs_fresh

router = APIRouter(prefix="/api", tags=["tasks"])

_MULTI_PARAMS = ("taskTypes", "level")


def _raw_query(request: Request) -> dict:
    params = request.query_params
    raw: dict = {}
    for key in params.keys():
        raw[key] = params.getlist(key) if key in _MULTI_PARAMS else params.get(key)
    return raw


@router.get("/tasks")
def list_tasks(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_session_user_id),
    registry: TaskRegistry = Depends(get_task_registry),
):
    try:
        params = TaskQueryParams.model_validate(_raw_query(request))
    except ValidationError as e:
        raise InvalidTaskQuery("Invalid task query", details=validation_details(e))

    pos = normalise_pos_filter(params.pos)
    task_types = resolve_task_types(params.requested_task_types(), registry)

    ensure_task_specs_fresh(db, registry)

    response.headers["Cache-Control"] = "no-store"
    return select_tasks(
        db,
        TaskQuery(
            pos=pos,
            task_types=task_types,
            levels=list(params.level),
            limit=params.limit,
            device_id=params.device_id,
            user_id=user_id,
        ),
        registry=registry,
    )


@router.post("/submission", response_model=SubmissionOut)
def submit_task(
    response: Response,
    body: Any = Body(None),
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_session_user_id),
    registry: TaskRegistry = Depends(get_task_registry),
):
    try:
        payload = SubmissionIn.model_validate(body if body is not None else {})
    except ValidationError as e:
        raise InvalidSubmission("Invalid submission payload", details=validation_details(e))

    response.headers["Cache-Control"] = "no-store"
    return record_submission(db, payload, user_id=user_id, registry=registry)
