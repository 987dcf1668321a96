from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

CefrLevel = Literal["A1", "A2", "B1", "B2", "C1", "C2"]
PracticeResult = Literal["correct", "incorrect"]


def _upper_levels(value):
    if value is None:
        return value
    if isinstance(value, str):
        value = [value]
    return [v.strip().upper() if isinstance(v, str) else v for v in value]


def _strip(value):
    return value.strip() if isinstance(value, str) else value


class CamelModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class TaskQueryParams(CamelModel):
    pos: Optional[str] = None
    task_type: Optional[str] = None
    task_types: list[str] = []
    limit: int = Field(default=25, ge=1, le=100)
    device_id: Optional[str] = Field(default=None, min_length=6, max_length=64)
    level: list[CefrLevel] = []

    @field_validator("pos", "task_type", "device_id", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("level", mode="before")
    @classmethod
    def normalise_levels(cls, value):
        return _upper_levels(value)

    @field_validator("task_types", mode="before")
    @classmethod
    def listify(cls, value):
        if isinstance(value, str):
            return [value]
        return value

    def requested_task_types(self) -> list[str]:
        values = [self.task_type] if self.task_type else []
        return values + [t.strip() for t in self.task_types]


class SubmissionIn(CamelModel):
    task_id: str = Field(min_length=1)
    lexeme_id: str = Field(min_length=1)
    task_type: str = Field(min_length=1)
    pos: str = Field(min_length=1)
    renderer: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    result: PracticeResult
    response_ms: Optional[int] = Field(default=None, ge=0, le=600000)
    time_spent_ms: Optional[int] = Field(default=None, ge=0, le=600000)
    submitted_response: Any = None
    expected_response: Any = None
    answer: Optional[str] = None
    answered_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    queued_at: Optional[datetime] = None
    cefr_level: Optional[str] = Field(default=None, min_length=1)
    prompt_summary: Optional[str] = None
    hints_used: Optional[bool] = None

    @field_validator("answer", "cefr_level", "prompt_summary", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @model_validator(mode="after")
    def require_timing(self):
        if self.response_ms is None and self.time_spent_ms is None:
            raise ValueError("responseMs or timeSpentMs is required")
        return self


class SubmissionOut(BaseModel):
    status: Literal["recorded"] = "recorded"
    taskId: str
    deviceId: str
    queueCap: int


class PracticeHistoryQuery(CamelModel):
    limit: int = Field(default=50, ge=1, le=200)
    result: Optional[PracticeResult] = None
    level: Optional[CefrLevel] = None
    device_id: Optional[str] = Field(default=None, min_length=6, max_length=64)

    @field_validator("device_id", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("level", mode="before")
    @classmethod
    def normalise_level(cls, value):
        return value.strip().upper() if isinstance(value, str) else value


def validation_details(exc) -> list[dict]:
    """JSON-safe summary of a pydantic ValidationError."""
    return [
        {"field": ".".join(str(p) for p in err["loc"]) or None, "message": err["msg"], "type": err["type"]}
        for err in exc.errors()
    ]
