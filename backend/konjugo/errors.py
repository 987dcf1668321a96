"""
Application errors rendered as structured JSON responses.

Every ``KonjugoError`` becomes ``{"error": message, "code": code}`` (plus
``details`` when present) through the handler registered in ``konjugo.main``.
"""
from typing import Any


class KonjugoError(Exception):
    """Base exception for errors surfaced to HTTP clients."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class InvalidTaskQuery(KonjugoError):
    status_code = 400
    code = "INVALID_TASK_QUERY"


class InvalidPosFilter(KonjugoError):
    status_code = 400
    code = "INVALID_POS_FILTER"


class InvalidTaskType(KonjugoError):
    status_code = 400
    code = "INVALID_TASK_TYPE"


class InvalidSubmission(KonjugoError):
    status_code = 400
    code = "INVALID_SUBMISSION"


class TaskNotFound(KonjugoError):
    status_code = 404
    code = "TASK_NOT_FOUND"


class TaskInvalidPos(KonjugoError):
    """Stored task has a part of speech outside verb/noun/adjective."""

    status_code = 500
    code = "TASK_INVALID_POS"


class TaskInvalidType(KonjugoError):
    """Stored task references a task type the registry no longer knows."""

    status_code = 500
    code = "TASK_INVALID_TYPE"


class SubmissionFailed(KonjugoError):
    status_code = 500
    code = "SUBMISSION_FAILED"


class InvalidHistoryQuery(KonjugoError):
    status_code = 400
    code = "INVALID_HISTORY_QUERY"


class DeviceIdRequired(KonjugoError):
    status_code = 400
    code = "DEVICE_ID_REQUIRED"
