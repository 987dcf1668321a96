"""Request-scoped dependencies shared by the routers."""

from typing import Optional

from fastapi import Request

from konjugo.services.task_registry import DEFAULT_TASK_REGISTRY, TaskRegistry


def get_session_user_id(request: Request) -> Optional[str]:
    """User id placed on ``request.state`` by the upstream auth layer, if any."""
    user_id = getattr(request.state, "user_id", None)
    if isinstance(user_id, int) and not isinstance(user_id, bool):
        return str(user_id)
    if isinstance(user_id, str) and user_id.strip():
        return user_id.strip()
    return None


def get_task_registry() -> TaskRegistry:
    return DEFAULT_TASK_REGISTRY
