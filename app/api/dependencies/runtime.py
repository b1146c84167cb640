"""
Access to the bot runtime stored on the application at startup
"""
from typing import TYPE_CHECKING

from fastapi import HTTPException, Request, status

if TYPE_CHECKING:
    from app.runtime import BotRuntime


def get_runtime(request: Request) -> "BotRuntime":
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bot runtime is not started",
        )
    return runtime
