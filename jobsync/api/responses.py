from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

from jobsync.schemas.runs import FailureResult


def task_response(result: dict[str, Any]) -> dict[str, Any] | JSONResponse:
    """Pass successful task results through; failed ones become a 500 with logs."""
    if result.get("success", True):
        return result
    payload = FailureResult.model_validate(result)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload.model_dump())
