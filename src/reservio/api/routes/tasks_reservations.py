"""Worker routes for reservation maintenance tasks."""

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from reservio.api.task_auth import TaskCaller, require_task_caller
from reservio.domain.expire import DEFAULT_BATCH_SIZE, sweep_expired
from reservio.observability.correlation import get_correlation_id
from reservio.observability.logging import get_logger
from reservio.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/reservations", tags=["tasks"])

logger = get_logger(__name__)


@router.post("/sweep-expired")
async def handle_sweep_expired(
    request: Request,
    caller: TaskCaller = Depends(require_task_caller),
) -> JSONResponse:
    """Cancel pending_payment reservations whose deposit deadline passed.

    Invoked by an external scheduler. Overlapping invocations are safe.

    Optional payload:
    - limit: Max reservations examined this run (default 500)
    """
    payload: Any = {}
    if await request.body():
        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse(status_code=400, content={"ok": False, "error": "invalid json"})

    limit = payload.get("limit", DEFAULT_BATCH_SIZE) if isinstance(payload, dict) else DEFAULT_BATCH_SIZE
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid limit"})

    cancelled = sweep_expired(limit=limit)

    logger.info(
        "sweep-expired task completed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                caller=caller.method,
                cancelled=cancelled,
            )
        },
    )
    return JSONResponse(status_code=200, content={"ok": True, "cancelled": cancelled})
