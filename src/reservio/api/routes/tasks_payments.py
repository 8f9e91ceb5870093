"""Worker routes for payment reconciliation.

Used by the stub gateway's test harness and by ops tooling to feed a
provider status directly into reconciliation.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from reservio.api.task_auth import TaskCaller, require_task_caller
from reservio.domain.errors import BookingBusyError, InvalidArgumentError
from reservio.domain.payments import reconcile_payment
from reservio.observability.correlation import get_correlation_id
from reservio.observability.logging import get_logger
from reservio.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/payments", tags=["tasks"])

logger = get_logger(__name__)


def _bad_request(error: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"ok": False, "error": error})


@router.post("/reconcile")
async def handle_reconcile(
    request: Request,
    caller: TaskCaller = Depends(require_task_caller),
) -> JSONResponse:
    """Apply a reported payment status.

    Expected payload:
    - provider_ref: Provider payment reference (required)
    - status: pending | approved | rejected | cancelled | expired (required)

    Unknown references return 200 with status "ignored". A busy booking gate
    (late approval of a lapsed hold) returns 409 so the caller retries.
    """
    try:
        payload: Any = await request.json()
    except ValueError:
        return _bad_request("invalid json")
    if not isinstance(payload, dict):
        return _bad_request("missing required fields")

    provider_ref = payload.get("provider_ref") or ""
    status = payload.get("status") or ""
    if not provider_ref or not status:
        return _bad_request("missing required fields")
    if not isinstance(provider_ref, str) or not isinstance(status, str):
        return _bad_request("provider_ref and status must be strings")

    try:
        result = reconcile_payment(provider_ref, status)
    except InvalidArgumentError as exc:
        return _bad_request(str(exc))
    except BookingBusyError as exc:
        return JSONResponse(status_code=409, content={"ok": False, "error": str(exc)})

    logger.info(
        "reconcile task completed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                caller=caller.method,
                reported_status=status,
                result=result.get("status"),
            )
        },
    )
    return JSONResponse(status_code=200, content={"ok": True, **result})
