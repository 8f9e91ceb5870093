"""Caller authentication for /tasks/* (scheduler and reconcile endpoints).

Production callers (Cloud Scheduler, Cloud Tasks) present a Google-signed
OIDC token whose audience is TASKS_OIDC_AUDIENCE and, when
TASKS_OIDC_SERVICE_ACCOUNT is set, whose email is that service account.
Local development may send X-Internal-Task-Secret instead, accepted only
while TASKS_OIDC_AUDIENCE is the local-dev audience.

Everything fails closed: no audience configured means no task runs.
"""

from __future__ import annotations

import base64
import json
import os
from dataclasses import dataclass

from fastapi import HTTPException, Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from reservio.observability.logging import get_logger
from reservio.observability.redaction import safe_log_context

logger = get_logger(__name__)

LOCAL_DEV_AUDIENCE = "reservio-tasks-local"
INTERNAL_SECRET_HEADER = "X-Internal-Task-Secret"


@dataclass(frozen=True)
class TaskCaller:
    """Who triggered a task: auth method plus the verified principal, if any."""

    method: str
    principal: str | None = None


def _unverified_claim(token: str, claim: str) -> str | None:
    # diagnostics only, never an auth input
    try:
        segment = token.split(".")[1]
        segment += "=" * (-len(segment) % 4)
        value = json.loads(base64.urlsafe_b64decode(segment)).get(claim)
    except (IndexError, ValueError, AttributeError):
        return None
    return str(value) if value is not None else None


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def verify_task_oidc(token: str) -> TaskCaller | None:
    """Verify a Google-signed OIDC token.

    Returns:
        TaskCaller with the token email as principal, or None when the token
        is invalid, the audience is unset or the service account differs.
    """
    audience = os.environ.get("TASKS_OIDC_AUDIENCE")
    if not audience:
        logger.error(
            "TASKS_OIDC_AUDIENCE not configured, rejecting task call",
            extra={"extra_fields": safe_log_context(reason="missing_audience_env")},
        )
        return None

    try:
        claims = id_token.verify_oauth2_token(token, google_requests.Request(), audience=audience)
    except ValueError as e:
        logger.warning(
            "task OIDC verification failed",
            extra={
                "extra_fields": safe_log_context(
                    error=str(e),
                    expected_audience=audience,
                    received_audience=_unverified_claim(token, "aud"),
                )
            },
        )
        return None

    email = claims.get("email")
    expected_email = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    if expected_email and email != expected_email:
        logger.warning(
            "task OIDC service account mismatch",
            extra={"extra_fields": safe_log_context(reason="service_account_mismatch")},
        )
        return None

    return TaskCaller(method="oidc", principal=email)


def _local_dev_caller(request: Request) -> TaskCaller | None:
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") != LOCAL_DEV_AUDIENCE:
        return None
    secret = os.environ.get("INTERNAL_TASK_SECRET", "")
    if secret and request.headers.get(INTERNAL_SECRET_HEADER, "") == secret:
        return TaskCaller(method="internal_secret")
    return None


def require_task_caller(request: Request) -> TaskCaller:
    """FastAPI dependency guarding every /tasks/* route.

    Raises:
        HTTPException: 401 when no accepted credential is present.
    """
    caller = _local_dev_caller(request)
    if caller is None:
        token = _bearer_token(request)
        caller = verify_task_oidc(token) if token else None

    if caller is None:
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(path=request.url.path)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")
    return caller
