"""FastAPI application factory with role-based route mounting."""

import os
from typing import Literal

from fastapi import FastAPI, Request, Response

from reservio.observability.correlation import CORRELATION_ID_HEADER, correlation_scope
from reservio.observability.logging import configure_root_logging

from .routers import public, worker

AppRole = Literal["public", "worker"]


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    public: health, public booking, dashboard and provider webhook routes.
    worker: everything above plus /tasks/* (scheduler and reconcile).

    Args:
        role: Explicit role override. If None, reads from APP_ROLE env var.
              Defaults to "public" if env var is not set.
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    configure_root_logging()

    app = FastAPI(
        title="Reservio",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with correlation_scope(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = cid
        return response

    app.include_router(public.router)

    if role == "worker":
        app.include_router(worker.router)

    return app
