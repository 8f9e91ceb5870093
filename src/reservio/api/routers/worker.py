"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

from reservio.api.routes import tasks_payments, tasks_reservations

router = APIRouter()


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks"}


router.include_router(tasks_reservations.router)
router.include_router(tasks_payments.router)
