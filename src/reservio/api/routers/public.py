"""Public-facing routes (APP_ROLE=public)."""

from fastapi import APIRouter

from reservio.api.routes import (
    public_availability,
    public_bookings,
    reservations,
    webhooks_mercadopago,
)

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


router.include_router(public_availability.router)
router.include_router(public_bookings.router)
router.include_router(reservations.router)
router.include_router(webhooks_mercadopago.router)
