"""Request bodies and response shaping for reservation routes.

Money is rendered as a decimal string, times as HH:MM.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reservio.domain.status import ALL_STATUSES
from reservio.domain.time_window import format_hhmm, parse_hhmm, to_minutes

_HHMM_DESCRIPTION = "Local time of day, HH:MM"


def _check_hhmm(value: str | None) -> str | None:
    if value is not None:
        parse_hhmm(value)
    return value


class CreateReservationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    merchant_id: str
    resource_id: str
    booking_date: date
    start_time: str | None = Field(None, description=_HHMM_DESCRIPTION)
    staff_id: str | None = None
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_phone: str = Field(..., min_length=8, max_length=32)
    customer_email: str | None = None
    people_count: int = Field(1, ge=1, le=1000)
    notes: str | None = Field(None, max_length=1000)

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, value: str | None) -> str | None:
        return _check_hhmm(value)


class CustomerIdentity(BaseModel):
    model_config = ConfigDict(extra="forbid")

    phone: str = Field(..., min_length=8, max_length=32)


class CustomerCancelRequest(CustomerIdentity):
    reason: str | None = None


class RescheduleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    booking_date: date
    start_time: str | None = Field(None, description=_HHMM_DESCRIPTION)
    staff_id: str | None = None

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, value: str | None) -> str | None:
        return _check_hhmm(value)


class CustomerRescheduleRequest(RescheduleRequest):
    phone: str = Field(..., min_length=8, max_length=32)


class ChangeStatusRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str
    internal_notes: str | None = None
    reason: str | None = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        if value not in ALL_STATUSES:
            raise ValueError(f"status must be one of {', '.join(ALL_STATUSES)}")
        return value


def _money(value) -> str | None:
    return str(value) if value is not None else None


def _hhmm(value) -> str | None:
    return format_hhmm(to_minutes(value)) if value is not None else None


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def serialize_payment(payment: dict[str, Any] | None) -> dict[str, Any] | None:
    if payment is None:
        return None
    return {
        "payment_id": payment.get("payment_id"),
        "provider": payment.get("provider"),
        "provider_ref": payment.get("provider_ref"),
        "qr_code": payment.get("qr_code"),
        "copy_paste_code": payment.get("copy_paste_code"),
        "expires_at": payment.get("expires_at"),
    }


def serialize_created(result: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": result["id"],
        "status": result["status"],
        "deposit_amount": _money(result["deposit_amount"]),
        "total_amount": _money(result["total_amount"]),
        "deposit_expires_at": _iso(result.get("deposit_expires_at")),
        "window": result.get("window"),
        "payment": serialize_payment(result.get("payment")),
    }


def serialize_reservation(reservation: dict[str, Any], *, include_internal: bool = True) -> dict[str, Any]:
    """Reservation for API responses.

    Customer-facing responses drop the customer contact data and
    internal notes.
    """
    body = {
        "id": reservation["id"],
        "merchant_id": reservation["merchant_id"],
        "resource_id": reservation["resource_id"],
        "staff_id": reservation["staff_id"],
        "people_count": reservation["people_count"],
        "booking_date": reservation["booking_date"].isoformat(),
        "start_time": _hhmm(reservation["start_time"]),
        "end_time": _hhmm(reservation["end_time"]),
        "status": reservation["status"],
        "total_amount": _money(reservation["total_amount"]),
        "deposit_amount": _money(reservation["deposit_amount"]),
        "deposit_expires_at": _iso(reservation["deposit_expires_at"]),
        "payment_ref": reservation["payment_ref"],
        "qr_code": reservation["qr_code"],
        "copy_paste_code": reservation["copy_paste_code"],
        "notes": reservation["notes"],
        "created_at": _iso(reservation["created_at"]),
    }
    if include_internal:
        body.update(
            {
                "customer_name": reservation["customer_name"],
                "customer_phone": reservation["customer_phone"],
                "customer_email": reservation["customer_email"],
                "internal_notes": reservation["internal_notes"],
            }
        )
    return body


def serialize_retry(result: dict[str, Any]) -> dict[str, Any]:
    return {
        "reservation_id": result["reservation_id"],
        "status": result["status"],
        "deposit_expires_at": _iso(result["deposit_expires_at"]),
        "payment": serialize_payment(result["payment"]),
    }
