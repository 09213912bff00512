from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from komek.deps import Services, get_current_actor, get_services
from komek.errors import ValidationError
from komek.identity import AuthenticatedActor
from komek.models import Order, OrderDraft

router = APIRouter(prefix="/orders", tags=["orders"])


class CreateOrderBody(BaseModel):
    specialtyId: str | None = Field(default=None, description="One of GET /specialties")
    description: str | None = None
    proposedPrice: float | None = Field(default=None, description="Price the customer offers")
    preferredAt: datetime | None = Field(default=None, description="When the customer wants the job done")
    latitude: float | None = Field(default=None, description="Service address latitude")
    longitude: float | None = Field(default=None, description="Service address longitude")
    addressText: str | None = None


class LocationBody(BaseModel):
    # Validated by the tracker: clients send numbers or numeric strings
    latitude: Any = None
    longitude: Any = None


class StatusBody(BaseModel):
    status: str | None = Field(default=None, description="in_progress (on my way) or completed")


def _flag(value: str | None) -> bool:
    return value in ("1", "true")


def _order_response(order: Order, message: str | None = None, status_code: int = 200) -> JSONResponse:
    content: dict[str, Any] = {"order": order.to_projection()}
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def _orders_response(orders: list[Order]) -> JSONResponse:
    return JSONResponse(content={"orders": [o.to_projection() for o in orders]})


@router.post("")
async def create_order(
    body: CreateOrderBody,
    actor: AuthenticatedActor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Create an order as a customer. Only one order may be waiting for a specialist at a time."""
    draft = OrderDraft(
        specialty_id=body.specialtyId,
        description=body.description,
        proposed_price=body.proposedPrice,
        preferred_at=body.preferredAt,
        latitude=body.latitude,
        longitude=body.longitude,
        address_text=body.addressText,
    )
    order = await services.engine.create(actor, draft)
    return _order_response(order, "Order created", status_code=201)


@router.get("")
async def list_orders(
    my: str | None = None,
    asSpecialist: str | None = None,
    actor: AuthenticatedActor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """
    ?asSpecialist=1 -> orders assigned to me; ?my=1 -> orders I created;
    otherwise open orders matching my specialties.
    """
    if _flag(asSpecialist):
        return _orders_response(await services.queries.list_mine_as_specialist(actor.id))
    if _flag(my):
        return _orders_response(await services.queries.list_mine_as_customer(actor.id))
    return _orders_response(await services.queries.list_open_for_specialist(actor))


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    actor: AuthenticatedActor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return _order_response(await services.queries.get_by_id(order_id))


@router.patch("/{order_id}/accept")
async def accept_order(
    order_id: str,
    actor: AuthenticatedActor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> JSONResponse:
    order = await services.engine.claim(order_id, actor)
    return _order_response(order, "You accepted the order")


@router.patch("/{order_id}/reject-specialist")
async def reject_specialist(
    order_id: str,
    actor: AuthenticatedActor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Customer drops the assigned specialist; the order goes back to the open pool."""
    order = await services.engine.release(order_id, actor, as_party="customer")
    return _order_response(order, "Specialist rejected, the order is open again")


@router.patch("/{order_id}/release")
async def release_order(
    order_id: str,
    actor: AuthenticatedActor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Specialist gives the order up; it goes back to the open pool."""
    order = await services.engine.release(order_id, actor, as_party="specialist")
    return _order_response(order, "You released the order")


@router.patch("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    actor: AuthenticatedActor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> JSONResponse:
    order = await services.engine.cancel(order_id, actor)
    return _order_response(order, "Order cancelled")


@router.patch("/{order_id}/status")
async def update_order_status(
    order_id: str,
    body: StatusBody | None = None,
    actor: AuthenticatedActor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> JSONResponse:
    status = body.status if body is not None else None
    if status == "in_progress":
        order = await services.engine.set_in_progress(order_id, actor)
        return _order_response(order, "Status: on my way")
    if status == "completed":
        order = await services.engine.complete(order_id, actor)
        return _order_response(order, "Order completed")
    raise ValidationError("Specify status: in_progress (on my way) or completed")


async def _report(
    order_id: str,
    role: Literal["customer", "specialist"],
    body: LocationBody,
    actor: AuthenticatedActor,
    services: Services,
) -> JSONResponse:
    order = await services.locations.report_location(order_id, actor, role, body.latitude, body.longitude)
    return _order_response(order)


@router.patch("/{order_id}/specialist-location")
async def report_specialist_location(
    order_id: str,
    body: LocationBody,
    actor: AuthenticatedActor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Specialist on the way shares live coordinates so the customer can follow them."""
    return await _report(order_id, "specialist", body, actor, services)


@router.patch("/{order_id}/customer-location")
async def report_customer_location(
    order_id: str,
    body: LocationBody,
    actor: AuthenticatedActor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return await _report(order_id, "customer", body, actor, services)
