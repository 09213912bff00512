"""
Live coordinates of the customer and the specialist while a job is under way.
Each report overwrites the previous one; there is no history.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Literal

from komek.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, OrderServiceError
from komek.identity import AuthenticatedActor
from komek.metrics import location_reports_total
from komek.models import Order, validate_coordinates
from komek.order_state import ACTIVE_STATES
from komek.store import OrderStore

logger = logging.getLogger(__name__)

Role = Literal["customer", "specialist"]

_OWNER_COLUMN: dict[str, str] = {"customer": "customer_id", "specialist": "specialist_id"}


class LocationTracker:
    def __init__(self, store: OrderStore):
        self._store = store

    async def report_location(
        self,
        order_id: str,
        actor: AuthenticatedActor,
        role: Role,
        latitude: Any,
        longitude: Any,
    ) -> Order:
        if role not in _OWNER_COLUMN:
            raise ValueError(f"unknown role: {role!r}")
        lat, lng = validate_coordinates(latitude, longitude)
        try:
            order = await self._load_checked(order_id, actor, role)
            owner = _OWNER_COLUMN[role]
            updated = await self._store.try_transition(
                order.id,
                ACTIVE_STATES,
                {
                    f"{role}_latitude": lat,
                    f"{role}_longitude": lng,
                    f"{role}_location_updated_at": datetime.now(timezone.utc),
                },
                match={owner: actor.id},
            )
            if updated is None:
                # Order moved on between the read and the write
                await self._load_checked(order_id, actor, role)
                raise ConflictError("Order was changed by another request, reload it")
        except OrderServiceError as e:
            logger.info("Rejected %s location for order %s by %s: %s", role, order_id, actor.id, e.code)
            raise
        location_reports_total.labels(role=role).inc()
        logger.debug("Order %s %s location -> (%.6f, %.6f)", order_id, role, lat, lng)
        return updated

    async def _load_checked(self, order_id: str, actor: AuthenticatedActor, role: Role) -> Order:
        order = await self._store.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found", orderId=order_id)
        if role == "customer" and actor.id != order.customer_id:
            raise ForbiddenError("You are not the customer of this order")
        if role == "specialist" and (order.specialist_id is None or actor.id != order.specialist_id):
            raise ForbiddenError("You are not the specialist on this order")
        if order.status not in ACTIVE_STATES:
            raise InvalidStateError(
                "Location can only be shared while the order is accepted or in progress",
                current_status=order.status.value,
            )
        return order
