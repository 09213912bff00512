"""
Order lifecycle engine.

Every command follows the same path: load the order, check the transition table and
who is asking, then ask the store for a conditional write guarded on the status that
was read (and on the current assignee where it matters). If the guard misses, some
other request changed the order in between; the order is re-read and the caller gets
the error the new state implies. Nothing is retried here.
"""
import logging
import math
from typing import Any, Literal

from komek.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    OrderServiceError,
    ValidationError,
)
from komek.identity import AuthenticatedActor
from komek.metrics import (
    order_claim_races_lost_total,
    order_transitions_rejected_total,
    order_transitions_total,
)
from komek.models import Order, OrderDraft, validate_coordinates
from komek.order_state import (
    ACTION_TARGETS,
    TERMINAL_STATES,
    OrderAction,
    OrderStatus,
    is_valid_transition,
    next_status,
    source_states,
)
from komek.specialties import is_allowed_specialty_id
from komek.store import SPECIALIST_LOCATION_CLEARED, OrderStore

logger = logging.getLogger(__name__)

Party = Literal["customer", "specialist"]

# proposed_price is NUMERIC(12, 2)
MAX_PROPOSED_PRICE = 9_999_999_999.99


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_draft(draft: OrderDraft) -> OrderDraft:
    if not is_allowed_specialty_id(draft.specialty_id):
        raise ValidationError("Specify a valid specialty (service)", specialtyId=draft.specialty_id)
    price = draft.proposed_price
    if price is not None and (not math.isfinite(price) or price < 0):
        raise ValidationError("proposedPrice must be a non-negative number")
    if price is not None and round(price, 2) > MAX_PROPOSED_PRICE:
        raise ValidationError(f"proposedPrice must not exceed {MAX_PROPOSED_PRICE:.2f}")
    lat, lng = draft.latitude, draft.longitude
    if (lat is None) != (lng is None):
        raise ValidationError("latitude and longitude must be given together")
    if lat is not None:
        lat, lng = validate_coordinates(lat, lng)
    return draft.model_copy(update={
        "latitude": lat,
        "longitude": lng,
        "description": _blank_to_none(draft.description),
        "address_text": _blank_to_none(draft.address_text),
    })


class OrderLifecycleEngine:
    def __init__(self, store: OrderStore):
        self._store = store

    async def create(self, actor: AuthenticatedActor, draft: OrderDraft) -> Order:
        """New open order for actor. One open order per customer at a time."""
        try:
            draft = validate_draft(draft)
            order = await self._store.create(actor.id, draft)
        except OrderServiceError as e:
            self._rejected(OrderAction.CREATE, None, actor, e)
            raise
        order_transitions_total.labels(action=OrderAction.CREATE.value, from_status="none", to_status=order.status.value).inc()
        logger.info("Order %s created by customer=%s specialty=%s", order.id, actor.id, order.specialty_id)
        return order

    async def claim(self, order_id: str, actor: AuthenticatedActor) -> Order:
        """open -> accepted. At most one specialist wins; the others get ConflictError."""
        return await self._apply(OrderAction.CLAIM, order_id, actor)

    async def release(self, order_id: str, actor: AuthenticatedActor, *, as_party: Party | None = None) -> Order:
        """
        accepted/in_progress -> open; the specialist and their location are dropped.
        as_party restricts who may do it (the HTTP layer has one route per side).
        """
        return await self._apply(OrderAction.RELEASE, order_id, actor, as_party=as_party)

    async def set_in_progress(self, order_id: str, actor: AuthenticatedActor) -> Order:
        return await self._apply(OrderAction.START, order_id, actor)

    async def complete(self, order_id: str, actor: AuthenticatedActor) -> Order:
        return await self._apply(OrderAction.COMPLETE, order_id, actor)

    async def cancel(self, order_id: str, actor: AuthenticatedActor) -> Order:
        """Customer closes the order. Assignee and locations are kept as a record."""
        return await self._apply(OrderAction.CANCEL, order_id, actor)

    async def _apply(
        self,
        action: OrderAction,
        order_id: str,
        actor: AuthenticatedActor,
        as_party: Party | None = None,
    ) -> Order:
        order: Order | None = None
        try:
            order = await self._store.get_by_id(order_id)
            if order is None:
                raise NotFoundError("Order not found", orderId=order_id)
            target = self._check(order, action, actor, as_party)
            changes, match = self._write_plan(order, action, target, actor)
            updated = await self._store.try_transition(order.id, order.status, changes, match)
            if updated is None:
                updated = await self._explain_miss(order, action, actor, as_party)
        except OrderServiceError as e:
            self._rejected(action, order, actor, e)
            raise
        order_transitions_total.labels(
            action=action.value, from_status=order.status.value, to_status=updated.status.value,
        ).inc()
        logger.info(
            "Order %s %s -> %s (%s by %s)",
            order.id, order.status.value, updated.status.value, action.value, actor.id,
        )
        return updated

    def _check(
        self,
        order: Order,
        action: OrderAction,
        actor: AuthenticatedActor,
        as_party: Party | None,
    ) -> OrderStatus:
        """Target status if actor may apply action to order now, else the matching error."""
        if action is OrderAction.CLAIM and order.status not in source_states(OrderAction.CLAIM):
            closed = order.status in TERMINAL_STATES
            raise ConflictError(
                "Order is already closed" if closed else "Order is already taken by another specialist",
                currentStatus=order.status.value,
            )
        if not is_valid_transition(order.status, action):
            raise InvalidTransitionError(order.status.value, ACTION_TARGETS[action].value, action.value)
        target = next_status(order.status, action)

        is_customer = actor.id == order.customer_id
        is_specialist = order.specialist_id is not None and actor.id == order.specialist_id
        if action is OrderAction.CLAIM:
            if not actor.can_serve(order.specialty_id):
                raise ForbiddenError("You do not provide this service", specialtyId=order.specialty_id)
        elif action is OrderAction.RELEASE:
            if as_party == "customer" and not is_customer:
                raise ForbiddenError("Only the customer can reject the specialist")
            if as_party == "specialist" and not is_specialist:
                raise ForbiddenError("You are not the specialist on this order")
            if not (is_customer or is_specialist):
                raise ForbiddenError("Only the customer or the assigned specialist can release the order")
        elif action in (OrderAction.START, OrderAction.COMPLETE):
            if not is_specialist:
                raise ForbiddenError("You are not the specialist on this order")
        elif action is OrderAction.CANCEL:
            if not is_customer:
                raise ForbiddenError("Only the customer can cancel the order")
        return target

    @staticmethod
    def _write_plan(
        order: Order,
        action: OrderAction,
        target: OrderStatus,
        actor: AuthenticatedActor,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        changes: dict[str, Any] = {"status": target}
        match: dict[str, Any] = {}
        if action is OrderAction.CLAIM:
            changes["specialist_id"] = actor.id
        elif action is OrderAction.RELEASE:
            changes["specialist_id"] = None
            changes.update(SPECIALIST_LOCATION_CLEARED)
            # Don't drop a specialist who re-claimed after our read
            match["specialist_id"] = order.specialist_id
        elif action in (OrderAction.START, OrderAction.COMPLETE):
            match["specialist_id"] = actor.id
        return changes, match

    async def _explain_miss(
        self,
        stale: Order,
        action: OrderAction,
        actor: AuthenticatedActor,
        as_party: Party | None,
    ) -> Order:
        """The guarded write found a different order than we read. Always raises."""
        if action is OrderAction.CLAIM:
            order_claim_races_lost_total.inc()
        fresh = await self._store.get_by_id(stale.id)
        if fresh is None:
            raise NotFoundError("Order not found", orderId=stale.id)
        self._check(fresh, action, actor, as_party)
        raise ConflictError("Order was changed by another request, reload it", currentStatus=fresh.status.value)

    @staticmethod
    def _rejected(action: OrderAction, order: Order | None, actor: AuthenticatedActor, error: OrderServiceError) -> None:
        order_transitions_rejected_total.labels(action=action.value, reason=error.code).inc()
        logger.info(
            "Rejected %s on order %s by %s: %s (%s)",
            action.value, order.id if order else "-", actor.id, error.code, error.message,
        )
