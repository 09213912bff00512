"""
Order store contract. Every mutation after creation goes through try_transition, a
compare-and-swap on the order's status (and optionally on who holds it), so two
writers can never both act on the same snapshot.
"""
from abc import ABC, abstractmethod
from collections.abc import Collection, Iterable, Mapping
from typing import Any

from komek.models import Order, OrderDraft
from komek.order_state import OrderStatus

ORDER_COLUMNS: tuple[str, ...] = (
    "id",
    "customer_id",
    "specialty_id",
    "description",
    "proposed_price",
    "preferred_at",
    "latitude",
    "longitude",
    "address_text",
    "status",
    "specialist_id",
    "specialist_latitude",
    "specialist_longitude",
    "specialist_location_updated_at",
    "customer_latitude",
    "customer_longitude",
    "customer_location_updated_at",
    "created_at",
    "updated_at",
)

# Columns the lifecycle may change after creation. Everything else is immutable.
MUTABLE_COLUMNS: frozenset[str] = frozenset({
    "status",
    "specialist_id",
    "specialist_latitude",
    "specialist_longitude",
    "specialist_location_updated_at",
    "customer_latitude",
    "customer_longitude",
    "customer_location_updated_at",
})

# users columns joined onto every order read, once per party (customer_*, specialist_*)
CONTACT_COLUMNS: tuple[str, ...] = ("first_name", "last_name", "phone")

# Columns a conditional update may be guarded on, besides status
MATCH_COLUMNS: frozenset[str] = frozenset({"customer_id", "specialist_id"})

DUPLICATE_OPEN_MESSAGE = (
    "You already have an order waiting for a specialist. "
    "Wait for a response or close the current order."
)

SPECIALIST_LOCATION_CLEARED: dict[str, Any] = {
    "specialist_latitude": None,
    "specialist_longitude": None,
    "specialist_location_updated_at": None,
}


def expected_statuses(expected: OrderStatus | Iterable[OrderStatus]) -> list[str]:
    if isinstance(expected, str):
        return [OrderStatus(expected).value]
    return [OrderStatus(s).value for s in expected]


def check_columns(changes: Mapping[str, Any], match: Mapping[str, Any] | None) -> None:
    bad = set(changes) - MUTABLE_COLUMNS
    if bad:
        raise ValueError(f"columns not mutable: {sorted(bad)}")
    if not changes:
        raise ValueError("no changes given")
    bad = set(match or ()) - MATCH_COLUMNS
    if bad:
        raise ValueError(f"cannot match on columns: {sorted(bad)}")
    if "status" in changes:
        OrderStatus(changes["status"])  # ValueError on unknown status


class OrderStore(ABC):

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Order | None:
        ...

    @abstractmethod
    async def create(self, customer_id: str, draft: OrderDraft) -> Order:
        """Insert an open order. Raises ConflictError if the customer already has one open."""

    @abstractmethod
    async def try_transition(
        self,
        order_id: str,
        expected_status: OrderStatus | Collection[OrderStatus],
        changes: Mapping[str, Any],
        match: Mapping[str, Any] | None = None,
    ) -> Order | None:
        """
        Apply changes iff the stored status is expected (and every match column equals
        its value) at write time. Returns the updated order, None if the guard failed.
        """

    @abstractmethod
    async def list_where(
        self,
        *,
        status: OrderStatus | None = None,
        specialty_ids: Collection[str] | None = None,
        customer_id: str | None = None,
        specialist_id: str | None = None,
    ) -> list[Order]:
        """Orders matching every given filter, newest first."""
