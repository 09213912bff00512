"""Role-scoped read views over orders. Never writes."""
from komek.errors import NotFoundError
from komek.identity import AuthenticatedActor
from komek.models import Order
from komek.order_state import OrderStatus
from komek.store import OrderStore


class OrderQueries:
    def __init__(self, store: OrderStore):
        self._store = store

    async def list_open_for_specialist(self, actor: AuthenticatedActor) -> list[Order]:
        """Open orders the specialist could claim, newest first."""
        if not actor.specialty_capabilities:
            return []
        return await self._store.list_where(
            status=OrderStatus.OPEN,
            specialty_ids=sorted(actor.specialty_capabilities),
        )

    async def list_mine_as_customer(self, customer_id: str) -> list[Order]:
        return await self._store.list_where(customer_id=customer_id)

    async def list_mine_as_specialist(self, specialist_id: str) -> list[Order]:
        return await self._store.list_where(specialist_id=specialist_id)

    async def get_by_id(self, order_id: str) -> Order:
        order = await self._store.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found", orderId=order_id)
        return order
