"""
In-process order store, used by the test suite. Same contract
as the Postgres store: every check-and-write happens under one lock.
"""
import asyncio
import uuid
from collections.abc import Collection, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from komek.errors import ConflictError
from komek.models import Order, OrderDraft
from komek.order_state import OrderStatus
from komek.store import (
    CONTACT_COLUMNS,
    DUPLICATE_OPEN_MESSAGE,
    ORDER_COLUMNS,
    OrderStore,
    check_columns,
    expected_statuses,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryOrderStore(OrderStore):
    def __init__(self, users: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        # user id -> {first_name, last_name, phone}, stands in for the users join
        self._users = dict(users or {})
        self._rows: dict[str, dict[str, Any]] = {}
        self._seq = 0  # insertion order, breaks created_at ties
        self._lock = asyncio.Lock()

    def _order(self, row: Mapping[str, Any]) -> Order:
        joined = dict(row)
        for prefix in ("customer", "specialist"):
            user_id = row[f"{prefix}_id"]
            user = self._users.get(user_id, {}) if user_id is not None else {}
            for column in CONTACT_COLUMNS:
                joined[f"{prefix}_{column}"] = user.get(column)
        return Order.from_row(joined)

    def _has_open(self, customer_id: str, exclude: str | None = None) -> bool:
        return any(
            row["customer_id"] == customer_id and row["status"] == OrderStatus.OPEN.value and row["id"] != exclude
            for row in self._rows.values()
        )

    async def get_by_id(self, order_id: str) -> Order | None:
        row = self._rows.get(order_id)
        return self._order(row) if row is not None else None

    async def create(self, customer_id: str, draft: OrderDraft) -> Order:
        async with self._lock:
            if self._has_open(customer_id):
                raise ConflictError(DUPLICATE_OPEN_MESSAGE)
            now = _now()
            row = dict.fromkeys(ORDER_COLUMNS)
            row.update(
                id=str(uuid.uuid4()),
                customer_id=customer_id,
                specialty_id=draft.specialty_id,
                description=draft.description,
                proposed_price=draft.proposed_price,
                preferred_at=draft.preferred_at,
                latitude=draft.latitude,
                longitude=draft.longitude,
                address_text=draft.address_text,
                status=OrderStatus.OPEN.value,
                created_at=now,
                updated_at=now,
            )
            self._seq += 1
            row["_seq"] = self._seq
            self._rows[row["id"]] = row
            return self._order(row)

    async def try_transition(
        self,
        order_id: str,
        expected_status: OrderStatus | Collection[OrderStatus],
        changes: Mapping[str, Any],
        match: Mapping[str, Any] | None = None,
    ) -> Order | None:
        check_columns(changes, match)
        expected = expected_statuses(expected_status)
        async with self._lock:
            row = self._rows.get(order_id)
            if row is None or row["status"] not in expected:
                return None
            if any(row[column] != value for column, value in (match or {}).items()):
                return None
            if changes.get("status") == OrderStatus.OPEN and self._has_open(row["customer_id"], exclude=order_id):
                raise ConflictError(DUPLICATE_OPEN_MESSAGE)
            for column, value in changes.items():
                row[column] = value.value if isinstance(value, Enum) else value
            row["updated_at"] = _now()
            return self._order(row)

    async def list_where(
        self,
        *,
        status: OrderStatus | None = None,
        specialty_ids: Collection[str] | None = None,
        customer_id: str | None = None,
        specialist_id: str | None = None,
    ) -> list[Order]:
        async with self._lock:
            rows = [
                row for row in self._rows.values()
                if (status is None or row["status"] == OrderStatus(status).value)
                and (specialty_ids is None or row["specialty_id"] in specialty_ids)
                and (customer_id is None or row["customer_id"] == customer_id)
                and (specialist_id is None or row["specialist_id"] == specialist_id)
            ]
            rows.sort(key=lambda r: (r["created_at"], r["_seq"]), reverse=True)
            return [self._order(r) for r in rows]
