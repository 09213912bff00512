"""
Async Postgres order store. Each lifecycle change is one conditional UPDATE:
  UPDATE orders SET ... WHERE id = $1 AND status = ANY($2) [AND specialist_id = $n] RETURNING ...
An empty result means another writer got there first; nothing is read-then-written.
"""
import logging
import uuid
from collections.abc import Collection, Mapping
from enum import Enum
from typing import Any

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from komek.config import settings
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

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None

ONE_OPEN_ORDER_INDEX = "orders_one_open_per_customer"

_SELECT_COLUMNS = ", ".join(f"o.{c}" for c in ORDER_COLUMNS) + ", " + ", ".join(
    f"{alias}.{c} AS {prefix}_{c}"
    for prefix, alias in (("customer", "cust"), ("specialist", "spec"))
    for c in CONTACT_COLUMNS
)


def joined_select(source: str) -> str:
    """Order columns of source (aliased o) plus both parties' contact columns."""
    return (
        f"SELECT {_SELECT_COLUMNS} FROM {source} o "
        "LEFT JOIN users cust ON cust.id = o.customer_id "
        "LEFT JOIN users spec ON spec.id = o.specialist_id"
    )


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def _parse_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def build_conditional_update(
    order_id: uuid.UUID,
    expected: OrderStatus | Collection[OrderStatus],
    changes: Mapping[str, Any],
    match: Mapping[str, Any] | None = None,
) -> tuple[str, list[Any]]:
    """SQL + args for a guarded update. Column names come from a whitelist only."""
    check_columns(changes, match)
    args: list[Any] = [order_id, expected_statuses(expected)]
    assignments = []
    for column, value in changes.items():
        args.append(_db_value(value))
        assignments.append(f"{column} = ${len(args)}")
    assignments.append("updated_at = NOW()")
    conditions = ["id = $1", "status = ANY($2::text[])"]
    for column, value in (match or {}).items():
        if value is None:
            conditions.append(f"{column} IS NULL")
        else:
            args.append(value)
            conditions.append(f"{column} = ${len(args)}")
    # The CTE returns the row as written; the outer select adds the contacts for the new assignee
    sql = (
        f"WITH changed AS (UPDATE orders SET {', '.join(assignments)} "
        f"WHERE {' AND '.join(conditions)} RETURNING *) "
        f"{joined_select('changed')};"
    )
    return sql, args


def build_list_query(
    status: OrderStatus | None = None,
    specialty_ids: Collection[str] | None = None,
    customer_id: str | None = None,
    specialist_id: str | None = None,
) -> tuple[str, list[Any]]:
    args: list[Any] = []
    conditions = []
    if status is not None:
        args.append(_db_value(status))
        conditions.append(f"o.status = ${len(args)}")
    if specialty_ids is not None:
        args.append(list(specialty_ids))
        conditions.append(f"o.specialty_id = ANY(${len(args)}::text[])")
    if customer_id is not None:
        args.append(customer_id)
        conditions.append(f"o.customer_id = ${len(args)}")
    if specialist_id is not None:
        args.append(specialist_id)
        conditions.append(f"o.specialist_id = ${len(args)}")
    where = f"WHERE {' AND '.join(conditions)} " if conditions else ""
    sql = f"{joined_select('orders')} {where}ORDER BY o.created_at DESC, o.id DESC;"
    return sql, args


class PostgresOrderStore(OrderStore):
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get_by_id(self, order_id: str) -> Order | None:
        oid = _parse_uuid(order_id)
        if oid is None:
            return None
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"{joined_select('orders')} WHERE o.id = $1;",
                oid,
            )
        return Order.from_row(row) if row is not None else None

    async def create(self, customer_id: str, draft: OrderDraft) -> Order:
        async with self._pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    WITH inserted AS (
                        INSERT INTO orders (id, customer_id, specialty_id, description, proposed_price,
                                            preferred_at, latitude, longitude, address_text, status)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, 'open')
                        RETURNING *
                    )
                    {joined_select('inserted')};
                    """,
                    uuid.uuid4(),
                    customer_id,
                    draft.specialty_id,
                    draft.description,
                    draft.proposed_price,
                    draft.preferred_at,
                    draft.latitude,
                    draft.longitude,
                    draft.address_text,
                )
            except UniqueViolationError as e:
                if e.constraint_name != ONE_OPEN_ORDER_INDEX:
                    raise
                raise ConflictError(DUPLICATE_OPEN_MESSAGE)
        return Order.from_row(row)

    async def try_transition(
        self,
        order_id: str,
        expected_status: OrderStatus | Collection[OrderStatus],
        changes: Mapping[str, Any],
        match: Mapping[str, Any] | None = None,
    ) -> Order | None:
        oid = _parse_uuid(order_id)
        if oid is None:
            return None
        sql, args = build_conditional_update(oid, expected_status, changes, match)
        async with self._pool.acquire() as conn:
            try:
                row = await conn.fetchrow(sql, *args)
            except UniqueViolationError as e:
                # Back to open while the customer already has another open order
                if e.constraint_name != ONE_OPEN_ORDER_INDEX:
                    raise
                raise ConflictError(DUPLICATE_OPEN_MESSAGE)
        if row is None:
            logger.debug("Conditional update missed for order_id=%s (expected %s)", order_id, args[1])
            return None
        return Order.from_row(row)

    async def list_where(
        self,
        *,
        status: OrderStatus | None = None,
        specialty_ids: Collection[str] | None = None,
        customer_id: str | None = None,
        specialist_id: str | None = None,
    ) -> list[Order]:
        sql, args = build_list_query(status, specialty_ids, customer_id, specialist_id)
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql, *args)
        return [Order.from_row(r) for r in rows]
