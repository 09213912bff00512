import uuid

import pytest

from komek.db import build_conditional_update, build_list_query, joined_select
from komek.migrations import LATEST_VERSION, MIGRATIONS
from komek.order_state import ACTIVE_STATES, OrderStatus

OID = uuid.UUID("00000000-0000-0000-0000-000000000001")


def test_claim_update_is_guarded_on_status():
    sql, args = build_conditional_update(
        OID, OrderStatus.OPEN, {"status": OrderStatus.ACCEPTED, "specialist_id": "s1"},
    )
    assert sql.startswith("WITH changed AS (UPDATE orders SET status = $3, specialist_id = $4, updated_at = NOW() ")
    assert "WHERE id = $1 AND status = ANY($2::text[]) RETURNING *)" in sql
    assert args == [OID, ["open"], "accepted", "s1"]


def test_match_columns_extend_the_guard():
    sql, args = build_conditional_update(
        OID,
        ACTIVE_STATES,
        {"specialist_latitude": 1.5, "specialist_longitude": 2.5},
        match={"specialist_id": "s1"},
    )
    assert "AND specialist_id = $5" in sql
    assert sorted(args[1]) == ["accepted", "in_progress"]
    assert args[2:] == [1.5, 2.5, "s1"]


def test_match_on_null():
    sql, args = build_conditional_update(OID, OrderStatus.OPEN, {"status": "accepted"}, match={"specialist_id": None})
    assert "specialist_id IS NULL" in sql
    assert len(args) == 3


@pytest.mark.parametrize("changes,match", [
    ({"customer_id": "c2"}, None),
    ({"specialty_id": "cargo"}, None),
    ({"status": "open; DROP TABLE orders"}, None),
    ({}, None),
    ({"status": "open"}, {"description": "x"}),
])
def test_only_whitelisted_columns(changes, match):
    with pytest.raises(ValueError):
        build_conditional_update(OID, OrderStatus.OPEN, changes, match)


def test_list_query_filters_and_order():
    sql, args = build_list_query(status=OrderStatus.OPEN, specialty_ids=["santehnik"])
    assert "WHERE o.status = $1 AND o.specialty_id = ANY($2::text[])" in sql
    assert sql.rstrip(";").endswith("ORDER BY o.created_at DESC, o.id DESC")
    assert args == ["open", ["santehnik"]]

    sql, args = build_list_query(customer_id="c1")
    assert "WHERE o.customer_id = $1" in sql and args == ["c1"]

    sql, args = build_list_query()
    assert "WHERE" not in sql and args == []


def test_migrations_are_ordered_and_create_open_order_index():
    versions = [v for v, _, _ in MIGRATIONS]
    assert versions == sorted(versions) == list(range(1, LATEST_VERSION + 1))
    assert any("orders_one_open_per_customer" in sql and "WHERE status = 'open'" in sql for _, _, sql in MIGRATIONS)


def test_reads_and_writes_join_both_parties():
    sql, _ = build_conditional_update(OID, OrderStatus.OPEN, {"status": "accepted", "specialist_id": "s1"})
    # contacts come from the row as written, so a fresh claim already carries the new specialist
    assert sql.index("RETURNING *)") < sql.index("FROM changed o")
    assert "LEFT JOIN users spec ON spec.id = o.specialist_id" in sql
    assert "cust.phone AS customer_phone" in sql
    assert "spec.first_name AS specialist_first_name" in sql

    sql, _ = build_list_query(specialist_id="s1")
    assert "FROM orders o LEFT JOIN users cust ON cust.id = o.customer_id" in sql
    assert joined_select("orders") in sql
