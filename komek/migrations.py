"""
Versioned schema. Migrations run in order before the service starts; the app then
checks the version and refuses to start on a stale schema instead of guessing columns.
Run: python -m komek.migrations
"""
import asyncio
import logging
import sys

import asyncpg

from komek.config import settings
from komek.errors import SchemaError

logger = logging.getLogger(__name__)

# Any constant works, it only has to be the same for every process
_ADVISORY_LOCK_KEY = 4_711_2026

MIGRATIONS: list[tuple[int, str, str]] = [
    (
        1,
        "users",
        """
        CREATE TABLE users (
            id TEXT PRIMARY KEY,
            email TEXT UNIQUE,
            first_name TEXT,
            last_name TEXT,
            phone TEXT,
            is_specialist BOOLEAN NOT NULL DEFAULT FALSE,
            specialist_specialties TEXT[] NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        """,
    ),
    (
        2,
        "orders",
        """
        CREATE TABLE orders (
            id UUID PRIMARY KEY,
            customer_id TEXT NOT NULL REFERENCES users(id),
            specialty_id TEXT NOT NULL,
            description TEXT,
            proposed_price NUMERIC(12, 2),
            preferred_at TIMESTAMPTZ,
            latitude DOUBLE PRECISION,
            longitude DOUBLE PRECISION,
            address_text TEXT,
            status VARCHAR(20) NOT NULL DEFAULT 'open'
                CHECK (status IN ('open', 'accepted', 'in_progress', 'completed', 'cancelled')),
            specialist_id TEXT REFERENCES users(id),
            specialist_latitude DOUBLE PRECISION,
            specialist_longitude DOUBLE PRECISION,
            specialist_location_updated_at TIMESTAMPTZ,
            customer_latitude DOUBLE PRECISION,
            customer_longitude DOUBLE PRECISION,
            customer_location_updated_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CHECK ((status IN ('accepted', 'in_progress', 'completed')) <= (specialist_id IS NOT NULL)),
            CHECK (status <> 'open' OR specialist_id IS NULL)
        );
        CREATE INDEX idx_orders_customer_id ON orders(customer_id, created_at DESC);
        CREATE INDEX idx_orders_specialist_id ON orders(specialist_id, created_at DESC);
        CREATE INDEX idx_orders_open_specialty ON orders(specialty_id, created_at DESC)
            WHERE status = 'open';
        """,
    ),
    (
        3,
        "one open order per customer",
        """
        CREATE UNIQUE INDEX orders_one_open_per_customer ON orders(customer_id)
            WHERE status = 'open';
        """,
    ),
]

LATEST_VERSION = max(version for version, _, _ in MIGRATIONS)


async def _ensure_migrations_table(conn: asyncpg.Connection) -> None:
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INT PRIMARY KEY,
            name TEXT NOT NULL,
            applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)


async def current_version(conn: asyncpg.Connection) -> int:
    exists = await conn.fetchval("SELECT to_regclass('schema_migrations') IS NOT NULL;")
    if not exists:
        return 0
    return await conn.fetchval("SELECT COALESCE(MAX(version), 0) FROM schema_migrations;")


async def apply_migrations(pool: asyncpg.Pool) -> list[int]:
    """Apply pending migrations in one transaction. Returns the versions applied."""
    applied: list[int] = []
    async with pool.acquire() as conn:
        async with conn.transaction():
            # Serialises concurrent starters; released at commit
            await conn.execute("SELECT pg_advisory_xact_lock($1);", _ADVISORY_LOCK_KEY)
            await _ensure_migrations_table(conn)
            version = await current_version(conn)
            for number, name, sql in MIGRATIONS:
                if number <= version:
                    continue
                logger.info("Applying migration %d (%s) ...", number, name)
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (version, name) VALUES ($1, $2);",
                    number,
                    name,
                )
                applied.append(number)
    if applied:
        logger.info("Schema migrated to version %d", LATEST_VERSION)
    else:
        logger.info("Schema up to date (version %d)", LATEST_VERSION)
    return applied


async def verify_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        version = await current_version(conn)
    if version != LATEST_VERSION:
        raise SchemaError(
            f"Database schema is at version {version}, expected {LATEST_VERSION}. "
            "Run: python -m komek.migrations"
        )


async def _run() -> None:
    pool = await asyncpg.create_pool(settings.database_url, min_size=1, max_size=1)
    try:
        await apply_migrations(pool)
    finally:
        await pool.close()


def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stdout,
    )
    try:
        asyncio.run(_run())
    except Exception:
        logger.exception("Migration failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
