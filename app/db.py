"""Database access layer for CVE Manager using asyncpg.

The schema is owned by the ingestion side; this module provides the
connection pool, the account-scoped base queries for each list endpoint and
the functions that execute a composed ``QuerySpec``.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import asyncpg

from app.query import QuerySpec

logger = logging.getLogger(__name__)


# Connection pool, initialised during app lifespan
_pool: asyncpg.Pool | None = None


async def init_pool(
    *,
    host: str,
    port: int = 5432,
    database: str = "cve_manager",
    user: str,
    password: str,
    ssl: str | None = None,
    min_size: int = 2,
    max_size: int = 10,
) -> asyncpg.Pool:
    """Create and return the asyncpg connection pool."""
    global _pool
    kwargs: dict = {
        "host": host,
        "port": port,
        "database": database,
        "user": user,
        "password": password,
        "min_size": min_size,
        "max_size": max_size,
    }
    if ssl:
        kwargs["ssl"] = ssl
    _pool = await asyncpg.create_pool(**kwargs)
    logger.info("Database connection pool initialised")
    return _pool


async def close_pool() -> None:
    """Close the connection pool."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database connection pool closed")


def get_pool() -> asyncpg.Pool:
    """Get the current connection pool."""
    if _pool is None:
        raise RuntimeError("Database pool not initialised")
    return _pool


@asynccontextmanager
async def _conn_or_acquire(conn: asyncpg.Connection | None = None) -> AsyncGenerator[asyncpg.Connection, None]:
    """Use provided connection or acquire one from the pool."""
    if conn is not None:
        yield conn
    else:
        pool = get_pool()
        async with pool.acquire() as c:
            yield c


async def check_connection() -> bool:
    """Check database connectivity for the readiness endpoint."""
    pool = get_pool()
    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return True
    except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError):
        logger.exception("Database readiness check failed")
        return False


# --- Account queries ---


async def get_account_id(org_id: str, *, conn: asyncpg.Connection | None = None) -> int | None:
    """Resolve an organization id to its account id."""
    async with _conn_or_acquire(conn) as c:
        return await c.fetchval("SELECT id FROM account WHERE org_id = $1", org_id)


# --- Base list queries ---
#
# Each returns the account-scoped query that an endpoint's filters are
# applied to. All of them group rows so aggregate filters can be used.


def cves_query(account_id: int) -> QuerySpec:
    """CVEs affecting any image running in the account's clusters."""
    return QuerySpec(
        select="""
            cve.name AS synopsis, cve.description, cve.public_date AS publish_date,
            cve.severity::text AS severity, cve.cvss2_score, cve.cvss3_score,
            COUNT(DISTINCT cluster_image.cluster_id) AS clusters_exposed,
            COUNT(DISTINCT cluster_image.image_id) AS images_exposed
        """,
        source="""
            cve
            JOIN image_cve ON cve.id = image_cve.cve_id
            JOIN cluster_image ON image_cve.image_id = cluster_image.image_id
            JOIN cluster ON cluster_image.cluster_id = cluster.id
        """,
        group_by="cve.id, cve.name, cve.description, cve.public_date, cve.severity, cve.cvss3_score, cve.cvss2_score",
    ).where("cluster.account_id = ?", account_id)


def exposed_clusters_query(account_id: int, cve_name: str) -> QuerySpec:
    """The account's clusters running at least one image affected by a CVE."""
    return (
        QuerySpec(
            select="""
                cluster.uuid, cluster.status, cluster.version, cluster.provider,
                COUNT(DISTINCT cluster_image.image_id) AS images_exposed
            """,
            source="""
                cluster
                JOIN cluster_image ON cluster.id = cluster_image.cluster_id
                JOIN image_cve ON cluster_image.image_id = image_cve.image_id
                JOIN cve ON image_cve.cve_id = cve.id
            """,
            group_by="cluster.id, cluster.uuid, cluster.status, cluster.version, cluster.provider",
        )
        .where("cluster.account_id = ?", account_id)
        .where("cve.name = ?", cve_name)
    )


def clusters_query(account_id: int) -> QuerySpec:
    """The account's clusters with CVE counts per severity."""
    return QuerySpec(
        select="""
            cluster.uuid, cluster.status, cluster.version, cluster.provider,
            COUNT(DISTINCT cve.id) FILTER (WHERE cve.severity = 'Critical') AS cves_critical,
            COUNT(DISTINCT cve.id) FILTER (WHERE cve.severity = 'Important') AS cves_important,
            COUNT(DISTINCT cve.id) FILTER (WHERE cve.severity = 'Moderate') AS cves_moderate,
            COUNT(DISTINCT cve.id) FILTER (WHERE cve.severity = 'Low') AS cves_low
        """,
        source="""
            cluster
            LEFT JOIN cluster_image ON cluster.id = cluster_image.cluster_id
            LEFT JOIN image_cve ON cluster_image.image_id = image_cve.image_id
            LEFT JOIN cve ON image_cve.cve_id = cve.id
        """,
        group_by="cluster.id, cluster.uuid, cluster.status, cluster.version, cluster.provider",
    ).where("cluster.account_id = ?", account_id)


# --- Execution ---


async def fetch_page(query: QuerySpec, *, conn: asyncpg.Connection | None = None) -> tuple[list[dict], int]:
    """Run a composed query.

    Returns (rows, total_count) where total_count ignores limit and offset.
    """
    sql, params = query.render()
    count_sql, count_params = query.render_count()
    async with _conn_or_acquire(conn) as c:
        total = await c.fetchval(count_sql, *count_params)
        rows = await c.fetch(sql, *params)
    return [dict(row) for row in rows], total
