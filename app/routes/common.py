"""Shared plumbing for the filtered list endpoints."""

import logging
import time
from collections.abc import Sequence

from fastapi import HTTPException, Request

from app.config import get_settings
from app.db import fetch_page, get_account_id
from app.engine import EndpointArgs, apply_filters, build_meta
from app.filters import FilterError, parse_requested_filters, with_default_sort
from app.metrics import FILTER_ERRORS_TOTAL, QUERY_DURATION, REQUESTS_TOTAL
from app.models import ResponseMeta
from app.query import QuerySpec

logger = logging.getLogger(__name__)


async def require_account(request: Request) -> int:
    """Resolve the caller's account from the organization id header."""
    header = get_settings().org_id_header
    org_id = request.headers.get(header)
    if not org_id:
        raise HTTPException(status_code=401, detail=f"missing {header} header")

    account_id = await get_account_id(org_id)
    if account_id is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return account_id


async def list_with_filters(
    request: Request,
    endpoint: str,
    query: QuerySpec,
    allowed: Sequence[str],
    args: EndpointArgs,
) -> tuple[list[dict], ResponseMeta]:
    """Parse, apply and run the request's filters against ``query``.

    Returns the page of rows and the response meta. Invalid filters are
    reported as 400.
    """
    REQUESTS_TOTAL.labels(endpoint=endpoint).inc()

    try:
        requested = with_default_sort(parse_requested_filters(request.query_params))
        applied = apply_filters(query, allowed, requested, args)
    except FilterError as e:
        FILTER_ERRORS_TOTAL.labels(endpoint=endpoint, kind=e.kind).inc()
        logger.warning(
            "Rejected request filters",
            extra={"endpoint": endpoint, "kind": e.kind, "error": str(e)},
        )
        raise HTTPException(status_code=400, detail=str(e))

    start_time = time.monotonic()
    rows, total = await fetch_page(applied.query)
    QUERY_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start_time)

    meta = ResponseMeta(filters=build_meta(applied.filters, allowed), total_items=total)
    logger.debug(
        "List query executed",
        extra={"endpoint": endpoint, "rows": len(rows), "total": total},
    )
    return rows, meta
