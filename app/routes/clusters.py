"""Cluster list route for CVE Manager."""

from fastapi import APIRouter, Depends, Request

from app import filters
from app.db import clusters_query
from app.engine import EndpointArgs, SearchTarget
from app.filters import SortArgs, SortItem
from app.models import ClusterItem, ClusterListResponse
from app.routes.common import list_with_filters, require_account

router = APIRouter(prefix="/api/v1", tags=["clusters"])

CLUSTERS_ALLOWED_FILTERS = (
    filters.SORT,
    filters.LIMIT,
    filters.OFFSET,
    filters.SEARCH,
    filters.CLUSTER_SEVERITY,
)

CLUSTERS_ARGS = EndpointArgs(
    search_target=SearchTarget.CLUSTER,
    sort_args=SortArgs(
        sortable_columns={
            "uuid": "cluster.uuid",
            "status": "cluster.status",
            "version": "cluster.version",
            "provider": "cluster.provider",
            "cves_critical": "cves_critical",
            "cves_important": "cves_important",
            "cves_moderate": "cves_moderate",
            "cves_low": "cves_low",
        },
        default_sortable=(SortItem("uuid"),),
    ),
)


@router.get("/clusters", response_model=ClusterListResponse)
async def list_clusters(
    request: Request,
    account_id: int = Depends(require_account),
) -> ClusterListResponse:
    """List the account's clusters with CVE counts per severity."""
    rows, meta = await list_with_filters(
        request,
        "clusters",
        clusters_query(account_id),
        CLUSTERS_ALLOWED_FILTERS,
        CLUSTERS_ARGS,
    )
    return ClusterListResponse(data=[ClusterItem(**row) for row in rows], meta=meta)
