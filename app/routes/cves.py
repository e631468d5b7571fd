"""CVE list routes for CVE Manager."""

from fastapi import APIRouter, Depends, Request

from app import filters
from app.db import cves_query, exposed_clusters_query
from app.engine import EndpointArgs, SearchTarget
from app.filters import SortArgs, SortItem
from app.models import CveItem, CveListResponse, ExposedClusterItem, ExposedClusterListResponse
from app.routes.common import list_with_filters, require_account

router = APIRouter(prefix="/api/v1", tags=["cves"])

CVES_ALLOWED_FILTERS = (
    filters.SORT,
    filters.LIMIT,
    filters.OFFSET,
    filters.SEARCH,
    filters.PUBLISHED,
    filters.SEVERITY,
    filters.CVSS_SCORE,
    filters.AFFECTED_CLUSTERS,
    filters.AFFECTED_IMAGES,
)

CVES_ARGS = EndpointArgs(
    search_target=SearchTarget.CVE,
    sort_args=SortArgs(
        sortable_columns={
            "id": "cve.id",
            "cvss_score": "COALESCE(cve.cvss3_score, cve.cvss2_score, 0.0)",
            "severity": "cve.severity",
            "publish_date": "cve.public_date",
            "synopsis": "cve.name",
            "clusters_exposed": "clusters_exposed",
            "images_exposed": "images_exposed",
        },
        default_sortable=(SortItem("id"),),
    ),
)

EXPOSED_CLUSTERS_ALLOWED_FILTERS = (
    filters.SORT,
    filters.LIMIT,
    filters.OFFSET,
    filters.SEARCH,
)

EXPOSED_CLUSTERS_ARGS = EndpointArgs(
    search_target=SearchTarget.CLUSTER,
    sort_args=SortArgs(
        sortable_columns={
            "uuid": "cluster.uuid",
            "status": "cluster.status",
            "version": "cluster.version",
            "provider": "cluster.provider",
            "images_exposed": "images_exposed",
        },
        default_sortable=(SortItem("uuid"),),
    ),
)


@router.get("/cves", response_model=CveListResponse)
async def list_cves(
    request: Request,
    account_id: int = Depends(require_account),
) -> CveListResponse:
    """List CVEs affecting the account's clusters.

    Filters: search, published, severity, cvss_score, affected_clusters,
    affected_images, sort, limit, offset.
    """
    rows, meta = await list_with_filters(
        request,
        "cves",
        cves_query(account_id),
        CVES_ALLOWED_FILTERS,
        CVES_ARGS,
    )
    return CveListResponse(data=[CveItem(**row) for row in rows], meta=meta)


@router.get("/cves/{cve_name}/exposed_clusters", response_model=ExposedClusterListResponse)
async def list_exposed_clusters(
    cve_name: str,
    request: Request,
    account_id: int = Depends(require_account),
) -> ExposedClusterListResponse:
    """List the account's clusters exposed to a CVE."""
    rows, meta = await list_with_filters(
        request,
        "exposed_clusters",
        exposed_clusters_query(account_id, cve_name),
        EXPOSED_CLUSTERS_ALLOWED_FILTERS,
        EXPOSED_CLUSTERS_ARGS,
    )
    return ExposedClusterListResponse(data=[ExposedClusterItem(**row) for row in rows], meta=meta)
