"""Pydantic models for CVE Manager API responses."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class AppliedFilter(BaseModel):
    """Filter applied to a list request, with its effective raw value."""

    name: str
    value: str


class ResponseMeta(BaseModel):
    """Metadata returned with every list response."""

    filters: list[AppliedFilter] = Field(default_factory=list)
    total_items: int


class CveItem(BaseModel):
    """Single CVE affecting the account's clusters."""

    synopsis: str
    description: str | None = None
    severity: str | None = None
    publish_date: datetime | None = None
    cvss2_score: float | None = None
    cvss3_score: float | None = None
    clusters_exposed: int = 0
    images_exposed: int = 0


class CveListResponse(BaseModel):
    """Paginated CVE list."""

    data: list[CveItem]
    meta: ResponseMeta


class ExposedClusterItem(BaseModel):
    """Cluster exposed to a given CVE."""

    uuid: UUID
    status: str
    version: str
    provider: str | None = None
    images_exposed: int = 0


class ExposedClusterListResponse(BaseModel):
    """Paginated list of clusters exposed to a CVE."""

    data: list[ExposedClusterItem]
    meta: ResponseMeta


class ClusterItem(BaseModel):
    """Cluster with CVE counts per severity."""

    uuid: UUID
    status: str
    version: str
    provider: str | None = None
    cves_critical: int = 0
    cves_important: int = 0
    cves_moderate: int = 0
    cves_low: int = 0


class ClusterListResponse(BaseModel):
    """Paginated cluster list."""

    data: list[ClusterItem]
    meta: ResponseMeta
