"""Filter composition engine.

Endpoints declare an ordered allow-list of filter names and an ``EndpointArgs``
value; ``apply_filters`` applies the requested filters that are allowed, in
allow-list order, to the endpoint's base ``QuerySpec``.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import assert_never

from app.filters import (
    AffectedClusters,
    AffectedImages,
    ClusterSeverity,
    CvssScore,
    Filter,
    Limit,
    Offset,
    PublishedDate,
    Search,
    SeverityFilter,
    Sort,
    SortArgs,
    SortColumnError,
)
from app.models import AppliedFilter
from app.query import QuerySpec

logger = logging.getLogger(__name__)

DEFAULT_CVSS_SCORE_COLUMN = "COALESCE(cve.cvss3_score, cve.cvss2_score)"
CLUSTERS_EXPOSED_COUNT = "COUNT(DISTINCT cluster_image.cluster_id)"
IMAGES_EXPOSED_COUNT = "COUNT(DISTINCT cluster_image.image_id)"


class SearchTarget(str, Enum):
    """What the ``search`` filter matches against."""

    CVE = "cve"
    CLUSTER = "cluster"


@dataclass(frozen=True)
class EndpointArgs:
    """Per-endpoint configuration passed to every filter."""

    search_target: SearchTarget | None = None
    sort_args: SortArgs | None = None
    cvss_score_column: str = DEFAULT_CVSS_SCORE_COLUMN


@dataclass(frozen=True)
class AppliedQuery:
    """Result of applying filters: the composed query and the effective filters.

    ``filters`` differs from the requested filters only where applying a
    filter changed its raw value (Sort appends the default columns).
    """

    query: QuerySpec
    filters: dict[str, Filter]


def _apply_search(query: QuerySpec, f: Search, args: EndpointArgs) -> QuerySpec:
    pattern = f"%{f.value}%"
    match args.search_target:
        case SearchTarget.CVE:
            return query.where("cve.name LIKE ? OR cve.description LIKE ?", pattern, pattern)
        case SearchTarget.CLUSTER:
            return query.where("cluster.uuid::varchar LIKE ?", pattern)
        case None:
            return query


def _apply_exposure(query: QuerySpec, count_expr: str, one_or_more: bool, none: bool) -> QuerySpec:
    # Both flags set yields "= 0 AND > 0", which matches nothing.
    if none:
        query = query.having(f"{count_expr} = 0")
    if one_or_more:
        query = query.having(f"{count_expr} > 0")
    return query


def _apply_sort(query: QuerySpec, f: Sort, args: EndpointArgs) -> tuple[QuerySpec, Sort]:
    sort_args = args.sort_args
    if sort_args is None:
        return query, f

    for item in f.items:
        column = sort_args.sortable_columns.get(item.column)
        if column is None:
            raise SortColumnError(item.column)
        query = query.order(column, desc=item.desc)

    raw_values = list(f.raw.raw_values)
    for item in sort_args.default_sortable:
        column = sort_args.sortable_columns.get(item.column)
        if column is None:
            logger.debug("Skipping unknown default sort column", extra={"column": item.column})
            continue
        query = query.order(column, desc=item.desc)
        raw_values.append(item.raw)

    return query, replace(f, raw=replace(f.raw, raw_values=tuple(raw_values)))


def apply_filter(query: QuerySpec, f: Filter, args: EndpointArgs) -> tuple[QuerySpec, Filter]:
    """Apply one filter. Returns the updated query and the effective filter."""
    match f:
        case Search():
            return _apply_search(query, f, args), f
        case PublishedDate():
            return query.where("cve.public_date >= ? AND cve.public_date <= ?", f.date_from, f.date_to), f
        case SeverityFilter():
            return query.where("cve.severity = ANY(?)", [s.value for s in f.values]), f
        case ClusterSeverity():
            for severity in f.values:
                query = query.having("COUNT(DISTINCT cve.id) FILTER (WHERE cve.severity = ?) > 0", severity.value)
            return query, f
        case CvssScore():
            column = args.cvss_score_column
            return query.where(f"{column} >= ? AND {column} <= ?", f.score_from, f.score_to), f
        case AffectedClusters():
            return _apply_exposure(query, CLUSTERS_EXPOSED_COUNT, f.one_or_more, f.none), f
        case AffectedImages():
            return _apply_exposure(query, IMAGES_EXPOSED_COUNT, f.one_or_more, f.none), f
        case Limit():
            return query.with_limit(f.value), f
        case Offset():
            return query.with_offset(f.value), f
        case Sort():
            return _apply_sort(query, f, args)
        case _:
            assert_never(f)


def apply_filters(
    query: QuerySpec,
    allowed: Sequence[str],
    requested: Mapping[str, Filter],
    args: EndpointArgs,
) -> AppliedQuery:
    """Apply requested filters that the endpoint allows, in allow-list order.

    The first FilterError stops processing and propagates to the caller.
    Requested filters missing from ``allowed`` are ignored.
    """
    effective = dict(requested)
    for name in allowed:
        f = requested.get(name)
        if f is None:
            continue
        query, effective[name] = apply_filter(query, f, args)
    return AppliedQuery(query=query, filters=effective)


def build_meta(filters: Mapping[str, Filter], allowed: Sequence[str]) -> list[AppliedFilter]:
    """Applied filters echoed back to the caller, in allow-list order."""
    return [
        AppliedFilter(name=name, value=filters[name].raw.raw_value)
        for name in allowed
        if name in filters
    ]
