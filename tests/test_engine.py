"""Unit tests for filter composition in app.engine."""

from datetime import datetime, timezone

import pytest

from app import filters
from app.engine import EndpointArgs, SearchTarget, apply_filter, apply_filters, build_meta
from app.filters import (
    QueryCompositionError,
    SortArgs,
    SortColumnError,
    SortItem,
    parse_requested_filters,
    with_default_sort,
)
from app.query import Clause, QuerySpec

SORT_ARGS = SortArgs(
    sortable_columns={"id": "cve.id", "severity": "cve.severity"},
    default_sortable=(SortItem("id"),),
)
ARGS = EndpointArgs(search_target=SearchTarget.CVE, sort_args=SORT_ARGS)

ALL_FILTERS = (
    filters.SORT,
    filters.LIMIT,
    filters.OFFSET,
    filters.SEARCH,
    filters.PUBLISHED,
    filters.SEVERITY,
    filters.CLUSTER_SEVERITY,
    filters.CVSS_SCORE,
    filters.AFFECTED_CLUSTERS,
    filters.AFFECTED_IMAGES,
)


def base_query() -> QuerySpec:
    return QuerySpec(select="cve.name", source="cve", group_by="cve.id").where("cluster.account_id = ?", 1)


def apply(params: dict, allowed=ALL_FILTERS, args: EndpointArgs = ARGS):
    return apply_filters(base_query(), allowed, parse_requested_filters(params), args)


class TestApplyFilters:
    """Tests for allow-list handling in apply_filters."""

    def test_no_filters_leave_query_untouched(self):
        assert apply({}).query == base_query()

    def test_disallowed_filters_are_never_applied(self):
        applied = apply(
            {"severity": "critical", "search": "CVE", "limit": "5", "sort": "bogus"},
            allowed=(filters.OFFSET,),
        )
        assert applied.query == base_query()

    def test_same_filters_give_identical_queries(self):
        params = {"severity": "low", "cvss_score": "1,5", "sort": "-severity", "limit": "3", "offset": "6"}
        assert apply(params).query == apply(params).query

    def test_allow_list_order_drives_order_clauses(self):
        applied = apply_filters(
            base_query(),
            (filters.SORT,),
            parse_requested_filters({"sort": "severity"}),
            ARGS,
        )
        assert applied.query.order_by == ("cve.severity ASC NULLS LAST", "cve.id ASC NULLS LAST")

    def test_first_error_stops_application(self):
        with pytest.raises(SortColumnError):
            apply({"sort": "bogus_column", "limit": "5"})

    def test_requested_mapping_is_not_modified(self):
        requested = with_default_sort({})
        apply_filters(base_query(), ALL_FILTERS, requested, ARGS)
        assert requested["sort"].raw.raw_values == ()


class TestPredicateFilters:
    """Tests for row predicate filters."""

    def test_search_cve_target(self):
        query = apply({"search": "CVE-2022"}).query
        assert query.where_clauses[-1] == Clause(
            "cve.name LIKE ? OR cve.description LIKE ?", ("%CVE-2022%", "%CVE-2022%")
        )

    def test_search_cluster_target(self):
        query = apply({"search": "abc"}, args=EndpointArgs(search_target=SearchTarget.CLUSTER)).query
        assert query.where_clauses[-1] == Clause("cluster.uuid::varchar LIKE ?", ("%abc%",))

    def test_search_without_target_is_noop(self):
        assert apply({"search": "abc"}, args=EndpointArgs()).query == base_query()

    def test_search_does_not_escape_wildcards(self):
        """User supplied % and _ are passed through as wildcards."""
        query = apply({"search": "50%_x"}).query
        assert query.where_clauses[-1].params == ("%50%_x%", "%50%_x%")

    def test_published_is_inclusive_range(self):
        query = apply({"published": "2021-01-01,2022-02-02"}).query
        assert query.where_clauses[-1] == Clause(
            "cve.public_date >= ? AND cve.public_date <= ?",
            (
                datetime(2021, 1, 1, tzinfo=timezone.utc),
                datetime(2022, 2, 2, 23, 59, 59, 999999, tzinfo=timezone.utc),
            ),
        )

    def test_severity_membership(self):
        query = apply({"severity": "critical,none"}).query
        assert query.where_clauses[-1] == Clause("cve.severity = ANY(?)", (["Critical", "None"],))

    def test_cvss_score_uses_coalesced_column(self):
        clause = apply({"cvss_score": "0.0,9.0"}).query.where_clauses[-1]
        assert clause.sql == (
            "COALESCE(cve.cvss3_score, cve.cvss2_score) >= ? AND COALESCE(cve.cvss3_score, cve.cvss2_score) <= ?"
        )

    def test_cvss_score_bounds_are_inclusive(self):
        low, high = apply({"cvss_score": "0.0,9.0"}).query.where_clauses[-1].params
        assert low <= 9.0 <= high
        assert not (low <= 9.01 <= high)

    def test_cvss_score_column_is_endpoint_supplied(self):
        args = EndpointArgs(cvss_score_column="cve.cvss3_score")
        clause = apply({"cvss_score": "1,2"}, args=args).query.where_clauses[-1]
        assert clause.sql == "cve.cvss3_score >= ? AND cve.cvss3_score <= ?"

    def test_predicates_are_and_composed(self):
        sql, params = apply({"severity": "low", "search": "x"}).query.render()
        assert "WHERE (cluster.account_id = $1) AND (cve.name LIKE $2 OR cve.description LIKE $3)" in sql
        assert "AND (cve.severity = ANY($4))" in sql
        assert params == [1, "%x%", "%x%", ["Low"]]


class TestAggregateFilters:
    """Tests for HAVING-class filters."""

    def test_cluster_severity_adds_one_condition_per_severity(self):
        query = apply({"cluster_severity": "critical,important"}).query
        assert query.having_clauses == (
            Clause("COUNT(DISTINCT cve.id) FILTER (WHERE cve.severity = ?) > 0", ("Critical",)),
            Clause("COUNT(DISTINCT cve.id) FILTER (WHERE cve.severity = ?) > 0", ("Important",)),
        )

    def test_cluster_severity_requires_grouped_query(self):
        ungrouped = QuerySpec(select="cluster.uuid", source="cluster")
        with pytest.raises(QueryCompositionError):
            apply_filters(ungrouped, ALL_FILTERS, parse_requested_filters({"cluster_severity": "low"}), ARGS)

    def test_affected_clusters_one_or_more(self):
        query = apply({"affected_clusters": "true,false"}).query
        assert query.having_clauses == (Clause("COUNT(DISTINCT cluster_image.cluster_id) > 0"),)

    def test_affected_clusters_none(self):
        query = apply({"affected_clusters": "false,true"}).query
        assert query.having_clauses == (Clause("COUNT(DISTINCT cluster_image.cluster_id) = 0"),)

    def test_affected_images_both_false_is_noop(self):
        assert apply({"affected_images": "false,false"}).query == base_query()

    def test_affected_images_uses_image_count(self):
        query = apply({"affected_images": "true,false"}).query
        assert query.having_clauses == (Clause("COUNT(DISTINCT cluster_image.image_id) > 0"),)

    def test_affected_clusters_both_true_is_unsatisfiable(self):
        """Both flags compose by AND into "= 0 AND > 0", which matches no row.

        A comma separated list usually reads as "either", so this may not be
        the intended meaning. The AND composition is kept as is until the
        product decision is made.
        """
        sql, _ = apply({"affected_clusters": "true,true"}).query.render()
        assert (
            "HAVING (COUNT(DISTINCT cluster_image.cluster_id) = 0)"
            " AND (COUNT(DISTINCT cluster_image.cluster_id) > 0)"
        ) in sql


class TestSort:
    """Tests for the Sort filter."""

    def test_user_column_then_default(self):
        applied = apply({"sort": "severity"})
        assert applied.query.order_by == ("cve.severity ASC NULLS LAST", "cve.id ASC NULLS LAST")
        assert applied.filters["sort"].raw.raw_values == ("severity", "id")

    def test_descending_user_column(self):
        applied = apply({"sort": "-severity"})
        assert applied.query.order_by == ("cve.severity DESC NULLS LAST", "cve.id ASC NULLS LAST")
        assert applied.filters["sort"].raw.raw_values == ("-severity", "id")

    def test_invalid_column_aborts(self):
        with pytest.raises(SortColumnError, match="invalid sort column selected: bogus_column"):
            apply({"sort": "bogus_column"})

    def test_invalid_column_after_valid_one_aborts(self):
        requested = parse_requested_filters({"sort": "severity,bogus_column"})
        with pytest.raises(SortColumnError) as exc_info:
            apply_filter(base_query(), requested["sort"], ARGS)
        assert exc_info.value.column == "bogus_column"

    def test_defaults_applied_without_user_sort(self):
        applied = apply_filters(base_query(), ALL_FILTERS, with_default_sort({}), ARGS)
        assert applied.query.order_by == ("cve.id ASC NULLS LAST",)
        assert applied.filters["sort"].raw.raw_value == "id"

    def test_default_repeats_user_column(self):
        applied = apply({"sort": "-id"})
        assert applied.query.order_by == ("cve.id DESC NULLS LAST", "cve.id ASC NULLS LAST")
        assert applied.filters["sort"].raw.raw_values == ("-id", "id")

    def test_unknown_default_column_is_skipped(self):
        args = EndpointArgs(
            sort_args=SortArgs(
                sortable_columns={"id": "cve.id"},
                default_sortable=(SortItem("missing"), SortItem("id", desc=True)),
            )
        )
        applied = apply({"sort": "id"}, args=args)
        assert applied.query.order_by == ("cve.id ASC NULLS LAST", "cve.id DESC NULLS LAST")
        assert applied.filters["sort"].raw.raw_values == ("id", "-id")

    def test_no_sort_args_is_noop(self):
        applied = apply({"sort": "anything"}, args=EndpointArgs())
        assert applied.query == base_query()
        assert applied.filters["sort"].raw.raw_values == ("anything",)


class TestLimitOffset:
    """Tests for Limit and Offset filters."""

    def test_limit_and_offset_are_independent(self):
        assert apply({"limit": "10"}).query.offset is None
        assert apply({"offset": "10"}).query.limit is None

    def test_limit_zero_with_offset(self):
        sql, params = apply({"limit": "0", "offset": "5"}).query.render()
        assert sql.endswith("LIMIT $2 OFFSET $3")
        assert params == [1, 0, 5]


class TestBuildMeta:
    """Tests for build_meta."""

    def test_meta_follows_allow_list_order(self):
        applied = apply({"limit": "5", "severity": "low,critical", "sort": "-severity"})
        meta = build_meta(applied.filters, ALL_FILTERS)
        assert [(m.name, m.value) for m in meta] == [
            ("sort", "-severity,id"),
            ("limit", "5"),
            ("severity", "low,critical"),
        ]

    def test_meta_skips_disallowed_filters(self):
        requested = parse_requested_filters({"limit": "5", "severity": "low"})
        allowed = (filters.LIMIT,)
        applied = apply_filters(base_query(), allowed, requested, ARGS)
        assert [m.name for m in build_meta(applied.filters, allowed)] == ["limit"]

    def test_meta_joins_trimmed_raw_values(self):
        applied = apply({"cvss_score": "0.0, 9.0", "published": "2021-01-01,2022-02-02"})
        meta = {m.name: m.value for m in build_meta(applied.filters, ALL_FILTERS)}
        assert meta == {"cvss_score": "0.0,9.0", "published": "2021-01-01,2022-02-02"}
