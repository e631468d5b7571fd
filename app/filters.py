"""Request filters for the CVE Manager query surface.

Each filter wraps the raw query parameter it was parsed from (``FilterValue``)
plus its typed, parsed fields. The set of filters is closed; the composition
engine in ``app.engine`` dispatches on the concrete type.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

# Query parameter names
SEARCH = "search"
PUBLISHED = "published"
SEVERITY = "severity"
CLUSTER_SEVERITY = "cluster_severity"
CVSS_SCORE = "cvss_score"
AFFECTED_CLUSTERS = "affected_clusters"
AFFECTED_IMAGES = "affected_images"
LIMIT = "limit"
OFFSET = "offset"
SORT = "sort"

DATE_FORMAT = "%Y-%m-%d"

# LIMIT and OFFSET are bigint in PostgreSQL
MAX_ROW_COUNT = 2**63 - 1


class FilterError(ValueError):
    """Base class for client-input errors raised while handling filters."""

    kind = "composition"


class FilterParseError(FilterError):
    """A requested filter's raw value does not match its grammar."""

    kind = "parse"

    def __init__(self, param: str, value: str, reason: str) -> None:
        self.param = param
        self.value = value
        super().__init__(f"invalid value '{value}' for filter '{param}': {reason}")


class SortColumnError(FilterError):
    """A user supplied sort column is not sortable on this endpoint."""

    kind = "resolution"

    def __init__(self, column: str) -> None:
        self.column = column
        super().__init__(f"invalid sort column selected: {column}")


class QueryCompositionError(FilterError):
    """A filter could not be applied to the query."""


class Severity(str, Enum):
    """CVE severity, labels match the database ``severity`` enum."""

    NOT_SET = "NotSet"
    NONE = "None"
    LOW = "Low"
    MODERATE = "Moderate"
    IMPORTANT = "Important"
    CRITICAL = "Critical"

    @classmethod
    def parse(cls, raw: str) -> "Severity":
        """Look up a severity by label, ignoring case."""
        wanted = raw.strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        raise ValueError(f"unknown severity '{raw}'")


@dataclass(frozen=True)
class FilterValue:
    """Raw query parameter name and its comma separated values, in order."""

    raw_param: str
    raw_values: tuple[str, ...] = ()

    @property
    def raw_value(self) -> str:
        """Raw values joined back into a query value string."""
        return ",".join(self.raw_values)


@dataclass(frozen=True)
class Search:
    raw: FilterValue
    value: str


@dataclass(frozen=True)
class PublishedDate:
    raw: FilterValue
    date_from: datetime
    date_to: datetime


@dataclass(frozen=True)
class SeverityFilter:
    raw: FilterValue
    values: tuple[Severity, ...]


@dataclass(frozen=True)
class ClusterSeverity:
    raw: FilterValue
    values: tuple[Severity, ...]


@dataclass(frozen=True)
class CvssScore:
    raw: FilterValue
    score_from: float
    score_to: float


@dataclass(frozen=True)
class AffectedClusters:
    raw: FilterValue
    one_or_more: bool
    none: bool


@dataclass(frozen=True)
class AffectedImages:
    raw: FilterValue
    one_or_more: bool
    none: bool


@dataclass(frozen=True)
class Limit:
    raw: FilterValue
    value: int


@dataclass(frozen=True)
class Offset:
    raw: FilterValue
    value: int


@dataclass(frozen=True)
class SortItem:
    """Single column of an ordering, e.g. ``-cvss_score``."""

    column: str
    desc: bool = False

    @property
    def raw(self) -> str:
        return f"-{self.column}" if self.desc else self.column


@dataclass(frozen=True)
class Sort:
    raw: FilterValue
    items: tuple[SortItem, ...] = ()


Filter = (
    Search
    | PublishedDate
    | SeverityFilter
    | ClusterSeverity
    | CvssScore
    | AffectedClusters
    | AffectedImages
    | Limit
    | Offset
    | Sort
)


@dataclass(frozen=True)
class SortArgs:
    """Endpoint sort configuration.

    ``sortable_columns`` maps the column names users may request to the SQL
    expression used in ORDER BY. ``default_sortable`` is always appended after
    the user's columns.
    """

    sortable_columns: Mapping[str, str]
    default_sortable: tuple[SortItem, ...] = field(default_factory=tuple)


# --- Parsing ---


def _split(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(","))


def _expect_count(param: str, value: str, parts: tuple[str, ...], count: int) -> None:
    if len(parts) != count:
        raise FilterParseError(param, value, f"expected {count} comma separated values, got {len(parts)}")


def _parse_date(param: str, value: str, part: str, end_of_day: bool = False) -> datetime:
    try:
        dt = datetime.strptime(part, DATE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        raise FilterParseError(param, value, f"'{part}' is not a YYYY-MM-DD date") from None
    if end_of_day:
        dt = dt.replace(hour=23, minute=59, second=59, microsecond=999999)
    return dt


def _parse_float(param: str, value: str, part: str) -> float:
    try:
        number = float(part)
    except ValueError:
        raise FilterParseError(param, value, f"'{part}' is not a number") from None
    if not math.isfinite(number):
        raise FilterParseError(param, value, f"'{part}' is not a finite number")
    return number


def _parse_bool(param: str, value: str, part: str) -> bool:
    if part == "true":
        return True
    if part == "false":
        return False
    raise FilterParseError(param, value, f"'{part}' is not true or false")


def _parse_uint(param: str, value: str) -> int:
    stripped = value.strip()
    if not (stripped.isascii() and stripped.isdigit()):
        raise FilterParseError(param, value, "expected a non-negative integer")
    number = int(stripped)
    if number > MAX_ROW_COUNT:
        raise FilterParseError(param, value, f"must not exceed {MAX_ROW_COUNT}")
    return number


def _parse_severities(param: str, value: str, parts: tuple[str, ...]) -> tuple[Severity, ...]:
    severities: list[Severity] = []
    for part in parts:
        try:
            severities.append(Severity.parse(part))
        except ValueError as e:
            raise FilterParseError(param, value, str(e)) from None
    return tuple(severities)


def _parse_sort_items(param: str, value: str, parts: tuple[str, ...]) -> tuple[SortItem, ...]:
    items: list[SortItem] = []
    for part in parts:
        desc = part.startswith("-")
        column = part[1:].strip() if desc else part
        if not column:
            raise FilterParseError(param, value, "empty sort column")
        items.append(SortItem(column=column, desc=desc))
    return tuple(items)


def parse_filter(param: str, value: str) -> Filter | None:
    """Parse a single query parameter into its filter.

    Returns None for parameter names that are not filters.
    """
    if param == SEARCH:
        return Search(raw=FilterValue(param, (value,)), value=value)

    parts = _split(value)
    raw = FilterValue(param, parts)

    if param == PUBLISHED:
        _expect_count(param, value, parts, 2)
        date_from = _parse_date(param, value, parts[0])
        date_to = _parse_date(param, value, parts[1], end_of_day=True)
        if date_from > date_to:
            raise FilterParseError(param, value, "start date is after end date")
        return PublishedDate(raw=raw, date_from=date_from, date_to=date_to)

    if param in (SEVERITY, CLUSTER_SEVERITY):
        severities = _parse_severities(param, value, parts)
        if param == SEVERITY:
            return SeverityFilter(raw=raw, values=severities)
        return ClusterSeverity(raw=raw, values=severities)

    if param == CVSS_SCORE:
        _expect_count(param, value, parts, 2)
        score_from = _parse_float(param, value, parts[0])
        score_to = _parse_float(param, value, parts[1])
        if score_from > score_to:
            raise FilterParseError(param, value, "lower bound is above upper bound")
        return CvssScore(raw=raw, score_from=score_from, score_to=score_to)

    if param in (AFFECTED_CLUSTERS, AFFECTED_IMAGES):
        _expect_count(param, value, parts, 2)
        one_or_more = _parse_bool(param, value, parts[0])
        none = _parse_bool(param, value, parts[1])
        if param == AFFECTED_CLUSTERS:
            return AffectedClusters(raw=raw, one_or_more=one_or_more, none=none)
        return AffectedImages(raw=raw, one_or_more=one_or_more, none=none)

    if param == LIMIT:
        return Limit(raw=raw, value=_parse_uint(param, value))

    if param == OFFSET:
        return Offset(raw=raw, value=_parse_uint(param, value))

    if param == SORT:
        return Sort(raw=raw, items=_parse_sort_items(param, value, parts))

    return None


def parse_requested_filters(params: Mapping[str, str]) -> dict[str, Filter]:
    """Parse request query parameters into filters keyed by parameter name.

    Unknown parameters are ignored. Any malformed filter value raises
    FilterParseError and fails the whole request.
    """
    filters: dict[str, Filter] = {}
    for param, value in params.items():
        parsed = parse_filter(param, value)
        if parsed is not None:
            filters[param] = parsed
    return filters


def with_default_sort(filters: Mapping[str, Filter]) -> dict[str, Filter]:
    """Copy of ``filters`` with an empty Sort added when none was requested.

    Endpoints apply their default ordering through the Sort filter, so an
    empty one is needed for the defaults to be applied and echoed.
    """
    result = dict(filters)
    if SORT not in result:
        result[SORT] = Sort(raw=FilterValue(SORT))
    return result
