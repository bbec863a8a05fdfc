"""Normalization of raw voting-context rows into canonical items and votes.

The hosted backend has shipped several field names for the same concept
over time. All aliasing lives here so that the rest of the app only sees
``VoteItem`` and ``Vote``:

- Items are keyed by ``(internal_job_id, forecast_date, lens_id)``
- Duplicate items keep their first occurrence
- Votes embedded on items seed the vote map; the explicit votes list wins
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)

ItemKey = tuple[int, str, str]

UNKNOWN_DATE = "Unknown date"

JOB_ID_FIELDS = ("internal_job_id", "job_id", "acm_job_id")
FORECAST_DATE_FIELDS = ("forecast_date", "date")
LENS_ID_FIELDS = ("lens_id", "lens")


@dataclass
class Vote:
    """A voter's decision on one item."""

    internal_job_id: int
    forecast_date: str
    lens_id: str
    vote_value: Optional[str] = None
    vote_reason: Optional[str] = None
    voted_at: Optional[str] = None

    @property
    def key(self) -> ItemKey:
        return (self.internal_job_id, self.forecast_date, self.lens_id)

    @property
    def is_complete(self) -> bool:
        return bool(self.vote_value)


@dataclass
class VoteItem:
    """One job / forecast date / lens combination open for voting."""

    internal_job_id: int
    forecast_date: str
    lens_id: str
    property_name: Optional[str] = None
    service_name: Optional[str] = None
    estimator_initials: Optional[str] = None
    risk_level: Optional[str] = None
    route_start_time: Optional[str] = None
    route_end_time: Optional[str] = None
    max_rain_chance: Optional[float] = None
    max_rain_inches_route: Optional[float] = None
    hourly_weather: Any = None
    existing_vote: Optional[Vote] = None

    @property
    def key(self) -> ItemKey:
        return (self.internal_job_id, self.forecast_date, self.lens_id)


@dataclass
class VoteCounts:
    total_items: int = 0
    voted_items: int = 0
    remaining_items: int = 0


@dataclass
class NormalizedContext:
    """Result of normalizing one raw context row."""

    items: list[VoteItem] = field(default_factory=list)
    votes: dict[ItemKey, Vote] = field(default_factory=dict)
    counts: VoteCounts = field(default_factory=VoteCounts)


def _first_present(row: dict, names: Iterable[str]) -> Any:
    """Return the first alias whose value is not None."""
    for name in names:
        value = row.get(name)
        if value is not None:
            return value
    return None


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def item_key(internal_job_id: Any, forecast_date: Any, lens_id: Any) -> ItemKey:
    """Build a composite key from loosely typed parts."""
    return (
        int(internal_job_id),
        "" if forecast_date is None else str(forecast_date),
        "" if lens_id is None else str(lens_id),
    )


def _identity(row: dict) -> Optional[ItemKey]:
    job_id = _to_int(_first_present(row, JOB_ID_FIELDS))
    forecast_date = _first_present(row, FORECAST_DATE_FIELDS)
    lens_id = _first_present(row, LENS_ID_FIELDS)
    if job_id is None or not forecast_date or lens_id is None:
        return None
    return item_key(job_id, forecast_date, lens_id)


def _vote_from_row(key: ItemKey, row: dict) -> Vote:
    return Vote(
        internal_job_id=key[0],
        forecast_date=key[1],
        lens_id=key[2],
        vote_value=row.get("vote_value"),
        vote_reason=row.get("vote_reason"),
        voted_at=row.get("voted_at"),
    )


def normalize_item(raw: dict) -> Optional[VoteItem]:
    """Map one raw item row to a ``VoteItem``.

    Returns None (and logs) when the row lacks an identity field.
    """
    key = _identity(raw)
    if key is None:
        logger.warning("Skipping invalid item row: %r", raw)
        return None

    existing = raw.get("existing_vote")
    existing_vote = _vote_from_row(key, existing) if isinstance(existing, dict) else None

    return VoteItem(
        internal_job_id=key[0],
        forecast_date=key[1],
        lens_id=key[2],
        property_name=raw.get("property_name"),
        service_name=raw.get("service_name"),
        estimator_initials=raw.get("estimator_initials"),
        risk_level=raw.get("risk_level"),
        route_start_time=raw.get("route_start_time"),
        route_end_time=raw.get("route_end_time"),
        max_rain_chance=raw.get("max_rain_chance"),
        max_rain_inches_route=raw.get("max_rain_inches_route"),
        hourly_weather=raw.get("hourly_weather"),
        existing_vote=existing_vote,
    )


def dedupe_items(items: Iterable[VoteItem]) -> list[VoteItem]:
    """Drop later items sharing a key with an earlier one."""
    seen: set[ItemKey] = set()
    result = []
    for item in items:
        if item.key in seen:
            continue
        seen.add(item.key)
        result.append(item)
    return result


def map_votes(raw_votes: Optional[Iterable[dict]]) -> dict[ItemKey, Vote]:
    """Index an explicit votes list by item key. Later rows overwrite earlier ones."""
    result: dict[ItemKey, Vote] = {}
    for row in raw_votes or []:
        key = _identity(row)
        if key is None:
            logger.warning("Skipping invalid vote row: %r", row)
            continue
        result[key] = _vote_from_row(key, row)
    return result


def merge_votes(
    items: Iterable[VoteItem], explicit_votes: dict[ItemKey, Vote]
) -> dict[ItemKey, Vote]:
    """Seed votes from items' embedded votes, then let the explicit list win."""
    merged = {item.key: item.existing_vote for item in items if item.existing_vote}
    merged.update(explicit_votes)
    return merged


def _count(context: dict, names: Iterable[str]) -> Optional[int]:
    return _to_int(_first_present(context, names))


def compute_counts(
    context: dict, items: list[VoteItem], votes: dict[ItemKey, Vote]
) -> VoteCounts:
    """Prefer backend-reported counts, otherwise derive them."""
    total = _count(context, ("total_items",))
    if total is None:
        total = len(items)

    voted = _count(context, ("voted_items", "total_voted"))
    if voted is None:
        item_keys = {item.key for item in items}
        voted = sum(
            1 for key, vote in votes.items() if key in item_keys and vote.is_complete
        )

    remaining = _count(context, ("remaining_items", "total_remaining"))
    if remaining is None:
        remaining = max(0, total - voted)

    return VoteCounts(total_items=total, voted_items=voted, remaining_items=remaining)


def normalize_context(context: dict) -> NormalizedContext:
    """Normalize a full raw context row (items, votes and counts)."""
    mapped = (normalize_item(row) for row in context.get("items") or [])
    items = dedupe_items(item for item in mapped if item is not None)
    votes = merge_votes(items, map_votes(context.get("votes")))
    return NormalizedContext(
        items=items, votes=votes, counts=compute_counts(context, items, votes)
    )


def with_vote(votes: dict[ItemKey, Vote], vote: Vote) -> dict[ItemKey, Vote]:
    """Return a copy of ``votes`` with ``vote`` applied."""
    updated = dict(votes)
    updated[vote.key] = replace(vote)
    return updated


# List view ordering


def risk_rank(risk_level: Optional[str]) -> int:
    """Ordinal for sorting: red/high, yellow/medium, green/low, then unknown."""
    value = (risk_level or "").lower()
    if "red" in value or "high" in value:
        return 0
    if "yellow" in value or "medium" in value:
        return 1
    if "green" in value or "low" in value:
        return 2
    return 3


def risk_badge(risk_level: Optional[str]) -> str:
    """CSS modifier for a risk badge."""
    return ("red", "yellow", "green", "none")[risk_rank(risk_level)]


def sort_items(items: Iterable[VoteItem]) -> list[VoteItem]:
    """Stable sort by forecast date, risk, then job id as text."""
    return sorted(
        items,
        key=lambda item: (
            item.forecast_date,
            risk_rank(item.risk_level),
            str(item.internal_job_id),
        ),
    )


def group_items_by_date(items: Iterable[VoteItem]) -> dict[str, list[VoteItem]]:
    """Sort then bucket items by forecast date, preserving bucket order."""
    groups: dict[str, list[VoteItem]] = {}
    for item in sort_items(items):
        groups.setdefault(item.forecast_date or UNKNOWN_DATE, []).append(item)
    return groups


def filter_items(
    items: Iterable[VoteItem], risk: str = "all", search: str = ""
) -> list[VoteItem]:
    """Filter by risk substring and a search over property, service and job id."""
    risk = (risk or "all").lower()
    needle = (search or "").strip().lower()
    result = []
    for item in items:
        if risk != "all" and risk not in (item.risk_level or "").lower():
            continue
        if needle:
            haystack = " ".join(
                str(part)
                for part in (item.property_name, item.service_name, item.internal_job_id)
                if part
            ).lower()
            if needle not in haystack:
                continue
        result.append(item)
    return result


# Display helpers


def voter_identity(context: Optional[dict], items: Iterable[VoteItem]) -> str:
    """Human-readable name for the voter shown on the welcome screen."""
    if not context:
        return "Voter"
    voter_type = str(context.get("voter_type") or "").lower()
    if voter_type == "employee":
        if context.get("employee_full_name"):
            return context["employee_full_name"]
        if context.get("employee_id") is not None:
            return f"Employee #{context['employee_id']}"
        return "Employee"
    if voter_type == "estimator":
        for item in items:
            if item.estimator_initials:
                return item.estimator_initials
        return "Estimator"
    return "Voter"


def format_date_range(start: Optional[str], end: Optional[str]) -> str:
    if not start and not end:
        return "Dates unavailable"
    if start and end:
        return f"{start} - {end}"
    return start or end


def format_datetime(value: Optional[str]) -> Optional[str]:
    """Format an ISO timestamp as e.g. ``Jan 7, 2026, 7:10 AM``."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    hour12 = parsed.hour % 12 or 12
    suffix = "PM" if parsed.hour >= 12 else "AM"
    return f"{parsed:%b} {parsed.day}, {parsed.year}, {hour12}:{parsed.minute:02d} {suffix}"
