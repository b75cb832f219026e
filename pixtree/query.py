"""
Predicate search over the flat node set.

All predicates are optional and combine with AND. Structural predicates
(``has_children``, ``is_leaf``) look at the full node set passed in, not
the subset that survives the other filters.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from .types import ImageNode, parse_utc_timestamp


def parse_date_param(value: str, *, end_of_day: bool = False) -> datetime:
    """
    Parse a date or duration parameter into a UTC datetime.

    Accepts:
    - ISO 8601 duration: P3D (3 days ago), P1W (1 week), PT1H (1 hour), P1DT12H, etc.
    - ISO date: 2026-01-15
    - Date with slashes: 2026/01/15
    - Full ISO timestamp: 2026-01-15T10:30:00Z

    Args:
        value: The parameter text
        end_of_day: For bare dates, return 23:59:59.999999 instead of midnight
            (used for inclusive upper bounds)
    """
    text = value.strip()

    # ISO 8601 duration: P[n]Y[n]M[n]W[n]DT[n]H[n]M[n]S
    if text.upper().startswith("P"):
        duration = text.upper()
        years = months = weeks = days = hours = minutes = seconds = 0

        if "T" in duration:
            date_part, time_part = duration.split("T", 1)
        else:
            date_part, time_part = duration, ""

        for match in re.finditer(r"(\d+)([YMWD])", date_part[1:]):
            amount, unit = int(match.group(1)), match.group(2)
            if unit == "Y":
                years = amount
            elif unit == "M":
                months = amount
            elif unit == "W":
                weeks = amount
            elif unit == "D":
                days = amount

        for match in re.finditer(r"(\d+)([HMS])", time_part):
            amount, unit = int(match.group(1)), match.group(2)
            if unit == "H":
                hours = amount
            elif unit == "M":
                minutes = amount
            elif unit == "S":
                seconds = amount

        # Approximate months/years
        total_days = years * 365 + months * 30 + weeks * 7 + days
        delta = timedelta(days=total_days, hours=hours, minutes=minutes, seconds=seconds)
        if not delta:
            raise ValueError(f"Empty duration: {value}")
        return datetime.now(timezone.utc) - delta

    if "T" in text:
        try:
            return parse_utc_timestamp(text)
        except ValueError:
            pass

    try:
        parsed = datetime.strptime(text.replace("/", "-"), "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise ValueError(
            f"Invalid date/duration format: {value}. "
            "Use ISO duration (P3D, PT1H, P1W) or date (2026-01-15)"
        ) from None
    if end_of_day:
        parsed = parsed + timedelta(days=1) - timedelta(microseconds=1)
    return parsed


@dataclass
class SearchQuery:
    """
    Search predicates. Unset (None) fields do not filter.

    Attributes:
        tags: Node must carry all of these tags
        text: Case-insensitive substring of prompt, descriptions, or tags
        min_rating: Rating at least this (unrated nodes never match)
        rating: Rating exactly this
        model: Exact model name
        tree_id: Member of this tree
        favorite: Favorite flag equals this
        source: "generated" or "imported"
        since: Created at or after (inclusive)
        until: Created at or before (inclusive)
        has_children: Node is (or is not) the parent of another node
        is_leaf: Inverse of has_children
    """
    tags: Optional[list[str]] = None
    text: Optional[str] = None
    min_rating: Optional[int] = None
    rating: Optional[int] = None
    model: Optional[str] = None
    tree_id: Optional[str] = None
    favorite: Optional[bool] = None
    source: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    has_children: Optional[bool] = None
    is_leaf: Optional[bool] = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in self.__dataclass_fields__)


def searchable_text(node: ImageNode) -> str:
    """Lower-cased text that free-text search matches against."""
    parts = [node.prompt, node.user.description or ""]
    if node.import_info is not None:
        parts.append(node.import_info.user_description or "")
    if node.ai_analysis is not None:
        parts.append(node.ai_analysis.description)
    parts.extend(node.tags)
    return " ".join(parts).lower()


def matches(node: ImageNode, query: SearchQuery, parent_ids: set[str]) -> bool:
    """
    Check one node against every predicate.

    Args:
        node: The candidate
        query: Predicates
        parent_ids: IDs of all nodes that have at least one child
    """
    if query.tags and not all(tag in node.tags for tag in query.tags):
        return False

    if query.text and query.text.lower() not in searchable_text(node):
        return False

    if query.rating is not None and node.rating != query.rating:
        return False
    if query.min_rating is not None and (node.rating or 0) < query.min_rating:
        return False

    if query.model is not None and node.model != query.model:
        return False
    if query.tree_id is not None and node.tree_id != query.tree_id:
        return False
    if query.favorite is not None and node.favorite != query.favorite:
        return False
    if query.source is not None and node.source != query.source:
        return False

    if query.since is not None or query.until is not None:
        created = parse_utc_timestamp(node.created_at)
        if query.since is not None and created < query.since:
            return False
        if query.until is not None and created > query.until:
            return False

    has_children = node.id in parent_ids
    if query.has_children is not None and has_children != query.has_children:
        return False
    if query.is_leaf is not None and (not has_children) != query.is_leaf:
        return False

    return True


def search(nodes: Iterable[ImageNode], query: SearchQuery) -> list[ImageNode]:
    """Return the nodes that satisfy every predicate, in input order."""
    nodes = list(nodes)
    parent_ids = {n.parent_id for n in nodes if n.parent_id is not None}
    return [n for n in nodes if matches(n, query, parent_ids)]
