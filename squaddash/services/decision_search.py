"""Relevance search and filtering over parsed decisions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from squaddash.models import DecisionEntry

TITLE_WEIGHT = 10
CONTENT_WEIGHT = 3
AUTHOR_WEIGHT = 5

DateLike = Union[str, date, datetime]


@dataclass
class DecisionSearchCriteria:
    query: Optional[str] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    author: Optional[str] = None


def _date_key(value: DateLike) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)[:10]


def score_decision(decision: DecisionEntry, terms: list[str]) -> int:
    title = (decision.title or "").lower()
    content = (decision.content or "").lower()
    author = (decision.author or "").lower()
    score = 0
    for term in terms:
        if term in title:
            score += TITLE_WEIGHT
        if term in content:
            score += CONTENT_WEIGHT
        if term in author:
            score += AUTHOR_WEIGHT
    return score


def search(decisions: list[DecisionEntry], query: str) -> list[DecisionEntry]:
    """Rank decisions by whitespace-separated term hits; drops non-matches.

    An empty query returns the input unchanged. Equal scores keep input order.
    """
    terms = (query or "").lower().split()
    if not terms:
        return list(decisions)
    scored = [(score_decision(decision, terms), decision) for decision in decisions]
    scored = [item for item in scored if item[0] > 0]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [decision for _, decision in scored]


def filter_by_date(decisions: list[DecisionEntry], start: DateLike, end: DateLike) -> list[DecisionEntry]:
    """Inclusive date range; undated decisions are excluded."""
    start_key, end_key = _date_key(start), _date_key(end)
    return [d for d in decisions if d.date and start_key <= d.date <= end_key]


def filter_by_author(decisions: list[DecisionEntry], author: str) -> list[DecisionEntry]:
    needle = (author or "").strip().lower()
    if not needle:
        return list(decisions)
    return [d for d in decisions if d.author and needle in d.author.lower()]


def filter_decisions(decisions: list[DecisionEntry], criteria: DecisionSearchCriteria) -> list[DecisionEntry]:
    """Apply query, date range and author filters in that order."""
    results = list(decisions)
    if criteria.query and criteria.query.strip():
        results = search(results, criteria.query)
    if criteria.startDate or criteria.endDate:
        results = filter_by_date(results, criteria.startDate or "0000-00-00", criteria.endDate or "9999-99-99")
    if criteria.author and criteria.author.strip():
        results = filter_by_author(results, criteria.author)
    return results
