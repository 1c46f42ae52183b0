"""Query relevance scoring (0-100) and ranked ordering of candidate records."""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional

from .records import CandidateRecord
from .resolver_config import SOURCE_PRIORITY

STOPWORDS = frozenset(
    """
    a an and are as at be by for from has he in is it its of on that the to was will with
    but not you all can had her were she been one do no word if look now my up over them
    then so some would make like into him time two more go way could than first call who
    did get come made may part also new work well should because through each just those
    people take years your good see other only think back after use how our even want any
    these give day most us very say right around another came three while place year here
    thing once upon always show together got often until being book
    """.split()
)

_PUNCT_RE = re.compile(r"[^\w\s]")

EMPTY_QUERY_SCORE = 50
TITLE_WEIGHT = 25
AUTHOR_WEIGHT = 15
SUBJECT_WEIGHT = 15
DESCRIPTION_WEIGHT = 5
ALL_IN_TITLE_BONUS = 20


def tokenize(query: Optional[str]) -> List[str]:
    """Lowercase, strip punctuation, drop short/stopword/numeric tokens."""

    if not query:
        return []
    text = _PUNCT_RE.sub(" ", query.lower())
    return [t for t in text.split() if len(t) >= 3 and t not in STOPWORDS and not t.isdigit()]


def _lower(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value).lower()
    return str(value or "").lower()


def score_relevance(record: CandidateRecord, query: Optional[str]) -> int:
    tokens = tokenize(query)
    if not tokens:
        return EMPTY_QUERY_SCORE

    title = _lower(record.title)
    author = _lower(record.author)
    subjects = _lower(record.subjects)
    description = _lower(record.description)

    score = 0
    title_hits = 0
    any_hit = False
    for tok in tokens:
        if tok in title:
            title_hits += 1
            score += TITLE_WEIGHT
            any_hit = True
        if tok in author:
            score += AUTHOR_WEIGHT
            any_hit = True
        if tok in subjects:
            score += SUBJECT_WEIGHT
            any_hit = True
        if tok in description:
            score += DESCRIPTION_WEIGHT
            any_hit = True

    if not any_hit:
        return 0
    if title_hits == len(tokens):
        score += ALL_IN_TITLE_BONUS
    return min(100, score)


def _sort_key(record: CandidateRecord):
    return (
        -(record.relevance_score or 0),
        -(record.year or 0),
        -SOURCE_PRIORITY.get(record.provider, 0),
    )


def rank(records: Iterable[CandidateRecord], query: Optional[str]) -> List[CandidateRecord]:
    """Score every record in place and return them highest first (stable on ties)."""

    items = list(records)
    for record in items:
        record.relevance_score = score_relevance(record, query)
    return sorted(items, key=_sort_key)


__all__ = ["tokenize", "score_relevance", "rank", "STOPWORDS"]
