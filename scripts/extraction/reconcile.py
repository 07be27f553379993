"""Git identity reconciliation.

Commit authorship is free text (name, email). Each member's name, username
and email are searched against an index of the raw identities; an identity is
claimed by the member that matched it with the lowest score.

Scoring follows the bitap convention used by fuzzy finders: a score is the
fraction of mismatched characters plus a penalty for how far into the field
the match starts, so 0 is a perfect match at the start of the field. An
identity's score is the product over the keys it matches, so an identity
matching on name and email outranks one matching on either alone.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Optional, Sequence

from scripts.extraction.models import GitIdentity, Member

logger = logging.getLogger("extraction.reconcile")

SEARCH_KEYS = ("username", "name", "email")
THRESHOLD = 0.2
LOCATION = 0
DISTANCE = 100
LIMIT = 5
TOKEN_SEPARATOR = "|"
EPSILON = sys.float_info.epsilon


def username_from_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return email.split("@")[0]


def build_query(member: Member) -> str:
    """``name|username|email`` with inner spaces turned into alternatives."""
    parts = [member.name, member.username, member.email]
    return TOKEN_SEPARATOR.join(p.replace(" ", TOKEN_SEPARATOR) for p in parts if p)


def token_score(token: str, value: str) -> float:
    """Best alignment score of ``token`` anywhere in ``value`` (0 is exact)."""
    if not token or not value:
        return 1.0
    exact = value.find(token)
    if exact != -1:
        return abs(exact - LOCATION) / DISTANCE
    if len(token) >= len(value):
        return 1.0 - SequenceMatcher(None, token, value).ratio()

    best = 1.0
    width = len(token)
    for start in range(len(value) - width + 1):
        window = value[start : start + width]
        score = (1.0 - SequenceMatcher(None, token, window).ratio()) + abs(start - LOCATION) / DISTANCE
        if score < best:
            best = score
    return best


def document_score(tokens: Sequence[str], doc: dict[str, str], threshold: float) -> Optional[float]:
    """Product of the best token score of every matching key, or None.

    A key matches when some token scores within ``threshold``; exact matches
    count as EPSILON so that more matching keys always rank better.
    """
    total: Optional[float] = None
    for key in SEARCH_KEYS:
        best = min(token_score(t, doc[key]) for t in tokens)
        if best > threshold:
            continue
        total = (1.0 if total is None else total) * max(best, EPSILON)
    return total


@dataclass(frozen=True)
class SearchResult:
    index: int
    score: float


class FuzzyIndex:
    """In-memory index over git identities keyed by username, name and email."""

    def __init__(self, identities: Sequence[GitIdentity]) -> None:
        self._docs = [
            {
                "username": (username_from_email(i.email) or "").lower(),
                "name": (i.name or "").lower(),
                "email": (i.email or "").lower(),
            }
            for i in identities
        ]

    def __len__(self) -> int:
        return len(self._docs)

    def search(self, query: str, limit: int = LIMIT, threshold: float = THRESHOLD) -> list[SearchResult]:
        """Documents matching any ``|``-separated token, best first."""
        tokens = [t for t in query.lower().split(TOKEN_SEPARATOR) if t]
        if not tokens:
            return []
        results = []
        for index, doc in enumerate(self._docs):
            score = document_score(tokens, doc, threshold)
            if score is not None:
                results.append(SearchResult(index, score))
        results.sort(key=lambda r: (r.score, r.index))
        return results[:limit]


def fuzzy_search(
    git_identities: Sequence[GitIdentity], members: Sequence[Member]
) -> dict[int, list[int]]:
    """Map member id -> sorted ids of the git identities it claims.

    An identity already claimed is only reassigned to a member with a strictly
    lower score.
    """
    index = FuzzyIndex(git_identities)
    claims: dict[int, tuple[int, float]] = {}

    for member in members:
        query = build_query(member)
        for result in index.search(query):
            identity_id = git_identities[result.index].id
            current = claims.get(identity_id)
            if current is None or result.score < current[1]:
                claims[identity_id] = (member.id, result.score)

    assigned: dict[int, list[int]] = {}
    for identity_id, (member_id, _) in claims.items():
        assigned.setdefault(member_id, []).append(identity_id)
    return {member_id: sorted(ids) for member_id, ids in assigned.items()}


class IdentityResolver:
    """Reconciles every git identity of a tenant against its members."""

    def __init__(self, store) -> None:
        self.store = store

    def resolve(self) -> dict[str, int]:
        """Run reconciliation and persist the assignments. Returns counts."""
        identities = self.store.find("git_identity")
        members = self.store.find("member")
        assignments = fuzzy_search(identities, members)
        updated = self.store.assign_git_identities(assignments)

        results = {
            "git_identities": len(identities),
            "members": len(members),
            "matched_members": len(assignments),
            "assigned_identities": updated,
        }
        logger.info(
            "Reconciled %d of %d git identities onto %d members",
            updated,
            len(identities),
            len(assignments),
            extra={"tenant_id": self.store.tenant_id, "records": updated},
        )
        return results
