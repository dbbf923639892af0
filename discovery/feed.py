"""Feed ranking for Unfold.

Scores candidate media and pages through them under a hard source-diversity
rule: two consecutive items never come from the same source, including across
the boundary with the previous page (carried in as `last_source_id`).

Score components (higher is shown sooner):
- unseen: +1000, otherwise -10 per view
- liked: +500, saved: +300
- proximity: (10 - min(depth, 10)) * 20
- noise: uniform in [0, noise)
- recency: max(0, recency_days - age_in_days)
"""

from __future__ import annotations

import dataclasses
import random
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from .config import FeedConfig


@dataclasses.dataclass
class FeedCandidate:
    media_id: str
    media_type: str
    source_id: str
    display_name: str
    avatar_seed: str
    depth: int
    created_at: datetime
    liked: bool = False
    saved: bool = False
    view_count: int = 0
    last_viewed_at: Optional[datetime] = None


@dataclasses.dataclass
class RankingWeights:
    unseen_bonus: float = 1000.0
    view_penalty: float = 10.0
    like_bonus: float = 500.0
    save_bonus: float = 300.0
    depth_weight: float = 20.0
    max_depth: int = 10
    noise: float = 100.0
    recency_days: float = 50.0

    @classmethod
    def from_config(cls, feed: FeedConfig) -> "RankingWeights":
        return cls(noise=feed.noise, recency_days=feed.recency_days)


@dataclasses.dataclass
class ScoredCandidate:
    candidate: FeedCandidate
    score: float


@dataclasses.dataclass
class FeedPage:
    items: List[FeedCandidate]
    page: int
    has_more: bool
    last_source_id: Optional[str]


def _age_days(created_at: datetime, now: datetime) -> float:
    # SQLite hands datetimes back naive; they are stored as UTC
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return max(0.0, (now - created_at).total_seconds() / 86400)


def score_candidate(
    candidate: FeedCandidate,
    weights: RankingWeights,
    now: datetime,
    rng: random.Random,
) -> float:
    if candidate.view_count == 0:
        score = weights.unseen_bonus
    else:
        score = -weights.view_penalty * candidate.view_count

    if candidate.liked:
        score += weights.like_bonus
    if candidate.saved:
        score += weights.save_bonus

    score += (weights.max_depth - min(candidate.depth, weights.max_depth)) * weights.depth_weight

    if weights.noise > 0:
        score += rng.uniform(0, weights.noise)

    score += max(0.0, weights.recency_days - _age_days(candidate.created_at, now))
    return score


def rank(
    candidates: Sequence[FeedCandidate],
    last_source_id: Optional[str],
    limit: int,
    weights: Optional[RankingWeights] = None,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    diversity: bool = True,
) -> List[ScoredCandidate]:
    """Return up to `limit` candidates in score order under the diversity rule.

    Each slot takes the highest-scored remaining candidate whose source differs
    from the previously accepted one; skipped candidates stay eligible for
    later slots.
    """
    weights = weights or RankingWeights()
    now = now or datetime.now(timezone.utc)
    rng = rng or random.Random()

    remaining = sorted(
        (ScoredCandidate(c, score_candidate(c, weights, now, rng)) for c in candidates),
        key=lambda scored: scored.score,
        reverse=True,
    )
    if not diversity:
        return remaining[:limit]

    accepted: List[ScoredCandidate] = []
    previous = last_source_id
    while remaining and len(accepted) < limit:
        for index, scored in enumerate(remaining):
            if scored.candidate.source_id != previous:
                break
        else:
            # Only the previous source is left
            break
        accepted.append(remaining.pop(index))
        previous = scored.candidate.source_id
    return accepted


def build_feed_page(
    candidates: Sequence[FeedCandidate],
    page: int = 0,
    page_size: int = 20,
    last_source_id: Optional[str] = None,
    weights: Optional[RankingWeights] = None,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    diversity: bool = True,
) -> FeedPage:
    """Rank one page; fetching page_size + 1 tells whether more items exist."""
    if page_size < 1:
        raise ValueError("page_size must be at least 1")

    ranked = rank(
        candidates,
        last_source_id,
        page_size + 1,
        weights=weights,
        now=now,
        rng=rng,
        diversity=diversity,
    )
    items = [scored.candidate for scored in ranked[:page_size]]
    return FeedPage(
        items=items,
        page=page,
        has_more=len(ranked) > page_size,
        last_source_id=items[-1].source_id if items else last_source_id,
    )
