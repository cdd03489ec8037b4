"""Recipient selection.

Pipeline: eligible pool (active, verified, not the sender) minus block
relationships minus attribute filters, then one of a closed set of
strategies picks at most ``count`` distinct users from the pool.

Strategies are plain functions ``(pool, count, context) -> list[User]`` and
never touch the database; ``RecipientSelector`` loads whatever per-candidate
statistics a strategy needs into the ``SelectionContext`` beforehand.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Sequence

import numpy as np
from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.core.clock import Clock, as_utc, utcnow
from voicecast.modules.broadcast.models import BroadcastRecipient, RecipientStatus
from voicecast.modules.broadcast.relationships import RelationshipFilter
from voicecast.modules.broadcast.schemas import RecipientFilters
from voicecast.modules.conversation.models import Conversation, Message
from voicecast.modules.user.models import User, UserStatus

logger = logging.getLogger(__name__)

RESPONSE_RATE_WEIGHT = 0.5
INTERACTION_WEIGHT = 0.3
DEMOGRAPHIC_WEIGHT = 0.2
TOP_RESERVED_FRACTION = 0.2
NEUTRAL_SCORE = 0.5
FREQUENCY_SATURATION = 10
RECENCY_WINDOW_DAYS = 30
SCORE_EPSILON = 1e-6
ACTIVITY_OVERSAMPLE = 2


class SelectionStrategy(str, Enum):
    RANDOM = "random"
    ACTIVITY = "activity"
    RELATIONSHIP = "relationship"
    WEIGHTED = "weighted"
    REGION = "region"


@dataclass(frozen=True)
class InteractionStats:
    """Prior 1:1 history between the sender and one candidate."""
    message_count: int = 0
    last_interaction_at: Optional[datetime] = None


@dataclass
class SelectionContext:
    sender: User
    rng: np.random.Generator
    now: datetime
    interactions: dict[uuid.UUID, InteractionStats] = field(default_factory=dict)
    response_rates: dict[uuid.UUID, float] = field(default_factory=dict)


def _take_random(pool: Sequence[User], count: int, rng: np.random.Generator) -> list[User]:
    size = min(count, len(pool))
    if size <= 0:
        return []
    indices = rng.choice(len(pool), size=size, replace=False)
    return [pool[i] for i in indices]


def _shuffled(pool: Sequence[User], rng: np.random.Generator) -> list[User]:
    """Random order; stable sorts applied afterwards break ties randomly."""
    return [pool[i] for i in rng.permutation(len(pool))]


def select_random(pool: Sequence[User], count: int, context: SelectionContext) -> list[User]:
    """Uniform sampling without replacement."""
    return _take_random(pool, count, context.rng)


def select_by_activity(pool: Sequence[User], count: int, context: SelectionContext) -> list[User]:
    """Sample from the most recently active users.

    Candidates with a known ``last_active_at`` come first, newest first. The
    final pick is drawn at random from the top ``2 * count``.
    """
    if count <= 0:
        return []
    active = [user for user in _shuffled(pool, context.rng) if user.last_active_at is not None]
    active.sort(key=lambda user: as_utc(user.last_active_at), reverse=True)
    inactive = [user for user in pool if user.last_active_at is None]

    shortlist = active[:count * ACTIVITY_OVERSAMPLE]
    chosen = _take_random(shortlist, count, context.rng)
    if len(chosen) < count:
        chosen.extend(_take_random(inactive, count - len(chosen), context.rng))
    return chosen


def select_by_relationship(pool: Sequence[User], count: int, context: SelectionContext) -> list[User]:
    """Prefer users who already share a conversation with the sender.

    History-qualified candidates are ranked by messages exchanged; any
    shortfall is filled at random from the rest of the pool.
    """
    if count <= 0:
        return []
    with_history = [
        user for user in _shuffled(pool, context.rng)
        if user.id in context.interactions
    ]
    with_history.sort(key=lambda user: context.interactions[user.id].message_count, reverse=True)
    chosen = with_history[:count]

    if len(chosen) < count:
        chosen_ids = {user.id for user in chosen}
        rest = [user for user in pool if user.id not in chosen_ids]
        chosen.extend(_take_random(rest, count - len(chosen), context.rng))
    return chosen


def select_by_region(pool: Sequence[User], count: int, context: SelectionContext) -> list[User]:
    """Half from the sender's region, half from elsewhere.

    Whichever side runs short is backfilled from the other one.
    """
    if count <= 0:
        return []
    region = context.sender.region
    same = [user for user in pool if region and user.region == region]
    other = [user for user in pool if not (region and user.region == region)]

    same_target = count // 2
    other_target = count - same_target
    chosen_same = _take_random(same, same_target, context.rng)
    chosen_other = _take_random(other, other_target, context.rng)

    shortfall = count - len(chosen_same) - len(chosen_other)
    if shortfall > 0:
        taken = {user.id for user in chosen_same + chosen_other}
        leftovers = [user for user in pool if user.id not in taken]
        chosen_other.extend(_take_random(leftovers, shortfall, context.rng))
    return chosen_same + chosen_other


def interaction_score(stats: Optional[InteractionStats], now: datetime) -> float:
    """Half frequency, half recency of prior messages with the sender."""
    if stats is None or stats.message_count <= 0:
        return 0.0
    frequency = min(stats.message_count / FREQUENCY_SATURATION, 1.0)
    recency = 0.0
    if stats.last_interaction_at is not None:
        days = (now - as_utc(stats.last_interaction_at)).total_seconds() / 86400
        recency = max(0.0, 1.0 - days / RECENCY_WINDOW_DAYS)
    return 0.5 * frequency + 0.5 * recency


def demographic_score(sender: User, candidate: User) -> float:
    """Fraction of the sender's known age group and region the candidate shares."""
    preferences = {
        name: getattr(sender, name)
        for name in ("age_group", "region")
        if getattr(sender, name)
    }
    if not preferences:
        return NEUTRAL_SCORE
    matches = sum(1 for name, value in preferences.items() if getattr(candidate, name) == value)
    return matches / len(preferences)


def composite_score(candidate: User, context: SelectionContext) -> float:
    response_rate = context.response_rates.get(candidate.id, NEUTRAL_SCORE)
    return (
        RESPONSE_RATE_WEIGHT * response_rate
        + INTERACTION_WEIGHT * interaction_score(context.interactions.get(candidate.id), context.now)
        + DEMOGRAPHIC_WEIGHT * demographic_score(context.sender, candidate)
    )


def select_weighted(pool: Sequence[User], count: int, context: SelectionContext) -> list[User]:
    """Score-weighted sampling.

    The top 20% of ``count`` by score are taken outright; the remaining
    slots are sampled without replacement with probability proportional
    to the score shifted so the lowest candidate still has a small weight.
    """
    size = min(count, len(pool))
    if size <= 0:
        return []

    ranked = _shuffled(pool, context.rng)
    scores = {user.id: composite_score(user, context) for user in ranked}
    ranked.sort(key=lambda user: scores[user.id], reverse=True)

    reserved = min(math.ceil(count * TOP_RESERVED_FRACTION), size)
    chosen = ranked[:reserved]
    rest = ranked[reserved:]
    remaining = size - reserved
    if remaining <= 0:
        return chosen

    weights = np.array([scores[user.id] for user in rest], dtype=float)
    weights = weights - weights.min() + SCORE_EPSILON
    indices = context.rng.choice(len(rest), size=remaining, replace=False, p=weights / weights.sum())
    chosen.extend(rest[i] for i in indices)
    return chosen


StrategyFn = Callable[[Sequence[User], int, SelectionContext], list[User]]

STRATEGIES: dict[SelectionStrategy, StrategyFn] = {
    SelectionStrategy.RANDOM: select_random,
    SelectionStrategy.ACTIVITY: select_by_activity,
    SelectionStrategy.RELATIONSHIP: select_by_relationship,
    SelectionStrategy.WEIGHTED: select_weighted,
    SelectionStrategy.REGION: select_by_region,
}


class RecipientSelector:
    """Chooses up to ``count`` recipients for a sender.

    The strategy is fixed at construction. The selector never clamps
    ``count``; that is the orchestrator's job.
    """

    def __init__(
        self,
        session: AsyncSession,
        strategy: SelectionStrategy = SelectionStrategy.RANDOM,
        rng: Optional[np.random.Generator] = None,
        relationship_filter: Optional[RelationshipFilter] = None,
        clock: Clock = utcnow,
    ):
        self.session = session
        self.strategy = SelectionStrategy(strategy)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.relationship_filter = relationship_filter or RelationshipFilter(session)
        self.clock = clock

    async def eligible_pool(
        self,
        sender: User,
        filters: Optional[RecipientFilters] = None,
    ) -> list[User]:
        excluded = await self.relationship_filter.excluded_ids(sender.id)

        query = select(User).where(
            User.status == UserStatus.ACTIVE.value,
            User.verified.is_(True),
            User.id != sender.id,
        )
        if excluded:
            query = query.where(User.id.notin_(excluded))
        if filters:
            for name, value in filters.active().items():
                query = query.where(getattr(User, name) == value)

        # Stable order so a seeded generator reproduces the same pick
        result = await self.session.execute(query.order_by(User.id))
        return list(result.scalars().all())

    async def select(
        self,
        sender: User,
        count: int,
        filters: Optional[RecipientFilters] = None,
    ) -> list[User]:
        pool = await self.eligible_pool(sender, filters)
        context = SelectionContext(sender=sender, rng=self.rng, now=self.clock())

        if pool and self.strategy in (SelectionStrategy.RELATIONSHIP, SelectionStrategy.WEIGHTED):
            context.interactions = await self._load_interactions(sender.id, pool)
        if pool and self.strategy is SelectionStrategy.WEIGHTED:
            context.response_rates = await self._load_response_rates(pool)

        chosen = STRATEGIES[self.strategy](pool, count, context)
        logger.debug(
            f"Selected {len(chosen)}/{count} recipients from pool of {len(pool)} "
            f"for sender {sender.id} using {self.strategy.value}"
        )
        return chosen

    async def _load_interactions(
        self,
        sender_id: uuid.UUID,
        pool: Sequence[User],
    ) -> dict[uuid.UUID, InteractionStats]:
        pool_ids = {user.id for user in pool}
        result = await self.session.execute(
            select(
                Conversation.user_a_id,
                Conversation.user_b_id,
                Conversation.updated_at,
                func.count(Message.id),
            )
            .outerjoin(Message, Message.conversation_id == Conversation.id)
            .where(or_(Conversation.user_a_id == sender_id, Conversation.user_b_id == sender_id))
            .group_by(
                Conversation.id,
                Conversation.user_a_id,
                Conversation.user_b_id,
                Conversation.updated_at,
            )
        )

        interactions = {}
        for user_a_id, user_b_id, updated_at, message_count in result.all():
            other_id = user_b_id if user_a_id == sender_id else user_a_id
            if other_id in pool_ids:
                interactions[other_id] = InteractionStats(
                    message_count=message_count,
                    last_interaction_at=as_utc(updated_at),
                )
        return interactions

    async def _load_response_rates(self, pool: Sequence[User]) -> dict[uuid.UUID, float]:
        """Replied fraction of each candidate's received broadcasts."""
        replied = func.sum(
            case((BroadcastRecipient.status == RecipientStatus.REPLIED.value, 1), else_=0)
        )
        result = await self.session.execute(
            select(BroadcastRecipient.user_id, func.count(BroadcastRecipient.id), replied)
            .where(BroadcastRecipient.user_id.in_([user.id for user in pool]))
            .group_by(BroadcastRecipient.user_id)
        )
        return {
            user_id: (replied_count or 0) / received
            for user_id, received, replied_count in result.all()
            if received
        }
