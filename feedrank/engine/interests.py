"""
Per-user interest profile.

Each (user, interest_type, interest_value) row carries a weight in [0, 1].
Recording an interaction moves the weight a fraction `strength` of the way
towards 1.0:

    weight ← weight + strength × (1 − weight)

so repeated signals approach 1.0 asymptotically and never overshoot.
Decay is a separate batch job (multiply every weight, prune the tail) that
the scheduler runs daily; the hot interaction path never does decay math.
"""
import logging
from typing import Optional

from sqlalchemy import case, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.database import insert_ignore, utcnow
from feedrank.models import InterestType, UserInterest

logger = logging.getLogger(__name__)

DEFAULT_STRENGTH = 0.1
DEFAULT_DECAY_RATE = 0.95
MIN_WEIGHT = 0.01


def next_weight(weight: float, strength: float = DEFAULT_STRENGTH) -> float:
    return min(1.0, weight + strength * (1.0 - weight))


async def record_interaction(
    session: AsyncSession,
    user_id: str,
    interest_type: InterestType,
    value: str,
    strength: float = DEFAULT_STRENGTH,
) -> None:
    await insert_ignore(
        session,
        UserInterest,
        {
            "user_id": user_id,
            "interest_type": interest_type,
            "interest_value": value,
            "weight": 0.0,
            "interaction_count": 0,
        },
    )
    grown = UserInterest.weight + strength * (1.0 - UserInterest.weight)
    await session.execute(
        update(UserInterest)
        .where(
            UserInterest.user_id == user_id,
            UserInterest.interest_type == interest_type,
            UserInterest.interest_value == value,
        )
        .values(
            weight=case((grown > 1.0, 1.0), else_=grown),
            interaction_count=UserInterest.interaction_count + 1,
            last_interaction_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )


async def decay_weights(
    session: AsyncSession,
    decay_rate: float = DEFAULT_DECAY_RATE,
    min_weight: float = MIN_WEIGHT,
) -> tuple[int, int]:
    """Multiply every weight by decay_rate, then prune weights below min_weight."""
    decayed = await session.execute(
        update(UserInterest)
        .values(weight=UserInterest.weight * decay_rate)
        .execution_options(synchronize_session=False)
    )
    pruned = await session.execute(
        delete(UserInterest)
        .where(UserInterest.weight < min_weight)
        .execution_options(synchronize_session=False)
    )
    logger.info(
        "Interest decay (rate=%.3f): %d decayed, %d pruned",
        decay_rate, decayed.rowcount, pruned.rowcount,
    )
    return decayed.rowcount, pruned.rowcount


async def top_interests(
    session: AsyncSession, user_id: str, limit: int = 20
) -> list[UserInterest]:
    result = await session.execute(
        select(UserInterest)
        .where(UserInterest.user_id == user_id)
        .order_by(UserInterest.weight.desc(), UserInterest.interest_id)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def interests_by_type(
    session: AsyncSession,
    user_id: str,
    interest_type: InterestType,
    limit: int = 10,
) -> list[str]:
    result = await session.execute(
        select(UserInterest.interest_value)
        .where(
            UserInterest.user_id == user_id,
            UserInterest.interest_type == interest_type,
        )
        .order_by(UserInterest.weight.desc(), UserInterest.interest_id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_weight(
    session: AsyncSession, user_id: str, interest_type: InterestType, value: str
) -> Optional[float]:
    result = await session.execute(
        select(UserInterest.weight).where(
            UserInterest.user_id == user_id,
            UserInterest.interest_type == interest_type,
            UserInterest.interest_value == value,
        )
    )
    return result.scalar_one_or_none()
