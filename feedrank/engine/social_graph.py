"""
Social graph lookups consumed by the ranking engine.

The engine only needs two questions answered — "does X follow Y?" for reach
attribution and "whose posts belong in my Following feed?" — so it depends on
the small `SocialGraph` protocol. `SqlSocialGraph` answers them from the
`follows` table.
"""
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.models import Follow


class SocialGraph(Protocol):
    async def is_follower(self, followee_id: str, follower_id: str) -> bool: ...

    async def friend_ids(self, user_id: str) -> list[str]: ...

    async def follower_ids(self, user_id: str) -> list[str]: ...


class SqlSocialGraph:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def is_follower(self, followee_id: str, follower_id: str) -> bool:
        result = await self._session.execute(
            select(Follow.follower_id).where(
                Follow.followee_id == followee_id,
                Follow.follower_id == follower_id,
            )
        )
        return result.first() is not None

    async def friend_ids(self, user_id: str) -> list[str]:
        """Accounts `user_id` follows."""
        result = await self._session.execute(
            select(Follow.followee_id).where(Follow.follower_id == user_id)
        )
        return list(result.scalars().all())

    async def follower_ids(self, user_id: str) -> list[str]:
        result = await self._session.execute(
            select(Follow.follower_id).where(Follow.followee_id == user_id)
        )
        return list(result.scalars().all())
