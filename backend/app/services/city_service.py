from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import get_logger
from app.models.city import City

logger = get_logger(__name__)


class CityService:
    """Resolves a city from the identifier in the URL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_by_slug(self, db: AsyncSession, slug: str) -> Optional[City]:
        stmt = select(City).where(City.slug == slug)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_code(self, db: AsyncSession, code: str) -> Optional[City]:
        stmt = select(City).where(City.code == code)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def resolve(self, identifier: str) -> Optional[City]:
        """Look up by slug first, then by the uppercased code ("ploce" -> "PLOCE")."""
        if not identifier:
            return None

        async with self._session_factory() as db:
            city = await self.get_by_slug(db, identifier)
            match_type = "slug"
            if city is None:
                city = await self.get_by_code(db, identifier.upper())
                match_type = "code"

        if city is None:
            logger.warning(f"City not found: {identifier}")
            return None

        logger.info(f"City resolved: {identifier} -> {city.code} (by {match_type})")
        return city
