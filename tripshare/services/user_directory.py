"""
User directory - invitee lookup against the local account projection
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripshare.core.db import utcnow
from tripshare.core.exceptions import StoreUnavailableError
from tripshare.models.user import User

logger = logging.getLogger(__name__)


class UserDirectory:
    """Answers whether a user id belongs to an active account"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def exists(self, user_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(User.id).where(User.id == user_id, User.is_active.is_(True))
                )
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            logger.error(f"User lookup failed: {e}", exc_info=True, extra={"user_id": user_id})
            raise StoreUnavailableError("user_exists", {"user_id": user_id}) from e

    async def register(
        self,
        user_id: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> User:
        """
        Create or refresh an account row

        Args:
            user_id: Identity provider subject
            email: Contact address (optional)
            display_name: Name shown to collaborators (optional)

        Returns:
            The stored user
        """
        try:
            async with self._session_factory() as session:
                user = await session.get(User, user_id)
                if user is None:
                    user = User(id=user_id, created_at=utcnow())
                    session.add(user)
                user.email = email
                user.display_name = display_name
                user.is_active = True
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"User registration failed: {e}", exc_info=True, extra={"user_id": user_id})
            raise StoreUnavailableError("user_register", {"user_id": user_id}) from e

        logger.info(f"User registered: {user_id}", extra={"user_id": user_id})
        return user
