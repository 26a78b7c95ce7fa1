"""User service for Telegram users of the fleet"""

from datetime import datetime
from typing import List, Optional
from sqlmodel import select, func

from fleetbot.database import database
from fleetbot.exceptions import PersistenceFailure
from fleetbot.models.user import User
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)


class UserService:
    """Service for registering and looking up users"""

    async def get_or_create_user(self, telegram_id: int, username: Optional[str] = None) -> User:
        """Get a user by Telegram id, creating it on first contact"""
        from fleetbot.config import settings

        try:
            with database.get_session() as session:
                statement = select(User).where(User.telegram_id == telegram_id)
                user = session.exec(statement).first()

                if user:
                    if username and user.username != username:
                        user.username = username
                        user.updated_at = datetime.utcnow()
                        session.add(user)
                        session.commit()
                        session.refresh(user)
                    return user

                user = User(
                    telegram_id=telegram_id,
                    username=username,
                    is_admin=telegram_id in settings.admin_user_ids,
                )
                session.add(user)
                session.commit()
                session.refresh(user)
                logger.info(f"👤 Registered user {telegram_id}")
                return user
        except Exception as e:
            logger.error(f"Failed to get or create user {telegram_id}: {e}")
            raise PersistenceFailure(f"Failed to load user {telegram_id}") from e

    async def get_user(self, user_id: int) -> Optional[User]:
        """Get a user by internal id"""
        with database.get_session() as session:
            return session.get(User, user_id)

    async def get_user_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        with database.get_session() as session:
            statement = select(User).where(User.telegram_id == telegram_id)
            return session.exec(statement).first()

    async def get_all_users(self) -> List[User]:
        """Every registered user, newest first"""
        try:
            with database.get_session() as session:
                return list(session.exec(select(User).order_by(User.created_at.desc(), User.id.desc())).all())
        except Exception as e:
            logger.error(f"Failed to get all users: {e}")
            raise PersistenceFailure("Failed to load users") from e

    async def count_users(self) -> int:
        with database.get_session() as session:
            return session.exec(select(func.count()).select_from(User)).one()


# Global user service instance
user_service = UserService()
