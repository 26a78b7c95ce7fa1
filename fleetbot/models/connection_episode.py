"""Connection history of game bots"""

from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field
from sqlalchemy import Index


class ConnectionEpisode(SQLModel, table=True):
    """One connected period of a bot, or a standalone error entry"""

    __tablename__ = "connection_episodes"
    __table_args__ = (
        Index("idx_episode_bot_connected", "bot_id", "connected_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    bot_id: int = Field(index=True)
    connected_at: Optional[datetime] = Field(default=None)
    disconnected_at: Optional[datetime] = Field(default=None)
    duration_minutes: Optional[int] = Field(default=None)
    error_message: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
