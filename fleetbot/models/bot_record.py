"""Durable record of a game bot"""

from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field

BOT_STATUS_STOPPED = "stopped"
BOT_STATUS_RUNNING = "running"
BOT_STATUS_ERROR = "error"

BOT_STATUSES = (BOT_STATUS_STOPPED, BOT_STATUS_RUNNING, BOT_STATUS_ERROR)


class BotRecord(SQLModel, table=True):
    """A game bot owned by a user"""

    __tablename__ = "bots"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(foreign_key="users.id", index=True)
    name: str = Field(description="In-game username")
    host: str
    port: int
    edition: str = Field(index=True)  # 'java', 'bedrock'
    version: str = Field(description="Game version, e.g. '1.20.4'")
    status: str = Field(default=BOT_STATUS_STOPPED, index=True)  # 'stopped', 'running', 'error'
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def snapshot(self) -> "BotRecord":
        """Detached copy safe to hand to a running instance"""
        return BotRecord.model_validate(self.model_dump())
