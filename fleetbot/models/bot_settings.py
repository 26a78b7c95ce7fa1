"""Runtime-editable fleet settings"""

from datetime import datetime
from sqlmodel import SQLModel, Field


class BotSettings(SQLModel, table=True):
    """One JSON-encoded setting, e.g. max_bots_per_user = 3"""

    __tablename__ = "botsettings"

    id: str = Field(primary_key=True)
    key: str = Field(unique=True, index=True)
    value: str
    value_type: str  # 'int', 'float', 'bool', 'str'
    description: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
