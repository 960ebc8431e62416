from datetime import datetime
from typing import List

from pydantic import UUID4, model_validator
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from arena.data.schemas.base import BaseModel


class QueueEntry(BaseModel, table=True):
    """A player waiting for a quick match. At most one row per user."""

    __tablename__ = "queue"

    user_id: UUID4 = Field(nullable=False, unique=True, index=True)
    rating_min: int
    rating_max: int
    duration: int = Field(description="Match duration in seconds.")
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))


class QueueJoinRequest(SQLModel):
    rating_min: int = Field(default=800, ge=0)
    rating_max: int = Field(default=1600, ge=0)
    duration: int = Field(default=900, gt=0)
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_band(self):
        if self.rating_min > self.rating_max:
            raise ValueError("rating_min must not exceed rating_max")
        return self


class QueueEntryResponse(SQLModel):
    id: UUID4
    user_id: UUID4
    rating_min: int
    rating_max: int
    duration: int
    tags: List[str]
    created_at: datetime

    model_config = {"from_attributes": True}
