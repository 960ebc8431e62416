from typing import Optional

from sqlmodel import Field

from arena.data.schemas.base import BaseModel


class Profile(BaseModel, table=True):
    """Player profile. Only the rating-related columns are owned by the engine."""

    __tablename__ = "profiles"

    username: str = Field(index=True)
    rating: int = Field(default=1000)
    rank: str = Field(default="Newbie")
    wins: int = Field(default=0)
    losses: int = Field(default=0)
    draws: int = Field(default=0)
    cf_handle: Optional[str] = Field(default=None, nullable=True)

    @property
    def games_played(self) -> int:
        return self.wins + self.losses + self.draws
