from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import UUID4, model_validator
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from arena.data.schemas.base import BaseModel
from arena.data.schemas.enums import LobbyMode, MatchStatus


class Match(BaseModel, table=True):
    __tablename__ = "matches"

    status: MatchStatus = Field(default=MatchStatus.WAITING, index=True)
    lobby_mode: LobbyMode = Field(default=LobbyMode.ONE_VS_ONE)
    max_players: int = Field(default=2)
    team_size: Optional[int] = Field(default=None, nullable=True)
    problem_count: int = Field(default=1)
    challenge_code: Optional[str] = Field(default=None, nullable=True, unique=True)

    player1_id: UUID4 = Field(nullable=False, index=True)
    player2_id: Optional[UUID4] = Field(default=None, nullable=True, index=True)

    # First (or only) problem of the match
    contest_id: Optional[int] = Field(default=None, nullable=True)
    problem_index: Optional[str] = Field(default=None, nullable=True)
    problem_name: Optional[str] = Field(default=None, nullable=True)
    problem_rating: Optional[int] = Field(default=None, nullable=True)

    start_time: Optional[datetime] = Field(default=None, nullable=True)
    duration: int = Field(default=900, description="Match duration in seconds.")
    finished_at: Optional[datetime] = Field(default=None, nullable=True)

    winner_id: Optional[UUID4] = Field(default=None, nullable=True)
    winner_team: Optional[int] = Field(default=None, nullable=True)
    player1_rating_change: Optional[int] = Field(default=None, nullable=True)
    player2_rating_change: Optional[int] = Field(default=None, nullable=True)
    player1_solved_at: Optional[datetime] = Field(default=None, nullable=True)
    player2_solved_at: Optional[datetime] = Field(default=None, nullable=True)
    draw_offered_by: Optional[UUID4] = Field(default=None, nullable=True)
    resigned_by: Optional[UUID4] = Field(default=None, nullable=True)

    @property
    def is_classic(self) -> bool:
        return self.lobby_mode == LobbyMode.ONE_VS_ONE

    @property
    def end_time(self) -> Optional[datetime]:
        if self.start_time is None:
            return None
        return self.start_time + timedelta(seconds=self.duration)


class MatchPlayer(BaseModel, table=True):
    """One participant of an ffa or team lobby."""

    __tablename__ = "match_players"
    __table_args__ = (UniqueConstraint("match_id", "player_id"),)

    match_id: UUID4 = Field(foreign_key="matches.id", index=True)
    player_id: UUID4 = Field(nullable=False)
    team: Optional[int] = Field(default=None, nullable=True)
    solved_count: int = Field(default=0)
    rating_change: Optional[int] = Field(default=None, nullable=True)
    joined_at: datetime = Field(default_factory=datetime.utcnow)


class MatchProblem(BaseModel, table=True):
    __tablename__ = "match_problems"
    __table_args__ = (UniqueConstraint("match_id", "problem_order"),)

    match_id: UUID4 = Field(foreign_key="matches.id", index=True)
    problem_order: int
    contest_id: int
    problem_index: str
    problem_name: str = ""
    rating: Optional[int] = Field(default=None, nullable=True)

    @property
    def problem_ref(self) -> str:
        return f"{self.contest_id}{self.problem_index}"


class MatchSubmission(BaseModel, table=True):
    """Append-only evidence that a participant solved one problem of a match."""

    __tablename__ = "match_submissions"
    __table_args__ = (UniqueConstraint("match_id", "player_id", "problem_order"),)

    match_id: UUID4 = Field(foreign_key="matches.id", index=True)
    player_id: UUID4 = Field(nullable=False)
    problem_order: int
    solved_at: datetime


class LobbyCreateRequest(SQLModel):
    lobby_mode: LobbyMode = LobbyMode.ONE_VS_ONE
    max_players: Optional[int] = Field(default=None, ge=2, le=16)
    team_size: Optional[int] = Field(default=None, ge=1, le=8)
    problem_count: int = Field(default=1, ge=1, le=10)
    rating_min: int = Field(default=800, ge=0)
    rating_max: int = Field(default=1600, ge=0)
    duration: int = Field(default=900, gt=0)
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_lobby(self):
        if self.rating_min > self.rating_max:
            raise ValueError("rating_min must not exceed rating_max")
        if self.lobby_mode == LobbyMode.TEAM and not self.team_size:
            raise ValueError("team_size is required for team lobbies")
        return self


class MatchProblemResponse(SQLModel):
    problem_order: int
    contest_id: int
    problem_index: str
    problem_name: str
    rating: Optional[int] = None

    model_config = {"from_attributes": True}


class MatchPlayerResponse(SQLModel):
    player_id: UUID4
    team: Optional[int] = None
    solved_count: int
    rating_change: Optional[int] = None
    joined_at: datetime

    model_config = {"from_attributes": True}


class MatchResponse(SQLModel):
    id: UUID4
    status: MatchStatus
    lobby_mode: LobbyMode
    max_players: int
    team_size: Optional[int] = None
    problem_count: int
    challenge_code: Optional[str] = None
    player1_id: UUID4
    player2_id: Optional[UUID4] = None
    contest_id: Optional[int] = None
    problem_index: Optional[str] = None
    problem_name: Optional[str] = None
    problem_rating: Optional[int] = None
    start_time: Optional[datetime] = None
    duration: int
    finished_at: Optional[datetime] = None
    winner_id: Optional[UUID4] = None
    winner_team: Optional[int] = None
    player1_rating_change: Optional[int] = None
    player2_rating_change: Optional[int] = None
    player1_solved_at: Optional[datetime] = None
    player2_solved_at: Optional[datetime] = None
    draw_offered_by: Optional[UUID4] = None
    resigned_by: Optional[UUID4] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MatchDetailResponse(MatchResponse):
    problems: List[MatchProblemResponse] = []
    players: List[MatchPlayerResponse] = []
