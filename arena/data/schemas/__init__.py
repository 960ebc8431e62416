from .auth import TokenUser
from .base import BaseModel
from .engine import EngineRequest
from .enums import LobbyMode, MatchStatus, UserRole
from .match import (
    LobbyCreateRequest,
    Match,
    MatchDetailResponse,
    MatchPlayer,
    MatchPlayerResponse,
    MatchProblem,
    MatchProblemResponse,
    MatchResponse,
    MatchSubmission,
)
from .problem import BlacklistedProblem, CatalogProblem, JudgeSubmission, make_problem_ref
from .profile import Profile
from .queue import QueueEntry, QueueEntryResponse, QueueJoinRequest

__all__ = [
    "TokenUser",
    "BaseModel",
    "EngineRequest",
    "LobbyMode",
    "MatchStatus",
    "UserRole",
    "LobbyCreateRequest",
    "Match",
    "MatchDetailResponse",
    "MatchPlayer",
    "MatchPlayerResponse",
    "MatchProblem",
    "MatchProblemResponse",
    "MatchResponse",
    "MatchSubmission",
    "BlacklistedProblem",
    "CatalogProblem",
    "JudgeSubmission",
    "make_problem_ref",
    "Profile",
    "QueueEntry",
    "QueueEntryResponse",
    "QueueJoinRequest",
]
