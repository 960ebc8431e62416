from enum import Enum


class MatchStatus(str, Enum):
    """Match statuses. Transitions only ever go forward: waiting, active, finished."""

    WAITING = "waiting"
    ACTIVE = "active"
    FINISHED = "finished"


class LobbyMode(str, Enum):
    ONE_VS_ONE = "1v1"
    FFA = "ffa"
    TEAM = "team"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
