from pydantic import UUID4
from sqlmodel import SQLModel

from arena.data.schemas.enums import UserRole


class TokenUser(SQLModel):
    """The caller, as carried in the ``user`` claim of an access token."""

    id: UUID4
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.SUPER_ADMIN)
