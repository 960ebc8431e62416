from typing import List, Optional

from pydantic import BaseModel as PydanticBaseModel
from sqlmodel import Field

from arena.data.schemas.base import BaseModel


def make_problem_ref(contest_id: int, index: str) -> str:
    return f"{contest_id}{index}"


class BlacklistedProblem(BaseModel, table=True):
    """A catalog problem that must never be assigned to a match."""

    __tablename__ = "blacklisted_problems"

    contest_id: int
    problem_index: str
    reason: Optional[str] = Field(default=None, nullable=True)
    created_by: Optional[str] = Field(default=None, nullable=True)

    @property
    def problem_ref(self) -> str:
        return make_problem_ref(self.contest_id, self.problem_index)


class CatalogProblem(PydanticBaseModel):
    """A problem from the external judge's problemset."""

    contest_id: int
    index: str
    name: str = ""
    rating: Optional[int] = None
    tags: List[str] = []

    @property
    def problem_ref(self) -> str:
        return make_problem_ref(self.contest_id, self.index)


class JudgeSubmission(PydanticBaseModel):
    """A single submission as reported by the external judge."""

    id: int
    contest_id: Optional[int] = None
    index: str
    verdict: Optional[str] = None
    creation_time_seconds: int

    @property
    def problem_ref(self) -> Optional[str]:
        if self.contest_id is None:
            return None
        return make_problem_ref(self.contest_id, self.index)
