from typing import Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from arena.data.schemas import BlacklistedProblem


async def get_blacklisted_refs(db: AsyncSession) -> Set[str]:
    """Get the references (``<contest><index>``) of every blacklisted problem."""
    result = await db.execute(select(BlacklistedProblem))
    return {problem.problem_ref for problem in result.scalars().all()}
