from typing import Dict, Sequence

from pydantic import UUID4
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from arena.data.schemas import Profile
from arena.errors import ResourceNotFoundException


async def get_profile_by_id(db: AsyncSession, profile_id: UUID4) -> Profile:
    result = await db.execute(select(Profile).where(Profile.id == profile_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise ResourceNotFoundException(detail="Profile not found")
    return profile


async def get_profiles_by_ids(
    db: AsyncSession, profile_ids: Sequence[UUID4]
) -> Dict[UUID4, Profile]:
    result = await db.execute(select(Profile).where(Profile.id.in_(list(profile_ids))))
    return {profile.id: profile for profile in result.scalars().all()}


async def lock_profiles(
    db: AsyncSession, profile_ids: Sequence[UUID4]
) -> Dict[UUID4, Profile]:
    """
    Load profiles with a row lock held until the surrounding transaction ends.

    Rows are locked in id order so two finalizations sharing a player cannot
    deadlock each other.
    """
    result = await db.execute(
        select(Profile)
        .where(Profile.id.in_(list(profile_ids)))
        .order_by(Profile.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    profiles = {profile.id: profile for profile in result.scalars().all()}
    missing = set(profile_ids) - set(profiles)
    if missing:
        raise ResourceNotFoundException(
            detail=f"Profiles not found: {', '.join(str(m) for m in missing)}"
        )
    return profiles
