from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from arena.business.services.auth_dependency import get_current_user
from arena.config import logger
from arena.data.repositories import (
    create_queue_entry,
    get_profile_by_id,
    get_queue_entry_by_user,
    get_session,
    get_unfinished_match_for_user,
    remove_queue_entry_by_user,
)
from arena.data.schemas import (
    QueueEntry,
    QueueEntryResponse,
    QueueJoinRequest,
    TokenUser,
)
from arena.errors import (
    BadRequestException,
    ConflictException,
    ResourceNotFoundException,
)

queue_logger = logger.getChild("queue")

router = APIRouter(prefix="/queue", tags=["queue"])


async def require_cf_handle(db: AsyncSession, user_id) -> str:
    profile = await get_profile_by_id(db, user_id)
    if not profile.cf_handle:
        raise BadRequestException(detail="Link a Codeforces handle to your profile first")
    return profile.cf_handle


@router.post("", response_model=QueueEntryResponse, status_code=status.HTTP_201_CREATED)
async def join_queue(
    request_data: QueueJoinRequest,
    db: AsyncSession = Depends(get_session),
    current_user: TokenUser = Depends(get_current_user),
):
    """
    Put the caller into the quick-match queue.
    A player can hold one queue entry and cannot queue while in a match.
    """
    await require_cf_handle(db, current_user.id)

    if await get_unfinished_match_for_user(db, current_user.id):
        raise ConflictException(detail="You already have an active or pending match")
    if await get_queue_entry_by_user(db, current_user.id):
        raise ConflictException(detail="You are already in the queue")

    entry = QueueEntry(
        user_id=current_user.id,
        rating_min=request_data.rating_min,
        rating_max=request_data.rating_max,
        duration=request_data.duration,
        tags=request_data.tags,
    )
    try:
        entry = await create_queue_entry(db, entry)
    except IntegrityError:
        await db.rollback()
        raise ConflictException(detail="You are already in the queue")

    queue_logger.info(
        f"User {current_user.id} queued for {entry.rating_min}-{entry.rating_max}, "
        f"{entry.duration}s, tags {entry.tags}"
    )
    return entry


@router.delete("")
async def leave_queue(
    db: AsyncSession = Depends(get_session),
    current_user: TokenUser = Depends(get_current_user),
):
    if not await remove_queue_entry_by_user(db, current_user.id):
        raise ResourceNotFoundException(detail="You are not in the queue")
    queue_logger.info(f"User {current_user.id} left the queue")
    return {"message": "Left the queue"}
