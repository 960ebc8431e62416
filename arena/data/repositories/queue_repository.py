from typing import List, Sequence

from pydantic import UUID4
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from arena.data.schemas import QueueEntry


async def get_queue_entries(db: AsyncSession) -> List[QueueEntry]:
    """Get every queue entry, oldest first."""
    result = await db.execute(select(QueueEntry).order_by(QueueEntry.created_at))
    return list(result.scalars().all())


async def get_queue_entry_by_user(db: AsyncSession, user_id: UUID4) -> QueueEntry | None:
    result = await db.execute(select(QueueEntry).where(QueueEntry.user_id == user_id))
    return result.scalar_one_or_none()


async def create_queue_entry(db: AsyncSession, entry: QueueEntry) -> QueueEntry:
    db.add(entry)
    await db.commit()
    await db.refresh(entry)
    return entry


async def remove_queue_entry_by_user(db: AsyncSession, user_id: UUID4) -> bool:
    result = await db.execute(delete(QueueEntry).where(QueueEntry.user_id == user_id))
    await db.commit()
    return result.rowcount > 0


async def delete_queue_entries(db: AsyncSession, entry_ids: Sequence[UUID4]) -> int:
    """
    Delete the given entries without committing and return how many rows went away.

    Callers compare the count with ``len(entry_ids)`` to detect that another
    pass already consumed one of the entries.
    """
    result = await db.execute(
        delete(QueueEntry)
        .where(QueueEntry.id.in_(list(entry_ids)))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
