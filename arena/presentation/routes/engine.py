from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arena.business.services.auth_dependency import get_current_user
from arena.business.services.match_lifecycle import (
    MatchLifecycleManager,
    get_match_lifecycle,
)
from arena.business.services.queue_matcher import QueueMatcher, get_queue_matcher
from arena.config import logger
from arena.data.repositories import (
    get_active_match_for_user,
    get_queue_entry_by_user,
    get_session,
    get_session_factory,
)
from arena.data.schemas import (
    EngineRequest,
    MatchResponse,
    TokenUser,
)
from arena.errors import (
    AppException,
    AuthorizationException,
    BadRequestException,
    DatabaseException,
)

engine_logger = logger.getChild("engine")

router = APIRouter(tags=["engine"])

ACTIONS = ("matchmake", "poll")
NO_ACTIVE_MATCHES = "No active matches"


async def read_engine_request(request: Request) -> EngineRequest:
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        raise BadRequestException(detail="Request body must be a JSON object")
    action = payload.get("action")
    if action is not None and not isinstance(action, str):
        raise BadRequestException(detail="Action must be a string")
    return EngineRequest(action=action)


@router.post("/arena-engine")
async def arena_engine(
    request: Request,
    current_user: TokenUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    matcher: QueueMatcher = Depends(get_queue_matcher),
    lifecycle: MatchLifecycleManager = Depends(get_match_lifecycle),
):
    """
    Engine RPC: ``{"action": "matchmake"}`` runs one matching pass,
    ``{"action": "poll"}`` advances every active match.

    Admins may run either action. Other callers must be queued to matchmake
    and must be playing an active match to poll.
    """
    body = await read_engine_request(request)
    if body.action not in ACTIONS:
        engine_logger.warning(f"Unknown engine action {body.action!r} from {current_user.id}")
        raise BadRequestException(detail=f"Unknown action: {body.action}")

    try:
        if not current_user.is_admin:
            if body.action == "matchmake":
                allowed = await get_queue_entry_by_user(db, current_user.id) is not None
            else:
                allowed = await get_active_match_for_user(db, current_user.id) is not None
            if not allowed:
                raise AuthorizationException(
                    detail=f"Not allowed to trigger {body.action}"
                )

        engine_logger.info(f"Engine action {body.action} requested by {current_user.id}")
        if body.action == "matchmake":
            result = await matcher.matchmake(db)
            if result.match is not None:
                return {
                    "match": MatchResponse.model_validate(result.match).model_dump(mode="json")
                }
            return {"message": result.message}

        # The request session is not used by the poll pass
        await db.close()
        outcome = await lifecycle.poll(session_factory)
        if outcome.match_count == 0:
            return {"message": NO_ACTIVE_MATCHES}
        response = {"results": outcome.results}
        if outcome.partial:
            response["partial"] = True
        return response
    except AppException:
        raise
    except Exception as e:
        engine_logger.error(f"Unexpected error during {body.action}: {str(e)}", exc_info=True)
        raise DatabaseException(
            detail="An unexpected error occurred. Please try again later."
        )
