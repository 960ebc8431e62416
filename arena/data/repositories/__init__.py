from .database import get_session, get_session_factory, init_db
from .match_repository import (
    activate_match,
    add_match_submission,
    claim_match_finish,
    get_active_match_for_user,
    get_active_matches,
    get_match_by_challenge_code,
    get_match_by_id,
    get_match_players,
    get_match_problems,
    get_match_submissions,
    get_unfinished_match_for_user,
    stamp_player_solved_at,
)
from .problem import get_blacklisted_refs
from .profile import get_profile_by_id, get_profiles_by_ids, lock_profiles
from .queue_repository import (
    create_queue_entry,
    delete_queue_entries,
    get_queue_entries,
    get_queue_entry_by_user,
    remove_queue_entry_by_user,
)
from .redis import RedisClient, get_redis_client, redis_client

__all__ = [
    "get_session",
    "get_session_factory",
    "init_db",
    "activate_match",
    "add_match_submission",
    "claim_match_finish",
    "get_active_match_for_user",
    "get_active_matches",
    "get_match_by_challenge_code",
    "get_match_by_id",
    "get_match_players",
    "get_match_problems",
    "get_match_submissions",
    "get_unfinished_match_for_user",
    "stamp_player_solved_at",
    "get_blacklisted_refs",
    "get_profile_by_id",
    "get_profiles_by_ids",
    "lock_profiles",
    "create_queue_entry",
    "delete_queue_entries",
    "get_queue_entries",
    "get_queue_entry_by_user",
    "remove_queue_entry_by_user",
    "RedisClient",
    "get_redis_client",
    "redis_client",
]
