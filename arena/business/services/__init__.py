from .auth_dependency import TokenFromHeader, get_current_user
from .auth_util import create_access_token, decode_token
from .judge_client import CodeforcesClient, get_judge_client
from .match_lifecycle import MatchLifecycleManager, get_match_lifecycle
from .queue_matcher import QueueMatcher, get_queue_matcher
from .rating import RatingService
from .scheduler import ArenaScheduler, get_scheduler, run_scheduler

__all__ = [
    "TokenFromHeader",
    "get_current_user",
    "create_access_token",
    "decode_token",
    "CodeforcesClient",
    "get_judge_client",
    "MatchLifecycleManager",
    "get_match_lifecycle",
    "QueueMatcher",
    "get_queue_matcher",
    "RatingService",
    "ArenaScheduler",
    "get_scheduler",
    "run_scheduler",
]
