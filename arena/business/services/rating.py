"""
Elo Rating System Implementation

This module provides functions for calculating rating changes with the Elo
rating system and for labelling a rating with its rank.

Basic formula:
- Rating Change = K * (Actual Score - Expected Score)
- Expected Score = 1 / (1 + 10^((Opponent Rating - Player Rating) / 400))
- K is chosen by a RatingPolicy (32 by default)

Multi-player lobbies reuse the same formula: a free-for-all player is scored
pairwise against every opponent and the changes are averaged, a team player is
scored against the opposing team's mean rating.
"""

from bisect import bisect_right
from typing import Dict, Hashable, Iterable, Mapping, Protocol, Sequence, Tuple

from arena.config import Config, logger
from arena.data.schemas import Profile

rating_logger = logger.getChild("rating")

# K-factor determines how much ratings can change after a single match
K_FACTOR = 32

WIN, DRAW, LOSS = 1.0, 0.5, 0.0

# Upper bounds (exclusive) of every rank but the last
RANK_BOUNDS = [900, 1100, 1300, 1500, 1700, 1900, 2100]
RANK_LABELS = [
    "Beginner",
    "Newbie",
    "Pupil",
    "Specialist",
    "Expert",
    "Candidate Master",
    "Master",
    "Grandmaster",
]


def calculate_expected_score(player_rating: float, opponent_rating: float) -> float:
    """
    Calculate the expected score for a player against an opponent.

    Args:
        player_rating: The player's current rating
        opponent_rating: The opponent's current rating

    Returns:
        The expected score (between 0 and 1)
    """
    return 1 / (1 + 10 ** ((opponent_rating - player_rating) / 400))


def elo(
    rating_a: float, rating_b: float, score_a: float, k: int = K_FACTOR
) -> Tuple[int, int]:
    """
    Rating changes of both players after one game.

    Args:
        rating_a: Rating of player A
        rating_b: Rating of player B
        score_a: 1 if A won, 0.5 for a draw, 0 if A lost
        k: K-factor shared by both players

    Returns:
        (delta_a, delta_b); the pair always sums to zero
    """
    expected_a = calculate_expected_score(rating_a, rating_b)
    delta_a = round(k * (score_a - expected_a))
    # round() is symmetric around zero, so this equals
    # round(k * ((1 - score_a) - (1 - expected_a))) without float drift.
    return delta_a, -delta_a


def rank_label(rating: int) -> str:
    return RANK_LABELS[bisect_right(RANK_BOUNDS, rating)]


class RatingPolicy(Protocol):
    def k_factor(self, games_played: int) -> int:
        ...


class FixedKPolicy:
    """The same K for everybody."""

    def __init__(self, k: int = K_FACTOR):
        self.k = k

    def k_factor(self, games_played: int) -> int:
        return self.k


class ProvisionalKPolicy:
    """Larger K while a player is still provisional, then the base K."""

    def __init__(
        self,
        schedule: Sequence[Tuple[int, int]] = ((10, 48), (30, 40)),
        base_k: int = K_FACTOR,
    ):
        self.schedule = sorted(schedule)
        self.base_k = base_k

    def k_factor(self, games_played: int) -> int:
        for games_below, k in self.schedule:
            if games_played < games_below:
                return k
        return self.base_k


def get_rating_policy() -> RatingPolicy:
    if Config.RATING_POLICY == "provisional":
        return ProvisionalKPolicy(base_k=Config.K_FACTOR)
    return FixedKPolicy(Config.K_FACTOR)


def match_k_factor(policy: RatingPolicy, profiles: Iterable[Profile]) -> int:
    """One K per match: the largest K any participant is entitled to."""
    return max(policy.k_factor(profile.games_played) for profile in profiles)


def ffa_deltas(
    ratings: Mapping[Hashable, float],
    placements: Mapping[Hashable, int],
    k: int = K_FACTOR,
) -> Dict[Hashable, int]:
    """
    Free-for-all rating changes.

    ``placements`` maps each player to a place (0 is best, equal places tie).
    Each player's change is the mean of their pairwise Elo terms.
    """
    deltas = {}
    for player, rating in ratings.items():
        opponents = [other for other in ratings if other != player]
        if not opponents:
            deltas[player] = 0
            continue
        total = 0.0
        for other in opponents:
            if placements[player] < placements[other]:
                score = WIN
            elif placements[player] == placements[other]:
                score = DRAW
            else:
                score = LOSS
            total += k * (score - calculate_expected_score(rating, ratings[other]))
        deltas[player] = round(total / len(opponents))
    return deltas


def team_deltas(
    ratings: Mapping[Hashable, float],
    teams: Mapping[Hashable, int],
    team_scores: Mapping[int, float],
    k: int = K_FACTOR,
) -> Dict[Hashable, int]:
    """
    Two-team rating changes: every player against the other team's mean rating.

    ``team_scores`` holds 1/0.5/0 per team number.
    """
    members: Dict[int, list] = {}
    for player, team in teams.items():
        members.setdefault(team, []).append(player)

    means = {
        team: sum(ratings[p] for p in players) / len(players)
        for team, players in members.items()
    }
    deltas = {}
    for player, team in teams.items():
        others = [t for t in means if t != team]
        if not others:
            deltas[player] = 0
            continue
        expected = calculate_expected_score(ratings[player], means[others[0]])
        deltas[player] = round(k * (team_scores[team] - expected))
    return deltas


class RatingService:
    @staticmethod
    def apply_result(profile: Profile, delta: int, score: float) -> None:
        """
        Apply a rating change and the matching counter to a (locked) profile.
        """
        old_rating = profile.rating
        profile.rating = old_rating + delta
        profile.rank = rank_label(profile.rating)
        if score == WIN:
            profile.wins += 1
        elif score == LOSS:
            profile.losses += 1
        else:
            profile.draws += 1

        rating_logger.info(
            f"Profile {profile.id}: rating {old_rating} → {profile.rating} "
            f"({delta:+d}), rank {profile.rank}"
        )
