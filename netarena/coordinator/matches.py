"""Match lifecycle management.

A match evaluates a candidate network against the current best network of
a training run. Match games are allocated one at a time to workers and
filled in exactly once when the worker reports back.

Deciding when a match has enough games is not made here: a completion
policy can be plugged in, and without one a match stays open until an
operator marks it done.
"""

import json
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .store import RedisStore, Match, MatchGame, RESULT_WIN, RESULT_LOSS, RESULT_DRAW, VALID_RESULTS
from ..errors import InvalidState, NotFound, ValidationError
from ..metrics import NetArenaMetrics, get_metrics


@dataclass
class MatchSummary:
    """Aggregated results of one match, relative to the candidate."""
    match_id: int
    wins: int = 0
    losses: int = 0
    draws: int = 0
    pending: int = 0

    @property
    def games_played(self) -> int:
        return self.wins + self.losses + self.draws

    @property
    def score(self) -> float:
        """Candidate score in [0, 1] (draws count half)."""
        if self.games_played == 0:
            return 0.0
        return (self.wins + 0.5 * self.draws) / self.games_played

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['games_played'] = self.games_played
        data['score'] = self.score
        return data


CompletionPolicy = Callable[[MatchSummary], bool]


def games_played_policy(num_games: int) -> CompletionPolicy:
    """Completion policy: done once num_games results are in."""
    def policy(summary: MatchSummary) -> bool:
        return summary.games_played >= num_games
    return policy


def encode_parameters(params: Union[str, Sequence[str], None]) -> str:
    """Serialized (JSON list) form of match parameters.

    A string is validated and returned as given; a sequence is dumped.

    Raises:
        ValidationError: If params is not a list of strings.
    """
    if params is None:
        return json.dumps([])
    if params == "":
        return params
    if isinstance(params, str):
        try:
            decoded = json.loads(params)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Match parameters are not valid JSON: {e}") from e
    else:
        decoded = list(params)
    if not isinstance(decoded, list) or not all(isinstance(p, str) for p in decoded):
        raise ValidationError("Match parameters must be a list of strings")
    return params if isinstance(params, str) else json.dumps(decoded)


class MatchLifecycleManager:
    """Creates matches, allocates match games and records their results."""

    def __init__(
        self,
        store: RedisStore,
        completion_policy: Optional[CompletionPolicy] = None,
        metrics: Optional[NetArenaMetrics] = None,
    ):
        self.store = store
        self.completion_policy = completion_policy
        self.metrics = metrics or get_metrics()

    def create_match(
        self,
        training_run_id: int,
        candidate_network_id: int,
        current_best_network_id: int,
        params: Union[str, Sequence[str], None] = None,
    ) -> Match:
        """Create an open match.

        Raises:
            NotFound: Unknown run or network.
            ValidationError: Malformed parameters.
        """
        if self.store.get_training_run(training_run_id) is None:
            raise NotFound(f"training run {training_run_id} not found")
        for network_id in (candidate_network_id, current_best_network_id):
            if self.store.get_network(network_id) is None:
                raise NotFound(f"network {network_id} not found")

        match = self.store.create_match(
            training_run_id=training_run_id,
            candidate_id=candidate_network_id,
            current_best_id=current_best_network_id,
            parameters=encode_parameters(params),
        )
        print(
            f"Coordinator: Created match {match.id} "
            f"(candidate {candidate_network_id} vs best {current_best_network_id})"
        )
        return match

    def allocate_game(self, match_id: int, user_id: Optional[int] = None) -> Tuple[MatchGame, int]:
        """Allocate a new pending game of an open match.

        Raises:
            NotFound: Unknown match.
            InvalidState: Match is done.
        """
        return self.store.allocate_match_game(match_id, user_id)

    def record_match_game_result(self, match_game_id: int, result: int, pgn: str) -> MatchGame:
        """Store a reported result and transcript.

        Raises:
            ValidationError: Result outside {-1, 0, 1}.
            NotFound: Unknown match game.
            InvalidState: Result already reported.
        """
        if result not in VALID_RESULTS:
            raise ValidationError(f"Invalid match result {result}")

        game = self.store.record_match_game_result(match_game_id, result, pgn)
        outcome = {RESULT_WIN: 'win', RESULT_LOSS: 'loss', RESULT_DRAW: 'draw'}[result]
        self.metrics.match_results.labels(outcome=outcome).inc()

        if self.completion_policy is not None:
            self._apply_completion_policy(game.match_id)
        return game

    def _apply_completion_policy(self, match_id: int) -> None:
        summary = self.match_summary(match_id)
        if not self.completion_policy(summary):
            return
        try:
            self.set_match_done(match_id)
        except InvalidState:
            pass  # Another reporter completed it first

    def set_match_done(self, match_id: int) -> Match:
        """Mark a match done; no further games are allocated for it.

        Raises:
            NotFound: Unknown match.
            InvalidState: Match already done.
        """
        match = self.store.set_match_done(match_id)
        summary = self.match_summary(match_id)
        print(
            f"Coordinator: Match {match_id} done: "
            f"+{summary.wins} ={summary.draws} -{summary.losses} "
            f"({summary.pending} pending)"
        )
        return match

    def match_summary(self, match_id: int) -> MatchSummary:
        """Aggregate the results of a match.

        Raises:
            NotFound: Unknown match.
        """
        if self.store.get_match(match_id) is None:
            raise NotFound(f"match {match_id} not found")
        summary = MatchSummary(match_id=match_id)
        for game in self.store.list_match_games(match_id):
            if not game.done:
                summary.pending += 1
            elif game.result == RESULT_WIN:
                summary.wins += 1
            elif game.result == RESULT_LOSS:
                summary.losses += 1
            else:
                summary.draws += 1
        return summary

    def list_matches(self, training_run_id: Optional[int] = None) -> List[Match]:
        return self.store.list_matches(training_run_id)
