"""Work assignment.

For every worker request the dispatcher decides between self-play (train)
work and evaluation (match) work:

1. Workers older than the minimum protocol version always get train work
   with default parameters; they cannot play matches.
2. Otherwise the worker is authenticated and, if the active training run
   has an open match, a new match game is allocated for it.
3. With no open match, train work is handed out with the run's training
   parameters.

Concurrent requests may each allocate a game for the same match; the
number of outstanding games per match is not capped.
"""

from typing import Optional

from .auth import Authenticator
from .matches import MatchLifecycleManager
from .store import RedisStore, TrainingRun
from ..errors import InvalidState, NotFound
from ..metrics import NetArenaMetrics, get_metrics
from ..schemas import MatchAssignment, TrainAssignment, WorkAssignment

MIN_MATCH_VERSION = 2


class WorkDispatcher:
    """Decides what each requesting worker should do next."""

    def __init__(
        self,
        store: RedisStore,
        matches: MatchLifecycleManager,
        auth: Authenticator,
        min_match_version: int = MIN_MATCH_VERSION,
        metrics: Optional[NetArenaMetrics] = None,
    ):
        self.store = store
        self.matches = matches
        self.auth = auth
        self.min_match_version = min_match_version
        self.metrics = metrics or get_metrics()

    def next_work(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        version: Optional[int] = None,
    ) -> WorkAssignment:
        """Pick the next work item for a worker.

        Args:
            username: Worker identity (may be absent for legacy workers).
            password: Worker credential.
            version: Worker protocol version (None for legacy workers).

        Returns:
            TrainAssignment or MatchAssignment.

        Raises:
            NotFound: No active training run, or it has no best network.
            AuthFailure: Bad identity or credential (compatible workers only).
        """
        run = self.store.get_active_training_run()
        if run is None:
            raise NotFound("No active training run")

        if version is None or version < self.min_match_version:
            return self._train(run, params="")

        user = self.auth.authenticate(username, password, version)

        for match in self.store.get_open_matches(run.id):
            try:
                game, _ = self.matches.allocate_game(match.id, user.id)
            except InvalidState:
                continue  # Marked done since we listed it

            best = self.store.get_network(match.current_best_id)
            candidate = self.store.get_network(match.candidate_id)
            if best is None or candidate is None:
                raise NotFound(f"match {match.id} references a missing network")

            self.metrics.work_assigned.labels(work_type='match').inc()
            return MatchAssignment(
                match_game_id=game.id,
                sha=best.sha,
                candidate_sha=candidate.sha,
                params=match.parameters,
                flip=game.flip,
            )

        return self._train(run, params=run.train_parameters)

    def _train(self, run: TrainingRun, params: str) -> TrainAssignment:
        network = self.store.get_network(run.best_network_id) if run.best_network_id else None
        if network is None:
            raise NotFound(f"training run {run.id} has no best network")

        self.metrics.work_assigned.labels(work_type='train').inc()
        return TrainAssignment(
            training_id=run.id,
            network_id=network.id,
            sha=network.sha,
            params=params,
        )
