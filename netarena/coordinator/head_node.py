"""Coordinator for distributed network training.

The Coordinator wires together the components that run on the head node:
- Work Dispatcher (train vs match work per worker request)
- Match Lifecycle Manager (matches, match games, results)
- Network Artifact Store (content-addressed weights, training uploads)

It exposes the logical request surface (next_game, upload_network,
get_network, upload_game, match_result) through handle(), which turns every
request error into an error response instead of raising. All state lives in
Redis, so any number of coordinator instances may serve the same cluster.
"""

import time
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import redis

from .artifacts import NetworkArtifactStore
from .auth import Authenticator
from .blobs import BlobStore, create_blob_store
from .dispatcher import WorkDispatcher
from .matches import CompletionPolicy, MatchLifecycleManager
from .store import RedisStore, Match, Network, TrainingRun, create_store
from ..config import NetArenaConfig
from ..errors import CoordinatorError, StorageError, ValidationError
from ..metrics import NetArenaMetrics, get_metrics
from ..utils import install_shutdown_handler
from ..schemas import (
    GetNetworkRequest,
    MatchResultRequest,
    NextGameRequest,
    UploadGameRequest,
    UploadNetworkRequest,
)


class Coordinator:
    """Central coordinator for training runs, networks and matches.

    Example usage:
        >>> coordinator = Coordinator(config)
        >>> coordinator.handle('next_game', {'user': 'alice', 'password': 'pw', 'version': 2})
        {'type': 'train', 'trainingId': 1, 'networkId': 1, 'sha': '...', 'params': ''}
        >>> coordinator.start()  # Blocks, runs status loop
    """

    def __init__(
        self,
        config: Optional[NetArenaConfig] = None,
        store: Optional[RedisStore] = None,
        blobs: Optional[BlobStore] = None,
        completion_policy: Optional[CompletionPolicy] = None,
        metrics: Optional[NetArenaMetrics] = None,
    ):
        """Initialize the coordinator.

        Args:
            config: Configuration; defaults are used when None.
            store: Row store. Built from config.redis when None.
            blobs: Blob store. Built from config.storage when None.
            completion_policy: Optional hook deciding when a match is done.
            metrics: Metrics container; the global one when None.
        """
        self.config = config or NetArenaConfig()
        self.metrics = metrics or get_metrics()

        self.store = store or create_store(self.config.redis)
        if not self.store.is_open:
            self.store.open()

        self.blobs = blobs or create_blob_store(self.config.storage, self.store.redis, self.store.prefix)

        self.auth = Authenticator(self.store)
        self.matches = MatchLifecycleManager(self.store, completion_policy, self.metrics)
        self.artifacts = NetworkArtifactStore(self.store, self.blobs, self.auth, self.metrics)
        self.dispatcher = WorkDispatcher(
            self.store,
            self.matches,
            self.auth,
            min_match_version=self.config.coordinator.min_match_version,
            metrics=self.metrics,
        )

        # Configuration
        self.status_interval = self.config.coordinator.status_interval

        # Runtime state
        self.running = False
        self.start_time = time.time()
        self._status_thread: Optional[threading.Thread] = None

        self._endpoints: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            'next_game': self.next_game,
            'upload_network': self.upload_network,
            'get_network': self.get_network,
            'upload_game': self.upload_game,
            'match_result': self.match_result,
        }

    # =========================================================================
    # Request Surface
    # =========================================================================

    def handle(self, endpoint: str, payload: Optional[Dict[str, Any]] = None) -> Union[Dict[str, Any], bytes]:
        """Serve one request; errors become error responses.

        Args:
            endpoint: One of next_game, upload_network, get_network,
                upload_game, match_result.
            payload: Request fields.

        Returns:
            Response dict (or raw bytes for get_network).
        """
        try:
            handler = self._endpoints.get(endpoint)
            if handler is None:
                raise ValidationError(f"Unknown endpoint: {endpoint}")
            return handler(payload or {})
        except CoordinatorError as e:
            return self._error_response(endpoint, e)
        except redis.RedisError as e:
            return self._error_response(endpoint, StorageError(f"Storage failure: {e}"))

    def _error_response(self, endpoint: str, error: CoordinatorError) -> Dict[str, Any]:
        self.metrics.request_errors.labels(endpoint=endpoint, error=error.error_type).inc()
        print(f"Coordinator: {endpoint} failed ({error.error_type}): {error}")
        return error.to_response()

    def next_game(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Hand out the next work item."""
        request = NextGameRequest.from_dict(payload)
        assignment = self.dispatcher.next_work(request.user, request.password, request.version)
        return assignment.to_dict()

    def upload_network(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Store uploaded network weights."""
        request = UploadNetworkRequest.from_dict(payload)
        network = self.artifacts.upload(
            request.training_id,
            request.file,
            layers=request.layers,
            filters=request.filters,
            promote=request.promote,
        )
        return {'status': 'ok', 'networkId': network.id, 'sha': network.sha}

    def get_network(self, payload: Dict[str, Any]) -> bytes:
        """Return gzip-compressed network weights."""
        request = GetNetworkRequest.from_dict(payload)
        return self.artifacts.download(request.sha)

    def upload_game(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Store an uploaded training game."""
        request = UploadGameRequest.from_dict(payload)
        game = self.artifacts.record_game_upload(
            network_id=request.network_id,
            training_run_id=request.training_id,
            game_blob=request.file,
            pgn=request.pgn,
            username=request.user,
            password=request.password,
            version=request.version,
        )
        return {'status': 'ok', 'trainingGameId': game.id}

    def match_result(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Record the result of one match game."""
        request = MatchResultRequest.from_dict(payload)
        self.auth.authenticate(request.user, request.password, request.version)
        game = self.matches.record_match_game_result(request.match_game_id, request.result, request.pgn)
        return {'status': 'ok', 'matchGameId': game.id}

    # =========================================================================
    # Administration
    # =========================================================================

    def create_training_run(
        self,
        description: str,
        best_network_id: Optional[int] = None,
        active: bool = True,
        train_parameters: str = "",
    ) -> TrainingRun:
        """Create a training run (active by default)."""
        run = self.store.create_training_run(description, best_network_id, active, train_parameters)
        print(f"Coordinator: Created training run {run.id}: {description}")
        return run

    def promote_network(self, training_run_id: int, network_id: int) -> TrainingRun:
        """Make network_id the best network of a run."""
        run = self.store.set_best_network(training_run_id, network_id)
        print(f"Coordinator: Network {network_id} promoted in training run {training_run_id}")
        return run

    def create_match(
        self,
        candidate_network_id: int,
        params: Union[str, Sequence[str], None] = None,
        training_run_id: Optional[int] = None,
    ) -> Match:
        """Create a match of a candidate against the run's best network.

        Args:
            candidate_network_id: Network to evaluate.
            params: Engine arguments for both sides.
            training_run_id: Run to use; the active run when None.
        """
        run = self.store.get_training_run(training_run_id) if training_run_id else self.store.get_active_training_run()
        if run is None or run.best_network_id is None:
            raise ValidationError("Match needs a training run with a best network")
        return self.matches.create_match(run.id, candidate_network_id, run.best_network_id, params)

    def set_match_done(self, match_id: int) -> Match:
        return self.matches.set_match_done(match_id)

    def list_networks(self) -> List[Network]:
        return self.store.list_networks()

    # =========================================================================
    # Status and Monitoring
    # =========================================================================

    def get_cluster_status(self) -> Dict[str, Any]:
        """Get current cluster status."""
        status = self.store.get_status().to_dict()
        status['uptime_seconds'] = time.time() - self.start_time
        return status

    def print_status(self) -> None:
        """Print current cluster status to stdout."""
        status = self.get_cluster_status()
        self.metrics.open_matches.set(len(status['open_matches']))
        best = status['best_network_sha']
        print(
            f"Status: run {status['active_run_id']}, "
            f"best {best[:12] if best else None}, "
            f"networks: {status['networks']}, "
            f"open matches: {status['open_matches']}, "
            f"training games: {status['training_games']}, "
            f"match games: {status['match_games']}"
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, blocking: bool = True) -> None:
        """Start the coordinator status loop.

        Args:
            blocking: If True, blocks and runs status loop. If False, returns immediately.
        """
        self.running = True
        self.start_time = time.time()

        print("Coordinator started")

        if blocking:
            install_shutdown_handler(self.stop)
            self._run_status_loop()
        else:
            self._status_thread = threading.Thread(target=self._run_status_loop)
            self._status_thread.daemon = True
            self._status_thread.start()

    def stop(self) -> None:
        """Stop the coordinator gracefully and close the store."""
        print("\nCoordinator stopping...")
        self.running = False

        if self._status_thread and self._status_thread.is_alive():
            self._status_thread.join(timeout=5)

        self.store.close()
        print("Coordinator stopped")

    def _run_status_loop(self) -> None:
        """Main loop that prints status."""
        while self.running:
            try:
                self.print_status()
            except redis.RedisError as e:
                print(f"Error in status loop: {e}")

            # Sleep in small increments to allow quick shutdown
            deadline = time.time() + self.status_interval
            while self.running and time.time() < deadline:
                time.sleep(min(1.0, max(0.0, deadline - time.time())))


def create_coordinator(config: Optional[NetArenaConfig] = None, **kwargs) -> Coordinator:
    """Create a new coordinator instance.

    Args:
        config: Coordinator configuration.

    Returns:
        Coordinator instance.
    """
    return Coordinator(config, **kwargs)

