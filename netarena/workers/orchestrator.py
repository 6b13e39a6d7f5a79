"""Worker orchestrator.

A worker runs an endless cycle against the coordinator:

    IDLE -> REQUESTING_WORK -> FETCHING_ARTIFACTS -> RUNNING -> REPORTING -> IDLE

Train work runs one self-play engine process and uploads the training file
it wrote. Match work runs two engines (baseline and candidate) against each
other and reports the result. Any failure along the way moves the worker to
BACKOFF, where it sleeps with exponential delay plus jitter before asking
for work again. A stop event is checked at every transition, and backoff
sleeps wake up as soon as it is set.
"""

import os
import random
import shutil
import socket
import threading
import time
import traceback
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .client import CoordinatorClient, decode_params
from .engine import EngineProcess
from .match_play import MatchGameResult, MatchGameRunner
from .network_cache import NetworkCache
from ..config import BackoffConfig, NetArenaConfig
from ..errors import EngineProcessError, NetArenaError, ProcessFailure
from ..metrics import NetArenaMetrics, get_metrics
from ..schemas import MatchAssignment, TrainAssignment

TRAINING_FILE = 'training.0.gz'


class WorkerState(Enum):
    IDLE = 'idle'
    REQUESTING_WORK = 'requesting_work'
    FETCHING_ARTIFACTS = 'fetching_artifacts'
    RUNNING = 'running'
    REPORTING = 'reporting'
    BACKOFF = 'backoff'


class WorkerStopped(Exception):
    """The stop event was set in the middle of a cycle."""


@dataclass
class OrchestratorStats:
    """Statistics tracked by the orchestrator."""
    cycles: int = 0
    train_games: int = 0
    match_games: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    total_backoff_seconds: float = 0.0
    start_time: float = 0.0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cycles': self.cycles,
            'train_games': self.train_games,
            'match_games': self.match_games,
            'failures': self.failures,
            'consecutive_failures': self.consecutive_failures,
            'total_backoff_seconds': self.total_backoff_seconds,
            'uptime_seconds': time.time() - self.start_time,
            'last_error': self.last_error,
        }


@dataclass
class TrainOutcome:
    training_file: Path
    pgn: str


def compute_backoff(failures: int, config: BackoffConfig, rng: Optional[random.Random] = None) -> float:
    """Delay before retrying after the given number of consecutive failures.

    The base delay doubles per failure up to max_delay; a uniform random
    jitter in [0, jitter] is added on top.
    """
    rng = rng or random
    exponent = max(0, failures - 1)
    delay = min(config.base_delay * (2 ** exponent), config.max_delay)
    return delay + rng.uniform(0.0, config.jitter)


class WorkerOrchestrator:
    """Drives one worker through request / fetch / run / report cycles.

    Example:
        >>> orchestrator = WorkerOrchestrator(config, client)
        >>> orchestrator.run()  # Blocks until stop() is called
    """

    def __init__(
        self,
        config: NetArenaConfig,
        client: CoordinatorClient,
        worker_id: Optional[str] = None,
        metrics: Optional[NetArenaMetrics] = None,
        stop_event: Optional[threading.Event] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the orchestrator.

        Args:
            config: Configuration (engine, backoff and worker sections are used).
            client: Coordinator client.
            worker_id: Optional unique worker ID. Auto-generated if not provided.
            metrics: Metrics container; the global one when None.
            stop_event: Cancellation signal; a private one when None.
            rng: Random source for backoff jitter.
        """
        self.config = config
        self.client = client
        self.worker_id = worker_id or self._generate_worker_id()
        self.metrics = metrics or get_metrics()
        self.rng = rng or random.Random()

        self.engine_config = config.engine
        self.backoff_config = config.backoff
        self.work_dir = Path(config.worker.work_dir).resolve()
        self.cache = NetworkCache(self.work_dir / config.worker.network_dir, client.download_network)

        self.state = WorkerState.IDLE
        self.stats = OrchestratorStats(start_time=time.time())
        self._stop_event = stop_event or threading.Event()

    def _generate_worker_id(self) -> str:
        hostname = socket.gethostname().split('.')[0]
        short_id = uuid.uuid4().hex[:8]
        return f"{hostname}-worker-{short_id}"

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self) -> None:
        """Ask the worker to stop; takes effect at the next transition."""
        print(f"Worker {self.worker_id}: Stopping...")
        self._stop_event.set()

    def run(self, num_iterations: int = -1) -> Dict[str, Any]:
        """Run work cycles until stopped.

        Args:
            num_iterations: Number of cycles to attempt (-1 for infinite).
                Failed cycles count as attempts.

        Returns:
            Dict with statistics from the run.
        """
        print(f"Worker {self.worker_id}: Starting (work dir {self.work_dir})")
        attempts = 0
        while self.running and (num_iterations < 0 or attempts < num_iterations):
            self.run_cycle()
            attempts += 1

        self._set_state(WorkerState.IDLE)
        print(f"Worker {self.worker_id}: Stopped after {self.stats.cycles} cycles")
        return {'status': 'stopped', 'worker_id': self.worker_id, **self.stats.to_dict()}

    def run_cycle(self) -> bool:
        """Run one request / fetch / run / report cycle.

        Returns:
            True if the cycle completed, False if it failed or was stopped.
        """
        start = time.time()
        work_type = 'unknown'
        try:
            self._transition(WorkerState.REQUESTING_WORK)
            assignment = self.client.next_work()
            work_type = assignment.work_type
            print(f"Worker {self.worker_id}: Got {work_type} work")

            if isinstance(assignment, MatchAssignment):
                self._run_match(assignment)
            else:
                self._run_train(assignment)
        except WorkerStopped:
            print(f"Worker {self.worker_id}: Cycle abandoned at {self.state.value}")
            self._set_state(WorkerState.IDLE)
            return False
        except NetArenaError as e:
            self._backoff(e)
            return False
        except Exception as e:
            traceback.print_exc()
            self._backoff(e)
            return False

        self.stats.cycles += 1
        self.stats.consecutive_failures = 0
        self.metrics.worker_cycles.labels(worker_id=self.worker_id, work_type=work_type).inc()
        self.metrics.cycle_duration.labels(worker_id=self.worker_id, work_type=work_type).observe(
            time.time() - start
        )
        self._set_state(WorkerState.IDLE)
        return True

    def _set_state(self, state: WorkerState) -> None:
        self.state = state

    def _transition(self, state: WorkerState) -> None:
        if self._stop_event.is_set():
            raise WorkerStopped()
        self._set_state(state)

    # =========================================================================
    # Work
    # =========================================================================

    def _run_train(self, assignment: TrainAssignment) -> None:
        self._transition(WorkerState.FETCHING_ARTIFACTS)
        network_path = self.cache.ensure(assignment.sha, exclusive=True)

        self._transition(WorkerState.RUNNING)
        outcome = self.train(network_path, decode_params(assignment.params))

        self._transition(WorkerState.REPORTING)
        response = self.client.upload_game(assignment, outcome.pgn, outcome.training_file)
        self.stats.train_games += 1
        print(f"Worker {self.worker_id}: Uploaded training game {response.get('trainingGameId')}")

    def _run_match(self, assignment: MatchAssignment) -> None:
        self._transition(WorkerState.FETCHING_ARTIFACTS)
        baseline_path = self.cache.ensure(assignment.sha)
        candidate_path = self.cache.ensure(assignment.candidate_sha)

        self._transition(WorkerState.RUNNING)
        result = self.play_match(baseline_path, candidate_path, decode_params(assignment.params), assignment.flip)

        self._transition(WorkerState.REPORTING)
        self.client.report_match_result(assignment.match_game_id, result.result, result.pgn)
        self.stats.match_games += 1
        print(f"Worker {self.worker_id}: Reported match game {assignment.match_game_id} ({result.result:+d})")

    def _engine(self, network_path: Path, args: Sequence[str], interactive: bool = False, name: str = 'engine') -> EngineProcess:
        self.metrics.engine_runs.labels(worker_id=self.worker_id).inc()
        return EngineProcess(
            network_path,
            args,
            command=self.engine_config.command,
            gpu=self.engine_config.gpu,
            interactive=interactive,
            echo=self.engine_config.echo,
            cwd=self.work_dir,
            name=name,
        )

    def _record_exit(self, returncode: Optional[int]) -> None:
        self.metrics.engine_exit_codes.labels(worker_id=self.worker_id, code=str(returncode)).inc()

    def train(self, network_path: Path, params: List[str]) -> TrainOutcome:
        """Run one self-play engine process.

        The engine writes its training data under data-<pid> in the work
        directory, which is cleared first.

        Raises:
            ProcessFailure: Engine failed or produced no training file / transcript.
        """
        pid = os.getpid()
        train_dir = self.work_dir / f"data-{pid}"
        if train_dir.exists():
            print(f"Worker {self.worker_id}: Removing stale {train_dir}")
            shutil.rmtree(train_dir)

        args = list(params) + [f"--start=train {pid} {self.engine_config.train_games}"]
        engine = self._engine(network_path, args, name='train')
        with engine:
            engine.start()
            engine.close_input()
            try:
                returncode = engine.check()
            except EngineProcessError as e:
                self._record_exit(e.returncode)
                raise
        self._record_exit(returncode)

        training_file = train_dir / TRAINING_FILE
        if not training_file.exists():
            raise ProcessFailure(f"Engine produced no training file at {training_file}")
        if not engine.has_pgn:
            raise ProcessFailure("Engine produced no game transcript")
        return TrainOutcome(training_file=training_file, pgn=engine.pgn)

    def play_match(
        self,
        baseline_path: Path,
        candidate_path: Path,
        params: List[str],
        flip: bool,
    ) -> MatchGameResult:
        """Play one match game between two engine processes."""
        baseline = self._engine(baseline_path, params, interactive=True, name='baseline')
        candidate = self._engine(candidate_path, params, interactive=True, name='candidate')
        try:
            baseline.start()
            candidate.start()
            runner = MatchGameRunner(
                baseline,
                candidate,
                flip=flip,
                max_plies=self.engine_config.max_plies,
                go_command=self.engine_config.go_command,
            )
            result = runner.play()
        finally:
            for engine in (baseline, candidate):
                engine.close_input()
                engine.terminate()
        for engine in (baseline, candidate):
            self._record_exit(engine.process.returncode if engine.process else None)
        return result

    # =========================================================================
    # Backoff
    # =========================================================================

    def _backoff(self, error: BaseException) -> None:
        self._set_state(WorkerState.BACKOFF)
        self.stats.failures += 1
        self.stats.consecutive_failures += 1
        self.stats.last_error = f"{type(error).__name__}: {error}"

        error_type = getattr(error, 'error_type', type(error).__name__)
        self.metrics.worker_failures.labels(worker_id=self.worker_id, error=error_type).inc()

        delay = compute_backoff(self.stats.consecutive_failures, self.backoff_config, self.rng)
        print(f"Worker {self.worker_id}: {self.stats.last_error}")
        print(f"Worker {self.worker_id}: Sleeping for {delay:.1f} seconds...")

        started = time.time()
        self._stop_event.wait(delay)
        slept = time.time() - started
        self.stats.total_backoff_seconds += slept
        self.metrics.backoff_seconds.labels(worker_id=self.worker_id).inc(slept)
        self._set_state(WorkerState.IDLE)

