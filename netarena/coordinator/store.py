"""Redis-backed row store for the coordinator.

Holds every persistent row (training runs, networks, matches, match games,
users, training games) as JSON under a common key prefix. Row creation
allocates ids with INCR, uniqueness is enforced with SET NX index keys and
read-modify-write updates run as WATCH/MULTI transactions, so many
concurrent requests can share one store without locking.

Key Schema:
-----------
{prefix}:{kind}:next_id             - int: id counter per row kind
{prefix}:{kind}:{id}                - json: row
{prefix}:network:sha:{sha}          - int: network id ("pending" while uploading)
{prefix}:user:name:{username}       - int: user id
{prefix}:training_run:active        - int: id of the active training run
{prefix}:match:open:{run_id}        - set: ids of open matches of a run
{prefix}:match:{id}:allocations     - int: match games handed out so far
{prefix}:match:{id}:games           - list: match game ids of a match
{prefix}:training_games             - list: msgpack TrainingGame records
"""

import json
import time
from dataclasses import dataclass, asdict, field, fields
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

import redis

from ..config import RedisConfig
from ..errors import InvalidState, NotFound, StorageError
from ..serialization import serialize_record, deserialize_record


# =============================================================================
# Constants
# =============================================================================

DEFAULT_PREFIX = "netarena"
PENDING = b"pending"
MAX_TX_RETRIES = 50

# Match game results, relative to the candidate network
RESULT_LOSS = -1
RESULT_DRAW = 0
RESULT_WIN = 1
VALID_RESULTS = (RESULT_LOSS, RESULT_DRAW, RESULT_WIN)


# =============================================================================
# Rows
# =============================================================================

R = TypeVar('R', bound='Row')


class Row:
    """JSON (de)serialization shared by all row dataclasses."""

    kind = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Create from dictionary, ignoring keys this version does not know."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data):
        """Deserialize from JSON string or bytes."""
        if isinstance(data, bytes):
            data = data.decode()
        return cls.from_dict(json.loads(data))


@dataclass
class TrainingRun(Row):
    """A training session with one designated best network."""
    kind = "training_run"

    id: int
    description: str
    best_network_id: Optional[int] = None
    active: bool = False
    train_parameters: str = ""


@dataclass
class Network(Row):
    """A set of model weights identified by its content hash."""
    kind = "network"

    id: int
    sha: str
    blob_key: str
    training_run_id: Optional[int] = None
    layers: int = 0
    filters: int = 0
    games_played: int = 0
    created_at: float = 0.0


@dataclass
class Match(Row):
    """An evaluation contest between a candidate and the current best network."""
    kind = "match"

    id: int
    training_run_id: int
    parameters: str
    candidate_id: int
    current_best_id: int
    done: bool = False
    created_at: float = 0.0


@dataclass
class MatchGame(Row):
    """One game of a match, allocated to a worker."""
    kind = "match_game"

    id: int
    match_id: int
    flip: bool = False
    user_id: Optional[int] = None
    result: Optional[int] = None  # -1/0/1 once done
    pgn: str = ""
    done: bool = False


@dataclass
class User(Row):
    """A worker identity, created on first successful contact."""
    kind = "user"

    id: int
    username: str
    password_hash: str
    salt: str
    version: int = 0
    last_seen: float = 0.0


@dataclass
class TrainingGame(Row):
    """One uploaded self-play training game."""
    kind = "training_game"

    id: int
    user_id: int
    training_run_id: int
    network_id: int
    blob_key: str
    pgn: str = ""
    version: int = 0
    created_at: float = 0.0


@dataclass
class StoreStatus:
    """Snapshot of coordinator state for status reporting."""
    active_run_id: Optional[int]
    best_network_sha: Optional[str]
    networks: int
    users: int
    open_matches: List[int] = field(default_factory=list)
    training_games: int = 0
    match_games: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# Redis Store
# =============================================================================

class RedisStore:
    """Persistent row store in Redis.

    Constructed once at startup and passed to every component that needs
    it. Tests pass an isolated client (e.g. fakeredis) instead of sharing
    a global handle.

    Example:
        >>> store = RedisStore(host='localhost', port=6379)
        >>> store.open()
        >>> run = store.create_training_run('main', active=True)
        >>> store.close()
    """

    def __init__(
        self,
        host: str = 'localhost',
        port: int = 6379,
        password: Optional[str] = None,
        db: int = 0,
        prefix: str = DEFAULT_PREFIX,
        client: Optional[redis.Redis] = None,
    ):
        """Create the store (does not connect until open()).

        Args:
            host: Redis server hostname.
            port: Redis server port.
            password: Redis password (optional).
            db: Redis database number.
            prefix: Key prefix for every key this store touches.
            client: Pre-built Redis client; overrides host/port/password/db.
        """
        self.redis = client if client is not None else redis.Redis(
            host=host,
            port=port,
            password=password,
            db=db,
            decode_responses=False,  # We handle encoding ourselves
        )
        self.prefix = prefix
        self._host = host
        self._port = port
        self._open = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(self) -> 'RedisStore':
        """Verify connectivity and mark the store usable.

        Raises:
            StorageError: If Redis cannot be reached.
        """
        if not self.ping():
            raise StorageError(f"Cannot connect to Redis at {self._host}:{self._port}")
        self._open = True
        return self

    def close(self) -> None:
        """Release the connection pool."""
        if self._open:
            self.redis.close()
            self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def __enter__(self) -> 'RedisStore':
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def ping(self) -> bool:
        """Check Redis connectivity."""
        try:
            return bool(self.redis.ping())
        except redis.ConnectionError:
            return False

    # =========================================================================
    # Key and Row Helpers
    # =========================================================================

    def key(self, *parts: Any) -> str:
        """Build a prefixed key."""
        return ":".join([self.prefix] + [str(p) for p in parts])

    def _row_key(self, kind: str, row_id: int) -> str:
        return self.key(kind, row_id)

    def _next_id(self, kind: str) -> int:
        return int(self.redis.incr(self.key(kind, "next_id")))

    def _load(self, cls, row_id: Optional[int]):
        if row_id is None:
            return None
        data = self.redis.get(self._row_key(cls.kind, row_id))
        return cls.from_json(data) if data else None

    def _save(self, row: Row, pipe=None) -> None:
        (pipe or self.redis).set(self._row_key(row.kind, row.id), row.to_json())

    def _list_rows(self, cls) -> List[Any]:
        count = int(self.redis.get(self.key(cls.kind, "next_id")) or 0)
        rows = []
        for row_id in range(1, count + 1):
            row = self._load(cls, row_id)
            if row is not None:
                rows.append(row)
        return rows

    def _transaction(self, fn: Callable, *keys: str):
        """Run fn(pipe) under WATCH on keys, retrying on conflicts.

        fn reads with the pipeline in immediate mode, calls pipe.multi(),
        queues its writes and returns whatever it wants after execute().
        """
        for _ in range(MAX_TX_RETRIES):
            with self.redis.pipeline() as pipe:
                try:
                    pipe.watch(*keys)
                    return fn(pipe)
                except redis.WatchError:
                    continue
        raise StorageError(f"Too much contention on {', '.join(keys)}")

    def _update(self, cls, row_id: int, mutate: Callable[[Any], None]):
        """Atomically load, mutate and save one row.

        Raises:
            NotFound: If the row does not exist.
        """
        row_key = self._row_key(cls.kind, row_id)

        def apply(pipe):
            data = pipe.get(row_key)
            if not data:
                raise NotFound(f"{cls.kind} {row_id} not found")
            row = cls.from_json(data)
            mutate(row)
            pipe.multi()
            pipe.set(row_key, row.to_json())
            pipe.execute()
            return row

        return self._transaction(apply, row_key)

    # =========================================================================
    # Training Runs
    # =========================================================================

    def create_training_run(
        self,
        description: str,
        best_network_id: Optional[int] = None,
        active: bool = False,
        train_parameters: str = "",
    ) -> TrainingRun:
        """Create a training run, optionally making it the active one."""
        run = TrainingRun(
            id=self._next_id(TrainingRun.kind),
            description=description,
            best_network_id=best_network_id,
            active=False,
            train_parameters=train_parameters,
        )
        self._save(run)
        if active:
            run = self.set_active_training_run(run.id)
        return run

    def get_training_run(self, run_id: int) -> Optional[TrainingRun]:
        return self._load(TrainingRun, run_id)

    def list_training_runs(self) -> List[TrainingRun]:
        return self._list_rows(TrainingRun)

    def get_active_training_run(self) -> Optional[TrainingRun]:
        """Get the active training run, if any."""
        run_id = self.redis.get(self.key(TrainingRun.kind, "active"))
        return self._load(TrainingRun, int(run_id)) if run_id else None

    def set_active_training_run(self, run_id: int) -> TrainingRun:
        """Make run_id the single active training run.

        Raises:
            NotFound: If the run does not exist.
        """
        previous = self.get_active_training_run()
        run = self._update(TrainingRun, run_id, lambda r: setattr(r, 'active', True))
        self.redis.set(self.key(TrainingRun.kind, "active"), str(run_id))
        if previous is not None and previous.id != run_id:
            self._update(TrainingRun, previous.id, lambda r: setattr(r, 'active', False))
        return run

    def set_best_network(self, run_id: int, network_id: int) -> TrainingRun:
        """Promote network_id to best network of run_id."""
        if self.get_network(network_id) is None:
            raise NotFound(f"network {network_id} not found")
        return self._update(TrainingRun, run_id, lambda r: setattr(r, 'best_network_id', network_id))

    def set_train_parameters(self, run_id: int, parameters: str) -> TrainingRun:
        return self._update(TrainingRun, run_id, lambda r: setattr(r, 'train_parameters', parameters))

    # =========================================================================
    # Networks
    # =========================================================================

    def _sha_key(self, sha: str) -> str:
        return self.key(Network.kind, "sha", sha)

    def reserve_network_sha(self, sha: str) -> bool:
        """Claim a network hash before its blob is written.

        Returns:
            True if the hash was free, False if it is taken or being uploaded.
        """
        return bool(self.redis.set(self._sha_key(sha), PENDING, nx=True))

    def release_network_sha(self, sha: str) -> None:
        """Drop a reservation made by reserve_network_sha() (upload failed)."""
        sha_key = self._sha_key(sha)

        def release(pipe):
            if pipe.get(sha_key) == PENDING:
                pipe.multi()
                pipe.delete(sha_key)
                pipe.execute()

        self._transaction(release, sha_key)

    def create_network(
        self,
        sha: str,
        blob_key: str,
        training_run_id: Optional[int] = None,
        layers: int = 0,
        filters: int = 0,
    ) -> Network:
        """Create the network row for a reserved hash."""
        network = Network(
            id=self._next_id(Network.kind),
            sha=sha,
            blob_key=blob_key,
            training_run_id=training_run_id,
            layers=layers,
            filters=filters,
            created_at=time.time(),
        )
        pipe = self.redis.pipeline()
        self._save(network, pipe)
        pipe.set(self._sha_key(sha), str(network.id))
        pipe.execute()
        return network

    def get_network(self, network_id: int) -> Optional[Network]:
        return self._load(Network, network_id)

    def get_network_by_sha(self, sha: str) -> Optional[Network]:
        network_id = self.redis.get(self._sha_key(sha))
        if not network_id or network_id == PENDING:
            return None
        return self._load(Network, int(network_id))

    def list_networks(self) -> List[Network]:
        return self._list_rows(Network)

    def increment_games_played(self, network_id: int) -> Network:
        """Add exactly one to a network's games-played counter."""
        def bump(network: Network) -> None:
            network.games_played += 1
        return self._update(Network, network_id, bump)

    # =========================================================================
    # Users
    # =========================================================================

    def get_user(self, user_id: int) -> Optional[User]:
        return self._load(User, user_id)

    def get_user_by_name(self, username: str) -> Optional[User]:
        user_id = self.redis.get(self.key(User.kind, "name", username))
        return self._load(User, int(user_id)) if user_id else None

    def upsert_user(self, username: str, password_hash: str, salt: str) -> Tuple[User, bool]:
        """Get-or-create a user by name.

        An existing user is returned unchanged; otherwise a new row is
        created with the given credential digest.

        Returns:
            Tuple of (user, created).
        """
        name_key = self.key(User.kind, "name", username)

        def upsert(pipe):
            existing = pipe.get(name_key)
            if existing:
                pipe.unwatch()
                return self._load(User, int(existing)), False
            user = User(
                id=self._next_id(User.kind),
                username=username,
                password_hash=password_hash,
                salt=salt,
                last_seen=time.time(),
            )
            pipe.multi()
            pipe.set(name_key, str(user.id))
            self._save(user, pipe)
            pipe.execute()
            return user, True

        return self._transaction(upsert, name_key)

    def touch_user(self, user_id: int, version: int) -> User:
        """Record a contact from a user and its protocol version."""
        def touch(user: User) -> None:
            user.version = version
            user.last_seen = time.time()
        return self._update(User, user_id, touch)

    # =========================================================================
    # Matches
    # =========================================================================

    def _open_key(self, run_id: int) -> str:
        return self.key(Match.kind, "open", run_id)

    def create_match(
        self,
        training_run_id: int,
        candidate_id: int,
        current_best_id: int,
        parameters: str,
        done: bool = False,
    ) -> Match:
        match = Match(
            id=self._next_id(Match.kind),
            training_run_id=training_run_id,
            parameters=parameters,
            candidate_id=candidate_id,
            current_best_id=current_best_id,
            done=done,
            created_at=time.time(),
        )
        pipe = self.redis.pipeline()
        self._save(match, pipe)
        if not done:
            pipe.sadd(self._open_key(training_run_id), str(match.id))
        pipe.execute()
        return match

    def get_match(self, match_id: int) -> Optional[Match]:
        return self._load(Match, match_id)

    def list_matches(self, training_run_id: Optional[int] = None) -> List[Match]:
        matches = self._list_rows(Match)
        if training_run_id is not None:
            matches = [m for m in matches if m.training_run_id == training_run_id]
        return matches

    def get_open_matches(self, training_run_id: int) -> List[Match]:
        """Open (done=False) matches of a run, oldest first."""
        open_key = self._open_key(training_run_id)
        matches = []
        for raw_id in sorted(int(m) for m in self.redis.smembers(open_key)):
            match = self.get_match(raw_id)
            if match is None or match.done:
                # Stale entry, drop it
                self.redis.srem(open_key, str(raw_id))
                continue
            matches.append(match)
        return matches

    def set_match_done(self, match_id: int) -> Match:
        """Flip a match's done flag (exactly once).

        Raises:
            NotFound: Unknown match.
            InvalidState: Match already done.
        """
        def finish(match: Match) -> None:
            if match.done:
                raise InvalidState(f"match {match_id} is already done")
            match.done = True

        match = self._update(Match, match_id, finish)
        self.redis.srem(self._open_key(match.training_run_id), str(match_id))
        return match

    # =========================================================================
    # Match Games
    # =========================================================================

    def allocate_match_game(self, match_id: int, user_id: Optional[int] = None) -> Tuple[MatchGame, int]:
        """Create a pending match game for an open match.

        Runs under WATCH on the match row, so a concurrent set_match_done()
        either happens before (and the allocation is refused) or after.

        Returns:
            Tuple of (match_game, allocation_number) where allocation_number
            counts allocations for this match starting at 1.

        Raises:
            NotFound: Unknown match.
            InvalidState: Match already done.
        """
        match_key = self._row_key(Match.kind, match_id)
        alloc_key = self.key(Match.kind, match_id, "allocations")

        def allocate(pipe):
            data = pipe.get(match_key)
            if not data:
                raise NotFound(f"match {match_id} not found")
            if Match.from_json(data).done:
                raise InvalidState(f"match {match_id} is already done")
            number = int(pipe.get(alloc_key) or 0) + 1
            game = MatchGame(
                id=self._next_id(MatchGame.kind),
                match_id=match_id,
                flip=number % 2 == 0,
                user_id=user_id,
            )
            pipe.multi()
            self._save(game, pipe)
            pipe.set(alloc_key, str(number))
            pipe.rpush(self.key(Match.kind, match_id, "games"), str(game.id))
            pipe.execute()
            return game, number

        return self._transaction(allocate, match_key, alloc_key)

    def get_match_game(self, match_game_id: int) -> Optional[MatchGame]:
        return self._load(MatchGame, match_game_id)

    def list_match_games(self, match_id: int) -> List[MatchGame]:
        ids = self.redis.lrange(self.key(Match.kind, match_id, "games"), 0, -1)
        games = [self.get_match_game(int(i)) for i in ids]
        return [g for g in games if g is not None]

    def record_match_game_result(self, match_game_id: int, result: int, pgn: str) -> MatchGame:
        """Fill in a match game's result and transcript (exactly once).

        Raises:
            NotFound: Unknown match game.
            InvalidState: Result already reported.
        """
        def record(game: MatchGame) -> None:
            if game.done:
                raise InvalidState(f"match game {match_game_id} is already done")
            game.result = result
            game.pgn = pgn
            game.done = True

        return self._update(MatchGame, match_game_id, record)

    # =========================================================================
    # Training Games
    # =========================================================================

    def add_training_game(
        self,
        user_id: int,
        training_run_id: int,
        network_id: int,
        blob_key: str,
        pgn: str,
        version: int,
    ) -> TrainingGame:
        game = TrainingGame(
            id=self._next_id(TrainingGame.kind),
            user_id=user_id,
            training_run_id=training_run_id,
            network_id=network_id,
            blob_key=blob_key,
            pgn=pgn,
            version=version,
            created_at=time.time(),
        )
        self.redis.rpush(self.key("training_games"), serialize_record(game.to_dict()))
        return game

    def get_training_games(self, start: int = 0, end: int = -1) -> List[TrainingGame]:
        records = self.redis.lrange(self.key("training_games"), start, end)
        return [TrainingGame.from_dict(deserialize_record(r)) for r in records]

    def count_training_games(self) -> int:
        return int(self.redis.llen(self.key("training_games")))

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> StoreStatus:
        """Get a snapshot of coordinator state."""
        run = self.get_active_training_run()
        best = self.get_network(run.best_network_id) if run and run.best_network_id else None
        open_matches = [m.id for m in self.get_open_matches(run.id)] if run else []
        return StoreStatus(
            active_run_id=run.id if run else None,
            best_network_sha=best.sha if best else None,
            networks=int(self.redis.get(self.key(Network.kind, "next_id")) or 0),
            users=int(self.redis.get(self.key(User.kind, "next_id")) or 0),
            open_matches=open_matches,
            training_games=self.count_training_games(),
            match_games=int(self.redis.get(self.key(MatchGame.kind, "next_id")) or 0),
        )


def create_store(config: Optional[RedisConfig] = None) -> RedisStore:
    """Create a RedisStore from a RedisConfig.

    Args:
        config: Redis configuration; defaults to localhost.

    Returns:
        RedisStore instance (not yet opened).
    """
    config = config or RedisConfig()
    return RedisStore(
        host=config.host,
        port=config.port,
        password=config.password,
        db=config.db,
        prefix=config.prefix,
    )
