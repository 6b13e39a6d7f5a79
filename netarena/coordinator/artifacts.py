"""Content-addressed network artifact store.

Network weights arrive gzip-compressed. They are stored decompressed under
the sha256 of their content, so uploading the same weights twice is
rejected and a download always reproduces the uploaded bytes exactly once
decompressed.
"""

import uuid
from typing import Optional

from .auth import Authenticator
from .blobs import BlobStore
from .store import RedisStore, Network, TrainingGame
from ..errors import AlreadyExists, NotFound, ValidationError
from ..metrics import NetArenaMetrics, get_metrics
from ..serialization import compress_blob, decompress_blob, content_hash


def network_blob_key(sha: str) -> str:
    return f"networks/{sha}"


def training_blob_key(training_run_id: int) -> str:
    return f"training/{training_run_id}/{uuid.uuid4().hex}.gz"


class NetworkArtifactStore:
    """Upload/download of network weights and training game uploads."""

    def __init__(
        self,
        store: RedisStore,
        blobs: BlobStore,
        auth: Authenticator,
        metrics: Optional[NetArenaMetrics] = None,
    ):
        self.store = store
        self.blobs = blobs
        self.auth = auth
        self.metrics = metrics or get_metrics()

    def upload(
        self,
        training_run_id: int,
        compressed: bytes,
        layers: int = 0,
        filters: int = 0,
        promote: bool = True,
    ) -> Network:
        """Store a new network.

        Args:
            training_run_id: Run the network belongs to.
            compressed: Gzip-compressed weights.
            layers: Residual layers (structural metadata).
            filters: Filters per layer (structural metadata).
            promote: Make the new network the run's best network.

        Returns:
            The created Network row.

        Raises:
            NotFound: Unknown training run.
            ValidationError: Payload is not valid gzip.
            AlreadyExists: A network with the same content exists.
        """
        if self.store.get_training_run(training_run_id) is None:
            raise NotFound(f"training run {training_run_id} not found")

        try:
            raw = decompress_blob(compressed)
        except ValueError as e:
            self.metrics.network_uploads.labels(outcome='invalid').inc()
            raise ValidationError(str(e)) from e

        sha = content_hash(raw)
        if not self.store.reserve_network_sha(sha):
            self.metrics.network_uploads.labels(outcome='duplicate').inc()
            raise AlreadyExists(f"network {sha} already exists")

        try:
            blob_key = network_blob_key(sha)
            self.blobs.write(blob_key, raw)
            network = self.store.create_network(
                sha=sha,
                blob_key=blob_key,
                training_run_id=training_run_id,
                layers=layers,
                filters=filters,
            )
        except BaseException:
            self.store.release_network_sha(sha)
            raise

        if promote:
            self.store.set_best_network(training_run_id, network.id)

        self.metrics.network_uploads.labels(outcome='created').inc()
        self.metrics.network_bytes.observe(len(raw))
        print(
            f"Coordinator: Stored network {network.id} ({sha[:12]}, "
            f"{layers}x{filters}, {len(raw)} bytes)"
            + (" as best network" if promote else "")
        )
        return network

    def download(self, sha: str) -> bytes:
        """Return the gzip-compressed weights of a network.

        Raises:
            NotFound: Unknown hash.
        """
        network = self.store.get_network_by_sha(sha)
        if network is None:
            raise NotFound(f"network {sha} not found")
        return compress_blob(self.blobs.read(network.blob_key))

    def record_game_upload(
        self,
        network_id: int,
        training_run_id: int,
        game_blob: bytes,
        pgn: str,
        username: Optional[str],
        password: Optional[str],
        version: Optional[int] = None,
    ) -> TrainingGame:
        """Store one uploaded training game and credit its network.

        The worker is created on first contact. Nothing is written and the
        network counter is untouched when the upload is rejected.

        Raises:
            AuthFailure: Bad identity or credential.
            NotFound: Unknown network or training run.
        """
        user = self.auth.authenticate(username, password, version)
        if self.store.get_training_run(training_run_id) is None:
            raise NotFound(f"training run {training_run_id} not found")
        if self.store.get_network(network_id) is None:
            raise NotFound(f"network {network_id} not found")

        blob_key = training_blob_key(training_run_id)
        self.blobs.write(blob_key, game_blob)
        game = self.store.add_training_game(
            user_id=user.id,
            training_run_id=training_run_id,
            network_id=network_id,
            blob_key=blob_key,
            pgn=pgn,
            version=version or 0,
        )
        self.store.increment_games_played(network_id)
        self.metrics.training_games.inc()
        return game
