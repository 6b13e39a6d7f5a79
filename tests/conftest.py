"""Pytest configuration and shared fixtures for netarena tests.

Stores run over fakeredis, so no Redis server is needed.
"""

import gzip
import hashlib
import sys
from pathlib import Path

import fakeredis
import pytest

from netarena.config import BackoffConfig, EngineConfig, NetArenaConfig, WorkerConfig
from netarena.coordinator.head_node import Coordinator
from netarena.coordinator.store import RedisStore
from netarena.metrics import reset_metrics

FAKE_ENGINE = Path(__file__).parent / "fake_engine.py"


# ============================================================================
# Metrics Fixtures
# ============================================================================

@pytest.fixture
def metrics():
    """Provide a metrics container on a private registry."""
    return reset_metrics()


# ============================================================================
# Redis Fixtures
# ============================================================================

@pytest.fixture
def redis_client():
    """Provide an isolated in-memory Redis client."""
    server = fakeredis.FakeServer()
    client = fakeredis.FakeRedis(server=server)
    yield client
    client.flushall()


@pytest.fixture
def store(redis_client) -> RedisStore:
    """Provide an opened RedisStore over fakeredis."""
    return RedisStore(client=redis_client, prefix="test").open()


@pytest.fixture
def coordinator(store, metrics) -> Coordinator:
    """Provide a Coordinator over the fakeredis store."""
    return Coordinator(store=store, metrics=metrics)


@pytest.fixture
def seeded(coordinator):
    """Coordinator with network 'abcd' and an active run that uses it as best.

    Mirrors a freshly bootstrapped cluster: one training run, one network.
    """
    network = coordinator.store.create_network(sha="abcd", blob_key="/tmp/network")
    coordinator.create_training_run("Testing", best_network_id=network.id, active=True)
    return coordinator


# ============================================================================
# Blob Helpers
# ============================================================================

def make_weights(seed: str) -> bytes:
    """Deterministic fake network weights."""
    return (f"weights-{seed}\n" * 64).encode()


def gz(data: bytes) -> bytes:
    return gzip.compress(data, mtime=0)


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# ============================================================================
# Engine Fixtures
# ============================================================================

@pytest.fixture
def engine_command():
    """Command that runs the fake engine with this interpreter."""
    return (sys.executable, str(FAKE_ENGINE))


@pytest.fixture
def worker_config(tmp_path, engine_command) -> NetArenaConfig:
    """Worker configuration using the fake engine and fast backoff."""
    return NetArenaConfig(
        engine=EngineConfig(command=engine_command, gpu=-1, echo=False, max_plies=40),
        backoff=BackoffConfig(base_delay=0.01, max_delay=0.05, jitter=0.0),
        worker=WorkerConfig(user="worker", password="secret", work_dir=str(tmp_path), metrics_port=0),
    )


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
