"""Configuration management for netarena.

This module provides immutable dataclasses for configuration and utilities
for loading/saving YAML configuration files. A configuration value is built
once at startup and passed explicitly to the coordinator and workers.
"""

import dataclasses
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, Any, Optional, Tuple, Union
import yaml


# =============================================================================
# Configuration Dataclasses
# =============================================================================

@dataclass(frozen=True)
class RedisConfig:
    """Redis connection configuration (the coordinator's address)."""
    host: str = 'localhost'
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    prefix: str = 'netarena'


@dataclass(frozen=True)
class StorageConfig:
    """Blob storage configuration."""
    backend: str = 'redis'   # 'redis' or 'local'
    blob_dir: str = 'blobs'  # Root directory for the 'local' backend


@dataclass(frozen=True)
class CoordinatorConfig:
    """Coordinator configuration."""
    status_interval: float = 10.0
    metrics_port: int = 9000
    min_match_version: int = 2


@dataclass(frozen=True)
class EngineConfig:
    """External engine process configuration."""
    command: Tuple[str, ...] = ('./lczero',)
    gpu: int = 0                 # -1 disables GPU use
    echo: bool = True            # Echo engine stdout/stderr lines
    train_games: int = 1         # Self-play games per train work item
    max_plies: int = 450         # Match games longer than this are drawn
    go_command: str = 'go'


@dataclass(frozen=True)
class BackoffConfig:
    """Worker failure backoff configuration."""
    base_delay: float = 30.0
    max_delay: float = 300.0
    jitter: float = 5.0


@dataclass(frozen=True)
class WorkerConfig:
    """Worker identity and local paths."""
    user: str = ''
    password: str = ''
    work_dir: str = '.'
    network_dir: str = 'networks'
    metrics_port: int = 9100     # 0 disables the metrics server


@dataclass(frozen=True)
class NetArenaConfig:
    """Complete netarena configuration."""
    redis: RedisConfig = field(default_factory=RedisConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        data = asdict(self)
        data['engine']['command'] = list(self.engine.command)
        return data


# =============================================================================
# YAML Loading/Saving
# =============================================================================

def load_config(config_path: Union[str, Path]) -> NetArenaConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file.

    Returns:
        NetArenaConfig instance.

    Example:
        >>> config = load_config('configs/netarena.yaml')
        >>> print(config.redis.port)
        6379
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f)

    return dict_to_config(data or {})


def save_config(config: NetArenaConfig, config_path: Union[str, Path]) -> None:
    """Save configuration to YAML file.

    Args:
        config: NetArenaConfig instance.
        config_path: Path to save YAML file.
    """
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)


def dict_to_config(data: Dict[str, Any]) -> NetArenaConfig:
    """Convert dictionary to NetArenaConfig.

    Unknown keys inside a section raise TypeError from the dataclass
    constructor, so typos in config files are not silently ignored.

    Args:
        data: Dictionary with configuration values.

    Returns:
        NetArenaConfig instance.
    """
    sections = {}
    if 'redis' in data:
        sections['redis'] = RedisConfig(**data['redis'])
    if 'storage' in data:
        sections['storage'] = StorageConfig(**data['storage'])
    if 'coordinator' in data:
        sections['coordinator'] = CoordinatorConfig(**data['coordinator'])
    if 'engine' in data:
        engine = dict(data['engine'])
        if 'command' in engine:
            command = engine['command']
            engine['command'] = tuple(command.split()) if isinstance(command, str) else tuple(command)
        sections['engine'] = EngineConfig(**engine)
    if 'backoff' in data:
        sections['backoff'] = BackoffConfig(**data['backoff'])
    if 'worker' in data:
        sections['worker'] = WorkerConfig(**data['worker'])

    return NetArenaConfig(**sections)


# =============================================================================
# Configuration Validation
# =============================================================================

def validate_config(config: NetArenaConfig, for_worker: bool = False) -> list:
    """Validate configuration and return list of issues.

    Args:
        config: NetArenaConfig to validate.
        for_worker: Also check fields a worker process needs.

    Returns:
        List of validation error strings. Empty if valid.
    """
    issues = []

    if config.redis.port < 1 or config.redis.port > 65535:
        issues.append("redis.port must be in [1, 65535]")
    if config.storage.backend not in ('redis', 'local'):
        issues.append("storage.backend must be 'redis' or 'local'")
    if config.coordinator.status_interval <= 0:
        issues.append("coordinator.status_interval must be > 0")

    if config.backoff.base_delay < 0:
        issues.append("backoff.base_delay must be >= 0")
    if config.backoff.max_delay < config.backoff.base_delay:
        issues.append("backoff.max_delay should be >= backoff.base_delay")
    if config.backoff.jitter < 0:
        issues.append("backoff.jitter must be >= 0")

    if not config.engine.command:
        issues.append("engine.command must not be empty")
    if config.engine.train_games < 1:
        issues.append("engine.train_games must be >= 1")
    if config.engine.max_plies < 1:
        issues.append("engine.max_plies must be >= 1")

    if for_worker:
        if not config.worker.user:
            issues.append("worker.user must be set")
        if not config.worker.password:
            issues.append("worker.password must be non-empty")
        if config.storage.backend == 'local' and not os.path.isabs(config.storage.blob_dir):
            issues.append(
                "storage.blob_dir must be an absolute path on storage shared with the "
                "coordinator when workers use the 'local' backend"
            )

    return issues


def resolve_command(command: Tuple[str, ...], base: Optional[Union[str, Path]] = None) -> Tuple[str, ...]:
    """Anchor a relative executable path (e.g. ./lczero) to base, default the cwd.

    Bare names such as 'lczero' are left alone for PATH lookup.
    """
    if not command:
        return tuple(command)
    executable = command[0]
    if os.path.isabs(executable) or os.path.dirname(executable) == '':
        return tuple(command)
    base = os.fspath(base) if base is not None else os.getcwd()
    return (os.path.normpath(os.path.join(base, executable)),) + tuple(command[1:])


# =============================================================================
# CLI Config Helpers
# =============================================================================

def merge_cli_args(config: NetArenaConfig, cli_args: Dict[str, Any]) -> NetArenaConfig:
    """Merge CLI arguments into configuration.

    CLI arguments override config file values. Arguments that are None
    are treated as "not given".

    Args:
        config: Base NetArenaConfig.
        cli_args: Dictionary of CLI arguments.

    Returns:
        New NetArenaConfig.

    Example:
        >>> config = load_config('config.yaml')
        >>> config = merge_cli_args(config, {'redis_host': '192.168.1.100'})
    """
    cli_mapping = {
        'redis_host': ('redis', 'host'),
        'redis_port': ('redis', 'port'),
        'redis_password': ('redis', 'password'),
        'storage_backend': ('storage', 'backend'),
        'blob_dir': ('storage', 'blob_dir'),
        'status_interval': ('coordinator', 'status_interval'),
        'engine_command': ('engine', 'command'),
        'gpu': ('engine', 'gpu'),
        'train_games': ('engine', 'train_games'),
        'user': ('worker', 'user'),
        'password': ('worker', 'password'),
        'work_dir': ('worker', 'work_dir'),
        'metrics_port': ('worker', 'metrics_port'),
    }

    updates: Dict[str, Dict[str, Any]] = {}
    for cli_name, (section, key) in cli_mapping.items():
        value = cli_args.get(cli_name)
        if value is None:
            continue
        if key == 'command' and isinstance(value, str):
            value = tuple(value.split())
        updates.setdefault(section, {})[key] = value

    for section, values in updates.items():
        config = dataclasses.replace(
            config,
            **{section: dataclasses.replace(getattr(config, section), **values)},
        )

    return config
