"""Configuration loader for the netarena CLI.

Finds and loads the YAML config file, resolves which Redis host is
reachable from this machine, and applies command line overrides.
"""

import dataclasses
import socket
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..config import NetArenaConfig, dict_to_config, merge_cli_args, resolve_command

DEFAULT_CONFIG_NAME = 'netarena.yaml'


def is_host_reachable(host: str, port: int = 6379, timeout: float = 1.0) -> bool:
    """Check if a host:port is reachable.

    Args:
        host: Hostname or IP address.
        port: Port number to check.
        timeout: Connection timeout in seconds.

    Returns:
        True if reachable, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        result = sock.connect_ex((host, port))
        sock.close()
        return result == 0
    except (socket.error, socket.timeout):
        return False


def detect_redis_host(data: Dict[str, Any]) -> str:
    """Pick the reachable Redis host.

    The optional 'head' section lists the coordinator's public address
    ('host') and LAN address ('host_local'); they are tried in that order
    before falling back to redis.host.

    Args:
        data: Raw configuration dictionary.

    Returns:
        Redis host IP/hostname.
    """
    head = data.get('head', {}) or {}
    redis_section = data.get('redis', {}) or {}
    redis_port = redis_section.get('port', 6379)

    for candidate in (head.get('host'), head.get('host_local')):
        if candidate and is_host_reachable(candidate, redis_port):
            return candidate

    return redis_section.get('host', 'localhost')


def find_config_file() -> Optional[Path]:
    """Find the default config file.

    Searches in order:
    1. ./configs/netarena.yaml (current directory)
    2. <project_root>/configs/netarena.yaml
    """
    local_config = Path('configs') / DEFAULT_CONFIG_NAME
    if local_config.exists():
        return local_config

    project_root = Path(__file__).parent.parent.parent
    project_config = project_root / 'configs' / DEFAULT_CONFIG_NAME
    if project_config.exists():
        return project_config

    return None


def load_yaml_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load the raw configuration dictionary.

    Args:
        config_path: Path to config file. If None, searches for default.

    Returns:
        Configuration dictionary ({} when no file is found).
    """
    path = Path(config_path) if config_path else find_config_file()

    if path is None or not path.exists():
        print("Warning: Config file not found, using defaults")
        return {}

    print(f"Loading config from: {path}")
    with open(path, 'r') as f:
        return yaml.safe_load(f) or {}


def build_config(config_path: Optional[str] = None, cli_args: Optional[Dict[str, Any]] = None) -> NetArenaConfig:
    """Load the config file, resolve the Redis host, apply CLI overrides.

    A relative engine executable is anchored to the current directory.

    Args:
        config_path: Path to config file. If None, searches for default.
        cli_args: Overrides keyed by CLI argument name; None values are ignored.

    Returns:
        NetArenaConfig instance.
    """
    data = load_yaml_config(config_path)
    head = data.pop('head', None)
    config = dict_to_config(data)

    if head:
        host = detect_redis_host({'head': head, 'redis': data.get('redis', {})})
        config = dataclasses.replace(config, redis=dataclasses.replace(config.redis, host=host))

    config = merge_cli_args(config, cli_args or {})
    # Engine paths are relative to the launch directory, not worker.work_dir
    engine = dataclasses.replace(config.engine, command=resolve_command(config.engine.command))
    return dataclasses.replace(config, engine=engine)


def print_config_summary(config: NetArenaConfig, worker: bool = False) -> None:
    """Print a short configuration summary."""
    print("\n=== Configuration Summary ===")
    print(f"Redis: {config.redis.host}:{config.redis.port} (db {config.redis.db}, prefix '{config.redis.prefix}')")
    print(f"Blob storage: {config.storage.backend}"
          + (f" ({config.storage.blob_dir})" if config.storage.backend == 'local' else ''))
    if worker:
        print(f"Worker user: {config.worker.user or '(none)'}")
        print(f"Work dir: {config.worker.work_dir}")
        print(f"Engine: {' '.join(config.engine.command)} (gpu {config.engine.gpu})")
        print(f"Backoff: {config.backoff.base_delay}s .. {config.backoff.max_delay}s (+{config.backoff.jitter}s jitter)")
    print("=============================\n")
