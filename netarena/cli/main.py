#!/usr/bin/env python
"""CLI for netarena.

Workers run as standalone Python processes coordinated via Redis.

Usage:
    # Start coordinator (head node)
    python -m netarena.cli.main coordinator

    # Start a worker
    python -m netarena.cli.main worker --user alice --password secret

    # Check cluster status
    python -m netarena.cli.main status

    # Training run management
    python -m netarena.cli.main runs create "main run"
    python -m netarena.cli.main runs list
    python -m netarena.cli.main runs activate 2
    python -m netarena.cli.main runs params 2 '["--visits=800"]'

    # Networks and matches
    python -m netarena.cli.main network upload weights.gz --run 1
    python -m netarena.cli.main match create 7 --params '["--visits=100"]'
    python -m netarena.cli.main match done 3
    python -m netarena.cli.main match list
"""

import argparse
import sys
from pathlib import Path

from .config_loader import build_config, print_config_summary
from ..config import validate_config
from ..errors import NetArenaError


def _cli_overrides(args) -> dict:
    """Collect config overrides from parsed arguments (None = not given)."""
    names = (
        'redis_host', 'redis_port', 'redis_password', 'storage_backend', 'blob_dir',
        'status_interval', 'engine_command', 'gpu', 'train_games', 'user', 'password',
        'work_dir', 'metrics_port',
    )
    return {name: getattr(args, name, None) for name in names}


def _load_config(args, for_worker: bool = False):
    config = build_config(args.config_file, _cli_overrides(args))
    issues = validate_config(config, for_worker=for_worker)
    if issues:
        for issue in issues:
            print(f"ERROR: {issue}")
        sys.exit(1)
    return config


def _connect(args):
    """Create a coordinator bound to the configured Redis, or exit."""
    from ..coordinator.head_node import Coordinator

    config = _load_config(args)
    try:
        return Coordinator(config)
    except NetArenaError as e:
        print(f"ERROR: Cannot connect to Redis at {config.redis.host}:{config.redis.port}: {e}")
        sys.exit(1)


def start_coordinator(args):
    """Start the coordinator (head node)."""
    from ..coordinator.head_node import Coordinator
    from ..coordinator.matches import games_played_policy
    from ..metrics import start_metrics_server

    config = _load_config(args)
    print_config_summary(config)

    policy = games_played_policy(args.games_per_match) if args.games_per_match else None
    try:
        coordinator = Coordinator(config, completion_policy=policy)
    except NetArenaError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    if config.coordinator.metrics_port:
        start_metrics_server(config.coordinator.metrics_port)

    print("\nCoordinator running. Press Ctrl+C to stop.")
    try:
        coordinator.start(blocking=True)
    except KeyboardInterrupt:
        print("\nShutting down coordinator...")
        coordinator.stop()


def start_worker(args):
    """Start a worker."""
    from ..workers.client import connect
    from ..workers.orchestrator import WorkerOrchestrator
    from ..metrics import start_metrics_server
    from ..utils import install_shutdown_handler

    config = _load_config(args, for_worker=True)
    print_config_summary(config, worker=True)

    try:
        client = connect(config)
    except NetArenaError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    worker = WorkerOrchestrator(config, client, worker_id=args.worker_id)
    install_shutdown_handler(worker.stop, exit_process=False)
    if config.worker.metrics_port:
        start_metrics_server(config.worker.metrics_port)

    print("\nWorker running. Press Ctrl+C to stop.")
    result = worker.run(num_iterations=args.num_iterations)
    print(f"Worker finished: {result}")


def show_status(args):
    """Show cluster status."""
    coordinator = _connect(args)
    status = coordinator.get_cluster_status()

    print("\n=== Cluster Status ===")
    print(f"Active training run: {status['active_run_id'] or 'None'}")
    print(f"Best network: {status['best_network_sha'] or 'None'}")
    print(f"Networks: {status['networks']}")
    print(f"Users: {status['users']}")
    print(f"Training games: {status['training_games']}")
    print(f"Match games: {status['match_games']}")

    if status['open_matches']:
        print("\n=== Open Matches ===")
        for match_id in status['open_matches']:
            summary = coordinator.matches.match_summary(match_id)
            print(
                f"  match {match_id}: +{summary.wins} ={summary.draws} -{summary.losses}, "
                f"pending {summary.pending}"
            )
    else:
        print("\n(No open matches)")


def manage_runs(args):
    """Manage training runs."""
    coordinator = _connect(args)
    store = coordinator.store

    try:
        if args.run_command == 'list':
            runs = store.list_training_runs()
            if not runs:
                print("No training runs")
            for run in runs:
                marker = '*' if run.active else ' '
                print(
                    f"{marker} {run.id}: {run.description} "
                    f"(best network {run.best_network_id}, params {run.train_parameters or '-'})"
                )

        elif args.run_command == 'create':
            if not args.value:
                print("ERROR: runs create needs a description")
                sys.exit(1)
            coordinator.create_training_run(
                args.value[0],
                best_network_id=args.best_network,
                active=not args.inactive,
                train_parameters=args.params or "",
            )

        elif args.run_command == 'activate':
            run = store.set_active_training_run(int(args.value[0]))
            print(f"Activated training run {run.id}: {run.description}")

        elif args.run_command == 'params':
            run = store.set_train_parameters(int(args.value[0]), args.value[1])
            print(f"Training run {run.id} parameters: {run.train_parameters}")

    except (IndexError, ValueError):
        print(f"ERROR: runs {args.run_command}: missing or invalid arguments")
        sys.exit(1)
    except NetArenaError as e:
        print(f"ERROR: {e}")
        sys.exit(1)


def manage_networks(args):
    """Upload and list networks."""
    from ..serialization import compress_blob

    coordinator = _connect(args)

    try:
        if args.network_command == 'list':
            for network in coordinator.list_networks():
                print(
                    f"{network.id}: {network.sha[:12]} run={network.training_run_id} "
                    f"{network.layers}x{network.filters} games={network.games_played}"
                )

        elif args.network_command == 'upload':
            if not args.file:
                print("ERROR: network upload needs a file")
                sys.exit(1)
            data = Path(args.file).read_bytes()
            if not data.startswith(b'\x1f\x8b'):
                data = compress_blob(data)
            run_id = args.run
            if run_id is None:
                active = coordinator.store.get_active_training_run()
                run_id = active.id if active else None
            if run_id is None:
                print("ERROR: No training run given and none active")
                sys.exit(1)
            network = coordinator.artifacts.upload(
                run_id,
                data,
                layers=args.layers,
                filters=args.filters,
                promote=not args.no_promote,
            )
            print(f"Uploaded network {network.id}: {network.sha}")

    except OSError as e:
        print(f"ERROR: Cannot read {args.file}: {e}")
        sys.exit(1)
    except NetArenaError as e:
        print(f"ERROR: {e}")
        sys.exit(1)


def manage_matches(args):
    """Create, finish and list matches."""
    coordinator = _connect(args)

    try:
        if args.match_command == 'list':
            matches = coordinator.matches.list_matches(args.run)
            if not matches:
                print("No matches")
            for match in matches:
                summary = coordinator.matches.match_summary(match.id)
                state = 'done' if match.done else 'open'
                print(
                    f"{match.id}: candidate {match.candidate_id} vs best {match.current_best_id} [{state}] "
                    f"+{summary.wins} ={summary.draws} -{summary.losses} pending {summary.pending}"
                )

        elif args.match_command == 'create':
            if args.id is None:
                print("ERROR: match create needs a candidate network id")
                sys.exit(1)
            match = coordinator.create_match(args.id, params=args.params, training_run_id=args.run)
            print(f"Created match {match.id}: candidate {match.candidate_id} vs best {match.current_best_id}")

        elif args.match_command == 'done':
            if args.id is None:
                print("ERROR: match done needs a match id")
                sys.exit(1)
            match = coordinator.set_match_done(args.id)
            summary = coordinator.matches.match_summary(match.id)
            print(f"Match {match.id} done: {summary.to_dict()}")

    except NetArenaError as e:
        print(f"ERROR: {e}")
        sys.exit(1)


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--config-file', '-c',
        type=str,
        default=None,
        help='Path to config file (default: configs/netarena.yaml)'
    )
    parser.add_argument(
        '--redis-host',
        type=str,
        default=None,
        help='Redis host (default: from config, else localhost)'
    )
    parser.add_argument(
        '--redis-port',
        type=int,
        default=None,
        help='Redis port (default: from config, else 6379)'
    )
    parser.add_argument(
        '--redis-password',
        type=str,
        default=None,
        help='Redis password (default: None)'
    )
    parser.add_argument(
        '--storage-backend',
        choices=['redis', 'local'],
        default=None,
        help='Blob storage backend (default: redis)'
    )
    parser.add_argument(
        '--blob-dir',
        type=str,
        default=None,
        help='Blob directory for the local backend'
    )


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description='Network training coordinator and workers (Redis-based)',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # =========================================================================
    # Coordinator command
    # =========================================================================
    coord_parser = subparsers.add_parser(
        'coordinator',
        help='Start the coordinator (head node)'
    )
    _add_common_args(coord_parser)
    coord_parser.add_argument(
        '--status-interval',
        type=float,
        default=None,
        help='Status print interval in seconds (default: 10)'
    )
    coord_parser.add_argument(
        '--games-per-match',
        type=int,
        default=None,
        help='Mark a match done after this many finished games (default: manual)'
    )
    coord_parser.set_defaults(func=start_coordinator)

    # =========================================================================
    # Worker command
    # =========================================================================
    worker_parser = subparsers.add_parser(
        'worker',
        help='Start a worker'
    )
    _add_common_args(worker_parser)
    worker_parser.add_argument(
        '--worker-id',
        type=str,
        default=None,
        help='Worker ID (auto-generated if not provided)'
    )
    worker_parser.add_argument(
        '--user',
        type=str,
        default=None,
        help='Worker user name'
    )
    worker_parser.add_argument(
        '--password',
        type=str,
        default=None,
        help='Worker password'
    )
    worker_parser.add_argument(
        '--work-dir',
        type=str,
        default=None,
        help='Working directory for engine runs (default: .)'
    )
    worker_parser.add_argument(
        '--engine-command',
        type=str,
        default=None,
        help='Engine executable and fixed arguments (default: ./lczero)'
    )
    worker_parser.add_argument(
        '--gpu',
        type=int,
        default=None,
        help='GPU index, -1 for none (default: 0)'
    )
    worker_parser.add_argument(
        '--train-games',
        type=int,
        default=None,
        help='Self-play games per train work item (default: 1)'
    )
    worker_parser.add_argument(
        '--metrics-port',
        type=int,
        default=None,
        help='Prometheus metrics port, 0 to disable (default: 9100)'
    )
    worker_parser.add_argument(
        '--num-iterations',
        type=int,
        default=-1,
        help='Number of work cycles (-1 for infinite, default: -1)'
    )
    worker_parser.set_defaults(func=start_worker)

    # =========================================================================
    # Status command
    # =========================================================================
    status_parser = subparsers.add_parser(
        'status',
        help='Show cluster status'
    )
    _add_common_args(status_parser)
    status_parser.set_defaults(func=show_status)

    # =========================================================================
    # Runs management command
    # =========================================================================
    runs_parser = subparsers.add_parser(
        'runs',
        help='Manage training runs'
    )
    runs_parser.add_argument(
        'run_command',
        choices=['list', 'create', 'activate', 'params'],
        help='Run management command'
    )
    runs_parser.add_argument(
        'value',
        nargs='*',
        help='create: DESCRIPTION; activate: RUN_ID; params: RUN_ID PARAMS'
    )
    _add_common_args(runs_parser)
    runs_parser.add_argument(
        '--best-network',
        type=int,
        default=None,
        help='Initial best network id for create'
    )
    runs_parser.add_argument(
        '--params',
        type=str,
        default=None,
        help='Training parameters (JSON list) for create'
    )
    runs_parser.add_argument(
        '--inactive',
        action='store_true',
        help='Do not activate the run on create'
    )
    runs_parser.set_defaults(func=manage_runs)

    # =========================================================================
    # Network command
    # =========================================================================
    network_parser = subparsers.add_parser(
        'network',
        help='Upload and list networks'
    )
    network_parser.add_argument(
        'network_command',
        choices=['upload', 'list'],
        help='Network command'
    )
    network_parser.add_argument(
        'file',
        nargs='?',
        default=None,
        help='Weights file for upload (gzip or raw)'
    )
    _add_common_args(network_parser)
    network_parser.add_argument(
        '--run',
        type=int,
        default=None,
        help='Training run id (default: active run)'
    )
    network_parser.add_argument('--layers', type=int, default=0, help='Residual layers')
    network_parser.add_argument('--filters', type=int, default=0, help='Filters per layer')
    network_parser.add_argument(
        '--no-promote',
        action='store_true',
        help='Do not make the uploaded network the best network'
    )
    network_parser.set_defaults(func=manage_networks)

    # =========================================================================
    # Match command
    # =========================================================================
    match_parser = subparsers.add_parser(
        'match',
        help='Manage evaluation matches'
    )
    match_parser.add_argument(
        'match_command',
        choices=['create', 'done', 'list'],
        help='Match command'
    )
    match_parser.add_argument(
        'id',
        nargs='?',
        type=int,
        default=None,
        help='create: candidate network id; done: match id'
    )
    _add_common_args(match_parser)
    match_parser.add_argument(
        '--run',
        type=int,
        default=None,
        help='Training run id (default: active run)'
    )
    match_parser.add_argument(
        '--params',
        type=str,
        default=None,
        help='Engine parameters for both sides (JSON list)'
    )
    match_parser.set_defaults(func=manage_matches)

    # Parse and execute
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
