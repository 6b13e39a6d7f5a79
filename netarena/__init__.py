"""Distributed network training coordinator using Redis for coordination.

A central coordinator hands out work to a pool of workers. Workers either
generate self-play training games with the current best network ("train"
work) or play evaluation games between a candidate network and the best
network ("match" work), then report the results back.

Architecture:
- Coordinator: Work Dispatcher, Match Lifecycle Manager and Network
  Artifact Store over a shared Redis
- WorkerOrchestrator: request / fetch / run / report loop with backoff
- EngineProcess: adapter around the external engine executable

Example usage:
    # Start coordinator on head node
    python -m netarena.cli.main coordinator

    # Start a worker
    python -m netarena.cli.main worker --user alice --password secret

    # Check status
    python -m netarena.cli.main status
"""

__version__ = '0.1.0'

__all__ = []
