"""Worker-side components.

Keep this package import lightweight. Import from the submodules directly,
e.g.:

    from netarena.workers.orchestrator import WorkerOrchestrator
    from netarena.workers.engine import EngineProcess
"""

__all__ = []
