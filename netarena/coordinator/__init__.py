"""Coordinator (head node) components.

Import from the submodules directly, e.g.:

    from netarena.coordinator.head_node import Coordinator
    from netarena.coordinator.store import RedisStore
"""

__all__ = []
