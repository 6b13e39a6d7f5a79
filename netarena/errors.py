"""Error taxonomy for the coordinator and workers.

Coordinator-side errors are request-local: they are reported to the caller
as an error response and never take the coordinator down. Worker-side
errors (transport and engine process failures) send the orchestrator into
its backoff state.
"""

from typing import Any, Dict, Optional, Type


class NetArenaError(Exception):
    """Base class for all netarena errors."""

    error_type = "error"

    def to_response(self) -> Dict[str, Any]:
        """Convert to an error response dict."""
        return {
            'status': 'error',
            'error': self.error_type,
            'message': str(self),
        }


# =============================================================================
# Coordinator errors (request-local)
# =============================================================================

class CoordinatorError(NetArenaError):
    """An error reported back to the caller of a coordinator request."""


class AuthFailure(CoordinatorError):
    """Unknown or invalid identity / credential."""
    error_type = "auth_failure"


class AlreadyExists(CoordinatorError):
    """Duplicate network hash on upload."""
    error_type = "already_exists"


class NotFound(CoordinatorError):
    """Unknown hash, run, match or game id."""
    error_type = "not_found"


class InvalidState(CoordinatorError):
    """Operation not allowed in the current state (e.g. game already done)."""
    error_type = "invalid_state"


class ValidationError(CoordinatorError):
    """Request payload failed schema validation."""
    error_type = "validation_error"


class StorageError(CoordinatorError):
    """The persistent store failed while serving one request."""
    error_type = "storage_error"


# =============================================================================
# Worker errors (trigger backoff)
# =============================================================================

class TransportFailure(NetArenaError):
    """Network/IO error reaching the coordinator or moving a blob."""
    error_type = "transport_failure"


class ProcessFailure(NetArenaError):
    """Spawned engine exited abnormally or produced nothing usable."""
    error_type = "process_failure"


class EngineProcessError(ProcessFailure):
    """Engine process could not be started, crashed or exited non-zero."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class EngineProtocolError(ProcessFailure):
    """Engine spoke the move-exchange protocol incorrectly."""


_RESPONSE_ERRORS: Dict[str, Type[CoordinatorError]] = {
    cls.error_type: cls
    for cls in (AuthFailure, AlreadyExists, NotFound, InvalidState, ValidationError, StorageError)
}


def raise_for_response(response: Dict[str, Any]) -> Dict[str, Any]:
    """Re-raise the typed error carried by an error response.

    Args:
        response: Response dict returned by the coordinator.

    Returns:
        The response unchanged if it is not an error.
    """
    if response.get('status') != 'error':
        return response
    error_cls = _RESPONSE_ERRORS.get(response.get('error'), CoordinatorError)
    raise error_cls(response.get('message', 'coordinator error'))
