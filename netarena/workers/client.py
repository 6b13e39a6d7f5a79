"""Worker-side client for the coordinator request surface.

Workers reach the coordinator through any transport exposing
handle(endpoint, payload); in a cluster that is a Coordinator instance
bound to the shared Redis. Transport errors become TransportFailure and
error responses are re-raised as their typed CoordinatorError.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import redis

from ..config import NetArenaConfig
from ..errors import (
    ProcessFailure,
    StorageError,
    TransportFailure,
    ValidationError,
    raise_for_response,
)
from ..schemas import PROTOCOL_VERSION, TrainAssignment, WorkAssignment, parse_assignment


def decode_params(params: str) -> List[str]:
    """Decode a params string (JSON list of engine arguments).

    Raises:
        ValidationError: Not a JSON list of strings.
    """
    if not params:
        return []
    try:
        decoded = json.loads(params)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Malformed params {params!r}: {e}") from e
    if not isinstance(decoded, list) or not all(isinstance(p, str) for p in decoded):
        raise ValidationError(f"Params must be a list of strings, got {params!r}")
    return decoded


class CoordinatorClient:
    """Typed calls against the coordinator.

    Example:
        >>> client = CoordinatorClient(coordinator, user='alice', password='pw')
        >>> assignment = client.next_work()
    """

    def __init__(
        self,
        transport,
        user: str = '',
        password: str = '',
        version: int = PROTOCOL_VERSION,
    ):
        self.transport = transport
        self.user = user
        self.password = password
        self.version = version

    def _credentials(self) -> Dict[str, Any]:
        creds: Dict[str, Any] = {'version': self.version}
        if self.user:
            creds['user'] = self.user
            creds['password'] = self.password
        return creds

    def _call(self, endpoint: str, payload: Dict[str, Any]) -> Union[Dict[str, Any], bytes]:
        try:
            response = self.transport.handle(endpoint, payload)
        except (redis.RedisError, OSError) as e:
            raise TransportFailure(f"{endpoint}: {e}") from e
        if isinstance(response, dict):
            raise_for_response(response)
        return response

    def next_work(self) -> WorkAssignment:
        """Request the next work item."""
        return parse_assignment(self._call('next_game', self._credentials()))

    def download_network(self, sha: str) -> bytes:
        """Fetch gzip-compressed network weights."""
        data = self._call('get_network', {'sha': sha})
        if not isinstance(data, (bytes, bytearray)):
            raise TransportFailure(f"get_network returned {type(data).__name__}, expected bytes")
        return bytes(data)

    def upload_game(self, assignment: TrainAssignment, pgn: str, training_file: Union[str, Path]) -> Dict[str, Any]:
        """Upload a training game file produced for a train assignment.

        Raises:
            ProcessFailure: The training file is missing.
        """
        try:
            data = Path(training_file).read_bytes()
        except OSError as e:
            raise ProcessFailure(f"Training file unavailable: {e}") from e

        payload = self._credentials()
        payload.update({
            'training_id': assignment.training_id,
            'network_id': assignment.network_id,
            'file': data,
            'pgn': pgn,
        })
        return self._call('upload_game', payload)

    def report_match_result(self, match_game_id: int, result: int, pgn: str) -> Dict[str, Any]:
        """Report a finished match game (result relative to the candidate)."""
        payload = self._credentials()
        payload.update({'match_game_id': match_game_id, 'result': result, 'pgn': pgn})
        return self._call('match_result', payload)


def connect(config: NetArenaConfig, coordinator: Optional[Any] = None) -> CoordinatorClient:
    """Build a client bound to the cluster's shared Redis.

    Raises:
        TransportFailure: Redis is unreachable.
    """
    if coordinator is None:
        from ..coordinator.head_node import Coordinator
        try:
            coordinator = Coordinator(config)
        except StorageError as e:
            raise TransportFailure(str(e)) from e
    return CoordinatorClient(coordinator, user=config.worker.user, password=config.worker.password)
