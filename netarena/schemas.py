"""Request and response schemas for the coordinator surface.

Every request is decoded from a plain dict at the boundary. Values may
arrive as strings (form-encoded transports) and are coerced to the
declared type; missing required fields, unknown fields and values that do
not coerce raise ValidationError instead of falling back to a default.

Response field names follow the wire format workers already understand
(camelCase keys, 'type' discriminator).
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union, get_type_hints

from .errors import ValidationError

PROTOCOL_VERSION = 2

_MISSING = dataclasses.MISSING


def _unwrap_optional(tp):
    """Return (inner_type, is_optional) for Optional[X]."""
    args = getattr(tp, '__args__', None)
    if getattr(tp, '__origin__', None) is Union and args and type(None) in args:
        inner = [a for a in args if a is not type(None)]
        return inner[0], True
    return tp, False


def _coerce(name: str, value: Any, tp) -> Any:
    inner, optional = _unwrap_optional(tp)
    if value is None or (optional and value == ""):
        if optional:
            return None
        raise ValidationError(f"Field '{name}' must not be empty")

    if inner is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ('true', '1', 'false', '0'):
            return value.lower() in ('true', '1')
        raise ValidationError(f"Field '{name}' must be a boolean")
    if inner is int:
        if isinstance(value, bool):
            raise ValidationError(f"Field '{name}' must be an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Field '{name}' must be an integer, got {value!r}")
    if inner is str:
        if not isinstance(value, str):
            raise ValidationError(f"Field '{name}' must be a string")
        return value
    if inner is bytes:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        raise ValidationError(f"Field '{name}' must be bytes")
    return value


class Schema:
    """Base class for request schemas."""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]):
        """Validate and decode a request dict.

        Raises:
            ValidationError: Unknown, missing or malformed fields.
        """
        data = dict(data or {})
        hints = get_type_hints(cls)
        known = {f.name: f for f in dataclasses.fields(cls)}

        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(unknown)}")

        values = {}
        for name, f in known.items():
            if name in data:
                values[name] = _coerce(name, data[name], hints[name])
            elif f.default is _MISSING and f.default_factory is _MISSING:
                raise ValidationError(f"Missing required field '{name}'")
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in dataclasses.asdict(self).items() if v is not None}


# =============================================================================
# Requests
# =============================================================================

@dataclass
class NextGameRequest(Schema):
    user: Optional[str] = None
    password: Optional[str] = None
    version: Optional[int] = None


@dataclass
class UploadNetworkRequest(Schema):
    training_id: int
    file: bytes
    layers: int = 0
    filters: int = 0
    promote: bool = True


@dataclass
class GetNetworkRequest(Schema):
    sha: str


@dataclass
class UploadGameRequest(Schema):
    training_id: int
    network_id: int
    file: bytes
    user: Optional[str] = None
    password: Optional[str] = None
    version: Optional[int] = None
    pgn: str = ""


@dataclass
class MatchResultRequest(Schema):
    match_game_id: int
    result: int
    user: Optional[str] = None
    password: Optional[str] = None
    version: Optional[int] = None
    pgn: str = ""

    def __post_init__(self):
        if self.result not in (-1, 0, 1):
            raise ValidationError(f"Field 'result' must be -1, 0 or 1, got {self.result}")


# =============================================================================
# Responses (work assignments)
# =============================================================================

@dataclass(frozen=True)
class TrainAssignment:
    """Self-play work: generate training games with the best network."""
    training_id: int
    network_id: int
    sha: str
    params: str = ""

    work_type = 'train'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.work_type,
            'trainingId': self.training_id,
            'networkId': self.network_id,
            'sha': self.sha,
            'params': self.params,
        }


@dataclass(frozen=True)
class MatchAssignment:
    """Evaluation work: play one game of candidate vs current best."""
    match_game_id: int
    sha: str
    candidate_sha: str
    params: str = ""
    flip: bool = False

    work_type = 'match'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.work_type,
            'matchGameId': self.match_game_id,
            'sha': self.sha,
            'candidateSha': self.candidate_sha,
            'params': self.params,
            'flip': self.flip,
        }


WorkAssignment = Union[TrainAssignment, MatchAssignment]


def parse_assignment(data: Dict[str, Any]) -> WorkAssignment:
    """Decode a work assignment response.

    Raises:
        ValidationError: Unknown work type or missing fields.
    """
    try:
        work_type = data['type']
        if work_type == TrainAssignment.work_type:
            return TrainAssignment(
                training_id=int(data['trainingId']),
                network_id=int(data['networkId']),
                sha=str(data['sha']),
                params=data.get('params') or "",
            )
        if work_type == MatchAssignment.work_type:
            return MatchAssignment(
                match_game_id=int(data['matchGameId']),
                sha=str(data['sha']),
                candidate_sha=str(data['candidateSha']),
                params=data.get('params') or "",
                flip=bool(data.get('flip', False)),
            )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Malformed work assignment: {e}") from e
    raise ValidationError(f"Unknown work type: {work_type}")
