"""Tests for request/response schemas and error responses."""

import pytest

from netarena.errors import (
    AlreadyExists,
    AuthFailure,
    CoordinatorError,
    NotFound,
    ValidationError,
    raise_for_response,
)
from netarena.schemas import (
    MatchAssignment,
    MatchResultRequest,
    NextGameRequest,
    TrainAssignment,
    UploadGameRequest,
    UploadNetworkRequest,
    parse_assignment,
)


class TestRequestValidation:
    """Tests for typed request decoding."""

    def test_string_values_are_coerced(self):
        request = UploadGameRequest.from_dict({
            'training_id': '3', 'network_id': '4', 'file': b'x', 'version': '2',
        })
        assert (request.training_id, request.network_id, request.version) == (3, 4, 2)

    def test_optional_fields_default_to_none(self):
        request = NextGameRequest.from_dict({})
        assert request.user is None and request.version is None

    def test_missing_required_field(self):
        with pytest.raises(ValidationError, match="network_id"):
            UploadGameRequest.from_dict({'training_id': 1, 'file': b'x'})

    def test_unknown_field(self):
        with pytest.raises(ValidationError, match="bogus"):
            NextGameRequest.from_dict({'bogus': 1})

    def test_non_numeric_integer(self):
        with pytest.raises(ValidationError):
            UploadNetworkRequest.from_dict({'training_id': 'x', 'file': b''})

    def test_bool_is_not_an_integer(self):
        with pytest.raises(ValidationError):
            UploadNetworkRequest.from_dict({'training_id': True, 'file': b''})

    def test_file_must_be_bytes(self):
        with pytest.raises(ValidationError):
            UploadNetworkRequest.from_dict({'training_id': 1, 'file': 'text'})

    def test_promote_flag(self):
        assert not UploadNetworkRequest.from_dict({'training_id': 1, 'file': b'', 'promote': '0'}).promote
        assert UploadNetworkRequest.from_dict({'training_id': 1, 'file': b''}).promote

    def test_result_range(self):
        assert MatchResultRequest.from_dict({'match_game_id': 1, 'result': '-1'}).result == -1
        with pytest.raises(ValidationError):
            MatchResultRequest.from_dict({'match_game_id': 1, 'result': 3})


class TestAssignments:
    """Tests for work assignment responses."""

    def test_train_roundtrip(self):
        assignment = TrainAssignment(training_id=1, network_id=2, sha='abcd', params='["-t1"]')
        assert parse_assignment(assignment.to_dict()) == assignment

    def test_match_roundtrip(self):
        assignment = MatchAssignment(match_game_id=5, sha='abcd', candidate_sha='efgh', flip=True)
        assert parse_assignment(assignment.to_dict()) == assignment

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            parse_assignment({'type': 'sleep'})

    def test_missing_field(self):
        with pytest.raises(ValidationError):
            parse_assignment({'type': 'match', 'sha': 'abcd'})


class TestErrorResponses:
    """Tests for error response mapping."""

    @pytest.mark.parametrize("error_cls", [AuthFailure, AlreadyExists, NotFound, ValidationError])
    def test_typed_error_roundtrip(self, error_cls):
        response = error_cls("boom").to_response()
        with pytest.raises(error_cls, match="boom"):
            raise_for_response(response)

    def test_unknown_error_type(self):
        with pytest.raises(CoordinatorError):
            raise_for_response({'status': 'error', 'error': 'mystery', 'message': 'x'})

    def test_ok_response_passes_through(self):
        response = {'status': 'ok', 'networkId': 2}
        assert raise_for_response(response) is response
