"""Tests for the Coordinator request surface, administration and status."""

from unittest.mock import patch

import pytest
import redis

from netarena.coordinator.head_node import Coordinator, create_coordinator
from netarena.errors import NotFound, ValidationError


class TestRequestSurface:
    """Tests for handle() error mapping."""

    def test_unknown_endpoint(self, seeded):
        response = seeded.handle('launch_missiles', {})
        assert response['status'] == 'error'
        assert response['error'] == 'validation_error'

    def test_unknown_field(self, seeded):
        response = seeded.handle('next_game', {'user': 'a', 'colour': 'blue'})
        assert response['error'] == 'validation_error'
        assert 'colour' in response['message']

    def test_malformed_version(self, seeded):
        response = seeded.handle('next_game', {'user': 'a', 'password': 'b', 'version': 'two'})
        assert response['error'] == 'validation_error'

    def test_empty_version_is_legacy(self, seeded):
        response = seeded.handle('next_game', {'version': ''})
        assert response['type'] == 'train'

    def test_storage_failure_is_reported(self, seeded):
        with patch.object(seeded.store, 'get_active_training_run', side_effect=redis.ConnectionError("down")):
            response = seeded.handle('next_game', {})
        assert response['error'] == 'storage_error'

        # Coordinator keeps serving
        assert seeded.handle('next_game', {})['type'] == 'train'

    def test_errors_are_counted(self, seeded, metrics):
        seeded.handle('get_network', {'sha': 'ffff'})
        value = metrics.registry.get_sample_value(
            'netarena_request_errors_total', {'endpoint': 'get_network', 'error': 'not_found'}
        )
        assert value == 1.0

    def test_assignments_are_counted(self, seeded, metrics):
        seeded.handle('next_game', {})
        assert metrics.registry.get_sample_value('netarena_work_assigned_total', {'work_type': 'train'}) == 1.0


class TestAdministration:
    """Tests for operator actions."""

    def test_create_match_uses_active_run(self, seeded):
        candidate = seeded.store.create_network("efgh", "b")
        match = seeded.create_match(candidate.id)
        assert match.training_run_id == 1
        assert match.current_best_id == 1
        assert match.parameters == "[]"

    def test_create_match_without_run(self, coordinator):
        with pytest.raises(ValidationError):
            coordinator.create_match(1)

    def test_promote_network(self, seeded):
        candidate = seeded.store.create_network("efgh", "b")
        seeded.promote_network(1, candidate.id)
        assert seeded.handle('next_game', {})['sha'] == 'efgh'

    def test_promote_unknown_network(self, seeded):
        with pytest.raises(NotFound):
            seeded.promote_network(1, 9)


class TestStatus:
    """Tests for status reporting and lifecycle."""

    def test_cluster_status(self, seeded):
        status = seeded.get_cluster_status()
        assert status['active_run_id'] == 1
        assert status['best_network_sha'] == 'abcd'
        assert status['uptime_seconds'] >= 0

    def test_print_status(self, seeded, capsys, metrics):
        seeded.print_status()
        out = capsys.readouterr().out
        assert 'run 1' in out
        assert 'abcd' in out
        assert metrics.registry.get_sample_value('netarena_open_matches') == 0.0

    def test_non_blocking_start_and_stop(self, store, metrics):
        coordinator = create_coordinator(store=store, metrics=metrics)
        coordinator.status_interval = 0.05
        coordinator.start(blocking=False)
        assert coordinator.running
        coordinator.stop()
        assert not coordinator.running
        assert not store.is_open

    def test_unreachable_redis(self, metrics):
        from netarena.config import NetArenaConfig, RedisConfig
        from netarena.errors import StorageError

        with pytest.raises(StorageError):
            Coordinator(NetArenaConfig(redis=RedisConfig(host='127.0.0.1', port=1)), metrics=metrics)
