"""Tests for configuration dataclasses and YAML loading."""

import dataclasses

import pytest

from netarena.config import (
    BackoffConfig,
    NetArenaConfig,
    dict_to_config,
    load_config,
    merge_cli_args,
    resolve_command,
    save_config,
    validate_config,
)


class TestConfig:
    """Tests for building configuration values."""

    def test_defaults_are_valid(self):
        assert validate_config(NetArenaConfig()) == []

    def test_config_is_immutable(self):
        config = NetArenaConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.redis.port = 1

    def test_dict_to_config(self):
        config = dict_to_config({
            'redis': {'host': 'head', 'port': 6380},
            'engine': {'command': './lczero --threads 2', 'gpu': -1},
        })
        assert config.redis.host == 'head'
        assert config.redis.port == 6380
        assert config.engine.command == ('./lczero', '--threads', '2')
        assert config.engine.gpu == -1
        assert config.backoff == BackoffConfig()

    def test_unknown_key_rejected(self):
        with pytest.raises(TypeError):
            dict_to_config({'redis': {'hots': 'typo'}})

    def test_yaml_roundtrip(self, tmp_path):
        config = dict_to_config({'worker': {'user': 'alice', 'password': 'pw'}, 'engine': {'command': ['a', 'b']}})
        path = tmp_path / 'configs' / 'netarena.yaml'
        save_config(config, path)
        assert load_config(path) == config

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / 'missing.yaml')


class TestValidation:
    """Tests for validate_config."""

    def test_worker_needs_credentials(self):
        issues = validate_config(NetArenaConfig(), for_worker=True)
        assert "worker.user must be set" in issues
        assert "worker.password must be non-empty" in issues

    def test_bad_backoff(self):
        config = dict_to_config({'backoff': {'base_delay': 10, 'max_delay': 5}})
        assert any('max_delay' in issue for issue in validate_config(config))

    def test_bad_backend(self):
        config = dict_to_config({'storage': {'backend': 's3'}})
        assert any('storage.backend' in issue for issue in validate_config(config))

    def test_worker_local_backend_needs_shared_path(self):
        worker = {'user': 'alice', 'password': 'pw'}
        relative = dict_to_config({'storage': {'backend': 'local', 'blob_dir': 'blobs'}, 'worker': worker})
        shared = dict_to_config({'storage': {'backend': 'local', 'blob_dir': '/mnt/shared/blobs'}, 'worker': worker})

        assert any('storage.blob_dir' in issue for issue in validate_config(relative, for_worker=True))
        assert validate_config(shared, for_worker=True) == []
        # The coordinator owns its local directory
        assert validate_config(relative) == []


class TestResolveCommand:
    """Tests for anchoring the engine executable."""

    def test_relative_path_is_anchored(self):
        assert resolve_command(('./lczero', '--threads', '2'), base='/opt/arena') == (
            '/opt/arena/lczero', '--threads', '2')

    def test_nested_relative_path(self):
        assert resolve_command(('bin/lczero',), base='/opt/arena') == ('/opt/arena/bin/lczero',)

    @pytest.mark.parametrize("command", [('lczero',), ('/usr/bin/lczero', '-t1'), ()])
    def test_unchanged(self, command):
        assert resolve_command(command, base='/opt/arena') == command


class TestMergeCliArgs:
    """Tests for CLI overrides."""

    def test_overrides_and_ignores_none(self):
        config = merge_cli_args(NetArenaConfig(), {
            'redis_host': '10.0.0.1',
            'redis_port': None,
            'user': 'bob',
            'engine_command': 'python engine.py',
        })
        assert config.redis.host == '10.0.0.1'
        assert config.redis.port == 6379
        assert config.worker.user == 'bob'
        assert config.engine.command == ('python', 'engine.py')

    def test_original_unchanged(self):
        original = NetArenaConfig()
        merge_cli_args(original, {'gpu': 3})
        assert original.engine.gpu == 0
