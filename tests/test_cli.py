"""Tests for the admin CLI commands against an in-memory coordinator."""

import sys

import pytest

from netarena.cli import main as cli

from conftest import make_weights, sha256


@pytest.fixture
def run_cli(seeded, monkeypatch, capsys):
    monkeypatch.setattr(cli, '_connect', lambda args: seeded)

    def run(*argv):
        monkeypatch.setattr(sys, 'argv', ['netarena', *argv])
        cli.main()
        return capsys.readouterr().out

    return run


class TestAdminCommands:
    """Tests for runs / network / match / status subcommands."""

    def test_runs_list(self, run_cli):
        assert '* 1: Testing' in run_cli('runs', 'list')

    def test_runs_create_and_activate(self, run_cli, seeded):
        run_cli('runs', 'create', 'second', '--inactive', '--best-network', '1')
        assert seeded.store.get_active_training_run().id == 1

        run_cli('runs', 'activate', '2')
        assert seeded.store.get_active_training_run().id == 2

    def test_runs_params(self, run_cli, seeded):
        run_cli('runs', 'params', '1', '["--visits=800"]')
        assert seeded.store.get_training_run(1).train_parameters == '["--visits=800"]'

    def test_network_upload_raw_file(self, run_cli, seeded, tmp_path):
        weights = tmp_path / 'weights.bin'
        weights.write_bytes(make_weights('a'))

        out = run_cli('network', 'upload', str(weights), '--layers', '6', '--filters', '64')
        assert sha256(make_weights('a')) in out
        assert seeded.store.get_training_run(1).best_network_id == 2

    def test_network_upload_duplicate_exits(self, run_cli, tmp_path):
        weights = tmp_path / 'weights.bin'
        weights.write_bytes(make_weights('a'))
        run_cli('network', 'upload', str(weights))
        with pytest.raises(SystemExit):
            run_cli('network', 'upload', str(weights))

    def test_match_lifecycle(self, run_cli, seeded):
        seeded.store.create_network('efgh', 'x')

        assert 'Created match 1' in run_cli('match', 'create', '2', '--params', '["--visits 10"]')
        assert '[open]' in run_cli('match', 'list')
        run_cli('match', 'done', '1')
        assert '[done]' in run_cli('match', 'list')

    def test_status(self, run_cli):
        out = run_cli('status')
        assert 'Active training run: 1' in out
        assert 'Best network: abcd' in out

    def test_no_command(self, monkeypatch):
        monkeypatch.setattr(sys, 'argv', ['netarena'])
        with pytest.raises(SystemExit):
            cli.main()
