"""Tests for the Redis row store."""

import pytest

from netarena.coordinator.store import (
    Match,
    MatchGame,
    RedisStore,
    TrainingRun,
)
from netarena.errors import InvalidState, NotFound, StorageError


class TestRows:
    """Tests for row serialization."""

    def test_json_roundtrip_keeps_optional_fields(self):
        run = TrainingRun(id=3, description="main", best_network_id=None, active=True)
        restored = TrainingRun.from_json(run.to_json())
        assert restored == run

    def test_from_dict_ignores_unknown_keys(self):
        data = MatchGame(id=1, match_id=2).to_dict()
        data['extra'] = 'ignored'
        assert MatchGame.from_dict(data).match_id == 2


class TestLifecycle:
    """Tests for store lifecycle."""

    def test_open_fails_when_unreachable(self):
        store = RedisStore(host='127.0.0.1', port=1)
        with pytest.raises(StorageError):
            store.open()

    def test_context_manager(self, redis_client):
        with RedisStore(client=redis_client) as store:
            assert store.is_open
        assert not store.is_open

    def test_prefix_isolates_keys(self, redis_client):
        a = RedisStore(client=redis_client, prefix="a").open()
        b = RedisStore(client=redis_client, prefix="b").open()
        a.create_training_run("only in a")
        assert len(a.list_training_runs()) == 1
        assert b.list_training_runs() == []


class TestTrainingRuns:
    """Tests for training runs."""

    def test_single_active_run(self, store):
        first = store.create_training_run("first", active=True)
        second = store.create_training_run("second", active=True)

        assert store.get_active_training_run().id == second.id
        assert not store.get_training_run(first.id).active

    def test_activate_unknown_run(self, store):
        with pytest.raises(NotFound):
            store.set_active_training_run(42)

    def test_set_best_network_requires_network(self, store):
        run = store.create_training_run("run")
        with pytest.raises(NotFound):
            store.set_best_network(run.id, 99)


class TestNetworks:
    """Tests for network rows and the hash index."""

    def test_ids_are_sequential(self, store):
        a = store.create_network("aa", "networks/aa")
        b = store.create_network("bb", "networks/bb")
        assert (a.id, b.id) == (1, 2)

    def test_reserve_is_exclusive(self, store):
        assert store.reserve_network_sha("aa")
        assert not store.reserve_network_sha("aa")

    def test_pending_reservation_is_not_visible(self, store):
        store.reserve_network_sha("aa")
        assert store.get_network_by_sha("aa") is None

    def test_release_only_drops_pending(self, store):
        store.reserve_network_sha("aa")
        store.release_network_sha("aa")
        assert store.reserve_network_sha("aa")

        store.create_network("aa", "networks/aa")
        store.release_network_sha("aa")
        assert store.get_network_by_sha("aa") is not None

    def test_increment_games_played(self, store):
        network = store.create_network("aa", "networks/aa")
        for _ in range(3):
            store.increment_games_played(network.id)
        assert store.get_network(network.id).games_played == 3

    def test_increment_unknown_network(self, store):
        with pytest.raises(NotFound):
            store.increment_games_played(7)


class TestUsers:
    """Tests for users."""

    def test_upsert_creates_once(self, store):
        user, created = store.upsert_user("alice", "hash", "salt")
        again, created_again = store.upsert_user("alice", "other", "other")

        assert created and not created_again
        assert again.id == user.id
        assert again.password_hash == "hash"

    def test_touch_user(self, store):
        user, _ = store.upsert_user("alice", "hash", "salt")
        assert store.touch_user(user.id, 2).version == 2


class TestMatches:
    """Tests for matches and match games."""

    @pytest.fixture
    def match(self, store) -> Match:
        run = store.create_training_run("run", active=True)
        return store.create_match(run.id, candidate_id=2, current_best_id=1, parameters="[]")

    def test_open_matches(self, store, match):
        assert [m.id for m in store.get_open_matches(match.training_run_id)] == [match.id]

    def test_done_match_leaves_open_set(self, store, match):
        store.set_match_done(match.id)
        assert store.get_open_matches(match.training_run_id) == []

    def test_set_match_done_twice(self, store, match):
        store.set_match_done(match.id)
        with pytest.raises(InvalidState):
            store.set_match_done(match.id)

    def test_created_done_match_is_not_open(self, store):
        run = store.create_training_run("run")
        store.create_match(run.id, 2, 1, "[]", done=True)
        assert store.get_open_matches(run.id) == []

    def test_allocation_alternates_flip(self, store, match):
        flips = [store.allocate_match_game(match.id)[0].flip for _ in range(4)]
        assert flips == [False, True, False, True]

    def test_allocation_numbers(self, store, match):
        numbers = [store.allocate_match_game(match.id)[1] for _ in range(3)]
        assert numbers == [1, 2, 3]

    def test_allocation_refused_after_done(self, store, match):
        store.set_match_done(match.id)
        with pytest.raises(InvalidState):
            store.allocate_match_game(match.id)

    def test_allocation_unknown_match(self, store):
        with pytest.raises(NotFound):
            store.allocate_match_game(5)

    def test_record_result_once(self, store, match):
        game, _ = store.allocate_match_game(match.id, user_id=1)
        recorded = store.record_match_game_result(game.id, -1, "1. e4")

        assert recorded.done and recorded.result == -1 and recorded.pgn == "1. e4"
        with pytest.raises(InvalidState):
            store.record_match_game_result(game.id, 1, "")
        assert store.get_match_game(game.id).result == -1

    def test_record_result_unknown_game(self, store):
        with pytest.raises(NotFound):
            store.record_match_game_result(11, 0, "")

    def test_list_match_games(self, store, match):
        store.allocate_match_game(match.id)
        store.allocate_match_game(match.id)
        assert [g.id for g in store.list_match_games(match.id)] == [1, 2]


class TestTrainingGamesAndStatus:
    """Tests for training games and the status snapshot."""

    def test_training_games_roundtrip(self, store):
        game = store.add_training_game(1, 1, 1, "training/1/x.gz", "pgn", 2)
        assert store.count_training_games() == 1
        assert store.get_training_games() == [game]

    def test_status(self, store):
        network = store.create_network("abcd", "networks/abcd")
        run = store.create_training_run("run", best_network_id=network.id, active=True)
        store.create_match(run.id, network.id, network.id, "[]")

        status = store.get_status()
        assert status.active_run_id == run.id
        assert status.best_network_sha == "abcd"
        assert status.networks == 1
        assert status.open_matches == [1]

    def test_status_without_run(self, store):
        status = store.get_status()
        assert status.active_run_id is None
        assert status.open_matches == []
