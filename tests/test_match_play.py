"""Tests for the match game runner."""

import pytest

from netarena.errors import EngineProtocolError
from netarena.workers.engine import EngineProcess
from netarena.workers.match_play import MatchGameRunner


class ScriptedEngine:
    """Minimal engine double answering go with scripted moves."""

    def __init__(self, name, moves):
        self.name = name
        self.moves = list(moves)
        self.sent = []
        self._pending = []
        self.checked = False

    def send(self, command):
        self.sent.append(command)
        if command == 'uci':
            self._pending += ['id name scripted', 'uciok']
        elif command == 'isready':
            self._pending.append('readyok')
        elif command == 'go':
            self._pending.append(f'bestmove {self.moves.pop(0)}')

    def read_until(self, predicate, timeout=None):
        while self._pending:
            line = self._pending.pop(0)
            if predicate(line):
                return line
        raise AssertionError(f"{self.name}: nothing left to read")

    def close_input(self):
        pass

    def check(self, timeout=None):
        self.checked = True
        return 0


FOOLS_MATE_WHITE = ['f2f3', 'g2g4']
FOOLS_MATE_BLACK = ['e7e5', 'd8h4']


class TestScriptedGames:
    """Tests with scripted engines."""

    def test_candidate_wins_as_black(self):
        baseline = ScriptedEngine('baseline', FOOLS_MATE_WHITE)
        candidate = ScriptedEngine('candidate', FOOLS_MATE_BLACK)

        result = MatchGameRunner(baseline, candidate, flip=False).play()

        assert result.result == 1
        assert result.termination == 'checkmate'
        assert result.plies == 4
        assert '[White "baseline"]' in result.pgn
        assert '[Result "0-1"]' in result.pgn

    def test_flip_puts_candidate_on_white(self):
        baseline = ScriptedEngine('baseline', FOOLS_MATE_BLACK)
        candidate = ScriptedEngine('candidate', FOOLS_MATE_WHITE)

        result = MatchGameRunner(baseline, candidate, flip=True).play()

        assert result.result == -1
        assert '[White "candidate"]' in result.pgn

    def test_position_includes_move_history(self):
        baseline = ScriptedEngine('baseline', FOOLS_MATE_WHITE)
        candidate = ScriptedEngine('candidate', FOOLS_MATE_BLACK)
        MatchGameRunner(baseline, candidate).play()

        assert baseline.sent[:4] == ['uci', 'ucinewgame', 'isready', 'position startpos']
        assert 'position startpos moves f2f3 e7e5' in baseline.sent
        assert candidate.sent[-1] == 'quit'
        assert baseline.checked and candidate.checked

    def test_ply_cap_is_a_draw(self):
        shuffle_white = ['g1f3', 'f3g1'] * 3
        shuffle_black = ['g8f6', 'f6g8'] * 3
        baseline = ScriptedEngine('baseline', shuffle_white)
        candidate = ScriptedEngine('candidate', shuffle_black)

        result = MatchGameRunner(baseline, candidate, max_plies=3).play()

        assert result.result == 0
        assert result.termination == 'max_plies'
        assert result.plies == 3
        assert '[Result "1/2-1/2"]' in result.pgn

    def test_illegal_move(self):
        baseline = ScriptedEngine('baseline', ['e2e5'])
        candidate = ScriptedEngine('candidate', [])
        with pytest.raises(EngineProtocolError, match='illegal'):
            MatchGameRunner(baseline, candidate).play()

    def test_malformed_move(self):
        baseline = ScriptedEngine('baseline', ['zz'])
        candidate = ScriptedEngine('candidate', [])
        with pytest.raises(EngineProtocolError):
            MatchGameRunner(baseline, candidate).play()


class TestEngineGames:
    """Tests against the fake engine process."""

    def _engine(self, tmp_path, engine_command, name, args=()):
        return EngineProcess('net', list(args), command=engine_command, interactive=True,
                             echo=False, cwd=tmp_path, name=name).start()

    def test_full_game(self, tmp_path, engine_command):
        baseline = self._engine(tmp_path, engine_command, 'baseline')
        candidate = self._engine(tmp_path, engine_command, 'candidate')

        result = MatchGameRunner(baseline, candidate, max_plies=20, read_timeout=30).play()

        assert result.result in (-1, 0, 1)
        assert 0 < result.plies <= 20
        assert '[Event "netarena match"]' in result.pgn
        assert not baseline.is_running and not candidate.is_running

    def test_illegal_engine(self, tmp_path, engine_command):
        baseline = self._engine(tmp_path, engine_command, 'baseline', ['--illegal'])
        candidate = self._engine(tmp_path, engine_command, 'candidate')
        try:
            with pytest.raises(EngineProtocolError):
                MatchGameRunner(baseline, candidate, read_timeout=30).play()
        finally:
            baseline.terminate()
            candidate.terminate()
