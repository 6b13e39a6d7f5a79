"""Head-to-head match game between two engine processes.

Both engines speak UCI over stdin/stdout. The runner keeps the authoritative
board with python-chess, asks the side to move for a move each ply, rejects
illegal replies, and adjudicates the result. Without flip the baseline
(current best) network plays white.
"""

from dataclasses import dataclass
from typing import Optional

import chess
import chess.pgn

from .engine import EngineProcess
from ..coordinator.store import RESULT_DRAW, RESULT_LOSS, RESULT_WIN
from ..errors import EngineProtocolError

DEFAULT_MAX_PLIES = 450


@dataclass
class MatchGameResult:
    """Outcome of one match game, from the candidate's point of view."""
    result: int  # +1 candidate won, 0 draw, -1 candidate lost
    pgn: str
    termination: str
    plies: int


class MatchGameRunner:
    """Plays one game of candidate vs. baseline."""

    def __init__(
        self,
        baseline: EngineProcess,
        candidate: EngineProcess,
        flip: bool = False,
        max_plies: int = DEFAULT_MAX_PLIES,
        go_command: str = 'go',
        read_timeout: Optional[float] = None,
    ):
        self.baseline = baseline
        self.candidate = candidate
        self.flip = flip
        self.max_plies = max_plies
        self.go_command = go_command
        self.read_timeout = read_timeout

        if flip:
            self.white, self.black = candidate, baseline
        else:
            self.white, self.black = baseline, candidate

    def play(self) -> MatchGameResult:
        """Play the game to completion and shut both engines down.

        Raises:
            EngineProtocolError: An engine broke the protocol or moved illegally.
            EngineProcessError: An engine died or exited abnormally.
        """
        for engine in (self.white, self.black):
            self._handshake(engine)

        board = chess.Board()
        while not board.is_game_over(claim_draw=True) and board.ply() < self.max_plies:
            engine = self.white if board.turn == chess.WHITE else self.black
            board.push(self._request_move(engine, board))

        for engine in (self.white, self.black):
            self._shutdown(engine)

        outcome = board.outcome(claim_draw=True)
        if outcome is None:
            termination = 'max_plies'
            winner = None
        else:
            termination = outcome.termination.name.lower()
            winner = outcome.winner

        result = self._candidate_result(winner)
        print(f"Match game finished after {board.ply()} plies ({termination}), candidate result {result:+d}")
        return MatchGameResult(
            result=result,
            pgn=self._transcript(board, winner),
            termination=termination,
            plies=board.ply(),
        )

    def _candidate_result(self, winner: Optional[bool]) -> int:
        if winner is None:
            return RESULT_DRAW
        candidate_color = chess.WHITE if self.flip else chess.BLACK
        return RESULT_WIN if winner == candidate_color else RESULT_LOSS

    def _handshake(self, engine: EngineProcess) -> None:
        engine.send('uci')
        engine.read_until(lambda line: line.strip() == 'uciok', timeout=self.read_timeout)
        engine.send('ucinewgame')
        engine.send('isready')
        engine.read_until(lambda line: line.strip() == 'readyok', timeout=self.read_timeout)

    def _request_move(self, engine: EngineProcess, board: chess.Board) -> chess.Move:
        position = 'position startpos'
        if board.move_stack:
            position += ' moves ' + ' '.join(move.uci() for move in board.move_stack)
        engine.send(position)
        engine.send(self.go_command)

        line = engine.read_until(lambda l: l.startswith('bestmove'), timeout=self.read_timeout)
        tokens = line.split()
        if len(tokens) < 2:
            raise EngineProtocolError(f"{engine.name} sent bestmove without a move")
        try:
            move = chess.Move.from_uci(tokens[1])
        except ValueError:
            raise EngineProtocolError(f"{engine.name} sent malformed move {tokens[1]!r}")
        if move not in board.legal_moves:
            raise EngineProtocolError(f"{engine.name} played illegal move {move.uci()} in {board.fen()}")
        return move

    def _shutdown(self, engine: EngineProcess) -> None:
        engine.send('quit')
        engine.close_input()
        engine.check()

    def _transcript(self, board: chess.Board, winner: Optional[bool]) -> str:
        game = chess.pgn.Game.from_board(board)
        game.headers['Event'] = 'netarena match'
        game.headers['White'] = 'candidate' if self.flip else 'baseline'
        game.headers['Black'] = 'baseline' if self.flip else 'candidate'
        if winner is None:
            game.headers['Result'] = '1/2-1/2'
        else:
            game.headers['Result'] = '1-0' if winner == chess.WHITE else '0-1'
        return str(game)
