"""External engine process adapter.

Wraps one spawned game-playing engine. The adapter:
- builds the engine command line (weights, GPU selector, self-play noise
  flags, caller arguments)
- drains stdout and stderr on background threads for the whole lifetime
  of the process, so a chatty engine never blocks on a full pipe
- collects the game transcript printed between the PGN / END sentinel lines
- optionally queues stdout lines for an interactive protocol driver
- reports the exit status
"""

import queue
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional, Sequence, Union

from ..errors import EngineProcessError, EngineProtocolError

PGN_START = "PGN"
PGN_END = "END"
NO_GPU = -1
DEFAULT_COMMAND = ('./lczero',)
SELF_PLAY_FLAGS = ('--randomize', '--noise', '-t1', '--quiet')

_EOF = None


def build_engine_args(
    network_path: Union[str, Path],
    extra_args: Sequence[str] = (),
    command: Sequence[str] = DEFAULT_COMMAND,
    gpu: int = 0,
) -> List[str]:
    """Build the engine command line.

    Args:
        network_path: Network weights file.
        extra_args: Caller arguments, appended verbatim.
        command: Engine executable (plus any fixed leading arguments).
        gpu: GPU device index; NO_GPU (-1) disables GPU use.

    Returns:
        Argument list for subprocess.
    """
    args = list(command)
    args.append(f"--weights={network_path}")
    if gpu != NO_GPU:
        args.append(f"--gpu={gpu}")
    args.extend(SELF_PLAY_FLAGS)
    args.extend(extra_args)
    return args


class EngineProcess:
    """One running engine process.

    Example:
        >>> engine = EngineProcess('networks/abcd', ['--start=train 42 1'])
        >>> with engine:
        ...     engine.start()
        ...     engine.check()
        >>> print(engine.pgn)
    """

    def __init__(
        self,
        network_path: Union[str, Path],
        extra_args: Sequence[str] = (),
        command: Sequence[str] = DEFAULT_COMMAND,
        gpu: int = 0,
        interactive: bool = False,
        echo: bool = True,
        cwd: Optional[Union[str, Path]] = None,
        name: str = 'engine',
        stderr_tail: int = 50,
    ):
        """Prepare (but do not start) an engine process.

        Args:
            network_path: Network weights file.
            extra_args: Caller arguments, appended verbatim.
            command: Engine executable (plus any fixed leading arguments).
            gpu: GPU device index; -1 disables GPU use.
            interactive: Queue stdout lines for read_line().
            echo: Print engine output lines.
            cwd: Working directory of the engine.
            name: Label used when echoing output.
            stderr_tail: Number of stderr lines kept for error messages.
        """
        self.args = build_engine_args(network_path, extra_args, command, gpu)
        self.interactive = interactive
        self.echo = echo
        self.cwd = str(cwd) if cwd is not None else None
        self.name = name

        self.process: Optional[subprocess.Popen] = None
        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._pgn_lines: List[str] = []
        self._pgn_complete = False
        self._reading_pgn = False
        self._lock = threading.Lock()
        self._stderr_tail: Deque[str] = deque(maxlen=stderr_tail)
        self._threads: List[threading.Thread] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> 'EngineProcess':
        """Spawn the process and its output drain threads.

        Raises:
            EngineProcessError: If the executable cannot be started.
        """
        try:
            self.process = subprocess.Popen(
                self.args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.cwd,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            raise EngineProcessError(f"Cannot start {self.name} ({self.args[0]}): {e}") from e

        self._threads = [
            threading.Thread(
                target=self._drain,
                args=(self.process.stdout, self._handle_stdout_line),
                name=f"{self.name}-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=self._drain,
                args=(self.process.stderr, self._handle_stderr_line),
                name=f"{self.name}-stderr",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        return self

    @property
    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def wait(self, timeout: Optional[float] = None) -> int:
        """Block until the process exits.

        Output drain threads are joined too, so the transcript is complete
        when this returns.

        Returns:
            Process exit code (negative for death by signal).
        """
        if self.process is None:
            raise EngineProcessError(f"{self.name} was never started")
        returncode = self.process.wait(timeout=timeout)
        for thread in self._threads:
            thread.join(timeout=timeout)
        return returncode

    def check(self, timeout: Optional[float] = None) -> int:
        """Wait for exit and fail on an abnormal exit.

        Raises:
            EngineProcessError: Non-zero exit code.
        """
        returncode = self.wait(timeout=timeout)
        if returncode != 0:
            tail = "\n".join(self.stderr_tail)
            raise EngineProcessError(
                f"{self.name} exited with code {returncode}" + (f":\n{tail}" if tail else ""),
                returncode=returncode,
            )
        return returncode

    def terminate(self, grace_period: float = 5.0) -> None:
        """Stop a still-running process, killing it if it will not exit."""
        if not self.is_running:
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=grace_period)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait()

    def __enter__(self) -> 'EngineProcess':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close_input()
        if exc_type is not None:
            self.terminate()

    # =========================================================================
    # Input
    # =========================================================================

    def send(self, command: str) -> None:
        """Write one protocol command to the engine's stdin.

        Raises:
            EngineProcessError: The engine is gone or closed its input.
        """
        if self.process is None or self.process.stdin is None:
            raise EngineProcessError(f"{self.name} was never started")
        try:
            self.process.stdin.write(command + "\n")
            self.process.stdin.flush()
        except (BrokenPipeError, ValueError, OSError) as e:
            raise EngineProcessError(f"Cannot write to {self.name}: {e}") from e

    def close_input(self) -> None:
        """Close the engine's stdin (end of input)."""
        if self.process is not None and self.process.stdin is not None and not self.process.stdin.closed:
            try:
                self.process.stdin.close()
            except (BrokenPipeError, OSError):
                pass  # Engine already exited

    # =========================================================================
    # Output
    # =========================================================================

    def read_line(self, timeout: Optional[float] = None) -> str:
        """Next stdout line (interactive mode only).

        Raises:
            EngineProcessError: The engine closed stdout.
            EngineProtocolError: No line within timeout.
        """
        if not self.interactive:
            raise EngineProcessError(f"{self.name} is not interactive")
        try:
            line = self._lines.get(timeout=timeout)
        except queue.Empty:
            raise EngineProtocolError(f"{self.name} sent nothing for {timeout} seconds")
        if line is _EOF:
            self._lines.put(_EOF)  # Later readers see EOF too
            raise EngineProcessError(f"{self.name} closed its output")
        return line

    def read_until(self, predicate: Callable[[str], bool], timeout: Optional[float] = None) -> str:
        """Skip stdout lines until one satisfies predicate and return it."""
        while True:
            line = self.read_line(timeout=timeout)
            if predicate(line):
                return line

    @property
    def pgn(self) -> str:
        """Transcript text collected between PGN/END sentinels so far."""
        with self._lock:
            return "".join(self._pgn_lines)

    @property
    def has_pgn(self) -> bool:
        """True once at least one complete transcript has been seen."""
        with self._lock:
            return self._pgn_complete

    @property
    def stderr_tail(self) -> List[str]:
        with self._lock:
            return list(self._stderr_tail)

    def _drain(self, stream, handle_line: Callable[[str], None]) -> None:
        try:
            for raw in stream:
                handle_line(raw.rstrip("\r\n"))
        except (ValueError, OSError) as e:
            # Undecodable bytes are replaced, so only a closed pipe ends up here
            if not stream.closed:
                print(f"[{self.name}] output drain stopped: {e}")
        finally:
            if handle_line == self._handle_stdout_line:
                self._lines.put(_EOF)

    def _handle_stdout_line(self, line: str) -> None:
        if self.echo:
            print(f"[{self.name}] {line}")
        with self._lock:
            if line == PGN_START:
                self._reading_pgn = True
            elif line == PGN_END:
                if self._reading_pgn:
                    self._pgn_complete = True
                self._reading_pgn = False
            elif self._reading_pgn:
                self._pgn_lines.append(line + "\n")
        if self.interactive:
            self._lines.put(line)

    def _handle_stderr_line(self, line: str) -> None:
        if self.echo:
            print(f"[{self.name}:err] {line}")
        with self._lock:
            self._stderr_tail.append(line)
