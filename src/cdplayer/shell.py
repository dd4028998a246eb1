"""
External command execution for cd-player.

Every interaction with Colima, Docker and the OS process list goes through
this module. Commands are run through `/bin/sh -c` so callers can use pipes
and redirections, with stdout and stderr merged into a single text result.

Functions:
  - run_command(): run and capture output plus exit status
  - run_shell_command(): run and capture output only
  - launch_detached(): start a process and return without waiting
  - open_terminal_with_command(): run a command in an interactive terminal
  - find_binary(): resolve colima/docker outside of the login PATH

Classes:
  - CommandResult: captured output and exit status
  - LogStream: long-lived streaming subprocess with a reader thread

Error Handling:
  - Every failure (missing binary, OS error) degrades to an empty result,
    logged via the module logger. Nothing here raises to the caller.
"""

import functools
import logging
import os
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

SEARCH_PATH = "/opt/homebrew/bin:/usr/local/bin:/usr/bin:/bin:/usr/sbin"

# Returned when the command could not be started at all.
LAUNCH_FAILED = -1


def shell_safe(default_return: Any = None) -> Callable:
    """
    Decorator for external command wrappers that ensures safe error handling.

    Catches exceptions, logs them, and returns a default value so that a
    missing binary or broken pipe never reaches the UI.

    Args:
        default_return: Value to return if exception occurs ("", [], None, etc.)

    Usage:
        @shell_safe(default_return=[])
        def fetch_containers(self) -> List[DockerContainer]:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.error(f"Command failed in {func.__name__}: {e}", exc_info=True)
                return default_return
        return wrapper
    return decorator


@dataclass(frozen=True)
class CommandResult:
    output: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def command_env(extra_env: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Process environment with the Homebrew-aware PATH and overrides applied."""
    env = dict(os.environ)
    env["PATH"] = SEARCH_PATH
    if extra_env:
        env.update(extra_env)
    return env


def find_binary(name: str, configured: str = "") -> str:
    """
    Resolve an executable without relying on shell aliases.

    Order: configured path, Homebrew/system locations, then the bare name
    for PATH lookup.
    """
    if configured:
        return configured
    for directory in ("/opt/homebrew/bin", "/usr/local/bin", "/usr/bin"):
        candidate = os.path.join(directory, name)
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return name


@shell_safe(default_return=CommandResult("", LAUNCH_FAILED))
def run_command(command: str, extra_env: Optional[Dict[str, str]] = None) -> CommandResult:
    """Run a shell command synchronously, merging stdout and stderr."""
    proc = subprocess.run(
        ["/bin/sh", "-c", command],
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        env=command_env(extra_env),
        check=False,
    )
    output = proc.stdout.decode("utf-8", errors="replace") if proc.stdout else ""
    return CommandResult(output, proc.returncode)


def run_shell_command(command: str, extra_env: Optional[Dict[str, str]] = None) -> str:
    """Run a shell command and return its captured text, ignoring the exit code."""
    return run_command(command, extra_env).output


@shell_safe(default_return=None)
def launch_detached(argv: List[str], extra_env: Optional[Dict[str, str]] = None) -> Optional[subprocess.Popen]:
    """Start a process without waiting for it; output is discarded."""
    return subprocess.Popen(
        argv,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        stdin=subprocess.DEVNULL,
        env=command_env(extra_env),
        start_new_session=True,
    )


def terminal_launcher(command: str) -> List[str]:
    """Build the argv that opens an interactive terminal running `command`."""
    if sys.platform == "darwin":
        escaped = command.replace('"', '\\"')
        script = (
            'tell application "Terminal"\n'
            "    activate\n"
            f'    do script "{escaped}"\n'
            "end tell"
        )
        return ["/usr/bin/osascript", "-e", script]
    return ["x-terminal-emulator", "-e", "/bin/sh", "-c", f"{command}; exec $SHELL"]


def open_terminal_with_command(command: str) -> None:
    """Open a terminal window and run a command in it (used for sudo flows)."""
    logger.info(f"Opening terminal for: {command}")
    launch_detached(terminal_launcher(command))


class LogStream:
    """
    Streaming subprocess whose output is pushed to a handler in chunks.

    A daemon reader thread reads the merged stdout/stderr of the process and
    delivers each decoded chunk through `deliver`, which by default calls the
    handler directly. Managers pass `loop.call_soon_threadsafe` so chunks
    arrive on the owner loop.

    close() terminates the subprocess and detaches the handler; chunks read
    after close() are dropped.
    """

    CHUNK_SIZE = 4096

    def __init__(
        self,
        command: str,
        handler: Callable[[str], None],
        extra_env: Optional[Dict[str, str]] = None,
        deliver: Optional[Callable[..., Any]] = None,
    ):
        self.command = command
        self._handler: Optional[Callable[[str], None]] = handler
        self._deliver = deliver
        self.process: Optional[subprocess.Popen] = None
        self._thread: Optional[threading.Thread] = None
        try:
            self.process = subprocess.Popen(
                ["/bin/sh", "-c", command],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                env=command_env(extra_env),
            )
        except Exception as e:
            logger.error(f"Failed to start log stream '{command}': {e}", exc_info=True)
            return
        self._thread = threading.Thread(
            target=self._read_loop, args=(self.process.stdout,), daemon=True
        )
        self._thread.start()

    @property
    def is_active(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def _read_loop(self, stream) -> None:
        try:
            while True:
                data = os.read(stream.fileno(), self.CHUNK_SIZE)
                if not data:
                    break
                self._emit(data.decode("utf-8", errors="replace"))
        except (OSError, ValueError):
            # File descriptor closed by close()
            pass

    def _emit(self, text: str) -> None:
        if self._handler is None:
            return
        if self._deliver is None:
            self._dispatch(text)
        else:
            try:
                self._deliver(self._dispatch, text)
            except RuntimeError:
                # Owner loop already closed
                self._handler = None

    def _dispatch(self, text: str) -> None:
        handler = self._handler
        if handler is not None:
            handler(text)

    def close(self) -> None:
        self._handler = None
        if self.process is None:
            return
        if self.process.poll() is None:
            self.process.terminate()
            try:
                self.process.wait(timeout=0.5)
            except subprocess.TimeoutExpired:
                self.process.kill()
        if self.process.stdout is not None:
            self.process.stdout.close()
        self.process = None
