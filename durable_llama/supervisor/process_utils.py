import os
import sys
import time
import psutil
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from durable_llama.config import effective_settings as config

log = logging.getLogger(__name__)


class ChildLaunchError(RuntimeError):
    """The supervised binary could not be spawned at all."""


@dataclass(frozen=True)
class ExitStatus:
    """Result of a non-blocking status check on the child."""

    running: bool
    exit_code: Optional[int] = None
    signal: Optional[int] = None

    @property
    def exited(self) -> bool:
        return self.exit_code is not None

    @property
    def signaled(self) -> bool:
        return self.signal is not None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    @classmethod
    def from_returncode(cls, returncode: Optional[int]) -> "ExitStatus":
        if returncode is None:
            return cls(running=True)
        if returncode < 0:
            return cls(running=False, signal=-returncode)
        return cls(running=False, exit_code=returncode)


@dataclass
class ChildProcess:
    """
    The supervised subprocess and the read end of its combined output pipe.

    The record owns both; use it as a context manager, or hand it to
    ``ProcessRunner.terminate_and_reap``, to release them.
    """

    proc: psutil.Popen
    args: List[str]
    last_output: float = field(default_factory=time.monotonic)
    reaped: bool = False

    @property
    def pid(self) -> int:
        return self.proc.pid

    def fileno(self) -> int:
        return self.proc.stdout.fileno()

    def close_stream(self) -> None:
        if self.proc.stdout is not None and not self.proc.stdout.closed:
            self.proc.stdout.close()

    def __enter__(self) -> "ChildProcess":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        ProcessRunner().terminate_and_reap(self)


def _get_popen_kwargs() -> Dict[str, Any]:
    """Returns platform-specific keyword arguments for Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    # Terminal signals reach only the supervisor, which then stops the child itself.
    return {"start_new_session": True}


def _forceful_kill(processes: List[psutil.Process]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process {proc.name()} (PID {proc.pid}).")
            proc.kill()
        except psutil.NoSuchProcess:
            continue


class ProcessRunner:
    """Spawns, polls and tears down the supervised child process."""

    def __init__(self, shutdown_timeout: Optional[float] = None) -> None:
        """
        :param shutdown_timeout: Seconds to wait after SIGTERM before SIGKILL.
            Zero or negative waits for as long as the child takes.
        """
        if shutdown_timeout is None:
            shutdown_timeout = config.GRACEFUL_SHUTDOWN_TIMEOUT
        self.shutdown_timeout = shutdown_timeout if shutdown_timeout > 0 else None

    def start(self, args: Sequence[str]) -> ChildProcess:
        """
        Launches the child with stdout and stderr sharing one non-blocking pipe.

        :param args: The full argument list, program name first.
        :return: The new ChildProcess.
        :raises ChildLaunchError: If the binary cannot be executed.
        """
        args = list(args)
        log.info(f"Starting child process: {' '.join(args)}")
        try:
            proc = psutil.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                **_get_popen_kwargs(),
            )
        except OSError as e:
            log.critical(f"Failed to start child process '{args[0]}': {e}", exc_info=True)
            raise ChildLaunchError(f"Cannot launch '{args[0]}': {e}") from e

        os.set_blocking(proc.stdout.fileno(), False)
        log.info(f"Child process started with PID: {proc.pid}")
        return ChildProcess(proc=proc, args=args)

    def poll_exit(self, child: ChildProcess) -> ExitStatus:
        """Checks whether the child has exited without blocking."""
        return ExitStatus.from_returncode(child.proc.poll())

    def terminate_and_reap(self, child: Optional[ChildProcess]) -> None:
        """
        Sends SIGTERM to the child and its descendants, then waits until the
        child is reaped and closes its output stream. Safe to call repeatedly.

        :param child: The child to stop. None is accepted and ignored.
        """
        if child is None or child.reaped:
            return

        proc = child.proc
        if proc.poll() is None:
            try:
                descendants = proc.children(recursive=True)
            except psutil.NoSuchProcess:
                descendants = []

            log.info(f"Sending SIGTERM to child process (PID {child.pid}).")
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass
            for descendant in descendants:
                try:
                    descendant.terminate()
                except psutil.NoSuchProcess:
                    continue

            try:
                proc.wait(timeout=self.shutdown_timeout)
            except psutil.TimeoutExpired:
                log.warning(
                    f"Child process (PID {child.pid}) ignored SIGTERM for "
                    f"{self.shutdown_timeout}s. Forcing shutdown..."
                )
                proc.kill()
                proc.wait()

            if descendants:
                _, alive = psutil.wait_procs(descendants, timeout=self.shutdown_timeout)
                _forceful_kill(alive)
        else:
            # Already exited on its own; make sure it is reaped.
            proc.wait()

        child.close_stream()
        child.reaped = True
        log.debug(f"Child process (PID {child.pid}) reaped with status {proc.returncode}.")
