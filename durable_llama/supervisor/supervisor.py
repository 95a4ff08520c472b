import time
import logging
import threading
from enum import Enum
from typing import List, Optional

from durable_llama.config import effective_settings as config
from durable_llama.supervisor.command import InvocationTemplate, build_command
from durable_llama.supervisor.output import OutputMonitor
from durable_llama.supervisor.process_utils import ChildProcess, ProcessRunner
from durable_llama.supervisor.workers import WorkerPool

log = logging.getLogger(__name__)


class State(Enum):
    STARTING = "starting"
    RUNNING = "running"
    RESTARTING = "restarting"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Supervisor:
    """
    Keeps one llama-cli child alive until it finishes successfully.

    The child is restarted when it crashes, exits non-zero, is killed by a
    signal, or stays silent for longer than the stall timeout. Each restart
    rebuilds the command line from the workers that are still available and
    falls back to local execution once none are left. Restarts are unbounded.
    """

    def __init__(
        self,
        pool: WorkerPool,
        template: InvocationTemplate,
        runner: Optional[ProcessRunner] = None,
        monitor: Optional[OutputMonitor] = None,
        binary: Optional[str] = None,
        tick_interval: Optional[float] = None,
    ) -> None:
        self.pool = pool
        self.template = template
        self.runner = runner or ProcessRunner()
        self.monitor = monitor or OutputMonitor()
        self.binary = binary or config.LLAMA_CLI_PATH
        self.tick_interval = tick_interval if tick_interval is not None else config.SUPERVISOR_TICK_INTERVAL

        self.state = State.STARTING
        self.child: Optional[ChildProcess] = None
        self.restart_count = 0
        self.succeeded = False
        # Set from signal handlers; only ever read by the supervision loop.
        self.stop_requested = threading.Event()

    def request_stop(self) -> None:
        self.stop_requested.set()

    def _transition(self, state: State) -> None:
        log.info(f"Supervisor state: {self.state.value} -> {state.value}")
        self.state = state

    def build_command(self) -> List[str]:
        return build_command(self.template, self.pool, binary=self.binary)

    def _start_child(self) -> None:
        self.child = self.runner.start(self.build_command())
        self.monitor.mark_output(self.child)

    def _restart(self) -> None:
        """Tears down the current child and starts a new one from the current pool."""
        self.restart_count += 1
        log.warning(f"Restarting inference, attempt #{self.restart_count}...")
        self.runner.terminate_and_reap(self.child)
        self.child = None
        self._start_child()
        self._transition(State.RUNNING)

    def _recover_from_stall(self) -> None:
        """Prunes unreachable workers after the child went quiet."""
        log.warning(
            f"No output received for {self.monitor.stall_timeout:g} seconds, "
            "checking worker reachability..."
        )
        if not self.pool.address_list():
            log.warning("Running locally with no workers, but no output received. Restarting inference...")
            return

        result = self.pool.probe_and_prune()
        if not result.any_removed:
            # TCP-reachable workers can still be wedged at the RPC level.
            log.warning("All workers are reachable, but no output received. Restarting inference...")
        elif result.all_down:
            log.error("No reachable workers left, falling back to local execution...")
        else:
            log.warning(
                f"Continuing with {len(self.pool.address_list())} of {len(self.pool)} workers: "
                f"{','.join(self.pool.address_list())}"
            )

    def _tick(self) -> None:
        """Runs one RUNNING iteration and moves to the next state."""
        if self.stop_requested.is_set():
            log.info("Stop requested, shutting down supervisor...")
            self._transition(State.STOPPING)
            return

        self.monitor.poll(self.child)
        status = self.runner.poll_exit(self.child)

        if status.exited:
            self.monitor.drain(self.child)
            log.info(f"Inference process exited with status {status.exit_code}.")
            if status.succeeded:
                self.succeeded = True
                self._transition(State.STOPPING)
            else:
                log.warning("Inference process exited with non-zero status.")
                self._transition(State.RESTARTING)
        elif status.signaled:
            self.monitor.drain(self.child)
            log.warning(f"Inference process was terminated by signal {status.signal}.")
            self._transition(State.RESTARTING)
        elif self.monitor.is_stalled(self.child):
            self._recover_from_stall()
            self._transition(State.RESTARTING)

    def _stop(self) -> None:
        self.runner.terminate_and_reap(self.child)
        self.child = None
        self._transition(State.STOPPED)

    def run(self) -> int:
        """
        Drives the supervision loop until the child succeeds or a stop is requested.

        :return: The process exit code, 0 in both cases.
        :raises ChildLaunchError: If the child binary cannot be launched.
        """
        log.info(f"Supervisor started with {len(self.pool)} workers: {','.join(self.pool.address_list())}")
        try:
            self._start_child()
            self._transition(State.RUNNING)

            while self.state not in (State.STOPPING, State.STOPPED):
                if self.state is State.RESTARTING:
                    if self.stop_requested.is_set():
                        log.info("Stop requested, skipping restart.")
                        self._transition(State.STOPPING)
                        continue
                    self._restart()
                    continue
                self._tick()
                if self.state is State.RUNNING:
                    time.sleep(self.tick_interval)
        finally:
            self._stop()

        if self.succeeded:
            log.info("Inference completed successfully.")
        log.info(f"Supervisor stopped after {self.restart_count} restarts.")
        return 0
