import socket
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, NamedTuple, Optional, Tuple

from durable_llama.config import effective_settings as config

log = logging.getLogger(__name__)


def parse_address(address: str) -> Tuple[str, int]:
    """
    Splits a worker address into host and port.

    :param address: A "host" or "host:port" string.
    :return: A (host, port) tuple. The port defaults to DEFAULT_WORKER_PORT.
    :raises ValueError: If the port part is not an integer.
    """
    host, sep, port = address.partition(":")
    if not sep:
        return address, config.DEFAULT_WORKER_PORT
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"Invalid port in worker address '{address}'.") from None


def is_reachable(host: str, port: int, timeout: float) -> bool:
    """Checks TCP reachability only; says nothing about the RPC server's health."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as e:
        log.debug(f"Connect to {host}:{port} failed: {e}")
        return False


@dataclass
class Worker:
    """A remote llama.cpp RPC server the child can offload layers to."""

    address: str
    host: str = field(init=False)
    port: int = field(init=False)
    available: bool = field(default=True, init=False)

    def __post_init__(self) -> None:
        self.host, self.port = parse_address(self.address)


class ProbeResult(NamedTuple):
    any_removed: bool
    all_down: bool


class WorkerPool:
    """
    Tracks the registered workers and which of them are still usable.

    A worker that fails a probe is marked unavailable for the rest of the run.
    """

    def __init__(
        self,
        addresses: Iterable[str],
        probe: Callable[[str, int, float], bool] = is_reachable,
        probe_timeout: Optional[float] = None,
    ) -> None:
        self.workers: List[Worker] = [Worker(address) for address in addresses]
        self.probe = probe
        self.probe_timeout = probe_timeout if probe_timeout is not None else config.PROBE_TIMEOUT_SECONDS

    def __len__(self) -> int:
        return len(self.workers)

    def available_workers(self) -> List[Worker]:
        return [worker for worker in self.workers if worker.available]

    def address_list(self) -> List[str]:
        """Returns the addresses of available workers in registration order."""
        return [worker.address for worker in self.available_workers()]

    def probe_and_prune(self) -> ProbeResult:
        """
        Probes every available worker and marks unreachable ones unavailable.

        Probes run sequentially, so this can block for up to
        ``probe_timeout`` seconds per worker.

        :return: Whether this call removed any worker, and whether none remain.
        """
        any_removed = False
        for worker in self.available_workers():
            if self.probe(worker.host, worker.port, self.probe_timeout):
                log.debug(f"Worker {worker.address} is reachable.")
                continue
            worker.available = False
            any_removed = True
            log.warning(f"Removing unreachable worker {worker.address} from the pool.")

        return ProbeResult(any_removed=any_removed, all_down=not self.available_workers())
