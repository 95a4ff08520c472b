import os
import sys
import time
import select
import logging
from typing import BinaryIO, Callable, Optional, TYPE_CHECKING

from durable_llama.config import effective_settings as config

if TYPE_CHECKING:
    from .process_utils import ChildProcess

log = logging.getLogger(__name__)


class OutputMonitor:
    """
    Pumps the child's combined output to the console and remembers when the
    child last said anything.
    """

    def __init__(
        self,
        sink: Optional[BinaryIO] = None,
        stall_timeout: Optional[float] = None,
        chunk_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        :param sink: Where output is forwarded to, the supervisor's stdout by default.
        :param stall_timeout: Seconds without output after which the child counts as stalled.
        :param chunk_size: Maximum bytes read per poll.
        :param clock: Monotonic time source.
        """
        self._sink = sink
        self.stall_timeout = stall_timeout if stall_timeout is not None else config.STALL_TIMEOUT_SECONDS
        self.chunk_size = chunk_size or config.OUTPUT_CHUNK_SIZE
        self.clock = clock

    @property
    def sink(self) -> BinaryIO:
        return self._sink if self._sink is not None else sys.stdout.buffer

    def mark_output(self, child: "ChildProcess") -> None:
        child.last_output = self.clock()

    def poll(self, child: "ChildProcess", timeout: Optional[float] = None) -> int:
        """
        Waits up to `timeout` seconds for output and forwards one chunk of it.

        :param child: The child whose stream is read.
        :param timeout: Seconds to wait, OUTPUT_POLL_TIMEOUT_SECONDS by default.
        :return: The number of bytes forwarded, 0 if none.
        """
        if timeout is None:
            timeout = config.OUTPUT_POLL_TIMEOUT_SECONDS
        try:
            ready, _, _ = select.select([child.fileno()], [], [], timeout)
        except (OSError, ValueError) as e:
            log.error(f"Waiting for child output failed: {e}")
            return 0
        if not ready:
            return 0

        try:
            data = os.read(child.fileno(), self.chunk_size)
        except BlockingIOError:
            return 0
        if not data:
            # EOF: the child closed its end, its exit status will follow.
            return 0

        self.sink.write(data)
        self.sink.flush()
        self.mark_output(child)
        return len(data)

    def drain(self, child: "ChildProcess") -> int:
        """Forwards everything already buffered in the pipe without waiting."""
        total = 0
        while True:
            count = self.poll(child, timeout=0)
            if not count:
                return total
            total += count

    def seconds_since_last_output(self, child: "ChildProcess") -> float:
        return self.clock() - child.last_output

    def is_stalled(self, child: "ChildProcess") -> bool:
        return self.seconds_since_last_output(child) >= self.stall_timeout
