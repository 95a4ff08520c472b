import signal
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .supervisor import Supervisor

log = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_signal_handlers(supervisor: "Supervisor") -> None:
    """
    Routes SIGINT and SIGTERM to a graceful stop of the supervisor.

    The handler only sets the supervisor's stop flag; the loop notices it on
    its next tick and terminates the child itself.

    :param supervisor: The Supervisor instance to stop.
    """
    def _handle(signum, frame) -> None:
        supervisor.request_stop()

    for signum in SHUTDOWN_SIGNALS:
        signal.signal(signum, _handle)
    log.debug("Installed SIGINT/SIGTERM handlers.")
