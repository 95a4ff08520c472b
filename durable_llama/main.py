import sys
import logging
import setproctitle
from typing import List, Optional

from durable_llama.config import effective_settings as config
from durable_llama.log.setup import setup_logging
from durable_llama.supervisor import ChildLaunchError, Supervisor
from durable_llama.supervisor.command import InvocationTemplate, parse_worker_addresses
from durable_llama.supervisor.shutdown import install_signal_handlers
from durable_llama.supervisor.workers import WorkerPool

log = logging.getLogger(__name__)

VERBOSE_FLAG = "--verbose"


def print_usage(prog: str) -> None:
    """Prints the command-line usage to stderr."""
    print(
        f"Usage: {prog} [{VERBOSE_FLAG}] [llama-cli options] {config.RPC_FLAG} server1:port1,server2:port2,...",
        file=sys.stderr
    )


def main(argv: Optional[List[str]] = None) -> int:
    """
    The main entry point for the supervisor.

    :param argv: The full command line, program name first. Defaults to sys.argv.
    :return: The process exit code.
    """
    argv = list(sys.argv if argv is None else argv)
    prog, args = (argv[0] if argv else "durable-llama"), argv[1:]

    verbose = config.VERBOSE_LOGGING
    if VERBOSE_FLAG in args:
        verbose = True
        args.remove(VERBOSE_FLAG)

    try:
        addresses = parse_worker_addresses(args)
        pool = WorkerPool(addresses)
        template = InvocationTemplate.from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        print_usage(prog)
        return 1

    if not addresses:
        print_usage(prog)
        return 1

    setproctitle.setproctitle(config.PROCESS_TITLE)
    setup_logging(logging.DEBUG if verbose else logging.INFO)

    supervisor = Supervisor(pool, template)
    install_signal_handlers(supervisor)
    try:
        return supervisor.run()
    except ChildLaunchError as e:
        log.critical(f"Cannot supervise inference: {e}")
        return 1
