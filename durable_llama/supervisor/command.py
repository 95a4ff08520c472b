from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from durable_llama.config import effective_settings as config

if TYPE_CHECKING:
    from .workers import WorkerPool

OFFLOAD_FLAGS = (config.OFFLOAD_FLAG, config.OFFLOAD_FLAG_LONG)
# Flags whose value is owned by the supervisor and replaced on every build
MANAGED_FLAGS = (config.RPC_FLAG,) + OFFLOAD_FLAGS


def _flag_value(args: Sequence[str], flags: Sequence[str]) -> Optional[str]:
    """Returns the value following the first occurrence of any of `flags`."""
    for i, arg in enumerate(args[:-1]):
        if arg in flags:
            return args[i + 1]
    return None


def find_offload_layers(args: Sequence[str], default: Optional[int] = None) -> int:
    """
    Extracts the requested GPU offload layer count from the child's arguments.

    :param args: The child's arguments, without the program name.
    :param default: Value used when no offload flag is present.
    :return: The requested layer count.
    :raises ValueError: If the flag's value is not an integer.
    """
    value = _flag_value(args, OFFLOAD_FLAGS)
    if value is None:
        return config.DEFAULT_OFFLOAD_LAYERS if default is None else default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid GPU layer count '{value}'.") from None


def parse_worker_addresses(args: Sequence[str]) -> List[str]:
    """Returns the comma-separated addresses given to the first worker-list flag."""
    value = _flag_value(args, (config.RPC_FLAG,))
    if value is None:
        return []
    return [address.strip() for address in value.split(",") if address.strip()]


@dataclass(frozen=True)
class InvocationTemplate:
    """The child's original arguments (program name excluded) and requested offload count."""

    args: Tuple[str, ...]
    offload_layers: int

    @classmethod
    def from_args(cls, args: Sequence[str]) -> "InvocationTemplate":
        return cls(args=tuple(args), offload_layers=find_offload_layers(args))


def strip_managed_flags(args: Sequence[str]) -> List[str]:
    """Drops every worker-list and offload flag together with its value token."""
    kept: List[str] = []
    skip_next = False
    for arg in args:
        if skip_next:
            skip_next = False
            continue
        if arg in MANAGED_FLAGS:
            skip_next = True
            continue
        kept.append(arg)
    return kept


def build_command(
    template: InvocationTemplate,
    pool: "WorkerPool",
    offload_layers: Optional[int] = None,
    binary: Optional[str] = None,
) -> List[str]:
    """
    Builds the argument list to launch the child with, program name first.

    With available workers the list ends in ``--rpc a,b -ngl N``. With none it
    ends in ``-ngl 0``, which runs the model fully on the local machine.

    :param template: The original invocation.
    :param pool: The worker pool whose available addresses are used.
    :param offload_layers: Layer count for remote mode, defaults to the template's.
    :param binary: The program to run, defaults to LLAMA_CLI_PATH.
    :return: The complete argument list.
    """
    if offload_layers is None:
        offload_layers = template.offload_layers

    command = [binary or config.LLAMA_CLI_PATH]
    command.extend(strip_managed_flags(template.args))

    addresses = pool.address_list()
    if addresses:
        command.extend([config.RPC_FLAG, ",".join(addresses)])
        command.extend([config.OFFLOAD_FLAG, str(offload_layers)])
    else:
        command.extend([config.OFFLOAD_FLAG, "0"])
    return command
