"""
The Supervisor package.
Keeps the llama-cli inference process alive across worker failures.

This package contains the Supervisor state machine and its helper modules,
which together handle worker probing, command reconstruction, the child
process lifecycle and output monitoring.
"""
from .process_utils import ChildLaunchError
from .supervisor import State, Supervisor

__all__ = ['ChildLaunchError', 'State', 'Supervisor']
