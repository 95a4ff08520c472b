"""
DurableLlama keeps a llama.cpp inference run alive across RPC worker failures.

The supervisor restarts llama-cli when it crashes or stalls, drops workers that
stop answering, and falls back to local execution when none are left.
"""

__version__ = "0.1.0"
