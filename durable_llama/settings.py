"""
This module contains the configuration settings for the DurableLlama supervisor.
It defines the supervised binary, worker defaults, supervision timings and
logging options. It is used throughout the application to ensure consistent settings.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(os.getcwd())
OVERRIDES_JSON_PATH = pathlib.Path(os.getenv("DURABLE_LLAMA_OVERRIDES", str(BASE_DIR / "overrides.json")))

#* --- Supervised Binary ---
LLAMA_CLI_PATH = os.getenv("LLAMA_CLI_PATH", "./llama-cli")
PROCESS_TITLE = "DurableLlama - Supervisor"

#* --- Child Command-Line Flags ---
RPC_FLAG = "--rpc"
OFFLOAD_FLAG = "-ngl"
OFFLOAD_FLAG_LONG = "--n-gpu-layers"

#* --- Worker Defaults ---
DEFAULT_WORKER_PORT = int(os.getenv("DEFAULT_WORKER_PORT", "50053"))   # llama.cpp RPC port on the workers
DEFAULT_OFFLOAD_LAYERS = int(os.getenv("DEFAULT_OFFLOAD_LAYERS", "99")) # offload all layers
PROBE_TIMEOUT_SECONDS = float(os.getenv("PROBE_TIMEOUT_SECONDS", "5"))

#* --- Supervisor Settings ---
STALL_TIMEOUT_SECONDS = float(os.getenv("STALL_TIMEOUT_SECONDS", "5"))
OUTPUT_POLL_TIMEOUT_SECONDS = 1.0
OUTPUT_CHUNK_SIZE = 4096
SUPERVISOR_TICK_INTERVAL = 0.1
GRACEFUL_SHUTDOWN_TIMEOUT = float(os.getenv("GRACEFUL_SHUTDOWN_TIMEOUT", "30")) # 0 waits forever

#* --- Logging ---
VERBOSE_LOGGING = os.getenv("VERBOSE_LOGGING", "False").lower() in ('true', '1', 't')
LOG_BUFFER_FLUSH_INTERVAL = 10

# Grafana Loki (for observability)
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- MODIFIABLE SETTINGS (Changeable via overrides.json) ---
MODIFIABLE_SETTINGS = {
    # Supervision
    "LLAMA_CLI_PATH", "STALL_TIMEOUT_SECONDS", "PROBE_TIMEOUT_SECONDS",
    "SUPERVISOR_TICK_INTERVAL", "GRACEFUL_SHUTDOWN_TIMEOUT",
    # Logging
    "VERBOSE_LOGGING", "LOG_BUFFER_FLUSH_INTERVAL",
    "LOKI_ENABLED", "LOKI_URL", "LOKI_ORG_ID",
}
