"""Configuration for the morse-topo server."""

import os
from dotenv import load_dotenv

load_dotenv()

# Remote analysis / codegen service (critical points, shader source)
ANALYSIS_URL = os.getenv("ANALYSIS_URL", "")
ANALYSIS_TIMEOUT_SECONDS = float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "30"))

# Meshing defaults
DEFAULT_RESOLUTION = 38
MAX_RESOLUTION = int(os.getenv("MAX_RESOLUTION", "128"))
DEFAULT_BOUNDS = (-1.7, 1.7)
MESH_NAME = os.getenv("MESH_NAME", "morse_topology")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Server
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8787"))
