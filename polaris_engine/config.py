"""Configuration paths and engine-wide defaults."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("POLARIS_HOME", str(Path.home() / ".polaris"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

# Orchestration loop bounds
DEFAULT_MAX_STEPS = 10
DEFAULT_MAX_TOKENS = 2000
DEFAULT_TEMPERATURE = 0.7

# Minimum interval between partial message updates while streaming
STREAM_THROTTLE_MS = 100

# Result cap shared by symbol and search tools
MAX_RESULTS = 50

# Default number of files returned by relevance ranking
DEFAULT_MAX_RELEVANT_FILES = 5

HTTP_TIMEOUT_SECONDS = float(os.environ.get("POLARIS_HTTP_TIMEOUT", "120"))


def ensure_base_dirs() -> None:
    """Create the base directory for local configuration if needed."""
    BASE_DIR.mkdir(parents=True, exist_ok=True)
