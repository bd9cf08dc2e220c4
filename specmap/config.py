"""specmap Backend Configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default

# Project root (one level up from specmap/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Workspace registry + AI settings
WORKSPACES_FILE = Path(os.getenv("SPECMAP_WORKSPACES_FILE", str(PROJECT_ROOT / "workspaces.json")))

# Per-workspace layout
SPEC_DIR = os.getenv("SPECMAP_SPEC_DIR", ".spec")
OBJECT_INDEX_FILE = "specs.json"
MAPPING_FILE = "mapping.json"
MAPPING_INDEX_VERSION = "1.0"

# Database (scan run journal)
DB_PATH = os.getenv("SPECMAP_DB_PATH", str(PROJECT_ROOT / "data" / "specmap.db"))

# AI provider defaults
AI_DEFAULT_MODEL = os.getenv("SPECMAP_AI_MODEL", "claude-sonnet-4-20250514")
AI_DEFAULT_BASE_URL = os.getenv("SPECMAP_AI_BASE_URL", "https://api.anthropic.com")
AI_MAX_TOKENS = _env_int("SPECMAP_AI_MAX_TOKENS", 8192)
AI_TIMEOUT_SECONDS = _env_int("SPECMAP_AI_TIMEOUT_SECONDS", 300)
AI_API_KEY_ENV = "ANTHROPIC_API_KEY"

# Source tree context limits
SOURCE_TREE_MAX_DEPTH = _env_int("SPECMAP_SOURCE_TREE_MAX_DEPTH", 6)
SOURCE_TREE_MAX_FILES = _env_int("SPECMAP_SOURCE_TREE_MAX_FILES", 500)

# Progress stream
PROGRESS_QUEUE_SIZE = _env_int("SPECMAP_PROGRESS_QUEUE_SIZE", 256)
SCAN_RUN_HISTORY_LIMIT = _env_int("SPECMAP_SCAN_RUN_HISTORY_LIMIT", 50)

# Observability
OTEL_ENABLED = _env_bool("SPECMAP_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("SPECMAP_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("SPECMAP_OTEL_SERVICE_NAME", "specmap-backend")
PROM_PORT = _env_int("SPECMAP_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("SPECMAP_HOST", "0.0.0.0")
PORT = int(os.getenv("SPECMAP_PORT", "8000"))

# CORS
FRONTEND_ORIGIN = os.getenv("SPECMAP_FRONTEND_ORIGIN", "http://localhost:3000")
