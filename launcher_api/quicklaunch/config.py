from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

# Load environment variables from .env (if present)
load_dotenv()

logger = logging.getLogger("config")


DEFAULT_LAUNCHER_DIRS = [
    "Program Files",
    "Program Files (x86)",
    "Steam/steamapps/common",
    "Epic Games",
    "XboxGames",
    "Ubisoft/Ubisoft Game Launcher/games",
    "Games",
]

DEFAULT_EXCLUDED_DIRS = [
    "Windows",
    "ProgramData",
    "System Volume Information",
    "$Recycle.Bin",
    "Recycle",
    "Windows Defender Advanced Threat Protection",
    "WindowsApps",
    "PerfLogs",
    "Voiceover",
    "inetpub",
    "OneDriveTemp",
]


def _env_list(name: str, sep: str = os.pathsep) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(sep) if item.strip()]


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


class Settings(BaseModel):
    # Flat keyword store (alias1,alias2=target per line)
    keywords_file: str = os.getenv("QUICKLAUNCH_KEYWORDS_FILE", "keywords.txt")

    # Per-root subdirectories walked before the rest of the volume
    launcher_dirs: List[str] = Field(default_factory=lambda: list(DEFAULT_LAUNCHER_DIRS))

    # Directory names whose whole subtree is never entered
    excluded_dirs: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_DIRS))

    executable_extensions: List[str] = Field(default_factory=lambda: [".exe", ".lnk", ".bat"])
    shortcut_extensions: List[str] = Field(default_factory=lambda: [".lnk"])

    # Storefront per-game folder convention and the helper binary inside it
    package_store_marker: str = "xboxgames"
    package_launcher_helper: str = "Content/gamelaunchhelper.exe"

    # Volume roots to crawl; empty means "enumerate every mounted volume"
    search_roots: List[str] = Field(default_factory=lambda: _env_list("QUICKLAUNCH_SEARCH_ROOTS"))

    # Worker pool size; None means max(2, cpu count)
    max_workers: Optional[int] = Field(default_factory=lambda: _env_int("QUICKLAUNCH_MAX_WORKERS"))
    shutdown_grace_seconds: float = float(os.getenv("QUICKLAUNCH_SHUTDOWN_GRACE", "5"))

    update_interval_ms: int = int(os.getenv("QUICKLAUNCH_UPDATE_INTERVAL_MS", "500"))
    status_max_length: int = 200
    status_history: int = 100

    # HEAD probe used before opening wiki pages
    probe_pages: bool = os.getenv("QUICKLAUNCH_PROBE_PAGES", "1").strip() == "1"
    probe_timeout_seconds: float = 5.0

    # API key for this FastAPI server (sent via X-API-Key header)
    api_key: str = os.getenv("QUICKLAUNCH_API_KEY", "")

    # CORS origins (comma-separated or "*")
    cors_origins: str = os.getenv("CORS_ORIGINS", "*")

    log_level: str = os.getenv("QUICKLAUNCH_LOG_LEVEL", "INFO")


def load_settings(config_file: Optional[str] = None) -> Settings:
    """Build settings from the environment plus an optional YAML overlay.

    The overlay is a mapping whose keys are ``Settings`` field names. A missing
    or malformed file only logs a warning; the environment defaults still apply.
    """
    config_file = config_file or os.getenv("QUICKLAUNCH_CONFIG", "")
    base = Settings()
    if not config_file:
        return base

    path = Path(config_file)
    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return base

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read config file {path}: {e}")
        return base
    if not isinstance(data, dict):
        logger.warning(f"Config file {path} is not a mapping, ignoring it")
        return base

    known = set(Settings.model_fields)
    overrides = {}
    for key, value in data.items():
        if key in known:
            overrides[key] = value
        else:
            logger.warning(f"Unknown config key ignored: {key}")

    try:
        return Settings.model_validate({**base.model_dump(), **overrides})
    except ValidationError as e:
        logger.warning(f"Invalid config file {path}: {e}")
        return base


settings = load_settings()
