"""
Configuration loading and the process-wide context object.

Settings come from ``config.yaml`` (merged over built-in defaults) and
secrets from the environment (``.env`` is loaded by the CLI). The
``AppContext`` is built once per command and handed to every component
that needs configuration, paths or credentials.
"""

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from rich.console import Console

from newscard.errors import ConfigurationError

console = Console()

PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_PATH = PROJECT_ROOT / "config.yaml"

DEFAULTS = {
    "max_candidates": 5,
    "max_per_category": 2,
    "timezone": "Asia/Tokyo",
    "media_strategy": "v2",
    "comment": {
        "max_chars": 38,
        "model": "claude-sonnet-4-20250514",
    },
    "image": {
        "mode": "safe",
        "width": 1200,
        "height": 675,
        "footer": "@newscard",
        "header": "LATEST NEWS",
        "overlay": {
            "darken": 0.45,
            "padding": 64,
            "max_lines": 3,
            "max_font_size": 96,
            "min_font_size": 36,
            "font_step": 4,
            "glyph_width": 0.55,
            "stroke": True,
            "drop_shadow": True,
            "font_path": "",
        },
        "license": {
            "allow_domains": [],
            "block_domains": [],
            "min_size": {"width": 600, "height": 315},
        },
    },
    "filters": {
        "block_domains": [],
        "block_words": [],
    },
    "http": {
        "timeout_seconds": 20,
        "feed_timeout_seconds": 15,
    },
    "paths": {
        "ledger": "data/posted.json",
        "local_batch": "out/latest-metadata.json",
        "out_dir": "out",
        "cards_dir": "cards",
        "log_dir": "logs",
        "feeds": "feeds.yaml",
    },
}


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path = CONFIG_PATH) -> dict:
    """Read config.yaml over the defaults. A missing file means defaults."""
    try:
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
    except FileNotFoundError:
        console.print(f"[yellow]{path.name} not found, using default settings.[/yellow]")
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"{path.name} (expected a mapping)")
    return _merge(DEFAULTS, loaded)


@dataclass
class AppContext:
    """Everything a command needs, constructed once at process start."""
    config: dict
    root: Path = PROJECT_ROOT
    env: dict = field(default_factory=lambda: dict(os.environ))

    @classmethod
    def from_files(cls, config_path: Path = CONFIG_PATH, root: Path = PROJECT_ROOT) -> "AppContext":
        return cls(config=load_config(config_path), root=root)

    def path(self, name: str) -> Path:
        """Resolve one of the ``paths`` settings against the project root."""
        p = Path(self.config["paths"][name])
        return p if p.is_absolute() else self.root / p

    def get(self, name: str, default: str | None = None) -> str | None:
        value = self.env.get(name)
        return value if value else default

    def require(self, *names: str) -> dict[str, str]:
        """Return the named variables or raise ConfigurationError listing all missing ones."""
        missing = [n for n in names if not self.env.get(n)]
        if missing:
            raise ConfigurationError(missing)
        return {n: self.env[n] for n in names}

    @property
    def timeout(self) -> float:
        return float(self.config["http"]["timeout_seconds"])

    @property
    def repository(self) -> tuple[str, str] | None:
        """``(owner, repo)`` from GITHUB_REPOSITORY, or None."""
        repo = self.get("GITHUB_REPOSITORY", "")
        if "/" not in repo:
            return None
        owner, name = repo.split("/", 1)
        return owner, name

    @property
    def github_enabled(self) -> bool:
        return bool(self.get("GITHUB_TOKEN")) and self.repository is not None

    @property
    def media_strategy(self) -> str:
        return (self.get("X_MEDIA_STRATEGY") or self.config.get("media_strategy") or "v2").lower()

    @property
    def run_id(self) -> str | None:
        return self.get("GITHUB_RUN_ID")
