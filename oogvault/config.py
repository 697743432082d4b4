"""
Configuration management for vault stores.

The configuration is stored as a TOML file in the store directory.
It holds the user-facing settings and the search policy knobs.
"""

import os
import tomllib
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "vault.toml"
CONFIG_VERSION = 1
DATABASE_FILENAME = "vault.db"

STORE_PATH_ENV = "OOGVAULT_STORE_PATH"

# Search policy: minimum scores for a record to be returned
CONVERSATION_MATCH_THRESHOLD = 0.25
SIMILAR_QUESTION_THRESHOLD = 0.3
NUGGET_MATCH_THRESHOLD = 0.3

# Similar-question search ignores shorter input (filler while typing)
SIMILAR_MIN_QUERY_LENGTH = 8

# Display and de-duplication lengths
SNIPPET_LENGTH = 200
DEDUP_KEY_LENGTH = 100
ANSWER_PREVIEW_LENGTH = 300

# Weight of an answer match relative to a question match in nugget search
ANSWER_WEIGHT = 0.8


@dataclass
class Settings:
    """Flat user settings, read by callers (the core ignores them)."""
    auto_save: bool = True
    autocomplete_enabled: bool = True
    autocomplete_min_length: int = 20
    theme: str = "default"


@dataclass
class SearchConfig:
    """Thresholds and lengths used by the retrieval engine."""
    conversation_threshold: float = CONVERSATION_MATCH_THRESHOLD
    similar_threshold: float = SIMILAR_QUESTION_THRESHOLD
    nugget_threshold: float = NUGGET_MATCH_THRESHOLD
    similar_min_query_length: int = SIMILAR_MIN_QUERY_LENGTH
    snippet_length: int = SNIPPET_LENGTH
    dedup_key_length: int = DEDUP_KEY_LENGTH
    answer_preview_length: int = ANSWER_PREVIEW_LENGTH
    answer_weight: float = ANSWER_WEIGHT


@dataclass
class VaultConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    settings: Settings = field(default_factory=Settings)
    search: SearchConfig = field(default_factory=SearchConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        """Path to the SQLite database."""
        return self.path / DATABASE_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """Store directory from OOGVAULT_STORE_PATH, else ~/.oogvault."""
    env = os.environ.get(STORE_PATH_ENV)
    if env:
        return Path(env).expanduser()
    return Path.home() / ".oogvault"


def _parse_section(cls, section: dict[str, Any]):
    """Build a settings dataclass from a TOML table, ignoring unknown keys."""
    known = {f.name: f for f in fields(cls)}
    values = {}
    for key, value in section.items():
        if key not in known:
            continue
        default = getattr(cls(), key)
        # bool is an int subclass; keep the declared kind
        if isinstance(default, bool) and not isinstance(value, bool):
            raise ValueError(f"Config value {key} must be true or false")
        if isinstance(default, float) and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        values[key] = value
    return cls(**values)


def load_config(store_path: Path) -> VaultConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    return VaultConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        settings=_parse_section(Settings, data.get("settings", {})),
        search=_parse_section(SearchConfig, data.get("search", {})),
    )


def save_config(config: VaultConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "settings": asdict(config.settings),
        "search": asdict(config.search),
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Optional[Path] = None) -> VaultConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    if store_path is None:
        store_path = get_default_store_path()
    store_path = Path(store_path)

    if (store_path / CONFIG_FILENAME).exists():
        return load_config(store_path)

    config = VaultConfig(path=store_path)
    save_config(config)
    return config
