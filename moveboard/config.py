# moveboard — configuration
# Loaded once at startup from settings.yaml, saved back whenever a value changes.

import logging
import uuid
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("~/.config/moveboard/settings.yaml").expanduser()

VIEW_MODES = ("board", "list")


class ConfigError(Exception):
    """Raised when a setting is unknown or has an invalid value."""
    pass


@dataclass
class Settings:
    """Process-wide configuration injected into the board components."""

    # Durable store
    api_base_url: str = "http://localhost:5000"
    request_timeout: float = 5.0
    db_path: str = "~/.local/share/moveboard/moves.db"

    # Session
    session_id: str = ""
    log_level: str = "INFO"

    # View preferences
    dark_mode: bool = True
    show_backlog: bool = False
    view_mode: str = "board"

    # Background work
    last_briefing_date: str = ""       # ISO date of the last briefing fired
    probe_interval_secs: float = 30.0  # connectivity probe period
    refetch_delay_secs: float = 2.0    # delay before reconciling after a network error

    _path: Optional[Path] = field(default=None, repr=False, compare=False)

    @classmethod
    def _keys(cls):
        return {f.name for f in fields(cls) if not f.name.startswith("_")}

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Settings":
        """Load settings from YAML, falling back to defaults."""
        cfg_path = Path(path).expanduser() if path else CONFIG_PATH
        keys = cls._keys()
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in keys})
            except (OSError, yaml.YAMLError, TypeError) as e:
                logger.warning(f"Unreadable settings at {cfg_path}, using defaults: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg._path = cfg_path
        if cfg.view_mode not in VIEW_MODES:
            cfg.view_mode = "board"
        if not cfg.session_id:
            cfg.session_id = uuid.uuid4().hex
            cfg.save()
        return cfg

    def resolved_db_path(self) -> str:
        return str(Path(self.db_path).expanduser())

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("_path", None)
        return data

    def save(self) -> None:
        """Write settings back to the file they were loaded from."""
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w") as f:
                yaml.safe_dump(self.to_dict(), f, sort_keys=True)
        except OSError as e:
            logger.error(f"Failed to save settings to {self._path}: {e}")

    def update(self, **changes) -> None:
        """Set one or more values and persist them."""
        unknown = set(changes) - self._keys()
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")
        if "view_mode" in changes and changes["view_mode"] not in VIEW_MODES:
            raise ConfigError(f"view_mode must be one of {VIEW_MODES}")
        for key, value in changes.items():
            setattr(self, key, value)
        self.save()
