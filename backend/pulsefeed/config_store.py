"""Layered settings: env/.env, then an optional YAML/JSON file, then in-process overrides."""
import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

logger = logging.getLogger(__name__)

_PARSERS: dict[str, tuple[Callable[[str], Any], type]] = {
    ".yaml": (yaml.safe_load, yaml.YAMLError),
    ".yml": (yaml.safe_load, yaml.YAMLError),
    ".json": (json.loads, json.JSONDecodeError),
}


def read_config_file(path: Path) -> dict[str, Any]:
    """Flat mapping from a .yaml/.yml/.json file; {} when missing or unusable."""
    if not path.exists():
        logger.debug("Config file not found: %s (optional; using env/defaults)", path)
        return {}
    parser = _PARSERS.get(path.suffix.lower())
    if parser is None:
        logger.warning("Config file must be .yaml, .yml, or .json: %s", path)
        return {}
    parse, parse_error = parser
    try:
        data = parse(path.read_text())
    except OSError as e:
        logger.warning("Could not read config file %s: %s", path, e)
        return {}
    except parse_error as e:
        logger.warning("Could not parse config file %s: %s", path, e)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s must contain a mapping; got %s", path, type(data).__name__)
        return {}
    return data


class ConfigStore:
    """Current Settings, rebuilt whenever the overrides change.

    Precedence: overrides > config file > env > field defaults.
    """

    def __init__(self, settings_cls: type, config_file_path: Optional[str] = None):
        self._settings_cls = settings_cls
        self._file_path = Path(config_file_path).expanduser().resolve() if config_file_path else None
        self._overrides: dict[str, Any] = {}
        self._current: Optional[Any] = None
        self._lock = threading.RLock()

    def _layers(self) -> dict[str, Any]:
        merged = self._settings_cls().model_dump()
        if self._file_path:
            from_file = read_config_file(self._file_path)
            if from_file:
                logger.info("Loaded config file (master over env): %s", self._file_path)
            merged.update(from_file)
        merged.update(self._overrides)
        return merged

    def get_settings(self) -> Any:
        with self._lock:
            if self._current is None:
                self._current = self._settings_cls(**self._layers())
            return self._current

    def update(self, overrides: dict[str, Any]) -> None:
        """Apply overrides; an invalid value leaves the current settings untouched."""
        with self._lock:
            try:
                candidate = self._settings_cls(**{**self.get_settings().model_dump(), **overrides})
            except ValueError as e:
                logger.warning("Config update rejected, keeping previous settings: %s", e)
                return
            self._overrides.update(overrides)
            self._current = candidate

    def clear_overrides(self) -> None:
        with self._lock:
            self._overrides.clear()
            self._current = self._settings_cls(**self._layers())
