"""YAML settings for the realtime client: shipped defaults plus local overrides."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from core.logging import log_warning
from realtime.api import DEFAULT_MODEL, DEFAULT_URL
from realtime.client import DEFAULT_SESSION_CONFIG

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent

REALTIME_DEFAULTS: dict[str, Any] = {
    "url": DEFAULT_URL,
    "model": DEFAULT_MODEL,
    "debug": False,
    "session_created_timeout_s": 10.0,
    "response_timeout_s": 60.0,
    "session": {},
}

LOGGING_DEFAULTS: dict[str, Any] = {
    "logging_level": "INFO",
    "file_logging_enabled": False,
    "log_file": "log/realtime.log",
}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` updated with ``override``; nested mappings merge key by key."""

    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def read_yaml_mapping(path: Path) -> dict[str, Any]:
    """Load ``path`` and require a mapping at the top level (empty file is ``{}``)."""

    with path.open("r", encoding="utf-8") as file:
        loaded = yaml.safe_load(file)
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{path} must contain a mapping, got {type(loaded).__name__}")
    return loaded


@dataclass(frozen=True)
class ConfigPaths:
    """Where the default, override, and archived override files live."""

    config_dir: Path
    config_file: Path
    override_file: Path

    def archive_file(self, index: int) -> Path:
        return self.config_dir / f"override_{index:04d}.yaml"


class ConfigController:
    """Process-wide holder of the merged configuration.

    ``default.yaml`` ships with the package; ``override.yaml`` next to it
    holds local changes and wins on every key it sets.
    """

    _instance: "ConfigController | None" = None

    def __init__(
        self,
        config_file: str = "default.yaml",
        config_dir: Path | None = None,
    ) -> None:
        if ConfigController._instance is not None:
            raise RuntimeError("ConfigController is a singleton, use get_instance()")

        base_dir = Path(config_dir) if config_dir is not None else DEFAULT_CONFIG_DIR
        self.paths = ConfigPaths(
            config_dir=base_dir,
            config_file=base_dir / config_file,
            override_file=base_dir / "override.yaml",
        )
        self.config: dict[str, Any] = {}
        self.load_config()

    @classmethod
    def get_instance(cls) -> "ConfigController":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def load_config(self) -> None:
        """(Re)read the default file and apply the override file when present."""

        merged = read_yaml_mapping(self.paths.config_file)
        if self.paths.override_file.exists():
            merged = deep_merge(merged, read_yaml_mapping(self.paths.override_file))
        self.config = self._normalize_config(merged)

    def save_config(self, config: dict[str, Any]) -> None:
        """Write ``config`` as the new override, moving the old one to an archive slot."""

        if self.paths.override_file.exists():
            index = 1
            while self.paths.archive_file(index).exists():
                index += 1
            self.paths.override_file.rename(self.paths.archive_file(index))

        with self.paths.override_file.open("w", encoding="utf-8") as file:
            yaml.safe_dump(config, file, sort_keys=False)

    def get_config(self) -> dict[str, Any]:
        return dict(self.config)

    def get_realtime_config(self) -> dict[str, Any]:
        """Return a deep copy of the ``realtime`` section."""

        return copy.deepcopy(self.config["realtime"])

    def set_config(self, config: dict[str, Any]) -> None:
        self.config = self._normalize_config(config)
        self.save_config(self.config)

    def _normalize_config(self, config: dict[str, Any]) -> dict[str, Any]:
        normalized = deep_merge(LOGGING_DEFAULTS, config)
        normalized["logging_level"] = str(normalized["logging_level"]).upper()
        normalized["file_logging_enabled"] = bool(normalized["file_logging_enabled"])
        normalized["log_file"] = str(normalized["log_file"])

        realtime_cfg = deep_merge(
            copy.deepcopy(REALTIME_DEFAULTS), dict(config.get("realtime") or {})
        )
        realtime_cfg["debug"] = bool(realtime_cfg["debug"])
        for key in ("session_created_timeout_s", "response_timeout_s"):
            realtime_cfg[key] = float(realtime_cfg[key])
        realtime_cfg["session"] = self._normalize_session(realtime_cfg["session"] or {})
        normalized["realtime"] = realtime_cfg
        return normalized

    def _normalize_session(self, session: dict[str, Any]) -> dict[str, Any]:
        """Keep only keys that ``RealtimeClient.update_session`` accepts."""

        unknown = sorted(set(session) - set(DEFAULT_SESSION_CONFIG))
        if unknown:
            log_warning(f"Ignoring unknown realtime.session keys: {', '.join(unknown)}")
        return {key: value for key, value in session.items() if key in DEFAULT_SESSION_CONFIG}
