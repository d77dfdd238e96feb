"""Diagnostics for the YAML configuration files."""

from __future__ import annotations

from pathlib import Path

import yaml

from config.controller import DEFAULT_CONFIG_DIR, read_yaml_mapping
from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(config_dir: Path | None = None) -> DiagnosticResult:
    """Check that default.yaml (and override.yaml, if any) parse as mappings.

    Args:
        config_dir: Directory to inspect; defaults to the packaged config.

    Returns:
        FAIL when a file is missing, unreadable, or malformed, PASS otherwise.
    """

    config_dir = config_dir if config_dir is not None else DEFAULT_CONFIG_DIR
    default_config = config_dir / "default.yaml"
    override_config = config_dir / "override.yaml"

    def _fail(details: str) -> DiagnosticResult:
        return DiagnosticResult(name="config", status=DiagnosticStatus.FAIL, details=details)

    if not default_config.exists():
        return _fail(f"Missing default config at {default_config}")

    present = [path for path in (default_config, override_config) if path.exists()]
    for path in present:
        try:
            loaded = read_yaml_mapping(path)
        except (OSError, yaml.YAMLError) as exc:
            return _fail(f"Config access failed: {exc}")
        except ValueError:
            return _fail(f"{path.name} must contain a mapping")
        if not isinstance(loaded.get("realtime", {}), (dict, type(None))):
            return _fail(f"{path.name}: realtime section must be a mapping")

    suffix = " (override active)" if override_config in present else ""
    return DiagnosticResult(
        name="config",
        status=DiagnosticStatus.PASS,
        details=f"Config files readable at {config_dir}{suffix}",
    )
