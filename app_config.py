"""
Application configuration.

Settings live in an optional YAML file:

    default_color: "#1a1a1a"
    display_mode: block          # inline | block
    debounce_seconds: 0.3
    embed_metadata: true
    latex_command: latex
    dvisvgm_command: dvisvgm
    render_timeout: 30
    global_preamble: |
      \\newcommand{\\R}{\\mathbb{R}}

Missing keys keep their defaults; unknown keys are logged and ignored.

Dependencies:
    Required: pyyaml
"""

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

import yaml

from render_engine import DISPLAY_MODES


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "mathedit.yaml"


class ConfigError(ValueError):
    """Configuration file is unreadable or holds invalid values"""


@dataclass
class AppConfig:
    """Runtime settings for sessions, rendering and export"""

    default_color: Optional[str] = None
    display_mode: str = "block"  # inline | block
    debounce_seconds: float = 0.3
    embed_metadata: bool = True
    latex_command: str = "latex"
    dvisvgm_command: str = "dvisvgm"
    render_timeout: float = 30.0
    global_preamble: Optional[str] = None

    def validate(self) -> "AppConfig":
        if self.display_mode not in DISPLAY_MODES:
            raise ConfigError(
                "display_mode must be one of {modes}, got {value!r}".format(
                    modes=", ".join(DISPLAY_MODES), value=self.display_mode
                )
            )
        if self.debounce_seconds < 0:
            raise ConfigError("debounce_seconds must not be negative")
        if self.render_timeout <= 0:
            raise ConfigError("render_timeout must be positive")
        return self

    def merged(self, **overrides: Any) -> "AppConfig":
        """Copy with the given values replaced; None values are ignored."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes).validate()


_FIELD_NAMES = frozenset(f.name for f in fields(AppConfig))


def _coerce(key: str, value: Any) -> Any:
    if key in ("debounce_seconds", "render_timeout"):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError("{key} must be a number".format(key=key))
        return float(value)
    if key == "embed_metadata":
        if not isinstance(value, bool):
            raise ConfigError("embed_metadata must be true or false")
        return value
    if value is None:
        return None
    if not isinstance(value, (str, int, float)):
        raise ConfigError("{key} must be a string".format(key=key))
    return str(value)


def config_from_dict(data: Dict[str, Any]) -> AppConfig:
    """Build an AppConfig from a parsed mapping."""
    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in _FIELD_NAMES:
            logger.warning("Unknown config key ignored: %s", key)
            continue
        values[key] = _coerce(key, value)
    return AppConfig(**values).validate()


def load_config(config_path: Optional[Union[str, Path]] = None) -> AppConfig:
    """
    Load configuration.

    Args:
        config_path: Explicit YAML file. When omitted, ``mathedit.yaml`` in the
            working directory is used if it exists.

    Returns:
        AppConfig (defaults when no file is found)

    Raises:
        ConfigError: File missing (explicit path only), bad YAML or bad values
    """
    if config_path is None:
        path = Path.cwd() / DEFAULT_CONFIG_NAME
        if not path.exists():
            return AppConfig()
    else:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError("Config file not found: {path}".format(path=path))

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError("Invalid YAML in {path}: {err}".format(path=path, err=e)) from e

    if not isinstance(data, dict):
        raise ConfigError("{path} must contain a mapping, got {kind}".format(path=path, kind=type(data).__name__))

    config = config_from_dict(data)
    logger.debug("Loaded config from %s: %s", path, config)
    return config
