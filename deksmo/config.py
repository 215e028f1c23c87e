from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from . import available_formats
from .errors import ConfigError

FETCH_HELPERS = ("session", "browser", "none")


@dataclass
class ExportSettings:
    out_dir: str = "exports"
    format: str = "pdf"
    delay: float = 0.5
    dismiss_after: float = 3.0
    timeout: float = 30.0
    max_retries: int = 2
    retry_delay: float = 0.5
    user_agent: Optional[str] = None
    proxy: Optional[str] = None
    cookies: str = ""
    fetch_helper: str = "session"
    max_image_mb: float = 10.0
    verbose: bool = False
    debug: bool = False

    def validate(self) -> "ExportSettings":
        if self.format not in available_formats():
            raise ConfigError(
                f"Unknown format '{self.format}' (choose from {', '.join(available_formats())})"
            )
        if self.fetch_helper not in FETCH_HELPERS:
            raise ConfigError(f"Unknown fetch helper '{self.fetch_helper}'")
        for name in ("delay", "dismiss_after", "retry_delay", "max_image_mb"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if self.max_retries < 1:
            raise ConfigError("max_retries must be at least 1")
        return self

    @property
    def max_image_bytes(self) -> int:
        return int(self.max_image_mb * 1024 * 1024)


def load_config_file(path) -> Dict[str, Any]:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must hold a JSON object")
    known = {f.name for f in dataclasses.fields(ExportSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(unknown)}")
    return data


def settings_from_args(args, env: Optional[Mapping[str, str]] = None) -> ExportSettings:
    """
    Defaults, then the optional JSON config file, then explicit flags.
    DEKSMO_USER_AGENT / DEKSMO_PROXY fill in what neither of those set.
    """
    env = os.environ if env is None else env
    values: Dict[str, Any] = {}
    config_path = getattr(args, "config", None)
    if config_path:
        values.update(load_config_file(config_path))

    for f in dataclasses.fields(ExportSettings):
        flag = getattr(args, f.name, None)
        if flag is not None and flag is not False:
            values[f.name] = flag

    if not values.get("user_agent") and env.get("DEKSMO_USER_AGENT"):
        values["user_agent"] = env["DEKSMO_USER_AGENT"]
    if not values.get("proxy") and env.get("DEKSMO_PROXY"):
        values["proxy"] = env["DEKSMO_PROXY"]

    try:
        return ExportSettings(**values).validate()
    except TypeError as e:
        raise ConfigError(f"Invalid setting: {e}") from e


__all__ = ["ExportSettings", "FETCH_HELPERS", "load_config_file", "settings_from_args"]
