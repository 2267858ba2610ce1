"""Reading and writing the user's configuration file."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

CONFIG_FILE_NAME = ".gatorconfig.json"

_FIELDS = ("db_url", "current_user_name")


@dataclass
class Config:
    """Database location and the name of the logged-in user."""

    db_url: str = ""
    current_user_name: str = ""

    def set_user(self, user_name: str, path: str | Path | None = None) -> None:
        """Record *user_name* as the current user and save the file."""
        self.current_user_name = user_name
        write(self, path)


def config_path() -> Path:
    """Return the location of the configuration file in the home directory."""
    return Path.home() / CONFIG_FILE_NAME


def _resolve(path: str | Path | None) -> Path:
    return Path(path) if path is not None else config_path()


def read(path: str | Path | None = None) -> Config:
    """Load the configuration; missing keys keep their empty defaults."""
    with _resolve(path).open(encoding="utf-8") as fh:
        data = json.load(fh)

    if data is None:
        return Config()
    if not isinstance(data, dict):
        raise ValueError("configuration must be a JSON object")

    values: dict[str, str] = {}
    for key in _FIELDS:
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValueError(f"configuration field {key!r} must be a string")
        values[key] = value
    return Config(**values)


def write(cfg: Config, path: str | Path | None = None) -> None:
    """Save *cfg* as a single line of JSON, replacing any previous file."""
    payload = {"db_url": cfg.db_url, "current_user_name": cfg.current_user_name}
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False) + "\n"
    _resolve(path).write_text(text, encoding="utf-8")