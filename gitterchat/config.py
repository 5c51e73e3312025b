"""Configuration management."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from gitterchat.chat.exceptions import ConfigError
from gitterchat.models import Config

TOKEN_ENV_VAR = "GITTER_TOKEN"


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file.

    A missing file yields the defaults. ``GITTER_TOKEN`` in the environment
    takes precedence over the file's token.
    """
    if config_path is None:
        config_path = Path("config.yaml")

    data = {}
    if config_path.exists():
        with open(config_path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"{config_path} must contain a mapping")

    token = os.environ.get(TOKEN_ENV_VAR)
    if token:
        data["token"] = token

    try:
        return Config(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e
