"""
Bridge Configuration Loader

Loads configuration from YAML files with environment variable interpolation.

Environment Variable Interpolation:
- ${VAR_NAME} - Required variable, raises error if not set
- ${VAR_NAME:-default} - Optional variable with default value

Example:
```yaml
whatsapp:
  group_name: "${WA_GROUP_NAME:-Radar}"
  bridge_http_url: "${WA_BRIDGE_URL:-http://localhost:3001}"
```
"""

import os
import re
from pathlib import Path
from typing import Any, Optional, Union
import logging

import yaml

from .schema import BridgeConfig

logger = logging.getLogger(__name__)

# Pattern for environment variable substitution: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')

CONFIG_FILENAME = "bridge.yaml"


def interpolate_env_vars(value: Any) -> Any:
    """
    Recursively interpolate environment variables in configuration values.

    Args:
        value: Configuration value (string, dict, list, or primitive)

    Returns:
        Value with environment variables interpolated

    Raises:
        KeyError: If a ${VAR} without default is not set
    """
    if isinstance(value, str):
        def replace_env_var(match):
            var_name = match.group(1)
            default_value = match.group(2)

            env_value = os.environ.get(var_name)

            if env_value is not None:
                return env_value
            elif default_value is not None:
                return default_value
            else:
                raise KeyError(
                    f"Environment variable '{var_name}' is required but not set. "
                    f"Set it or provide a default: ${{{var_name}:-default}}"
                )

        return ENV_VAR_PATTERN.sub(replace_env_var, value)

    elif isinstance(value, dict):
        return {k: interpolate_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]

    else:
        return value


def load_config_from_file(
    config_path: Union[str, Path],
    interpolate: bool = True
) -> BridgeConfig:
    """
    Load bridge configuration from a YAML file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        KeyError: If required environment variable is not set
        yaml.YAMLError: If YAML is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}

    if interpolate:
        try:
            raw_config = interpolate_env_vars(raw_config)
        except KeyError as e:
            logger.error(f"Configuration error: {e}")
            raise

    return BridgeConfig.from_dict(raw_config)


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    working_dir: Optional[Union[str, Path]] = None,
) -> BridgeConfig:
    """
    Load bridge configuration.

    Search order:
    1. Explicit config_path if provided
    2. bridge.yaml in working_dir
    3. bridge.yaml in current directory
    4. Environment variables
    """
    if config_path:
        return load_config_from_file(config_path)

    search_paths = []
    if working_dir:
        search_paths.append(Path(working_dir) / CONFIG_FILENAME)
    search_paths.append(Path.cwd() / CONFIG_FILENAME)

    for path in search_paths:
        if path.exists():
            logger.info(f"Found configuration at {path}")
            return load_config_from_file(path)

    logger.info(f"No {CONFIG_FILENAME} found, using environment variables")
    return BridgeConfig.from_env()
