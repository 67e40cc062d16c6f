"""Configuration loading from config/silentwatch.yaml.

Every value has a default in code; the YAML file only overrides.
"""

import logging
import os
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError
from .observe.budget import Budget

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/silentwatch.yaml"

DEFAULT_COVERAGE_THRESHOLD = 0.90
DEFAULT_MAX_RETRIES = 2
# Retries are never allowed above this, whatever the config says
MAX_RETRIES_CAP = 2


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load SilentWatch configuration.

    Args:
        path: Explicit config path. When None, config/silentwatch.yaml in the
            working directory and then in the project root are tried.

    Returns:
        Config dict or empty dict if no file was found

    Raises:
        ConfigError: if an explicit path is missing or the YAML is malformed
    """
    if path is not None:
        if not os.path.exists(path):
            raise ConfigError(f"Config file not found: {path}")
        config_paths = [path]
    else:
        config_paths = [
            DEFAULT_CONFIG_PATH,
            os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), DEFAULT_CONFIG_PATH),
        ]

    for candidate in config_paths:
        if os.path.exists(candidate):
            try:
                with open(candidate, 'r') as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Malformed config {candidate}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"Config {candidate} must be a mapping")
            logger.debug(f"Loaded config from {candidate}")
            return data

    return {}


def get_budget_config(config: Dict[str, Any]) -> Budget:
    """Budget from the ``budget:`` section merged over defaults."""
    return Budget.from_dict(config.get('budget') or {})


def get_truth_config(config: Dict[str, Any]) -> Dict[str, Any]:
    truth_config = config.get('truth') or {}
    threshold = truth_config.get('coverage_threshold', DEFAULT_COVERAGE_THRESHOLD)
    if not isinstance(threshold, (int, float)) or not 0.0 <= threshold <= 1.0:
        raise ConfigError(f"truth.coverage_threshold must be within [0, 1], got {threshold!r}")
    return {'coverage_threshold': float(threshold)}


def get_retry_config(config: Dict[str, Any]) -> Dict[str, Any]:
    retry_config = config.get('retry') or {}
    max_retries = retry_config.get('max_retries', DEFAULT_MAX_RETRIES)
    if not isinstance(max_retries, int) or max_retries < 0:
        raise ConfigError(f"retry.max_retries must be a non-negative integer, got {max_retries!r}")
    if max_retries > MAX_RETRIES_CAP:
        logger.warning(f"retry.max_retries={max_retries} above cap, using {MAX_RETRIES_CAP}")
        max_retries = MAX_RETRIES_CAP
    return {'max_retries': max_retries}
