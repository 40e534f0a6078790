#!/usr/bin/env python3

import os
import json
import logging
import sys
import tomllib
from pathlib import Path
from typing import List, Optional

import yaml

from .domain.tag import DEFAULT_HOST, IndexTarget
from .exit_codes import ConfigError

logger = logging.getLogger("crdindex")

CONFIG_FILENAMES = ['config.yaml', 'config.yml', 'config.json', 'config.toml']


def configure_logging(config: Optional[dict] = None, level: Optional[str] = None) -> None:
    """
    Configure root logging on stderr from the 'logging' config section.

    Args:
        config: Configuration dictionary
        level: Explicit level overriding the config (e.g. "DEBUG")
    """
    log_config = (config or {}).get('logging', {})
    level_name = (level or log_config.get('level') or 'INFO').upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=log_config.get('format') or "%(levelname)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr)
        ],
        force=True,
    )


def get_config_path(path: Optional[str] = None) -> Path:
    """Get the path to the configuration file.

    Checks in order:
    1. Explicit path argument
    2. CRDINDEX_CONFIG environment variable
    3. ~/.crdindex/ directory
    """
    if path:
        return Path(path).expanduser()

    if 'CRDINDEX_CONFIG' in os.environ:
        return Path(os.environ['CRDINDEX_CONFIG']).expanduser()

    crdindex_dir = Path.home() / '.crdindex'
    for filename in CONFIG_FILENAMES:
        candidate = crdindex_dir / filename
        if candidate.exists():
            return candidate

    # If no file exists, return default path
    return crdindex_dir / 'config.yaml'


def _read_config_file(config_path: Path) -> dict:
    suffix = config_path.suffix.lower()
    try:
        if suffix == '.toml':
            with open(config_path, 'rb') as f:
                file_config = tomllib.load(f)
        elif suffix in ['.yaml', '.yml']:
            with open(config_path, 'r') as f:
                file_config = yaml.safe_load(f)
        else:
            with open(config_path, 'r') as f:
                file_config = json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"Error loading config from {config_path}: {e}")

    if file_config is None:
        return {}
    if not isinstance(file_config, dict):
        raise ConfigError(f"Config {config_path} must contain a mapping")
    return file_config


def load_config(path: Optional[str] = None) -> dict:
    """
    Load configuration from file.

    The result is the single configuration value of a run; callers pass
    it explicitly to the indexer and the database.

    Args:
        path: Explicit config file. A missing explicit file is an error;
              a missing default file just yields the defaults.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    config_path = get_config_path(path)

    # Start with default config
    config = get_default_config()

    if config_path.exists():
        config = merge_configs(config, _read_config_file(config_path))
    elif path or 'CRDINDEX_CONFIG' in os.environ:
        raise ConfigError(f"Config file not found: {config_path}")
    else:
        logger.debug(f"No config file at {config_path}, using defaults")

    # Apply environment variable overrides
    config = apply_env_overrides(config)

    return config


def get_default_config() -> dict:
    """Get default configuration."""
    return {
        "database": {
            "path": "~/.crdindex/catalog.db",
        },
        "git": {
            "host": DEFAULT_HOST,
            "url_template": "https://{host}/{org}/{repo}",
            "main_branch": "main",
            "timeout": None,
        },
        "index": {
            "marker": "kind: CustomResourceDefinition",
            "manifest_path": r"\.ya?ml$",
            "strip_labels": True,
            "strip_annotations": True,
            "strip_conversion": True,
        },
        "logging": {
            "level": "INFO",
            "format": "%(levelname)s: %(message)s",
        },
        "default_org": "",
        "repos": {},
    }


def merge_configs(base_config, override_config):
    """
    Recursively merge two configuration dictionaries.

    Args:
        base_config (dict): Base configuration
        override_config (dict): Configuration to merge/override with

    Returns:
        dict: Merged configuration
    """
    merged = base_config.copy()

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict) and key != 'repos':
            # Recursively merge nested dictionaries
            merged[key] = merge_configs(merged[key], value)
        else:
            # Override or add new key
            merged[key] = value

    return merged


def apply_env_overrides(config):
    """
    Apply environment variable overrides to configuration.
    Environment variables follow the pattern: CRDINDEX_SECTION_KEY
    For example: CRDINDEX_GIT_MAIN_BRANCH=master
    """
    env_prefix = "CRDINDEX_"

    for env_key, value in os.environ.items():
        if not env_key.startswith(env_prefix):
            continue

        key_parts = env_key[len(env_prefix):].lower().split('_')

        # Convert value
        if value.lower() in ('true', 'yes', 'on'):
            typed_value = True
        elif value.lower() in ('false', 'no', 'off'):
            typed_value = False
        elif value.isdigit():
            typed_value = int(value)
        else:
            typed_value = value

        current_level = config
        i = 0
        while i < len(key_parts):
            # Find the longest key in current_level that is a prefix of the remaining key_parts
            best_match_len = 0
            matched_key = None

            for config_key in current_level.keys():
                config_key_parts = config_key.split('_')
                if key_parts[i: i + len(config_key_parts)] == config_key_parts:
                    if len(config_key_parts) > best_match_len:
                        best_match_len = len(config_key_parts)
                        matched_key = config_key

            if matched_key is None or matched_key == 'repos':
                break

            # If we are at the end of the env var, we have found the key to set
            if i + best_match_len == len(key_parts):
                current_level[matched_key] = typed_value
                break

            # Otherwise, we descend into the dictionary
            if isinstance(current_level[matched_key], dict):
                current_level = current_level[matched_key]
                i += best_match_len
            else:
                # Path conflict, e.g., env var is longer but we found a non-dict value
                break

    return config


def _tags_for(owner: str, repo: str, tags) -> List[Optional[str]]:
    if tags is None:
        return [None]
    if isinstance(tags, (str, int, float)):
        tags = [tags]
    if not isinstance(tags, list):
        raise ConfigError(f"Tags of {owner}/{repo} must be a list, got {type(tags).__name__}")
    if not tags:
        return [None]
    return [str(tag) for tag in tags]


def load_targets(config: dict) -> List[IndexTarget]:
    """
    Flatten the 'repos' section into index targets, in file order.

    Two layouts are accepted:

        repos:                         repos:
          org:                           repo-a: [v1.0.0, nightly]
            repo-a: [v1.0.0, nightly]    repo-b: []   # every tag
            repo-b: []

    The second layout takes the organization from 'default_org'. An empty
    or null tag list means "index every tag".

    Raises:
        ConfigError: If the section is malformed
    """
    repos = config.get('repos') or {}
    if not isinstance(repos, dict):
        raise ConfigError("'repos' must be a mapping")

    host = config.get('git', {}).get('host') or DEFAULT_HOST
    default_org = config.get('default_org') or ''

    targets = []
    for key, value in repos.items():
        if isinstance(value, dict):
            org = str(key)
            for repo, tags in value.items():
                for tag in _tags_for(org, str(repo), tags):
                    targets.append(IndexTarget(org=org, repo=str(repo), tag=tag, host=host))
        else:
            if not default_org:
                raise ConfigError(
                    f"Repository {key!r} has no organization; set 'default_org' "
                    "or nest it under an organization"
                )
            for tag in _tags_for(default_org, str(key), value):
                targets.append(IndexTarget(org=default_org, repo=str(key), tag=tag, host=host))

    logger.debug(f"Loaded {len(targets)} index targets from config")
    return targets
