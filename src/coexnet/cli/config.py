"""
Configuration file support for the coexnet CLI.

Supports YAML and JSON config files with CLI argument override. Sections
mirror the pipeline stages:

    ```yaml
    input: data/expression.csv
    annotations: data/genes.csv
    output: results/network

    similarity:
      alpha: 0.7
      beta: 0.3
      chunk_size: 1000
    adjacency:
      power: 8
      signed: true
    modules:
      min_module_size: 20
      deep_split: false
      skip: false
    export:
      threshold: 0.3
      max_edge_ratio: 5
      weighted: true
    ```
"""

from __future__ import annotations

import json
from argparse import Namespace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

__all__ = ['load_config', 'validate_config', 'merge_config_with_args', 'explicit_arg_names']


# Config section → {config key: argparse dest}
SECTION_MAPPINGS: Dict[str, Dict[str, str]] = {
    'similarity': {'alpha': 'alpha', 'beta': 'beta', 'chunk_size': 'chunk_size'},
    'adjacency': {'power': 'power', 'signed': 'signed'},
    'modules': {
        'min_module_size': 'min_module_size',
        'deep_split': 'deep_split',
        'skip': 'skip_modules',
    },
    'export': {
        'threshold': 'threshold',
        'max_edge_ratio': 'max_edge_ratio',
        'weighted': 'weighted',
    },
}

PATH_KEYS = ('input', 'annotations', 'output')

# Flags whose spelling differs from their argparse dest
FLAG_TO_DEST = {
    'unsigned': 'signed',
    'no_deep_split': 'deep_split',
    'unweighted': 'weighted',
}

SHORT_TO_LONG = {
    'i': 'input',
    'a': 'annotations',
    'o': 'output',
    'c': 'config',
    'v': 'verbose',
}


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid

    Examples:
        >>> config = load_config(Path("network.yaml"))
        >>> print(config['adjacency']['power'])
        8
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                config = yaml.safe_load(f)
            elif suffix == '.json':
                config = json.load(f)
            else:
                raise ValueError(
                    f"Unsupported config format: {suffix}. "
                    f"Use .yaml, .yml, or .json"
                )
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}")

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")

    return config


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and value types.

    Range checks (power > 0, alpha + beta = 1, ...) are left to
    NetworkConfig.validate() so both entry points share one rule set.

    Raises:
        ValueError: If configuration is invalid
    """
    known = set(SECTION_MAPPINGS) | set(PATH_KEYS)
    unknown = set(config) - known
    if unknown:
        raise ValueError(
            f"Unknown config sections: {sorted(unknown)}. "
            f"Choose from: {', '.join(sorted(known))}"
        )

    for section, mapping in SECTION_MAPPINGS.items():
        if section not in config:
            continue
        values = config[section]
        if not isinstance(values, dict):
            raise ValueError(f"Config section '{section}' must be a mapping")

        unknown = set(values) - set(mapping)
        if unknown:
            raise ValueError(
                f"Unknown keys in '{section}': {sorted(unknown)}. "
                f"Choose from: {', '.join(sorted(mapping))}"
            )

        for key, value in values.items():
            if key in ('signed', 'deep_split', 'skip', 'weighted'):
                if not isinstance(value, bool):
                    raise ValueError(f"{section}.{key} must be true/false, got: {value!r}")
            elif key in ('chunk_size', 'min_module_size'):
                if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                    raise ValueError(f"{section}.{key} must be a positive integer, got: {value!r}")
            elif not _is_number(value):
                raise ValueError(f"{section}.{key} must be a number, got: {value!r}")


def explicit_arg_names(cli_args: Optional[List[str]]) -> set:
    """Argparse dest names of the flags that appear in raw CLI args."""
    explicit = set()
    for arg in cli_args or ():
        if arg.startswith('--'):
            name = arg[2:].split('=', 1)[0].replace('-', '_')
            explicit.add(FLAG_TO_DEST.get(name, name))
        elif arg.startswith('-') and len(arg) == 2 and arg[1] in SHORT_TO_LONG:
            explicit.add(SHORT_TO_LONG[arg[1]])
    return explicit


def merge_config_with_args(
    config: Dict[str, Any],
    args: Namespace,
    cli_args: Optional[List[str]] = None,
) -> Namespace:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments (argparse.Namespace)
        cli_args: Raw CLI arguments list (for detecting explicit values).
                  If None, assumes all args are defaults

    Returns:
        Updated Namespace with merged values
    """
    explicit = explicit_arg_names(cli_args)
    merged = Namespace(**vars(args))

    for key in PATH_KEYS:
        if key in config and config[key] is not None and key not in explicit:
            setattr(merged, key, Path(config[key]))

    for section, mapping in SECTION_MAPPINGS.items():
        values = config.get(section) or {}
        for key, dest in mapping.items():
            if key in values and values[key] is not None and dest not in explicit:
                setattr(merged, dest, values[key])

    return merged
