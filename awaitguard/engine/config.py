"""
awaitguard configuration.

Settings live in a YAML file (``.awaitguard.yml`` by default) found by walking
up from the analyzed path. Values in the file are layered over built-in
defaults; the two mapping sections that hold per-rule entries are merged key
by key instead of being replaced.

Example::

    enabled_rules: ["concurrency.*"]
    severity_threshold: warn
    rule_severities:
      concurrency.require_await_for_promise: error
    type_declarations:
      api.loadUser: Promise<User>
"""

import copy
import logging
import os
from dataclasses import dataclass, field, asdict, fields
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .schema import validate_config


logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = (".awaitguard.yml", ".awaitguard.yaml", "awaitguard.yml", "awaitguard.yaml")

DEFAULT_RULE_SEVERITIES = {
    "concurrency.require_await_for_promise": "warn",
}


@dataclass
class EngineConfig:
    """Resolved engine settings."""

    # fnmatch patterns over rule ids; ["*"] runs everything
    enabled_rules: List[str] = field(default_factory=lambda: ["*"])
    max_findings_per_file: int = 50
    # findings below this severity are dropped
    severity_threshold: str = "info"
    rule_severities: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_RULE_SEVERITIES))
    # rule id -> options, checked against the rule's options schema
    rule_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    # callee text -> return type, for functions a file imports but cannot see
    type_declarations: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # explicit None from callers means "use the default"
        if self.rule_severities is None:
            self.rule_severities = dict(DEFAULT_RULE_SEVERITIES)
        for name in ("rule_configs", "type_declarations"):
            if getattr(self, name) is None:
                setattr(self, name, {})

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], source: str = "<config>") -> "EngineConfig":
        """Layer a parsed config mapping over the defaults.

        Raises:
            ValueError: when a known key holds a value of the wrong type
        """
        problems = validate_config(values)
        if problems:
            raise ValueError("; ".join(problems))

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys in %s: %s", source, unknown)

        config = cls()
        for key in known & set(values):
            value = values[key]
            if key == "rule_severities":
                config.rule_severities.update(value or {})
            elif key == "rule_configs":
                for rule_id, options in (value or {}).items():
                    config.rule_configs.setdefault(rule_id, {}).update(options or {})
            elif key == "type_declarations":
                config.type_declarations = {str(k): str(v) for k, v in (value or {}).items()}
            else:
                setattr(config, key, copy.deepcopy(value))
        return config


def load_config(config_path: Optional[str] = None) -> EngineConfig:
    """
    Load settings from a YAML file.

    A missing path gives the defaults. An unreadable or malformed file is
    logged and also gives the defaults, so a bad config never aborts a run.
    """
    if not config_path or not os.path.exists(config_path):
        return EngineConfig()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            values = yaml.safe_load(f) or {}
        if not isinstance(values, dict):
            raise ValueError("top-level YAML value must be a mapping")
        return EngineConfig.from_mapping(values, source=config_path)
    except (OSError, yaml.YAMLError, ValueError, TypeError, AttributeError) as e:
        logger.warning("Failed to load config from %s: %s", config_path, e)
        logger.warning("Using default configuration.")
        return EngineConfig()


def get_default_config() -> EngineConfig:
    return EngineConfig()


def save_config(config: EngineConfig, config_path: str) -> None:
    """Write config as YAML, creating parent directories."""
    parent = os.path.dirname(config_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(asdict(config), f, default_flow_style=False, sort_keys=False)


def find_config_file(start_path: str = ".") -> Optional[str]:
    """
    Nearest config file at or above start_path (a file or a directory).

    In each directory the names in ``CONFIG_FILE_NAMES`` are tried in order.
    """
    directory = os.path.abspath(start_path)
    if os.path.isfile(directory):
        directory = os.path.dirname(directory)

    while True:
        for name in CONFIG_FILE_NAMES:
            candidate = os.path.join(directory, name)
            if os.path.isfile(candidate):
                return candidate
        parent = os.path.dirname(directory)
        if parent == directory:
            return None
        directory = parent


def get_rule_severity(rule_id: str, config: EngineConfig, default_severity: str = "warn") -> str:
    return (config.rule_severities or {}).get(rule_id, default_severity)
