"""Load the agent configuration file (key = value lines, or YAML)."""
from __future__ import annotations

import re

import yaml

from zbagent.models import AgentConfig

DEFAULT_CONFIG_PATH = "/etc/zbackup/zbackup.conf"

_LINE_RE = re.compile(r"^\s*([A-Za-z0-9_.-]+)\s*=\s*(.*?)\s*$")


class ConfigError(Exception):
    pass


def _validate_pattern(pattern: str) -> str:
    try:
        re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"Invalid regex in pattern {pattern!r}: {e}")
    return pattern


def parse_config_text(text: str) -> AgentConfig:
    """Parse `key = value` lines. Unknown keys are ignored; the last duplicate wins."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        m = _LINE_RE.match(line)
        if not m:
            continue
        values[m.group(1).lower()] = m.group(2)

    pattern = values.get("pattern", "") or "."
    return AgentConfig(
        pattern=_validate_pattern(pattern),
        exclude_inactive_be=values.get("exclude_inactive_be") == "1",
    )


def parse_config_yaml(text: str, path: str = "<string>") -> AgentConfig:
    raw = yaml.safe_load(text)
    if raw is None:
        return AgentConfig()
    if not isinstance(raw, dict):
        raise ConfigError(f"Config must be a YAML mapping: {path}")
    raw = {str(k).lower(): v for k, v in raw.items()}

    pattern = raw.get("pattern") or "."
    if not isinstance(pattern, str):
        raise ConfigError(f"pattern must be a string, got {pattern!r}")
    exclude = raw.get("exclude_inactive_be", False)
    return AgentConfig(
        pattern=_validate_pattern(pattern),
        exclude_inactive_be=exclude is True or str(exclude) == "1",
    )


def load_config(path: str = DEFAULT_CONFIG_PATH) -> AgentConfig:
    """Load config from path. A missing file yields the defaults."""
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        return AgentConfig()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    if path.endswith((".yaml", ".yml")):
        try:
            return parse_config_yaml(text, path)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return parse_config_text(text)
