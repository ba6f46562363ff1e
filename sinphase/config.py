"""Tagger configuration.

Loaded from a YAML file (``.sinphase.yml`` at the repository root by
default), validated against a JSON schema, then overridden from the
environment. The engine only ever sees the resulting TaggerConfig.

Environment Variables:
    SINPHASE_SIGNING_KEY: Signing key path or literal (when the file names none)
    SINPHASE_THRESHOLD: Overrides the stability threshold

Example .sinphase.yml:
    artifacts:
      - dist/app.whl
      - dist/app.tar.gz
    threshold: 0.5
    governance_ref: GOV-POLICY-001
    test_command: pytest -q
"""
from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import jsonschema
import yaml

from sinphase.models import ConfigError, SemanticVersion, StabilityTier
from sinphase.signing import ALGORITHMS, HMAC_SHA256
from sinphase.version import (
    DEFAULT_CORE_IMPLEMENTATION_PATTERNS,
    DEFAULT_PUBLIC_INTERFACE_PATTERNS,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = ".sinphase.yml"
DEFAULT_THRESHOLD = 0.5
DEFAULT_TAG_TEMPLATE = "{prefix}{version}-{tier}"
THRESHOLD_ENV = "SINPHASE_THRESHOLD"

CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["artifacts"],
    "properties": {
        "artifacts": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "threshold": {"type": "number", "minimum": 0},
        "tag_prefix": {"type": "string"},
        "tag_template": {"type": "string", "minLength": 1},
        "governance_ref": {"type": "string"},
        "public_interface_patterns": {"type": "array", "items": {"type": "string"}},
        "core_implementation_patterns": {"type": "array", "items": {"type": "string"}},
        "test_command": {"type": ["string", "null"]},
        "test_timeout": {"type": ["number", "null"], "exclusiveMinimum": 0},
        "require_artifacts": {"type": "boolean"},
        "signing_algorithm": {"enum": list(ALGORITHMS)},
        "signing_key": {"type": ["string", "null"]},
    },
}


@dataclass(frozen=True)
class TaggerConfig:
    """Explicit configuration passed into TagEngine at construction."""
    artifacts: tuple[str, ...] = ()
    threshold: float = DEFAULT_THRESHOLD
    tag_prefix: str = "v"
    tag_template: str = DEFAULT_TAG_TEMPLATE
    governance_ref: str = ""
    public_interface_patterns: tuple[str, ...] = DEFAULT_PUBLIC_INTERFACE_PATTERNS
    core_implementation_patterns: tuple[str, ...] = DEFAULT_CORE_IMPLEMENTATION_PATTERNS
    test_command: Optional[str] = None
    test_timeout: Optional[float] = None
    require_artifacts: bool = False
    signing_algorithm: str = HMAC_SHA256
    signing_key: Optional[str] = None
    base_dir: Path = field(default_factory=Path.cwd)

    def __post_init__(self) -> None:
        if not math.isfinite(self.threshold) or self.threshold < 0:
            raise ConfigError(f"threshold must be a finite non-negative number: {self.threshold}")
        try:
            self.tag_template.format(prefix="", version="0.0.0", tier="alpha")
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigError(f"Invalid tag_template {self.tag_template!r}: {e}") from e
        for placeholder in ("{version}", "{tier}"):
            if placeholder not in self.tag_template:
                raise ConfigError(f"tag_template must contain {placeholder}")

    def tag_name(self, version: SemanticVersion, tier: StabilityTier) -> str:
        return self.tag_template.format(prefix=self.tag_prefix, version=version, tier=tier.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "artifacts": list(self.artifacts),
            "threshold": self.threshold,
            "tag_prefix": self.tag_prefix,
            "tag_template": self.tag_template,
            "governance_ref": self.governance_ref,
            "public_interface_patterns": list(self.public_interface_patterns),
            "core_implementation_patterns": list(self.core_implementation_patterns),
            "test_command": self.test_command,
            "test_timeout": self.test_timeout,
            "require_artifacts": self.require_artifacts,
            "signing_algorithm": self.signing_algorithm,
            "base_dir": str(self.base_dir),
        }


def config_from_mapping(data: Mapping[str, Any], base_dir: Union[str, Path]) -> TaggerConfig:
    """Validate a parsed mapping and build a TaggerConfig from it."""
    try:
        jsonschema.validate(instance=dict(data), schema=CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        raise ConfigError(f"Config validation failed: {e.message}", path=list(e.path)) from e

    values = dict(data)
    for key in ("artifacts", "public_interface_patterns", "core_implementation_patterns"):
        if key in values:
            values[key] = tuple(values[key])
    if "threshold" in values:
        values["threshold"] = float(values["threshold"])
    return TaggerConfig(base_dir=Path(base_dir), **values)


def apply_env_overrides(config: TaggerConfig, env: Optional[Mapping[str, str]] = None) -> TaggerConfig:
    env = os.environ if env is None else env
    raw = env.get(THRESHOLD_ENV, "").strip()
    if not raw:
        return config
    try:
        threshold = float(raw)
    except ValueError as e:
        raise ConfigError(f"{THRESHOLD_ENV} is not a number: {raw!r}") from e
    logger.info("Threshold overridden from environment: %.4f", threshold)
    return replace(config, threshold=threshold)


def load_config(
    path: Optional[Union[str, Path]] = None,
    base_dir: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> TaggerConfig:
    """Load, validate and environment-override the tagger configuration.

    Args:
        path: YAML file. Defaults to <base_dir>/.sinphase.yml
        base_dir: Directory artifact paths resolve against. Defaults to the
            config file's directory
        env: Environment mapping (defaults to os.environ)

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    if path is None:
        path = Path(base_dir or Path.cwd()) / DEFAULT_CONFIG_FILENAME
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}", path=str(path))

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read config {path}: {e}", path=str(path)) from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping", path=str(path))

    config = config_from_mapping(data, base_dir or path.resolve().parent)
    config = apply_env_overrides(config, env)
    logger.debug("Loaded config from %s: %s", path, config.to_dict())
    return config
