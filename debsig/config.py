"""
Verifier configuration.

Settings come from three places, later ones winning: built-in defaults from
``debsig.constants``, an optional YAML file, and explicit overrides passed by
the front end (command line options). The YAML file is located through
``--config`` or the DEBSIG_VERIFY_CONFIG environment variable.

Example file:

    root: /
    policies_dir: /etc/debsig/policies
    keyrings_dir: /usr/share/debsig/keyrings
    gpg_timeout: 30
    max_workers: 1
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .constants import EnvVars, Paths, RuntimeConfig
from .exceptions import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifierConfig:
    """Immutable verifier settings for one run."""
    root: str = Paths.ROOT_DIR
    policies_dir: str = Paths.POLICIES_DIR
    keyrings_dir: str = Paths.KEYRINGS_DIR
    gpg_timeout: Optional[float] = None
    max_workers: int = 1

    def __post_init__(self):
        for name in ('root', 'policies_dir', 'keyrings_dir'):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ConfigError(f"{name} must be a non-empty path, got {value!r}")
        if self.gpg_timeout is not None and (
                isinstance(self.gpg_timeout, bool)
                or not isinstance(self.gpg_timeout, (int, float))):
            raise ConfigError(f"gpg_timeout must be a number, got {self.gpg_timeout!r}")
        if isinstance(self.max_workers, bool) or not isinstance(self.max_workers, int):
            raise ConfigError(f"max_workers must be an integer, got {self.max_workers!r}")
        if self.gpg_timeout is not None and self.gpg_timeout <= 0:
            raise ConfigError(f"gpg_timeout must be positive, got {self.gpg_timeout}")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {self.max_workers}")

    def _rooted(self, path: str) -> Path:
        """Resolve an absolute configuration path below the admin root."""
        return Path(self.root) / path.lstrip('/')

    @property
    def policies_path(self) -> Path:
        return self._rooted(self.policies_dir)

    @property
    def keyrings_path(self) -> Path:
        return self._rooted(self.keyrings_dir)

    def with_overrides(self, **overrides: Any) -> 'VerifierConfig':
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigError(f"unknown configuration keys: {', '.join(sorted(unknown))}")
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(filepath: Union[str, Path]) -> VerifierConfig:
    """
    Load a YAML configuration file.

    Args:
        filepath: Path to the configuration file

    Returns:
        VerifierConfig with the file's values applied over the defaults

    Raises:
        ConfigError: if the file cannot be read or holds unknown keys
    """
    filepath = Path(filepath)

    try:
        content = filepath.read_text()
    except OSError as e:
        raise ConfigError(f"cannot read config file {filepath}: {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {filepath}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {filepath} must contain a mapping")

    try:
        config = VerifierConfig().with_overrides(**data)
    except TypeError as e:
        raise ConfigError(f"invalid value in {filepath}: {e}") from e

    logger.debug(f"Loaded configuration from {filepath}: {config.to_dict()}")
    return config


def default_config(config_file: Optional[str] = None) -> VerifierConfig:
    """
    Build the configuration for a run.

    Uses ``config_file`` if given, else DEBSIG_VERIFY_CONFIG if set, else the
    built-in defaults. DEBSIG_GNUPG_TIMEOUT applies when no file sets a
    timeout.
    """
    config_file = config_file or os.environ.get(EnvVars.CONFIG_FILE)
    config = load_config(config_file) if config_file else VerifierConfig()

    if config.gpg_timeout is None:
        timeout = RuntimeConfig.get_gpg_timeout()
        if timeout is not None:
            config = config.with_overrides(gpg_timeout=timeout)

    return config


__all__ = [
    'VerifierConfig',
    'load_config',
    'default_config',
]
