"""
Registration options and configuration loading.

Handles:
- The RegistrationOptions record resolved once per session
- Loading options from YAML files
- Merging file options with keyword overrides
- Environment variable substitution
"""

import os
import re
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from elastix_bridge.exceptions import ConfigurationError

ELASTIX_EXECUTABLE_ENV = 'ELASTIX_EXECUTABLE'


def default_executable() -> str:
    """Name of the elastix binary, honouring $ELASTIX_EXECUTABLE."""
    return os.environ.get(ELASTIX_EXECUTABLE_ENV) or 'elastix'


@dataclass(frozen=True)
class RegistrationOptions:
    """
    Options for one registration session.

    Parameters
    ----------
    verbose : bool
        Show elastix output on the terminal instead of capturing it
    output_path : Path, optional
        Where to move the registered image. Only used when the moving image
        is given as a path; with no output path the result image is deleted.
    executable : str
        elastix binary name or path
    temp_root : Path, optional
        Directory for temporary files (default: system temp directory)
    timeout : float, optional
        Seconds before the elastix process is killed
    threads : int, optional
        Maximum number of elastix threads (-threads)
    """
    verbose: bool = False
    output_path: Optional[Path] = None
    executable: str = ''
    temp_root: Optional[Path] = None
    timeout: Optional[float] = None
    threads: Optional[int] = None

    def __post_init__(self):
        if not self.executable:
            object.__setattr__(self, 'executable', default_executable())
        for name in ('output_path', 'temp_root'):
            value = getattr(self, name)
            if value is not None and value != '':
                object.__setattr__(self, name, Path(value))
            else:
                object.__setattr__(self, name, None)
        validate_options(self)

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any]) -> 'RegistrationOptions':
        """
        Build options from a configuration mapping.

        Raises
        ------
        ConfigurationError
            If the mapping contains unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(f"Unknown registration options: {', '.join(unknown)}")
        try:
            return cls(**mapping)
        except TypeError as e:
            raise ConfigurationError(f"Invalid registration options: {e}") from e

    def with_overrides(self, **overrides: Any) -> 'RegistrationOptions':
        """Return a copy with the given fields replaced."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigurationError(f"Unknown registration options: {', '.join(unknown)}")
        return replace(self, **overrides)


def validate_options(options: RegistrationOptions) -> None:
    """
    Check option values.

    Raises
    ------
    ConfigurationError
        If any option has the wrong type or range
    """
    if not isinstance(options.verbose, bool):
        raise ConfigurationError(f"verbose must be a boolean, got {options.verbose!r}")

    if options.timeout is not None:
        if isinstance(options.timeout, bool) or not isinstance(options.timeout, (int, float)) \
                or options.timeout <= 0:
            raise ConfigurationError(f"timeout must be a positive number, got {options.timeout!r}")

    if options.threads is not None:
        if isinstance(options.threads, bool) or not isinstance(options.threads, int) \
                or options.threads < 1:
            raise ConfigurationError(f"threads must be positive integer, got {options.threads!r}")

    if options.temp_root is not None and not options.temp_root.is_dir():
        raise ConfigurationError(f"temp_root is not a directory: {options.temp_root}")


def load_yaml(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML configuration file.

    Parameters
    ----------
    file_path : Path
        Path to YAML file

    Returns
    -------
    dict
        Loaded configuration

    Raises
    ------
    ConfigurationError
        If file doesn't exist or YAML is invalid
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise ConfigurationError(f"Configuration file not found: {file_path}")

    try:
        with open(file_path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration in {file_path} must be a mapping")
    return config


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two configuration dictionaries.

    Parameters
    ----------
    base : dict
        Base configuration (defaults)
    override : dict
        Override configuration

    Returns
    -------
    dict
        Merged configuration (override takes precedence)
    """
    merged = base.copy()

    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def substitute_variables(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Substitute ${ENV_VAR} references in string values.

    Unknown variables are left as they are.
    """
    pattern = re.compile(r'\$\{([^}]+)\}')

    def replacer(match):
        return os.environ.get(match.group(1), match.group(0))

    def process_value(value: Any) -> Any:
        if isinstance(value, str):
            return pattern.sub(replacer, value)
        elif isinstance(value, dict):
            return {k: process_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [process_value(item) for item in value]
        return value

    return process_value(config)


def load_options(
    config_path: Optional[Path] = None,
    **overrides: Any
) -> RegistrationOptions:
    """
    Load registration options from a YAML file and keyword overrides.

    The file may hold the options at the top level or under a
    ``registration:`` section. Keyword overrides take precedence; overrides
    equal to None are ignored so that unset CLI flags do not clobber the file.

    Examples
    --------
    >>> options = load_options(Path('elastix.yaml'), verbose=True)
    """
    config: Dict[str, Any] = {}
    if config_path is not None:
        config = load_yaml(Path(config_path))
        if 'registration' in config:
            section = config['registration']
            if not isinstance(section, dict):
                raise ConfigurationError("'registration' section must be a mapping")
            config = section
        config = substitute_variables(config)

    config = merge_configs(config, {k: v for k, v in overrides.items() if v is not None})
    return RegistrationOptions.from_mapping(config)
