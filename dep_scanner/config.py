# dep_scanner/config.py
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional

import yaml
from platformdirs import user_config_path

logger = logging.getLogger(__name__)

APP_NAME = "dep-scanner"
CONFIG_FILENAME = "config.yaml"

OSV_API_BATCH_URL = "https://api.osv.dev/v1/querybatch"
OSV_API_VULN_URL = "https://api.osv.dev/v1/vulns/"  # Note the trailing slash
OSV_MAX_BATCH_SIZE = 1000  # OSV API limit
OSV_TIMEOUT = 30
RATE_LIMIT_DELAY = 2.0

SEVERITY_CHOICES = ('CRITICAL', 'HIGH', 'MEDIUM', 'LOW', 'UNKNOWN')
FORMAT_CHOICES = ('text', 'json', 'html')


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ScannerConfig:
    osv_batch_url: str = OSV_API_BATCH_URL
    osv_vuln_url: str = OSV_API_VULN_URL
    batch_size: int = OSV_MAX_BATCH_SIZE
    rate_limit_delay: float = RATE_LIMIT_DELAY
    request_timeout: float = OSV_TIMEOUT
    max_workers: int = 8
    format: str = "text"
    output_file: Optional[str] = None
    severity_threshold: Optional[str] = None
    ignore_vulnerabilities: tuple[str, ...] = field(default_factory=tuple)
    log_level: str = "INFO"

    def with_overrides(self, **overrides) -> "ScannerConfig":
        """Returns a copy with every non-None override applied."""
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})


def _check_type(key: str, value, expected: tuple[type, ...]):
    # bool is an int subclass; never accept it for numeric settings
    if isinstance(value, bool) or not isinstance(value, expected):
        raise ConfigError(f"Config key '{key}' has invalid value {value!r}")


def config_from_dict(data: dict) -> ScannerConfig:
    known = {f.name for f in fields(ScannerConfig)}
    values = {}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key '{key}'")
            continue
        if value is None:
            continue
        if key in ('batch_size', 'max_workers'):
            _check_type(key, value, (int,))
            if value < 1:
                raise ConfigError(f"Config key '{key}' must be at least 1")
        elif key in ('rate_limit_delay', 'request_timeout'):
            _check_type(key, value, (int, float))
            if value < 0:
                raise ConfigError(f"Config key '{key}' must not be negative")
        elif key == 'ignore_vulnerabilities':
            if not isinstance(value, list):
                raise ConfigError(f"'ignore_vulnerabilities' must be a list, found {type(value).__name__}")
            value = tuple(str(v).strip() for v in value)
        elif key == 'severity_threshold':
            _check_type(key, value, (str,))
            value = value.upper()
            if value not in SEVERITY_CHOICES:
                raise ConfigError(f"Unknown severity threshold '{value}'")
        elif key == 'format':
            _check_type(key, value, (str,))
            value = value.lower()
            if value not in FORMAT_CHOICES:
                raise ConfigError(f"Unknown report format '{value}'")
        else:
            _check_type(key, value, (str,))
        values[key] = value
    return ScannerConfig(**values)


def default_config_paths() -> list[Path]:
    return [Path(CONFIG_FILENAME), user_config_path(APP_NAME) / CONFIG_FILENAME]


def load_config(config_path: Optional[str] = None) -> ScannerConfig:
    """
    Loads YAML settings. An explicit path must exist; otherwise the first of
    ./config.yaml and the per-user config file that exists is used, and defaults
    apply when there is none.
    """
    if config_path:
        path = Path(config_path)
        if not path.is_file():
            raise ConfigError(f"Configuration file '{path}' not found")
    else:
        path = next((p for p in default_config_paths() if p.is_file()), None)
        if path is None:
            logger.debug("No configuration file found. Using defaults.")
            return ScannerConfig()

    logger.info(f"Loading configuration from '{path.resolve()}'...")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            loaded_yaml = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML configuration file '{path}': {e}") from e

    if loaded_yaml is None:
        return ScannerConfig()
    if not isinstance(loaded_yaml, dict):
        raise ConfigError(f"Config file '{path}' does not contain a valid dictionary structure.")
    return config_from_dict(loaded_yaml)
