"""Analyzer settings and configuration file loading.

Settings come from built-in defaults, optionally overridden by a YAML file
(see ``config.yaml.example``), and finally by command line flags.
"""
import logging
from dataclasses import dataclass
from dataclasses import fields
from dataclasses import replace
from pathlib import Path
from typing import Any
from typing import Dict
from typing import Optional

import yaml

from k8s_memory_analyzer.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONTAINER_MEMORY_QUERY = (
    'container_memory_working_set_bytes{container!="", container!="POD"}'
)
TOTAL_MEMORY_QUERY = (
    'sum(container_memory_working_set_bytes{container!="", container!="POD"})'
)

# 16 TiB expressed in megabytes
DEFAULT_HIGHEST_TRACKABLE_VALUE = 16 * 1024 * 1024


@dataclass(frozen=True)
class AnalyzerSettings:
    """Tunables shared by the importer and the analysis."""

    prometheus_url: Optional[str] = None
    step_seconds: int = 15
    timeout: int = 60
    verify_ssl: bool = True
    container_query: str = CONTAINER_MEMORY_QUERY
    total_query: str = TOTAL_MEMORY_QUERY
    significant_figures: int = 3
    highest_trackable_value: int = DEFAULT_HIGHEST_TRACKABLE_VALUE
    risk_tolerance: float = 0.05
    max_workers: Optional[int] = None

    def __post_init__(self):
        if self.step_seconds <= 0:
            raise ConfigurationError(
                f"step_seconds must be positive, got {self.step_seconds}"
            )
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")
        if not 1 <= self.significant_figures <= 5:
            raise ConfigurationError(
                f"significant_figures must be between 1 and 5, got {self.significant_figures}"
            )
        if self.highest_trackable_value < 2:
            raise ConfigurationError(
                f"highest_trackable_value must be at least 2, got {self.highest_trackable_value}"
            )
        if not 0.0 <= self.risk_tolerance <= 1.0:
            raise ConfigurationError(
                f"risk_tolerance must be between 0 and 1, got {self.risk_tolerance}"
            )
        if self.max_workers is not None and self.max_workers <= 0:
            raise ConfigurationError(
                f"max_workers must be positive, got {self.max_workers}"
            )

    def with_overrides(self, **overrides: Any) -> "AnalyzerSettings":
        """Return a copy with every non-None override applied."""
        return replace(
            self, **{key: value for key, value in overrides.items() if value is not None}
        )


def settings_from_dict(data: Dict[str, Any]) -> AnalyzerSettings:
    known = {f.name for f in fields(AnalyzerSettings)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration keys: {', '.join(sorted(unknown))}"
        )
    try:
        return AnalyzerSettings(**data)
    except TypeError as e:
        raise ConfigurationError(f"Invalid configuration value: {e}") from e


def load_settings(path: Optional[str] = None) -> AnalyzerSettings:
    """Load settings from a YAML file, falling back to defaults when no path is given."""
    if not path:
        return AnalyzerSettings()

    logger.info(f"Loading configuration from {path}")
    with open(Path(path), "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return settings_from_dict(data)
