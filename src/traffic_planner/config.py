"""
Planner configuration.

Search bounds and cost weights for the min-conflict planner. Values can be
given in code or loaded from a YAML file, either at the top level or under a
``planner:`` section:

    planner:
      max_expansions: 2000
      sampling_interval_s: 60
      displacement_weight: 1.0
"""

import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml  # type: ignore[import-untyped]

from .errors import ConfigError

logger = logging.getLogger(__name__)

# Default search bounds
DEFAULT_MAX_EXPANSIONS = 2000
DEFAULT_SAMPLING_INTERVAL_S = 60.0
DEFAULT_MAX_SAMPLES = 32


@dataclass
class PlannerConfig:
    """
    Search bounds and cost weights.

    Attributes:
        max_expansions: Maximum number of states expanded per plan set
        max_cost: Candidates costlier than this are never returned (None = no ceiling)
        sampling_interval: Spacing of sampled start times inside a request window
        max_samples_per_resource: Cap on sampled start times per resource
        displacement_weight: Cost of each reservation an operator moves
        shift_weight_per_second: Cost per second a reservation is moved by
        lateness_weight_per_second: Cost per second an inserted reservation
            starts after its request's lower bound
    """

    max_expansions: int = DEFAULT_MAX_EXPANSIONS
    max_cost: Optional[float] = None
    sampling_interval: timedelta = timedelta(seconds=DEFAULT_SAMPLING_INTERVAL_S)
    max_samples_per_resource: int = DEFAULT_MAX_SAMPLES
    displacement_weight: float = 1.0
    shift_weight_per_second: float = 0.001
    lateness_weight_per_second: float = 0.0

    def __post_init__(self) -> None:
        """Validate planner configuration."""
        if self.max_expansions <= 0:
            raise ValueError(f"max_expansions must be positive, got {self.max_expansions}")
        if self.max_cost is not None and self.max_cost < 0:
            raise ValueError(f"max_cost must be non-negative, got {self.max_cost}")
        if self.sampling_interval <= timedelta(0):
            raise ValueError(
                f"sampling_interval must be positive, got {self.sampling_interval}"
            )
        if self.max_samples_per_resource < 0:
            raise ValueError(
                f"max_samples_per_resource must be non-negative, got {self.max_samples_per_resource}"
            )
        for name in (
            "displacement_weight",
            "shift_weight_per_second",
            "lateness_weight_per_second",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlannerConfig":
        """Create a config from a (YAML-sourced) dictionary."""
        section = data.get("planner", data) if data else {}
        if not isinstance(section, dict):
            raise ConfigError("planner section must be a mapping")

        known = {
            "max_expansions",
            "max_cost",
            "sampling_interval_s",
            "max_samples_per_resource",
            "displacement_weight",
            "shift_weight_per_second",
            "lateness_weight_per_second",
        }
        unknown = set(section) - known
        if unknown:
            logger.warning(f"Ignoring unknown planner settings: {sorted(unknown)}")

        kwargs: Dict[str, Any] = {k: v for k, v in section.items() if k in known}
        if "sampling_interval_s" in kwargs:
            kwargs["sampling_interval"] = timedelta(
                seconds=float(kwargs.pop("sampling_interval_s"))
            )
        try:
            return cls(**kwargs)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid planner configuration: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["sampling_interval_s"] = data.pop("sampling_interval").total_seconds()
        return data


def load_planner_config(path: Union[str, Path]) -> PlannerConfig:
    """
    Load planner configuration from a YAML file.

    Raises:
        ConfigError: If the file cannot be read or holds invalid settings
    """
    config_path = Path(path)
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    config = PlannerConfig.from_dict(data)
    logger.info(f"Loaded planner configuration from {config_path}")
    return config
