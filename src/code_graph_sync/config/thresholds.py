"""Threshold configuration for cross-entity dependency classification."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..core.exceptions import ConfigError


@dataclass
class StrengthThresholds:
    """Edge counts at which a container dependency is rated."""

    high: int = 20  # high: 20+ fine-grained edges
    medium: int = 10  # medium: 10-19
    # low: anything below medium


@dataclass
class ThresholdConfig:
    """Complete threshold configuration."""

    strength: StrengthThresholds = field(default_factory=StrengthThresholds)

    # SHARES_WITH is only written at or above this Jaccard similarity
    min_shared_similarity: float = 0.0

    @classmethod
    def load(cls, path: Path) -> ThresholdConfig:
        """Load configuration from YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            ThresholdConfig instance (defaults when the file is missing)

        Raises:
            ConfigError: Unparseable file or inconsistent thresholds
        """
        if not path.exists():
            return cls()

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            return cls.from_dict(data)
        except (yaml.YAMLError, TypeError, ValueError) as e:
            raise ConfigError(
                f"Invalid thresholds file: {e}", {"path": str(path)}
            ) from e

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ThresholdConfig:
        strength_data = data.get("strength", {})
        config = cls(
            strength=(
                StrengthThresholds(**strength_data)
                if strength_data
                else StrengthThresholds()
            ),
            min_shared_similarity=float(data.get("min_shared_similarity", 0.0)),
        )
        if config.strength.medium > config.strength.high:
            raise ValueError(
                f"medium threshold ({config.strength.medium}) exceeds "
                f"high threshold ({config.strength.high})"
            )
        return config

    def to_dict(self) -> dict[str, Any]:
        return {
            "strength": {
                "high": self.strength.high,
                "medium": self.strength.medium,
            },
            "min_shared_similarity": self.min_shared_similarity,
        }

    def save(self, path: Path) -> None:
        """Save configuration to YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def get_strength(self, relationship_count: int) -> str:
        """Rate a dependency by its number of fine-grained edges.

        Returns:
            "high", "medium" or "low"
        """
        if relationship_count >= self.strength.high:
            return "high"
        elif relationship_count >= self.strength.medium:
            return "medium"
        else:
            return "low"
