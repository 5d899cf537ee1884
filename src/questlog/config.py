"""Settings for questlog: Redis store, feature flags, progression rules and telemetry."""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .telemetry import TelemetryConfig


class RedisSettings(BaseSettings):
    """Redis snapshot store settings."""

    url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL",
    )
    decode_responses: bool = Field(
        default=True, description="Decode Redis responses to strings"
    )
    socket_timeout: Optional[float] = Field(
        default=None, description="Socket timeout in seconds"
    )
    key_prefix: str = Field(
        default="questlog.snapshot", description="Prefix of per-user snapshot keys"
    )

    model_config = SettingsConfigDict(env_prefix="QUESTLOG_REDIS_")


class FeaturesSettings(BaseSettings):
    """
    Feature flags configuration.

    - Adaptive difficulty: enabled
    - Strict invariants: disabled (violations are logged, not raised)
    """

    adaptive_difficulty: bool = Field(
        default=True, description="Scale challenge objectives by recent outcomes"
    )
    strict_invariants: bool = Field(
        default=False, description="Raise on internal invariant violations"
    )

    model_config = SettingsConfigDict(env_prefix="QUESTLOG_FEATURES_")


class RulesSettings(BaseSettings):
    """Tunable progression rules."""

    achievement_bonus: int = Field(
        default=50, ge=0, description="Points granted per unlocked achievement"
    )
    level_bonus_per_level: int = Field(
        default=10, ge=0, description="Bonus points per level reached, times level"
    )
    waypoint_completion_bonus: int = Field(
        default=100, ge=0, description="Points granted per completed waypoint"
    )
    max_streak_bonus: float = Field(
        default=2.0, ge=0, description="Cap of the streak multiplier term"
    )
    max_evaluation_passes: int = Field(
        default=16, ge=1, description="Cap of achievement re-evaluation passes"
    )
    adaptive_window: int = Field(
        default=3, ge=1, description="Trailing outcomes considered for difficulty"
    )
    adaptive_history: int = Field(
        default=10, ge=1, description="Outcomes kept per challenge category"
    )
    adaptive_scale_up: float = Field(default=1.2, gt=1)
    adaptive_scale_down: float = Field(default=0.8, gt=0, lt=1)

    model_config = SettingsConfigDict(env_prefix="QUESTLOG_RULES_")


class TelemetrySettings(BaseSettings):
    """OpenTelemetry settings."""

    enabled: bool = Field(default=False, description="Enable OpenTelemetry")
    service_name: str = Field(default="questlog")
    environment: str = Field(default="dev")
    otlp_endpoint: Optional[str] = Field(
        default=None, description="OTLP HTTP endpoint, e.g. http://localhost:4318"
    )
    sample_ratio: float = Field(default=1.0, ge=0, le=1)
    export_metrics: bool = Field(default=True)

    model_config = SettingsConfigDict(env_prefix="QUESTLOG_TELEMETRY_")

    def to_config(self) -> TelemetryConfig:
        return TelemetryConfig(
            enabled=self.enabled,
            service_name=self.service_name,
            environment=self.environment,
            otlp_endpoint=self.otlp_endpoint,
            sample_ratio=self.sample_ratio,
            export_metrics=self.export_metrics,
        )


class QuestlogSettings(BaseSettings):
    """
    Progression engine configuration.

    Configuration can be loaded from:
    1. Environment variables (QUESTLOG_*)
    2. .env file
    3. YAML config file (via config_file or QUESTLOG_CONFIG_FILE)
    4. Direct instantiation with parameters

    Priority (highest to lowest):
    1. Explicitly passed parameters
    2. Environment variables
    3. Config file
    4. Defaults

    Example usage:

        # From environment variables
        settings = QuestlogSettings()

        # From config file
        settings = QuestlogSettings(config_file="questlog.yaml")

        # Direct configuration
        settings = QuestlogSettings(
            features=FeaturesSettings(strict_invariants=True),
            rules=RulesSettings(achievement_bonus=75),
        )
    """

    # Config file path
    config_file: Optional[str] = Field(
        default=None,
        description="Path to YAML config file",
    )

    # Module configurations
    redis: RedisSettings = Field(default_factory=RedisSettings)
    features: FeaturesSettings = Field(default_factory=FeaturesSettings)
    rules: RulesSettings = Field(default_factory=RulesSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)

    model_config = SettingsConfigDict(
        env_prefix="QUESTLOG_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def __init__(self, **data: Any):
        """
        Initialize settings.

        If config_file is provided or QUESTLOG_CONFIG_FILE env var is set,
        load configuration from YAML file and merge with other sources.
        """
        merged = data.pop("_merged", False)
        if merged:
            super().__init__(**data)
            return

        config_file = self._resolve_config_file(data)
        if config_file:
            merged_data = self._merge_yaml(config_file, data)
            super().__init__(**merged_data)
        else:
            super().__init__(**data)

    @classmethod
    def _resolve_config_file(cls, data: dict[str, Any]) -> Optional[str]:
        """Resolve config file from parameters or environment."""
        return data.get("config_file") or os.getenv("QUESTLOG_CONFIG_FILE")

    @classmethod
    def _merge_yaml(cls, config_file: str, data: dict[str, Any]) -> dict[str, Any]:
        """Load YAML config and merge with explicit parameters."""
        yaml_data = cls._load_yaml(config_file)
        validate_questlog_config(yaml_data)
        merged_data = {**yaml_data, **data}
        merged_data.setdefault("config_file", config_file)
        return merged_data

    @staticmethod
    def _load_yaml(file_path: str) -> dict[str, Any]:
        """
        Load configuration from YAML file.

        Args:
            file_path: Path to YAML file

        Returns:
            Dictionary with configuration data

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML is invalid
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {file_path}")

        with path.open("r") as f:
            data = yaml.safe_load(f)

        if data is None:
            return {}

        return data

    @classmethod
    def from_yaml(cls, file_path: str) -> "QuestlogSettings":
        """Create settings from YAML file."""
        merged = cls._merge_yaml(file_path, {})
        return cls(_merged=True, **merged)

    def to_yaml(self, file_path: str) -> None:
        """
        Export settings to YAML file.

        Args:
            file_path: Path to output YAML file
        """
        data = self.model_dump(exclude_none=True, exclude={"config_file"})

        path = Path(file_path)
        with path.open("w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def summary(self) -> str:
        """Get human-readable configuration summary."""
        lines = [
            "Questlog Configuration:",
            f"  Redis: {self.redis.url} ({self.redis.key_prefix})",
            f"  Achievement bonus: {self.rules.achievement_bonus}",
            f"  Waypoint bonus: {self.rules.waypoint_completion_bonus}",
            f"  Evaluation passes: {self.rules.max_evaluation_passes}",
            "",
            "Features:",
            f"  Adaptive difficulty: {'✓' if self.features.adaptive_difficulty else '✗'}",
            f"  Strict invariants: {'✓' if self.features.strict_invariants else '✗'}",
            f"  Telemetry: {'✓' if self.telemetry.enabled else '✗'}",
        ]
        return "\n".join(lines)


_SECTIONS: dict[str, type[BaseSettings]] = {
    "redis": RedisSettings,
    "features": FeaturesSettings,
    "rules": RulesSettings,
    "telemetry": TelemetrySettings,
}


def validate_questlog_config(data: dict[str, Any]) -> None:
    """
    Reject unknown keys in a raw configuration mapping.

    Environment parsing ignores unrelated variables, but a config file is
    written for questlog, so a typo there must not be silently dropped.

    Raises:
        ValueError: If a top-level or section key is unknown
    """
    unknown = sorted(set(data) - set(_SECTIONS) - {"config_file"})
    if unknown:
        raise ValueError(f"Unknown keys in questlog config: {', '.join(unknown)}")

    for section, model in _SECTIONS.items():
        values = data.get(section)
        if not isinstance(values, dict):
            continue
        unknown = sorted(set(values) - set(model.model_fields))
        if unknown:
            raise ValueError(
                f"Unknown keys in questlog.{section}: {', '.join(unknown)}"
            )


def load_settings(
    config_file: Optional[str] = None, **overrides: Any
) -> QuestlogSettings:
    """
    Load engine settings with optional overrides.

    Args:
        config_file: Optional path to YAML config file
        **overrides: Optional setting overrides

    Returns:
        QuestlogSettings instance

    Example:
        settings = load_settings(
            config_file="questlog.yaml",
            rules={"achievement_bonus": 75},
        )
    """
    if config_file:
        overrides["config_file"] = config_file

    return QuestlogSettings(**overrides)
