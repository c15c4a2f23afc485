"""
Engine Configuration Loader

Loads and validates engine configuration from YAML file, with environment
variables taking precedence over file values.

Config location: config/engine.yaml

Schema:
- market_hours: trading window and hourly snapshot window
- pricing: risk-free rate and implied volatility solver bounds
- normalizer: feed price scale, spread threshold, expiry cutoff
- projection: payoff grid and SD band settings
- feed: reconnect backoff and opaque credentials
- registry: reference dataset location and filters
- storage: Delta Lake paths
- logging: loguru sink settings
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger


@dataclass
class MarketHoursConfig:
    """Trading window and hourly snapshot window (exchange-local time)."""
    market_open_hour: int = 9
    market_open_minute: int = 15
    market_close_hour: int = 15
    market_close_minute: int = 30
    snapshot_start_hour: int = 9
    snapshot_end_hour: int = 15
    snapshot_grace_minutes: int = 5
    timezone: str = "Asia/Kolkata"


@dataclass
class PricingConfig:
    """Risk-free rate and solver settings."""
    risk_free_rate: float = 0.07
    iv_tolerance: float = 1e-4
    iv_max_iterations: int = 100
    iv_floor: float = 0.0001
    iv_ceiling: float = 5.0


@dataclass
class NormalizerConfig:
    """Tick normalization settings."""
    price_scale: float = 100.0
    max_relative_spread: float = 0.10
    expiry_cutoff_hour: int = 15
    expiry_cutoff_minute: int = 30
    default_tick_size: float = 0.05


@dataclass
class ProjectionConfig:
    """Payoff curve, payoff table and SD band settings."""
    default_volatility: float = 0.15
    min_volatility: float = 0.0001
    padding_factor: float = 0.30
    fallback_band_pct: float = 0.20
    grid_points: int = 60
    grid_step: float = 50.0
    table_interval: float = 50.0
    table_half_rows: int = 10


@dataclass
class FeedConfig:
    """Feed reconnect settings. Credentials are passed through untouched."""
    reconnect_base_delay: float = 5.0
    reconnect_max_delay: float = 60.0
    credentials: Dict[str, str] = field(default_factory=dict)


@dataclass
class RegistryConfig:
    """Reference dataset location and instrument filters."""
    scrip_master_path: str = "data/scrip_master.json"
    underlyings: List[str] = field(default_factory=lambda: ["NIFTY", "BANKNIFTY"])
    segments: List[str] = field(default_factory=lambda: ["NFO"])
    max_options_per_underlying: Optional[int] = None
    spot_tokens: Dict[str, str] = field(
        default_factory=lambda: {"26000": "NIFTY", "26009": "BANKNIFTY"}
    )


@dataclass
class StorageConfig:
    """Delta Lake storage paths."""
    hourly_snapshots_path: str = "data/lake/hourly_snapshots"


@dataclass
class LoggingConfig:
    """Loguru sink settings."""
    level: str = "INFO"
    log_file: Optional[str] = "logs/greekfeed.log"
    rotation: str = "10 MB"
    retention: str = "7 days"
    compression: str = "zip"


@dataclass
class EngineConfig:
    """Complete engine configuration."""

    market_hours: MarketHoursConfig = field(default_factory=MarketHoursConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    normalizer: NormalizerConfig = field(default_factory=NormalizerConfig)
    projection: ProjectionConfig = field(default_factory=ProjectionConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        """Create config from dictionary with nested dataclass instantiation."""
        data = data or {}
        return cls(
            market_hours=MarketHoursConfig(**data.get("market_hours", {})),
            pricing=PricingConfig(**data.get("pricing", {})),
            normalizer=NormalizerConfig(**data.get("normalizer", {})),
            projection=ProjectionConfig(**data.get("projection", {})),
            feed=FeedConfig(**data.get("feed", {})),
            registry=RegistryConfig(**data.get("registry", {})),
            storage=StorageConfig(**data.get("storage", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def validate(self) -> List[str]:
        """
        Validate configuration values.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        hours = self.market_hours

        for name in ("market_open_hour", "market_close_hour",
                     "snapshot_start_hour", "snapshot_end_hour"):
            value = getattr(hours, name)
            if not 0 <= value <= 23:
                errors.append(f"{name} must be between 0 and 23, got {value}")

        for name in ("market_open_minute", "market_close_minute"):
            value = getattr(hours, name)
            if not 0 <= value <= 59:
                errors.append(f"{name} must be between 0 and 59, got {value}")

        open_minutes = hours.market_open_hour * 60 + hours.market_open_minute
        close_minutes = hours.market_close_hour * 60 + hours.market_close_minute
        if open_minutes >= close_minutes:
            errors.append("market open must be before market close")

        if hours.snapshot_start_hour > hours.snapshot_end_hour:
            errors.append("snapshot_start_hour must not be after snapshot_end_hour")

        if hours.snapshot_grace_minutes < 0:
            errors.append("snapshot_grace_minutes must be non-negative")

        pricing = self.pricing
        if not 0 < pricing.iv_floor < pricing.iv_ceiling:
            errors.append("iv_floor must be positive and below iv_ceiling")
        if pricing.iv_tolerance <= 0:
            errors.append("iv_tolerance must be positive")
        if pricing.iv_max_iterations <= 0:
            errors.append("iv_max_iterations must be positive")

        if self.normalizer.price_scale <= 0:
            errors.append("price_scale must be positive")
        if not 0 < self.normalizer.max_relative_spread <= 1:
            errors.append("max_relative_spread must be in (0, 1]")

        projection = self.projection
        if projection.default_volatility <= 0:
            errors.append("default_volatility must be positive")
        if projection.grid_points < 2:
            errors.append("grid_points must be at least 2")
        if projection.grid_step <= 0 or projection.table_interval <= 0:
            errors.append("grid_step and table_interval must be positive")

        if self.feed.reconnect_base_delay <= 0:
            errors.append("reconnect_base_delay must be positive")
        if self.feed.reconnect_max_delay < self.feed.reconnect_base_delay:
            errors.append("reconnect_max_delay must be >= reconnect_base_delay")

        return errors


# Environment variable -> (section, key, type)
ENV_MAPPING = {
    "MARKET_OPEN_HOUR": ("market_hours", "market_open_hour", int),
    "MARKET_OPEN_MINUTE": ("market_hours", "market_open_minute", int),
    "MARKET_CLOSE_HOUR": ("market_hours", "market_close_hour", int),
    "MARKET_CLOSE_MINUTE": ("market_hours", "market_close_minute", int),
    "SNAPSHOT_START_HOUR": ("market_hours", "snapshot_start_hour", int),
    "SNAPSHOT_END_HOUR": ("market_hours", "snapshot_end_hour", int),
    "RISK_FREE_RATE": ("pricing", "risk_free_rate", float),
    "DEFAULT_VOLATILITY": ("projection", "default_volatility", float),
    "SNAPSHOT_LAKE_PATH": ("storage", "hourly_snapshots_path", str),
    "SCRIP_MASTER_PATH": ("registry", "scrip_master_path", str),
    "LOG_LEVEL": ("logging", "level", str),
}

# Passed to the feed source verbatim
CREDENTIAL_ENV_VARS = ["CLIENT_CODE", "FEED_TOKEN", "API_KEY", "JWT_TOKEN"]


def merge_config_with_env(config_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge configuration with environment variables.

    Environment variables override config file settings.

    Examples:
        MARKET_OPEN_HOUR=9
        SNAPSHOT_END_HOUR=15
        RISK_FREE_RATE=0.065

    Args:
        config_data: Configuration data from file

    Returns:
        Merged configuration with env vars applied
    """
    for env_var, (section, key, cast) in ENV_MAPPING.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue
        try:
            config_data.setdefault(section, {})[key] = cast(env_value)
        except ValueError:
            raise ValueError(f"Invalid value for {env_var}: {env_value!r}")
        logger.debug(f"Overriding {section}.{key} from env: {env_var}")

    credentials = {
        name: os.environ[name] for name in CREDENTIAL_ENV_VARS if os.environ.get(name)
    }
    if credentials:
        feed_section = config_data.setdefault("feed", {})
        feed_section.setdefault("credentials", {}).update(credentials)

    return config_data


def load_engine_config(config_path: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration from YAML file and environment.

    Args:
        config_path: Path to config file (default: config/engine.yaml)

    Returns:
        Validated EngineConfig

    Raises:
        ValueError: If the YAML is invalid or the config fails validation
    """
    config_file = Path(config_path or os.environ.get("GREEKFEED_CONFIG", "config/engine.yaml"))

    data: Dict[str, Any] = {}
    if config_file.exists():
        try:
            with open(config_file, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing YAML config: {e}")
        logger.info(f"Loaded engine config from {config_file}")
    else:
        logger.warning(f"Config file not found: {config_file}, using defaults")

    data = merge_config_with_env(data)
    config = EngineConfig.from_dict(data)

    errors = config.validate()
    if errors:
        error_msg = "Configuration validation errors:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)

    logger.debug(
        f"  Market window: {config.market_hours.market_open_hour:02d}:"
        f"{config.market_hours.market_open_minute:02d}-"
        f"{config.market_hours.market_close_hour:02d}:"
        f"{config.market_hours.market_close_minute:02d}"
    )
    logger.debug(f"  Risk-free rate: {config.pricing.risk_free_rate}")

    return config
