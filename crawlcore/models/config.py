"""Configuration management for the crawler."""

import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class LaneConfig(BaseModel):
    """Politeness settings for a single lane."""
    name: str = Field(description="Lane identifier, usually a routing hint value")
    min_interval: float = Field(default=1.0, description="Minimum seconds between dispatches per host")
    max_concurrency: Optional[int] = Field(default=None, description="Maximum concurrent tasks per host")

    @field_validator('min_interval')
    @classmethod
    def validate_min_interval(cls, v: float) -> float:
        """Validate interval is not negative."""
        if v < 0:
            raise ValueError(f"min_interval must not be negative, got: {v}")
        return v

    @field_validator('max_concurrency')
    @classmethod
    def validate_max_concurrency(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError(f"max_concurrency must be positive, got: {v}")
        return v


class PersistenceConfig(BaseModel):
    """Write-ahead log and snapshot settings."""
    enabled: bool = Field(default=False, description="Persist frontier, in-flight and retry state")
    state_directory: str = Field(default="state", description="Directory for WAL and snapshot files")
    durability: str = Field(default="sync", description="WAL fsync mode: sync, batched or async")
    batch_max_records: int = Field(default=64, description="Batched mode: fsync after this many appends")
    batch_max_delay: float = Field(default=0.05, description="Batched mode: fsync after this many seconds")
    async_flush_interval: float = Field(default=1.0, description="Async mode: fsync interval in seconds")
    checkpoint_every: int = Field(default=1000, description="Checkpoint after this many mutations")
    checkpoint_interval: Optional[float] = Field(
        default=None,
        description="Checkpoint after this many seconds (overrides checkpoint_every)"
    )

    @field_validator('durability')
    @classmethod
    def validate_durability(cls, v: str) -> str:
        v = v.lower()
        if v not in ("sync", "batched", "async"):
            raise ValueError(f"durability must be one of sync, batched, async, got: {v}")
        return v

    @field_validator('checkpoint_every', 'batch_max_records')
    @classmethod
    def validate_positive_count(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"value must be positive, got: {v}")
        return v

    @property
    def state_path(self) -> Path:
        return Path(self.state_directory)


class CrawlerConfig(BaseModel):
    """Main crawler configuration."""

    # Runner
    run_mode: str = Field(default="executor", description="single or executor")
    worker_pool_size: int = Field(default=4, description="ThreadPoolExecutor worker count")
    max_in_flight: int = Field(default=64, description="Maximum concurrently dispatched tasks")
    max_park_seconds: float = Field(default=0.25, description="Upper bound for a single idle wait")
    retry_drain_batch: int = Field(default=128, description="Due retries moved to the frontier per step")
    frontier_scan_batch: int = Field(default=128, description="Frontier polls per scheduling step")

    # Retry policy
    max_attempts: int = Field(default=3, description="Retries allowed before dead-lettering")
    retry_base_delay: float = Field(default=0.5, description="Base delay for exponential backoff")
    retry_max_delay: float = Field(default=4.0, description="Maximum retry delay")
    retry_jitter_max: float = Field(default=0.5, description="Maximum jitter for retry delay")

    # Politeness
    default_min_interval: float = Field(default=1.0, description="Lane interval when no lane config matches")
    lanes: List[LaneConfig] = Field(default_factory=list, description="Per-lane politeness overrides")

    # Fetching
    connect_timeout: float = Field(default=3.0, description="HTTP connect timeout in seconds")
    read_timeout: float = Field(default=8.0, description="HTTP read timeout in seconds")
    user_agent: str = Field(default="crawlcore/1.0", description="User-Agent header sent by the fetcher")

    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Output
    output_directory: str = Field(default="out", description="Output directory for results")
    output_filename: str = Field(default="summary.json", description="Output JSON filename")

    @field_validator('run_mode')
    @classmethod
    def validate_run_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("single", "executor"):
            raise ValueError(f"run_mode must be single or executor, got: {v}")
        return v

    @field_validator('worker_pool_size')
    @classmethod
    def validate_worker_pool(cls, v: int) -> int:
        """Validate worker pool size is positive."""
        if v <= 0:
            raise ValueError(f"worker_pool_size must be positive, got: {v}")
        return v

    @field_validator('max_in_flight')
    @classmethod
    def validate_max_in_flight(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"max_in_flight must be positive, got: {v}")
        return v

    @field_validator('max_attempts')
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_attempts must not be negative, got: {v}")
        return v

    @field_validator('default_min_interval', 'max_park_seconds')
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"value must not be negative, got: {v}")
        return v

    @property
    def output_path(self) -> Path:
        """Get full output file path."""
        return Path(self.output_directory) / self.output_filename

    def lane_map(self) -> Dict[str, LaneConfig]:
        return {lane.name: lane for lane in self.lanes}

    # Environment variable overrides
    @classmethod
    def env_overrides(cls) -> Dict:
        """Collect overrides from CRAWLER_* environment variables."""
        env_mappings = {
            "CRAWLER_RUN_MODE": "run_mode",
            "CRAWLER_WORKER_POOL_SIZE": "worker_pool_size",
            "CRAWLER_MAX_IN_FLIGHT": "max_in_flight",
            "CRAWLER_MAX_ATTEMPTS": "max_attempts",
            "CRAWLER_MIN_INTERVAL": "default_min_interval",
            "CRAWLER_LOG_LEVEL": "log_level",
            "CRAWLER_CONNECT_TIMEOUT": "connect_timeout",
            "CRAWLER_READ_TIMEOUT": "read_timeout",
        }

        overrides = {}
        for env_var, field_name in env_mappings.items():
            if env_var in os.environ:
                value = os.environ[env_var]
                # Convert to appropriate type based on field type
                annotation = cls.model_fields[field_name].annotation
                if annotation is int:
                    overrides[field_name] = int(value)
                elif annotation is float:
                    overrides[field_name] = float(value)
                else:
                    overrides[field_name] = value

        if "CRAWLER_STATE_DIR" in os.environ:
            overrides["persistence"] = {
                "enabled": True,
                "state_directory": os.environ["CRAWLER_STATE_DIR"],
            }

        return overrides

    @classmethod
    def from_env(cls) -> "CrawlerConfig":
        """Create configuration with environment variable overrides."""
        return cls(**cls.env_overrides())


class ConfigManager:
    """Manages configuration loading with override precedence."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else Path("config/config.yaml")
        self._config: Optional[CrawlerConfig] = None

    def load_config(self, cli_overrides: Optional[Dict] = None) -> CrawlerConfig:
        """
        Load configuration with override precedence: CLI > ENV > YAML.

        Args:
            cli_overrides: Optional dictionary of CLI flag overrides

        Returns:
            Fully merged CrawlerConfig instance

        Raises:
            ValueError: If configuration validation fails
        """
        config_dict: Dict = {}

        if self.config_file.exists():
            with open(self.config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config_dict.update(yaml_config)

        merged = _deep_merge(config_dict, CrawlerConfig.env_overrides())

        if cli_overrides:
            # Filter out None values from CLI
            cli_overrides = {k: v for k, v in cli_overrides.items() if v is not None}
            merged = _deep_merge(merged, cli_overrides)

        self._config = CrawlerConfig(**merged)
        return self._config

    @property
    def config(self) -> CrawlerConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config


def _deep_merge(base: Dict, overrides: Dict) -> Dict:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
