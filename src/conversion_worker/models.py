"""Pydantic models for configuration and validation."""

from typing import Literal, Optional
from urllib.parse import quote_plus

from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    """Queue connection settings."""

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, gt=0, le=65535, description="Redis port")
    db: int = Field(default=0, ge=0, description="Redis database index")
    password: Optional[str] = Field(default=None, description="Redis password")
    key_prefix: str = Field(default="bull", description="Key namespace shared with the producer")
    pool_size: int = Field(default=10, gt=0, description="Maximum pooled connections")
    socket_timeout_s: float = Field(default=30.0, gt=0.0, description="Read/write timeout in seconds")


class DatabaseConfig(BaseModel):
    """Job store connection settings."""

    url: Optional[str] = Field(
        default=None, description="Full database URL (overrides host/port/user/password/name)"
    )
    host: str = Field(default="localhost", description="PostgreSQL host")
    port: int = Field(default=5432, gt=0, le=65535, description="PostgreSQL port")
    user: str = Field(default="postgres", description="PostgreSQL user")
    password: str = Field(default="", description="PostgreSQL password")
    name: str = Field(default="conversion", description="PostgreSQL database name")
    pool_size: int = Field(default=10, gt=0, description="Pooled connections kept open")
    max_overflow: int = Field(default=5, ge=0, description="Extra connections allowed under load")
    pool_recycle_s: int = Field(default=3600, gt=0, description="Maximum connection lifetime in seconds")
    connect_timeout_s: int = Field(default=10, gt=0, description="Seconds to wait for a new connection")

    @property
    def dsn(self) -> str:
        if self.url:
            return self.url
        return (
            f"postgresql+psycopg2://{quote_plus(self.user)}:{quote_plus(self.password)}"
            f"@{self.host}:{self.port}/{self.name}"
        )


class WorkerConfig(BaseModel):
    """Worker pool sizing."""

    light_workers: int = Field(default=2, ge=0, description="Workers polling the light queue")
    heavy_workers: int = Field(default=1, ge=0, description="Workers polling the heavy queue")
    worker_type: Optional[Literal["light", "heavy"]] = Field(
        default=None, description="Start only one queue class (None = both)"
    )
    output_dir: str = Field(default="/tmp/output", description="Directory for converted files")


class BackoffConfig(BaseModel):
    """Poll pacing."""

    idle_delay_s: float = Field(default=0.5, ge=0.0, description="Wait after an empty poll")
    error_delay_s: float = Field(default=1.0, ge=0.0, description="Wait after the first poll error")
    error_max_delay_s: float = Field(default=30.0, ge=0.0, description="Cap for repeated poll errors")
    multiplier: float = Field(default=2.0, ge=1.0, description="Growth factor per consecutive error")


class ConversionConfig(BaseModel):
    """External tool settings."""

    ffmpeg_path: Optional[str] = Field(
        default=None, description="FFmpeg executable (None = imageio-ffmpeg bundled binary)"
    )
    timeout_s: Optional[int] = Field(
        default=None, gt=0, description="Maximum duration of one ffmpeg invocation (None = no limit)"
    )
    loglevel: str = Field(default="error", description="FFmpeg log level: error, warning, info, verbose")


class AppConfig(BaseModel):
    """Process-level settings."""

    environment: str = Field(default="development", description="Deployment environment name")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Root log level"
    )
    startup_timeout_s: float = Field(
        default=10.0, gt=0.0, description="Bound for the queue/store liveness checks at startup"
    )


class WorkerServiceConfig(BaseModel):
    """Complete worker configuration with validation."""

    redis: RedisConfig = Field(default_factory=RedisConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    conversion: ConversionConfig = Field(default_factory=ConversionConfig)
    app: AppConfig = Field(default_factory=AppConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "WorkerServiceConfig":
        """Create config from nested dict (YAML)."""
        return cls(**data)

    def merge_cli_overrides(self, cli_args: dict) -> "WorkerServiceConfig":
        """Apply CLI overrides and return new config instance."""
        config_dict = self.model_dump()

        if cli_args.get("light") is not None:
            config_dict["worker"]["light_workers"] = cli_args["light"]
        if cli_args.get("heavy") is not None:
            config_dict["worker"]["heavy_workers"] = cli_args["heavy"]
        if cli_args.get("only") is not None:
            config_dict["worker"]["worker_type"] = cli_args["only"]
        if cli_args.get("output_dir") is not None:
            config_dict["worker"]["output_dir"] = cli_args["output_dir"]
        if cli_args.get("log_level") is not None:
            config_dict["app"]["log_level"] = cli_args["log_level"].upper()
        if cli_args.get("database_url") is not None:
            config_dict["database"]["url"] = cli_args["database_url"]

        return WorkerServiceConfig.from_dict(config_dict)
