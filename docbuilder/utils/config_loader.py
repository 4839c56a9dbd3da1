from typing import Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from docbuilder.utils.logger import LOGGER as logger

# prometheus_client.Histogram.DEFAULT_BUCKETS without the trailing +Inf
DEFAULT_HISTOGRAM_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0]


# Base model for all configuration classes to enforce strict validation
class StrictBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class LoggingConfig(StrictBaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: str = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"
    file: str = "logs/docbuilder.log"
    rotation: str = "10 MB"
    retention: str = "30 days"
    compression: str = "zip"


class MetricsConfig(StrictBaseModel):
    # prometheus_client prefixes every exported name with "<namespace>_"
    namespace: str = Field(default="docsrs", pattern=r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
    endpoint_path: str = "/about/metrics"
    histogram_buckets: list[float] = Field(default_factory=lambda: list(DEFAULT_HISTOGRAM_BUCKETS), min_length=1)


class BuildQueueConfig(StrictBaseModel):
    max_attempts: int = Field(default=5, gt=0)


class ServerConfig(StrictBaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=3000, gt=0, le=65535)


class DatabaseConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DB_", extra="forbid")
    host: str
    port: int
    dbname: str
    user: str
    password: str
    min_connections: int = Field(default=1, gt=0)
    max_connections: int = Field(default=10, gt=0)
    timeout: int = Field(default=10, gt=0)


class AppConfig(StrictBaseModel):
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    build_queue: BuildQueueConfig = Field(default_factory=BuildQueueConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: Optional[DatabaseConfig] = None


def _format_validation_error(e: ValidationError) -> str:
    error_messages = []
    for error in e.errors():
        loc = " -> ".join(map(str, error["loc"]))
        msg = error["msg"]
        error_messages.append(f"  - In section '{loc}': {msg}")
    return "\n".join(error_messages)


class ConfigLoader:
    def __init__(self, config_path: str = "config/config.yaml", load_database: bool = True) -> None:
        self.config_path = config_path
        self.load_database = load_database
        self._config: Optional[AppConfig] = None

    def get_config(self) -> AppConfig:
        if self._config is None:
            try:
                with open(self.config_path, encoding="utf-8") as f:
                    config_data = yaml.safe_load(f)
                if config_data is None:
                    logger.error(f"ConfigurationError: Config file '{self.config_path}' is empty or invalid.")
                    raise ValueError("Config file is empty or invalid")
                if not isinstance(config_data, dict):
                    raise ValueError(f"Config file '{self.config_path}' must contain a mapping at the top level")

                # Database credentials only ever come from the environment
                if self.load_database:
                    db_config = DatabaseConfig()  # type: ignore[call-arg]
                    config_data["database"] = db_config.model_dump()

                self._config = AppConfig(**config_data)
            except FileNotFoundError:
                logger.error(f"ConfigurationError: Config file '{self.config_path}' not found.")
                raise FileNotFoundError(f"Configuration file '{self.config_path}' not found.") from None
            except ValidationError as e:
                error_str = _format_validation_error(e)
                logger.error(
                    f"ConfigurationValidationError: Configuration validation failed for '{self.config_path}':\n{error_str}"
                )
                raise ValueError(f"Configuration validation failed:\n{error_str}") from e
            except yaml.YAMLError as e:
                logger.error(f"Error parsing config file '{self.config_path}': {e}")
                raise ValueError(f"Error parsing config file '{self.config_path}': {e}") from e
        return self._config

    def reload_config(self) -> AppConfig:
        """Reload configuration from file"""
        self._config = None
        return self.get_config()
