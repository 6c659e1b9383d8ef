"""
Configuration management for the web crawler.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
from urllib.parse import urlparse

from ..errors import ConfigError


DEFAULT_USER_AGENT = "webspider/1.0 (+https://github.com/webspider/webspider)"


@dataclass(frozen=True)
class CrawlerConfig:
    """Configuration for crawler behavior. Read-only for the crawl's lifetime."""
    origin_url: str
    max_depth: int
    concurrency_limit: int = 8
    request_timeout: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT
    max_retries: int = 2
    backoff_base: float = 0.5
    max_redirects: int = 10
    max_content_size: int = 10 * 1024 * 1024
    respect_robots_txt: bool = True
    robots_cache_ttl: Optional[float] = None
    politeness_delay: float = 0.0
    allowed_domains: List[str] = field(default_factory=list)
    blocked_domains: List[str] = field(default_factory=list)


@dataclass
class DatabaseConfig:
    """Configuration for the result sink."""
    type: str = 'sqlite'
    database_name: str = 'crawl'
    file: Dict[str, Any] = field(default_factory=lambda: {'data_directory': 'data'})
    cassandra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = 'INFO'
    file: Optional[str] = None
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    metrics_enabled: bool = False
    prometheus_port: int = 8000
    report_interval: float = 30.0


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _build_section(cls, data: Optional[Dict[str, Any]], section: str):
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{section}' must be a mapping")
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigError(f"Invalid '{section}' section: {e}")


def config_from_dict(config_data: Dict[str, Any]) -> Config:
    """Build and validate a Config from an already-parsed mapping."""
    if not isinstance(config_data, dict):
        raise ConfigError("Configuration must be a mapping")
    if 'crawler' not in config_data:
        raise ConfigError("Missing required section 'crawler'")

    config = Config(
        crawler=_build_section(CrawlerConfig, config_data['crawler'], 'crawler'),
        database=_build_section(DatabaseConfig, config_data.get('database'), 'database'),
        logging=_build_section(LoggingConfig, config_data.get('logging'), 'logging'),
        monitoring=_build_section(MonitoringConfig, config_data.get('monitoring'), 'monitoring')
    )
    validate_config(config)
    return config


_CRAWLER_TYPES = {
    'origin_url': str,
    'max_depth': int,
    'concurrency_limit': int,
    'request_timeout': (int, float),
    'user_agent': str,
    'max_retries': int,
    'backoff_base': (int, float),
    'max_redirects': int,
    'max_content_size': int,
    'respect_robots_txt': bool,
    'robots_cache_ttl': (int, float, type(None)),
    'politeness_delay': (int, float),
    'allowed_domains': list,
    'blocked_domains': list,
}


def _check_types(crawler: CrawlerConfig):
    for name, expected in _CRAWLER_TYPES.items():
        value = getattr(crawler, name)
        # bool is an int subclass; only accept it where a bool is expected
        if isinstance(value, bool) and expected is not bool:
            valid = False
        else:
            valid = isinstance(value, expected)
        if not valid:
            raise ConfigError(f"crawler.{name} has the wrong type: {value!r}")

    for name in ('allowed_domains', 'blocked_domains'):
        if not all(isinstance(domain, str) for domain in getattr(crawler, name)):
            raise ConfigError(f"crawler.{name} must be a list of domain names")


def validate_config(config: Config):
    """Validate configuration values, raising ConfigError on the first problem."""
    crawler = config.crawler
    _check_types(crawler)

    parsed = urlparse(crawler.origin_url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ConfigError(f"origin_url is not an absolute http(s) URL: {crawler.origin_url!r}")

    if crawler.max_depth < 1:
        raise ConfigError("max_depth must be at least 1")

    if crawler.concurrency_limit < 1:
        raise ConfigError("concurrency_limit must be at least 1")

    if crawler.request_timeout <= 0:
        raise ConfigError("request_timeout must be positive")

    if crawler.max_retries < 0:
        raise ConfigError("max_retries must be non-negative")

    if crawler.max_redirects < 0:
        raise ConfigError("max_redirects must be non-negative")

    if crawler.politeness_delay < 0:
        raise ConfigError("politeness_delay must be non-negative")

    if crawler.robots_cache_ttl is not None and crawler.robots_cache_ttl <= 0:
        raise ConfigError("robots_cache_ttl must be positive when set")

    if config.database.type not in ('sqlite', 'file', 'cassandra'):
        raise ConfigError("Database type must be 'sqlite', 'file' or 'cassandra'")

    if not isinstance(config.database.database_name, str) or not config.database.database_name:
        raise ConfigError("database_name must be a non-empty string")

    monitoring = config.monitoring
    if isinstance(monitoring.prometheus_port, bool) or not isinstance(monitoring.prometheus_port, int):
        raise ConfigError(f"monitoring.prometheus_port has the wrong type: {monitoring.prometheus_port!r}")

    if (isinstance(monitoring.report_interval, bool)
            or not isinstance(monitoring.report_interval, (int, float))
            or monitoring.report_interval <= 0):
        raise ConfigError("monitoring.report_interval must be a positive number")

    if not isinstance(config.logging.level, str):
        raise ConfigError(f"logging.level has the wrong type: {config.logging.level!r}")

    logging.getLogger(__name__).debug("Configuration validation passed")


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise ConfigError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r') as file:
                config_data = yaml.safe_load(file)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}")
        except OSError as e:
            raise ConfigError(f"Failed to read {self.config_path}: {e}")

        if not config_data:
            raise ConfigError(f"Empty configuration file: {self.config_path}")

        self._config = config_from_dict(config_data)
        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ConfigError("Configuration not loaded. Call load_config() first.")
        return self._config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    return ConfigManager(config_path).load_config()
