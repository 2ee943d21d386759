"""
DatoCMS Schema Sync - Configuration Settings
Manages configuration, environment variables, and connection settings.
"""

import os
from dataclasses import dataclass, field
from typing import Optional
import logging

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://site-api.datocms.com"
DEFAULT_CONCURRENCY = 3


@dataclass
class DatoSettings:
    """DatoCMS Content Management API connection settings."""
    api_token: str = field(default_factory=lambda: os.getenv("DATOCMS_API_TOKEN", ""))
    base_url: str = field(default_factory=lambda: os.getenv("DATOCMS_BASE_URL", DEFAULT_BASE_URL))
    environment: str = field(default_factory=lambda: os.getenv("DATOCMS_ENVIRONMENT", ""))
    verify_ssl: bool = field(default_factory=lambda: os.getenv("DATOCMS_VERIFY_SSL", "true").lower() == "true")
    timeout: int = field(default_factory=lambda: int(os.getenv("DATOCMS_TIMEOUT", "30")))
    max_retries: int = field(default_factory=lambda: int(os.getenv("DATOCMS_MAX_RETRIES", "3")))
    retry_backoff: float = field(default_factory=lambda: float(os.getenv("DATOCMS_RETRY_BACKOFF", "0.5")))

    def validate(self) -> bool:
        """Validate required DatoCMS settings."""
        if not self.api_token:
            logger.error("Missing required DatoCMS setting: api_token")
            return False
        if self.max_retries < 1:
            logger.error("max_retries must be at least 1")
            return False
        return True


@dataclass
class BuildSettings:
    """Build behavior settings."""
    blocks_path: str = field(default_factory=lambda: os.getenv("BUILD_BLOCKS_PATH", "datocms/blocks"))
    models_path: str = field(default_factory=lambda: os.getenv("BUILD_MODELS_PATH", "datocms/models"))
    cache_path: str = field(default_factory=lambda: os.getenv("BUILD_CACHE_PATH", ".dato-schema-sync/cache.json"))
    concurrency: int = field(default_factory=lambda: int(os.getenv("BUILD_CONCURRENCY", str(DEFAULT_CONCURRENCY))))
    auto_concurrency: bool = field(default_factory=lambda: os.getenv("BUILD_AUTO_CONCURRENCY", "false").lower() == "true")
    no_cache: bool = field(default_factory=lambda: os.getenv("BUILD_NO_CACHE", "false").lower() == "true")
    skip_deletion: bool = field(default_factory=lambda: os.getenv("BUILD_SKIP_DELETION", "false").lower() == "true")
    skip_deletion_confirmation: bool = field(
        default_factory=lambda: os.getenv("BUILD_SKIP_DELETION_CONFIRMATION", "false").lower() == "true")

    def effective_concurrency(self) -> int:
        """Worker pool size for the build; auto sizing leaves one core free."""
        if self.auto_concurrency:
            return max(1, (os.cpu_count() or 2) - 1)
        return self.concurrency

    def validate(self) -> bool:
        """Validate build settings."""
        if not self.auto_concurrency and self.concurrency < 1:
            logger.error(f"Invalid concurrency {self.concurrency}: must be at least 1")
            return False
        return True


@dataclass
class Config:
    """Main configuration container."""
    dato: DatoSettings = field(default_factory=DatoSettings)
    build: BuildSettings = field(default_factory=BuildSettings)

    def validate(self) -> bool:
        """Validate all configuration settings."""
        return self.dato.validate() and self.build.validate()

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        return cls()

    @classmethod
    def from_file(cls, filepath: str) -> "Config":
        """Create configuration from a YAML/JSON file."""
        import json
        import yaml

        config = cls()

        with open(filepath, 'r') as f:
            if filepath.endswith('.yaml') or filepath.endswith('.yml'):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        for section in ('dato', 'build'):
            target = getattr(config, section)
            for key, value in (data.get(section) or {}).items():
                if hasattr(target, key):
                    setattr(target, key, value)
                else:
                    logger.warning(f"Ignoring unknown {section} setting '{key}' in {filepath}")

        return config


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure logging for the build process."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
