"""
Configuration management for the prerender crawler.
"""

import os
import re
import threading
from typing import Dict, Any, List, Optional, Callable, Union, Pattern
from dataclasses import dataclass, field, asdict
from pathlib import Path
from urllib.parse import urlsplit
import json
import logging
from jsonschema import validate, ValidationError as SchemaValidationError

from prerender_crawler.utils.errors import ConfigurationError, ValidationError


ResponseMatcher = Union[str, Callable[[Any], bool]]


@dataclass
class CrawlOptions:
    """Crawl behaviour settings."""
    include: List[str] = field(default_factory=lambda: ["/"])
    exclude: List[str] = field(default_factory=list)  # regular expressions matched against URL paths
    crawl: bool = True
    concurrency: int = 4
    port: Optional[int] = None
    skip_third_party_requests: bool = False
    source_maps: bool = True
    ignore_page_errors: bool = False
    user_agent: str = "PrerenderCrawler"
    viewport: Optional[Dict[str, int]] = field(default_factory=lambda: {"width": 480, "height": 850})
    wait_for: Optional[int] = None  # milliseconds
    wait_for_response: Optional[ResponseMatcher] = None

    # Passed through to the browser
    cache: bool = True
    headless: bool = True
    browser_args: List[str] = field(default_factory=list)
    executable_path: Optional[str] = None
    ignore_https_errors: bool = False

    def __post_init__(self):
        """Validate options after initialization."""
        self.validate()

    def validate(self) -> None:
        """
        Validate option values.

        Raises:
            ValidationError: If options are invalid
        """
        errors = []

        if not isinstance(self.concurrency, int) or self.concurrency < 1:
            errors.append("concurrency must be a positive integer")

        if self.port is not None:
            if not isinstance(self.port, int) or isinstance(self.port, bool):
                errors.append(f"port must be an integer, got {self.port!r}")
            elif not 1 <= self.port <= 65535:
                errors.append("port must be between 1 and 65535")

        if self.wait_for is not None and self.wait_for < 0:
            errors.append("wait_for must not be negative")

        for path in self.include:
            if not path.startswith("/"):
                errors.append(f"include path must start with '/': {path}")

        for pattern in self.exclude:
            try:
                re.compile(pattern)
            except re.error as e:
                errors.append(f"invalid exclude pattern {pattern!r}: {e}")

        if self.viewport is not None:
            if not {"width", "height"} <= set(self.viewport):
                errors.append("viewport must define width and height")

        if errors:
            raise ValidationError(
                "Crawl options validation failed",
                {"errors": errors}
            )

    @property
    def exclude_patterns(self) -> List[Pattern]:
        """Compiled exclusion patterns."""
        return [re.compile(pattern) for pattern in self.exclude]


@dataclass
class CrawlConfig:
    """Main crawl configuration."""
    base_path: str = ""
    public_path: str = ""
    source_dir: str = "build"
    options: CrawlOptions = field(default_factory=CrawlOptions)
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        if not self.base_path and self.options.port:
            self.base_path = f"http://localhost:{self.options.port}"

        if not self.base_path:
            raise ValidationError("base_path or options.port is required")

        self.base_path = self.base_path.rstrip("/")
        self.public_path = self.public_path.rstrip("/")

        if self.options.port is None:
            try:
                self.options.port = urlsplit(self.base_path).port
            except ValueError as e:
                raise ValidationError(f"Invalid base path {self.base_path!r}: {e}")


# Configuration file schema; keys use the camelCase spelling of the file format
CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "basePath": {"type": "string", "pattern": "^https?://"},
        "publicPath": {"type": "string"},
        "sourceDir": {"type": "string", "minLength": 1},
        "logLevel": {
            "type": "string",
            "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        },
        "logFile": {"type": ["string", "null"]},
        "options": {
            "type": "object",
            "properties": {
                "include": {
                    "type": "array",
                    "items": {"type": "string", "pattern": "^/"}
                },
                "exclude": {"type": "array", "items": {"type": "string"}},
                "crawl": {"type": "boolean"},
                "concurrency": {"type": "integer", "minimum": 1, "maximum": 64},
                "port": {"type": ["integer", "null"], "minimum": 1, "maximum": 65535},
                "skipThirdPartyRequests": {"type": "boolean"},
                "sourceMaps": {"type": "boolean"},
                "ignorePageErrors": {"type": "boolean"},
                "userAgent": {"type": "string"},
                "viewport": {
                    "oneOf": [
                        {
                            "type": "object",
                            "properties": {
                                "width": {"type": "integer", "minimum": 1},
                                "height": {"type": "integer", "minimum": 1}
                            },
                            "required": ["width", "height"]
                        },
                        {"type": "null"},
                        {"const": False}
                    ]
                },
                "waitFor": {"type": ["integer", "null"], "minimum": 0},
                "waitForResponse": {"type": ["string", "null"]},
                "cache": {"type": "boolean"},
                "headless": {"type": "boolean"},
                "browserArgs": {"type": "array", "items": {"type": "string"}},
                "executablePath": {"type": ["string", "null"]},
                "ignoreHTTPSErrors": {"type": "boolean"}
            },
            "additionalProperties": False
        }
    },
    "additionalProperties": False
}

# File key -> CrawlOptions attribute
OPTION_KEYS = {
    "include": "include",
    "exclude": "exclude",
    "crawl": "crawl",
    "concurrency": "concurrency",
    "port": "port",
    "skipThirdPartyRequests": "skip_third_party_requests",
    "sourceMaps": "source_maps",
    "ignorePageErrors": "ignore_page_errors",
    "userAgent": "user_agent",
    "viewport": "viewport",
    "waitFor": "wait_for",
    "waitForResponse": "wait_for_response",
    "cache": "cache",
    "headless": "headless",
    "browserArgs": "browser_args",
    "executablePath": "executable_path",
    "ignoreHTTPSErrors": "ignore_https_errors",
}


class ConfigManager:
    """Loads, validates and exports crawl configuration."""

    def __init__(self, config_path: str = "crawl.json"):
        self.config_path = Path(config_path)
        self._config: Optional[CrawlConfig] = None
        self._lock = threading.RLock()

    def validate_config(self, config_data: Dict[str, Any]) -> None:
        """Validate configuration data against schema."""
        try:
            validate(instance=config_data, schema=CONFIG_SCHEMA)
        except SchemaValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e.message}")

    def load_config(self, overrides: Optional[Callable[[Dict[str, Any]], Any]] = None) -> CrawlConfig:
        """
        Load configuration from file, falling back to environment variables.

        Args:
            overrides: Called with the merged file-format data before it is
                validated, e.g. to apply command-line flags

        Raises:
            ConfigurationError: If the file or the merged configuration is invalid
        """
        with self._lock:
            if self.config_path.exists():
                data = self._read_file()
            else:
                logging.info(f"No configuration file at {self.config_path}, using environment")
                data = {}

            self._load_env_file()
            self._override_with_env_vars(data)
            if overrides is not None:
                overrides(data)
            self.validate_config(data)

            try:
                self._config = self._dict_to_config(data)
            except ValidationError as e:
                raise ConfigurationError(
                    f"Invalid configuration: {e.message}",
                    e.details
                )

            logging.info(f"Configuration loaded for {self._config.base_path}")
            return self._config

    def _read_file(self) -> Dict[str, Any]:
        """Read and validate the JSON configuration file."""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Failed to read configuration from {self.config_path}",
                {"error": str(e)}
            )

        self.validate_config(config_data)
        return config_data

    def _load_env_file(self) -> None:
        """Load variables from a ``.env`` file next to the working directory."""
        env_file = Path('.env')
        if not env_file.exists():
            return

        try:
            with open(env_file, 'r', encoding='utf-8') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        os.environ.setdefault(key.strip(), value.strip())
            logging.info("Loaded environment variables from .env file")
        except OSError as e:
            logging.warning(f"Failed to load .env file: {e}")

    def _override_with_env_vars(self, data: Dict[str, Any]) -> None:
        """Override configuration values with CRAWLER_* environment variables."""
        options = data.setdefault("options", {})

        if os.getenv("CRAWLER_BASE_PATH"):
            data["basePath"] = os.getenv("CRAWLER_BASE_PATH")

        if os.getenv("CRAWLER_LOG_LEVEL"):
            data["logLevel"] = os.getenv("CRAWLER_LOG_LEVEL").upper()

        if os.getenv("CRAWLER_USER_AGENT"):
            options["userAgent"] = os.getenv("CRAWLER_USER_AGENT")

        if os.getenv("CRAWLER_EXECUTABLE_PATH"):
            options["executablePath"] = os.getenv("CRAWLER_EXECUTABLE_PATH")

        for env_name, key in (("CRAWLER_PORT", "port"), ("CRAWLER_CONCURRENCY", "concurrency")):
            value = os.getenv(env_name)
            if not value:
                continue
            try:
                options[key] = int(value)
            except ValueError:
                raise ConfigurationError(f"{env_name} must be an integer, got {value!r}")

    def _dict_to_config(self, data: Dict[str, Any]) -> CrawlConfig:
        """Convert dictionary to CrawlConfig object."""
        option_values = {}
        for key, value in data.get("options", {}).items():
            if key not in OPTION_KEYS:
                raise ConfigurationError(f"Unknown option: {key}")
            if key == "viewport" and value is False:
                value = None
            option_values[OPTION_KEYS[key]] = value

        return CrawlConfig(
            base_path=data.get("basePath", ""),
            public_path=data.get("publicPath", ""),
            source_dir=data.get("sourceDir", "build"),
            options=CrawlOptions(**option_values),
            log_level=data.get("logLevel", "INFO"),
            log_file=data.get("logFile"),
        )

    def export_config(self) -> Dict[str, Any]:
        """Export current configuration in the file format."""
        with self._lock:
            if not self._config:
                return {}

            attributes = asdict(self._config.options)
            options = {}
            for key, attribute in OPTION_KEYS.items():
                value = attributes[attribute]
                if callable(value):
                    continue
                options[key] = value

            return {
                "basePath": self._config.base_path,
                "publicPath": self._config.public_path,
                "sourceDir": self._config.source_dir,
                "logLevel": self._config.log_level,
                "logFile": self._config.log_file,
                "options": options,
            }


def get_config(config_path: str = "crawl.json") -> CrawlConfig:
    """Load the crawl configuration from ``config_path``."""
    return ConfigManager(config_path).load_config()
