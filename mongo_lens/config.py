"""Server configuration management.

Loads configuration from YAML file and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

DEFAULT_MONGO_URI = "mongodb://localhost:27017"


@dataclass(slots=True)
class MongoConfig:
    """Document store connection configuration.

    Attributes:
        uri: MongoDB connection string, or ``memory://`` for the in-memory store.
        connect_timeout_ms: Server selection timeout for the initial connection.
    """

    uri: str = DEFAULT_MONGO_URI
    connect_timeout_ms: int = 5000

    @property
    def database_name(self) -> str:
        """Database named in the URI path, falling back to ``admin``."""
        return database_from_uri(self.uri)


@dataclass(slots=True)
class SafetyConfig:
    """Destructive operation safeguards.

    Attributes:
        disable_destructive_tokens: Skip the two-phase confirmation handshake.
        token_ttl_seconds: Lifetime of an issued confirmation token.
    """

    disable_destructive_tokens: bool = False
    token_ttl_seconds: int = 300


@dataclass(slots=True)
class DefaultsConfig:
    """Default values applied to tool arguments and caches.

    Attributes:
        schema_sample_size: Documents sampled by schema inference.
        find_limit: Default ``limit`` for find-documents.
        export_limit: Default ``limit`` for export-data.
        cache_ttl_seconds: Lifetime of cached session lookups.
    """

    schema_sample_size: int = 100
    find_limit: int = 10
    export_limit: int = 1000
    cache_ttl_seconds: int = 30


@dataclass(slots=True)
class ServerConfig:
    """HTTP bridge configuration.

    Attributes:
        host: Bind address.
        port: Bind port.
    """

    host: str = "127.0.0.1"
    port: int = 3000


@dataclass(slots=True)
class LoggingConfig:
    """Logging configuration.

    Attributes:
        level: Log level name; ``verbose`` is accepted as an alias for DEBUG.
    """

    level: str = "INFO"


@dataclass(slots=True)
class Config:
    """Complete server configuration."""

    mongo: MongoConfig = field(default_factory=MongoConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file.

        A URI written as ${VAR_NAME} is expanded from the environment.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration.
        """
        if not path.exists():
            return cls()

        content = path.read_text()
        data = yaml.safe_load(content)
        if not data:
            return cls()

        return cls._from_dict(data)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Environment variables:
            MONGO_LENS_URI: MongoDB connection string
            MONGO_LENS_CONNECT_TIMEOUT_MS: Initial connection timeout
            MONGO_LENS_DISABLE_TOKENS: Disable destructive operation tokens
            MONGO_LENS_TOKEN_TTL: Confirmation token lifetime in seconds
            MONGO_LENS_SAMPLE_SIZE: Default schema inference sample size
            MONGO_LENS_FIND_LIMIT: Default find-documents limit
            MONGO_LENS_EXPORT_LIMIT: Default export-data limit
            MONGO_LENS_CACHE_TTL: Session cache lifetime in seconds
            MONGO_LENS_HOST: HTTP bridge bind address
            MONGO_LENS_PORT: HTTP bridge bind port
            MONGO_LENS_LOG_LEVEL: Log level (DEBUG, INFO, ..., verbose)

        Returns:
            Configuration from environment.
        """
        return cls(
            mongo=MongoConfig(
                uri=os.getenv("MONGO_LENS_URI", DEFAULT_MONGO_URI),
                connect_timeout_ms=int(os.getenv("MONGO_LENS_CONNECT_TIMEOUT_MS", "5000")),
            ),
            safety=SafetyConfig(
                disable_destructive_tokens=_parse_bool(
                    os.getenv("MONGO_LENS_DISABLE_TOKENS", "false")
                ),
                token_ttl_seconds=int(os.getenv("MONGO_LENS_TOKEN_TTL", "300")),
            ),
            defaults=DefaultsConfig(
                schema_sample_size=int(os.getenv("MONGO_LENS_SAMPLE_SIZE", "100")),
                find_limit=int(os.getenv("MONGO_LENS_FIND_LIMIT", "10")),
                export_limit=int(os.getenv("MONGO_LENS_EXPORT_LIMIT", "1000")),
                cache_ttl_seconds=int(os.getenv("MONGO_LENS_CACHE_TTL", "30")),
            ),
            server=ServerConfig(
                host=os.getenv("MONGO_LENS_HOST", "127.0.0.1"),
                port=int(os.getenv("MONGO_LENS_PORT", "3000")),
            ),
            logging=LoggingConfig(
                level=os.getenv("MONGO_LENS_LOG_LEVEL", "INFO"),
            ),
        )

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        config = cls()

        if "mongo" in data:
            mongo = data["mongo"]
            uri = mongo.get("uri", config.mongo.uri)
            # Expand environment variables
            if uri.startswith("${") and uri.endswith("}"):
                uri = os.environ.get(uri[2:-1], DEFAULT_MONGO_URI)
            config.mongo = MongoConfig(
                uri=uri,
                connect_timeout_ms=mongo.get(
                    "connect_timeout_ms", config.mongo.connect_timeout_ms
                ),
            )

        if "safety" in data:
            safety = data["safety"]
            config.safety = SafetyConfig(
                disable_destructive_tokens=_yaml_bool(
                    safety.get(
                        "disable_destructive_tokens",
                        config.safety.disable_destructive_tokens,
                    )
                ),
                token_ttl_seconds=safety.get(
                    "token_ttl_seconds", config.safety.token_ttl_seconds
                ),
            )

        if "defaults" in data:
            df = data["defaults"]
            config.defaults = DefaultsConfig(
                schema_sample_size=df.get(
                    "schema_sample_size", config.defaults.schema_sample_size
                ),
                find_limit=df.get("find_limit", config.defaults.find_limit),
                export_limit=df.get("export_limit", config.defaults.export_limit),
                cache_ttl_seconds=df.get(
                    "cache_ttl_seconds", config.defaults.cache_ttl_seconds
                ),
            )

        if "server" in data:
            srv = data["server"]
            config.server = ServerConfig(
                host=srv.get("host", config.server.host),
                port=srv.get("port", config.server.port),
            )

        if "logging" in data:
            config.logging = LoggingConfig(
                level=data["logging"].get("level", config.logging.level),
            )

        return config


def database_from_uri(uri: str) -> str:
    """Extract the database name from a connection string.

    ``mongodb://host:27017/shop?retryWrites=true`` yields ``shop``; a URI
    without a path yields ``admin``.
    """
    path = urlsplit(uri).path.strip("/")
    return path.split("/")[0] if path else "admin"


def _parse_bool(value: str) -> bool:
    """Parse a truthy environment variable value."""
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _yaml_bool(value: Any) -> bool:
    """Accept a YAML boolean or a quoted string such as ``"false"``."""
    if isinstance(value, bool):
        return value
    return _parse_bool(str(value))
