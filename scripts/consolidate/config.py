"""
Configuration management for shard consolidation.
Loads destination and source node settings from environment files.
"""
import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple
from dotenv import load_dotenv

from .errors import ConfigurationError
from .models import SourceDescriptor


# Environment types
ENV_LOCAL = "local"
ENV_PRODUCTION = "production"

# Every SOURCE_NODE_<NAME>=<dsn> variable is one source node
NODE_ENV_PREFIX = "SOURCE_NODE_"

DEFAULT_MAX_ROWS = 1_000_000
DEFAULT_BATCH_CHAR_THRESHOLD = 1000

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


@dataclass(frozen=True)
class MigrationConfig:
    """Central configuration for one consolidation run."""

    # Environment
    environment: str
    database_url: str
    sources: Tuple[SourceDescriptor, ...] = ()

    # Read side
    source_table: str = "messages"
    status_column: str = "status"
    status_value: str = "pending"
    ref_column: str = "ref"
    sender_column: str = "sender"
    message_column: str = "message"
    max_rows: int = DEFAULT_MAX_ROWS

    # Write side
    dest_table: str = "consolidated_messages"
    dest_sender_column: str = "sender"
    dest_message_column: str = "message"
    batch_char_threshold: int = DEFAULT_BATCH_CHAR_THRESHOLD

    # Performance tuning; None means one worker per source
    max_workers: Optional[int] = None
    connect_timeout: int = 30

    @classmethod
    def from_env(
        cls,
        use_production: bool = False,
        nodes: Optional[Sequence[str]] = None,
    ) -> "MigrationConfig":
        """
        Load configuration from environment variables.

        Args:
            use_production: Use .env.production instead of .env.local
            nodes: Optional NAME=DSN strings that replace the configured nodes
        """
        project_root = Path(__file__).parent.parent.parent

        if use_production:
            env_path = project_root / ".env.production"
            environment = ENV_PRODUCTION
        else:
            env_path = project_root / ".env.local"
            if not env_path.exists():
                env_path = project_root / ".env.production"
                environment = ENV_PRODUCTION
            else:
                environment = ENV_LOCAL

        if env_path.exists():
            load_dotenv(env_path)

        return cls.from_mapping(os.environ, environment=environment, nodes=nodes)

    @classmethod
    def from_mapping(
        cls,
        env: Dict[str, str],
        environment: str = ENV_LOCAL,
        nodes: Optional[Sequence[str]] = None,
    ) -> "MigrationConfig":
        """Build and validate a config from an environment-like mapping."""
        database_url = env.get("DATABASE_URL", "")
        if not database_url:
            raise ConfigurationError("Missing required environment variable: DATABASE_URL")

        if nodes:
            sources = tuple(SourceDescriptor.parse(value) for value in nodes)
        else:
            sources = tuple(sources_from_env(env))

        config = cls(
            environment=environment,
            database_url=database_url,
            sources=sources,
            source_table=env.get("SOURCE_TABLE", cls.source_table),
            status_column=env.get("SOURCE_STATUS_COLUMN", cls.status_column),
            status_value=env.get("SOURCE_STATUS_VALUE", cls.status_value),
            ref_column=env.get("SOURCE_REF_COLUMN", cls.ref_column),
            sender_column=env.get("SOURCE_SENDER_COLUMN", cls.sender_column),
            message_column=env.get("SOURCE_MESSAGE_COLUMN", cls.message_column),
            max_rows=_int_setting(env, "SOURCE_MAX_ROWS", DEFAULT_MAX_ROWS),
            dest_table=env.get("DEST_TABLE", cls.dest_table),
            dest_sender_column=env.get("DEST_SENDER_COLUMN", cls.dest_sender_column),
            dest_message_column=env.get("DEST_MESSAGE_COLUMN", cls.dest_message_column),
            batch_char_threshold=_int_setting(
                env, "BATCH_CHAR_THRESHOLD", DEFAULT_BATCH_CHAR_THRESHOLD
            ),
            max_workers=_int_setting(env, "MAX_WORKERS", None),
            connect_timeout=_int_setting(env, "DB_CONNECT_TIMEOUT", 30),
        )
        config.validate()
        return config

    def with_overrides(self, **changes) -> "MigrationConfig":
        """Return a validated copy with CLI overrides applied."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if "nodes" in changes:
            changes["sources"] = tuple(SourceDescriptor.parse(v) for v in changes.pop("nodes"))
        config = replace(self, **changes)
        config.validate()
        return config

    def validate(self):
        """Raise ConfigurationError for anything that would fail mid-run."""
        if not self.database_url:
            raise ConfigurationError("Destination DATABASE_URL is empty")

        validate_sources(self.sources)

        for setting in (
            "source_table", "status_column", "ref_column", "sender_column",
            "message_column", "dest_table", "dest_sender_column", "dest_message_column",
        ):
            value = getattr(self, setting)
            if not _IDENTIFIER.match(value or ""):
                raise ConfigurationError(f"{setting} is not a plain SQL identifier: {value!r}")

        if self.max_rows <= 0:
            raise ConfigurationError("max_rows must be positive")
        if self.batch_char_threshold <= 0:
            raise ConfigurationError("batch_char_threshold must be positive")
        if self.max_workers is not None and self.max_workers <= 0:
            raise ConfigurationError("max_workers must be positive")

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == ENV_PRODUCTION


def sources_from_env(env: Dict[str, str]) -> Iterable[SourceDescriptor]:
    """Yield one descriptor per SOURCE_NODE_<NAME> variable, sorted by name."""
    for key in sorted(env):
        if key.startswith(NODE_ENV_PREFIX) and len(key) > len(NODE_ENV_PREFIX):
            name = key[len(NODE_ENV_PREFIX):].lower()
            dsn = (env[key] or "").strip()
            if not dsn:
                raise ConfigurationError(f"Source node {name!r} has an empty DSN")
            yield SourceDescriptor(name=name, dsn=dsn)


def validate_sources(sources: Sequence[SourceDescriptor]):
    """A run needs at least one source and every name must be unique."""
    if not sources:
        raise ConfigurationError(
            f"No source nodes configured (set {NODE_ENV_PREFIX}<NAME> or pass --node)"
        )
    seen = set()
    for source in sources:
        if not source.name or not source.dsn:
            raise ConfigurationError(f"Malformed source descriptor: {source.name!r}")
        if source.name in seen:
            raise ConfigurationError(f"Duplicate source node name: {source.name!r}")
        seen.add(source.name)


def build_read_query(config: MigrationConfig) -> Tuple[str, Tuple]:
    """
    Read query issued against every source node.

    Identifiers come from validated config; the status value and row
    limit are always bound parameters.
    """
    query = (
        f"SELECT {config.ref_column}, {config.sender_column}, "
        f"{config.message_column}, {config.status_column} "
        f"FROM {config.source_table} "
        f"WHERE {config.status_column} = %s "
        f"ORDER BY {config.ref_column} "
        f"LIMIT %s"
    )
    return query, (config.status_value, config.max_rows)


def _int_setting(env: Dict[str, str], key: str, default):
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from None


# Message constants
MSG_LOADING_ENV = "Loading environment configuration"
MSG_COLLECTING = "Collecting rows from source nodes"
MSG_WRITING = "Writing merged rows to destination"

# Status indicators
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETE = "complete"
STATUS_ROLLED_BACK = "rolled_back"
