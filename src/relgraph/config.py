from functools import lru_cache
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(RuntimeError):
    """Configuration-related error."""
    pass


# ─────────────────────────────────────────────────────────────
# Section configs
# ─────────────────────────────────────────────────────────────


class LoggingSettings(BaseModel):
    level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"
    format: str = (
        "%(asctime)-20s %(threadName)-20s %(name)-30s "
        "%(levelname)-8s: %(message)s"
    )


class DatabaseSettings(BaseModel):
    """
    Document store config as a SQLAlchemy URL.

    In production, override via:
    - env var:     RELGRAPH_DATABASE__URL
    - dotenv:      .env / .env.local
    - secret file: /run/secrets/relgraph/database__url
    """
    url: str = Field(
        "sqlite:///relgraph.db",
        description="SQLAlchemy-style database URL. The dialect must support JSON columns.",
    )
    echo: bool = Field(False, description="Log emitted SQL statements.")


class ZookeeperSettings(BaseModel):
    hosts: str = Field(
        "localhost:2181",
        description="Comma-separated host:port pairs for Zookeeper ensemble.",
    )
    chroot: str | None = Field(
        default=None,
        description="Optional chroot path, e.g. /relgraph.",
    )
    base_path: str = Field(
        "/relgraph",
        description="Path under which lock and counter znodes are created.",
    )

    session_timeout_s: float = Field(
        10.0,
        description="Zookeeper session timeout in seconds.",
    )
    connection_timeout_s: float = Field(
        5.0,
        description="Initial connection timeout in seconds.",
    )


class GraphSettings(BaseModel):
    bucket: str = Field(
        "default",
        description="Document namespace holding arcs and counters.",
    )
    node_counter_key: str = Field(
        "id:node",
        description="Counter key used to allocate node identifiers.",
    )
    query_limit_max: int = Field(
        1000,
        gt=0,
        description="Page size used by unbounded iteration.",
    )

    lock_timeout_s: float = Field(
        5.0,
        ge=0.0,
        description="Maximum time to wait for an exclusive arc lock.",
    )
    lock_ttl_s: float = Field(
        30.0,
        gt=0.0,
        description="Lease after which an abandoned lock may be taken over.",
    )
    lock_poll_s: float = Field(
        0.01,
        gt=0.0,
        description="Polling interval while waiting for a lock (SQL store).",
    )

    empty_arc_policy: Literal["keep", "delete"] = Field(
        "keep",
        description="What a merge does with an arc whose relation set became empty.",
    )
    iteration_errors: Literal["raise", "stop"] = Field(
        "raise",
        description=(
            "'raise' surfaces query failures during for_each_* iteration; "
            "'stop' ends iteration silently."
        ),
    )

    @model_validator(mode="after")
    def _check_lock_bounds(self) -> "GraphSettings":
        if self.lock_poll_s > self.lock_ttl_s:
            raise ValueError(
                f"lock_poll_s={self.lock_poll_s} must not exceed lock_ttl_s={self.lock_ttl_s}"
            )
        return self


# ─────────────────────────────────────────────────────────────
# Top-level settings
# ─────────────────────────────────────────────────────────────


class AppSettings(BaseSettings):
    """
    Canonical configuration for a relgraph-based service.

    Precedence (highest → lowest):

    1. Init kwargs (tests/overrides)
    2. Environment variables
    3. .env and .env.local
    4. Secret files in /run/secrets/relgraph
    5. Defaults in this class
    """

    model_config = SettingsConfigDict(
        env_prefix="RELGRAPH_",  # RELGRAPH_GRAPH__BUCKET, RELGRAPH_DATABASE__URL, ...
        env_file=(".env", ".env.local"),  # .env.local overrides .env
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        secrets_dir="/run/secrets/relgraph",
        extra="ignore",
        validate_default=True,
    )

    app_name: str = "relgraph"
    debug: bool = False

    logging: LoggingSettings = LoggingSettings()
    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]
    zookeeper: ZookeeperSettings = ZookeeperSettings()  # type: ignore[call-arg]
    graph: GraphSettings = GraphSettings()  # type: ignore[call-arg]


@lru_cache(maxsize=1)
def get_settings(**overrides: Any) -> AppSettings:
    """
    Cached accessor for process-wide settings.

    `overrides` are init kwargs → highest precedence (handy in tests).
    """
    try:
        return AppSettings(**overrides)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
