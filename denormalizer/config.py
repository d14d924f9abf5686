"""Worker configuration using pydantic-settings."""

import logging
from typing import Any

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .domain.exceptions import ConfigurationError
from .integrations.mongodb.config import MongoDBConfig
from .sharding import ShardAssignment


class WorkerSettings(BaseSettings):
    """Settings for one worker process.

    All settings are read from environment variables (case-insensitive) and
    an optional ``.env`` file in the working directory. For example:
    - SOURCE_URI=mongodb://localhost:27017/conduit?replicaSet=rs0
    - SHARD_COUNT=4
    - SHARD_INDEX=2

    Attributes:
        source_uri: Connection string of the MongoDB deployment to watch.
        source_database: Database name. Defaults to the database named in
            the connection string.
        shard_count: Number of worker instances sharing the workload.
        shard_index: This worker's shard, in ``[0, shard_count)``.
        sync_state_collection: Collection holding the resume records.
        log_level: Name of the root log level.
        reconnect_initial_delay: Seconds to wait before the first reconnect
            attempt of a stream that lost its connection.
        reconnect_max_delay: Upper bound for the exponential reconnect delay.
        max_await_time_ms: How long a change stream waits for new events per
            poll. Also bounds how long an idle stream takes to drain.
        connect_timeout_ms: Driver connection timeout.
        server_selection_timeout_ms: Driver server selection timeout.
        socket_timeout_ms: Driver socket timeout, bounding every read and
            write.
        applied_change_window: Number of recently applied event ids kept on
            counter documents to absorb redeliveries.

    Example:
        >>> settings = load_settings()
        >>> settings.shard
        ShardAssignment(index=0, count=1)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    source_uri: str = Field(min_length=1)
    source_database: str | None = None

    shard_count: int = Field(default=1, ge=1)
    shard_index: int = Field(default=0, ge=0)

    sync_state_collection: str = "sync_state"
    log_level: str = "INFO"

    reconnect_initial_delay: float = Field(default=0.5, gt=0)
    reconnect_max_delay: float = Field(default=30.0, gt=0)
    max_await_time_ms: int = Field(default=1000, ge=1)

    connect_timeout_ms: int = Field(default=20000, ge=0)
    server_selection_timeout_ms: int = Field(default=30000, ge=0)
    socket_timeout_ms: int = Field(default=30000, ge=0)

    applied_change_window: int = Field(default=100, ge=1)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            raise ValueError(f"unknown log level {value!r}")
        return value.upper()

    @model_validator(mode="after")
    def _check_shard_index(self) -> "WorkerSettings":
        if self.shard_index >= self.shard_count:
            raise ValueError("SHARD_INDEX must be less than SHARD_COUNT")
        if self.reconnect_max_delay < self.reconnect_initial_delay:
            raise ValueError(
                "RECONNECT_MAX_DELAY must not be less than RECONNECT_INITIAL_DELAY"
            )
        return self

    @property
    def shard(self) -> ShardAssignment:
        """The shard this worker is responsible for."""
        return ShardAssignment(index=self.shard_index, count=self.shard_count)

    def mongodb(self) -> MongoDBConfig:
        """Build the driver configuration for the source deployment."""
        return MongoDBConfig(
            uri=self.source_uri,
            database=self.source_database,
            connect_timeout_ms=self.connect_timeout_ms,
            server_selection_timeout_ms=self.server_selection_timeout_ms,
            socket_timeout_ms=self.socket_timeout_ms,
        )


def load_settings(**overrides: Any) -> WorkerSettings:
    """Load and validate the worker settings.

    Args:
        **overrides: Values taking precedence over the environment.

    Returns:
        The validated settings.

    Raises:
        ConfigurationError: If a required variable is missing or any value
            is invalid. The message names every offending variable.
    """
    try:
        return WorkerSettings(**overrides)
    except ValidationError as err:
        problems = []
        for error in err.errors():
            location = "_".join(str(part) for part in error["loc"]).upper()
            message = error["msg"].removeprefix("Value error, ")
            problems.append(f"{location}: {message}" if location else message)
        raise ConfigurationError("; ".join(problems)) from err
