"""Pydantic configuration models for the Cassandra sink connector."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

# Unquoted CQL identifiers: letter first, then word characters, max 48 chars.
_CQL_IDENTIFIER = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]{0,47}$")


class KafkaAuthMechanism(StrEnum):
    """Kafka SASL authentication mechanisms."""

    NONE = "none"
    SASL_PLAIN = "sasl_plain"
    SASL_SCRAM_256 = "sasl_scram_256"
    SASL_SCRAM_512 = "sasl_scram_512"


class ConsistencyLevel(StrEnum):
    """Cassandra consistency levels accepted for writes."""

    ANY = "ANY"
    ONE = "ONE"
    TWO = "TWO"
    THREE = "THREE"
    QUORUM = "QUORUM"
    ALL = "ALL"
    LOCAL_QUORUM = "LOCAL_QUORUM"
    EACH_QUORUM = "EACH_QUORUM"
    LOCAL_ONE = "LOCAL_ONE"


class KafkaConfig(BaseModel):
    """Kafka broker and consumer settings."""

    bootstrap_servers: str = "localhost:9092"
    group_id: str = "cassandra-sink"
    auto_offset_reset: str = "earliest"
    session_timeout_ms: int = Field(default=45000, ge=1000)
    max_poll_interval_ms: int = Field(default=300000, ge=1000)
    fetch_min_bytes: int = Field(default=1, ge=1)
    fetch_max_wait_ms: int = Field(default=500, ge=0)
    # Messages fetched per poll; one poll is one batch for the writer.
    poll_batch_size: int = Field(default=500, ge=1)
    poll_timeout_seconds: float = Field(default=1.0, gt=0)
    # Auth / security
    security_protocol: str = "PLAINTEXT"
    auth_mechanism: KafkaAuthMechanism = KafkaAuthMechanism.NONE
    sasl_username: str | None = None
    sasl_password: SecretStr | None = None
    ssl_ca_location: str | None = None

    @model_validator(mode="after")
    def check_auth_requirements(self) -> Self:
        """Validate that SASL credentials are present when a mechanism is set."""
        if self.auth_mechanism != KafkaAuthMechanism.NONE and (
            not self.sasl_username or not self.sasl_password
        ):
            msg = (
                "sasl_username and sasl_password are required "
                f"when auth_mechanism is '{self.auth_mechanism.value}'"
            )
            raise ValueError(msg)
        return self


class RetryConfig(BaseModel):
    """Retry / backoff configuration for connection bootstrap."""

    max_attempts: int = Field(default=5, ge=1)
    initial_wait_seconds: float = Field(default=1.0, gt=0)
    max_wait_seconds: float = Field(default=60.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True


class CassandraConfig(BaseModel):
    """Cassandra cluster connection settings."""

    contact_points: list[str] = Field(default_factory=lambda: ["localhost"])
    port: int = Field(default=9042, ge=1, le=65535)
    keyspace: str
    username: str | None = None
    password: SecretStr | None = None
    local_dc: str | None = None
    protocol_version: int | None = Field(default=None, ge=3)
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    consistency_level: ConsistencyLevel = ConsistencyLevel.LOCAL_QUORUM
    retry: RetryConfig = RetryConfig()

    @field_validator("keyspace")
    @classmethod
    def validate_keyspace(cls, v: str) -> str:
        if not _CQL_IDENTIFIER.match(v):
            msg = f"keyspace '{v}' is not a valid CQL identifier"
            raise ValueError(msg)
        return v

    @field_validator("contact_points")
    @classmethod
    def validate_contact_points(cls, v: list[str]) -> list[str]:
        if not v:
            msg = "at least one contact point is required"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def check_credentials(self) -> Self:
        """Username and password must be given together."""
        if (self.username is None) != (self.password is None):
            msg = "username and password must both be set or both be omitted"
            raise ValueError(msg)
        return self


class WriterConfig(BaseModel):
    """Batch writer tuning."""

    # 0 keeps the fan-out unbounded.
    max_in_flight: int = Field(default=0, ge=0)
    # Per-write request timeout handed to the driver; None uses the driver default.
    write_timeout_seconds: float | None = Field(default=10.0, gt=0)
    # How long flush() waits for outstanding writes before giving up.
    drain_timeout_seconds: float = Field(default=60.0, gt=0)


class DLQConfig(BaseModel):
    """Dead Letter Queue settings for records that could not be written."""

    enabled: bool = False
    topic_suffix: str = Field(default="dlq", min_length=1)
    include_headers: bool = True
    flush_timeout_seconds: float = Field(default=10.0, gt=0)


class ConnectorConfig(BaseModel, extra="forbid"):
    """Top-level connector configuration."""

    connector_name: str = "cassandra-sink"
    topics: list[str]
    # Topic -> table overrides; unmapped topics write to a table of the same name.
    topic_table_map: dict[str, str] = Field(default_factory=dict)
    kafka: KafkaConfig = KafkaConfig()
    cassandra: CassandraConfig
    writer: WriterConfig = WriterConfig()
    dlq: DLQConfig = DLQConfig()

    @field_validator("topics")
    @classmethod
    def validate_topics(cls, v: list[str]) -> list[str]:
        if not v:
            msg = "at least one topic is required"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def check_destinations(self) -> Self:
        """Every topic must resolve to a valid CQL table name."""
        invalid = [
            table
            for table in (self.table_for(t) for t in self.topics)
            if not _CQL_IDENTIFIER.match(table)
        ]
        if invalid:
            msg = (
                f"Tables {', '.join(sorted(set(invalid)))} are not valid CQL "
                "identifiers; map their topics with topic_table_map"
            )
            raise ValueError(msg)
        unknown = sorted(set(self.topic_table_map) - set(self.topics))
        if unknown:
            msg = f"topic_table_map references unknown topics: {', '.join(unknown)}"
            raise ValueError(msg)
        return self

    def table_for(self, topic: str) -> str:
        """Return the destination table for *topic*."""
        return self.topic_table_map.get(topic, topic)
