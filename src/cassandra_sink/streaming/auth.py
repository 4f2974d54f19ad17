"""Kafka authentication settings for the consumer and DLQ producer."""

from __future__ import annotations

from typing import Any

from cassandra_sink.config.models import KafkaAuthMechanism, KafkaConfig

_SASL_MECHANISMS = {
    KafkaAuthMechanism.SASL_PLAIN: "PLAIN",
    KafkaAuthMechanism.SASL_SCRAM_256: "SCRAM-SHA-256",
    KafkaAuthMechanism.SASL_SCRAM_512: "SCRAM-SHA-512",
}


def build_kafka_auth_config(config: KafkaConfig) -> dict[str, Any]:
    """Return confluent_kafka config entries for authentication.

    Merged into Consumer/Producer/AdminClient constructor arguments.
    """
    auth: dict[str, Any] = {}
    if config.security_protocol != "PLAINTEXT":
        auth["security.protocol"] = config.security_protocol
    if config.ssl_ca_location:
        auth["ssl.ca.location"] = config.ssl_ca_location

    mechanism = _SASL_MECHANISMS.get(config.auth_mechanism)
    if mechanism is not None:
        auth["sasl.mechanism"] = mechanism
        auth["sasl.username"] = config.sasl_username
        auth["sasl.password"] = (
            config.sasl_password.get_secret_value() if config.sasl_password else ""
        )
    return auth


def base_client_config(config: KafkaConfig) -> dict[str, Any]:
    """Bootstrap servers plus auth, shared by every Kafka client we create."""
    return {"bootstrap.servers": config.bootstrap_servers, **build_kafka_auth_config(config)}
