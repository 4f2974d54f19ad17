"""Typer CLI for the Cassandra sink connector."""

from __future__ import annotations

from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from cassandra_sink.config.loader import load_connector_config
from cassandra_sink.config.models import ConnectorConfig
from cassandra_sink.errors import ConnectorError
from cassandra_sink.logconfig import configure_logging
from cassandra_sink.observability.health import Status, check_connector_health

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="cassandra-sink", help="Kafka → Cassandra sink connector")


def _load(config_path: str) -> ConnectorConfig:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return load_connector_config(path)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Validation error:[/red] {exc}")
        raise typer.Exit(1) from exc


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", help="Log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
) -> None:
    configure_logging(log_level, json=json_logs)


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to connector YAML"),
) -> None:
    """Validate a connector configuration file."""
    config = _load(config_path)
    console.print(f"[green]Valid[/green] connector={config.connector_name}")
    console.print(f"  kafka:     {config.kafka.bootstrap_servers}")
    console.print(
        f"  cassandra: {', '.join(config.cassandra.contact_points)}"
        f" (keyspace {config.cassandra.keyspace})"
    )
    for topic in config.topics:
        console.print(f"    - {topic} → {config.table_for(topic)}")
    bound = config.writer.max_in_flight or "unbounded"
    console.print(f"  max in-flight writes: {bound}")
    console.print(f"  dlq: {'enabled' if config.dlq.enabled else 'disabled'}")


@app.command("check-tables")
def check_tables(
    config_path: str = typer.Argument(..., help="Path to connector YAML"),
) -> None:
    """Connect to Cassandra and verify every destination table exists."""
    config = _load(config_path)

    from cassandra_sink.store.cassandra import CassandraSession
    from cassandra_sink.writer.validator import validate_destinations

    tables = sorted({config.table_for(t) for t in config.topics})
    try:
        session = CassandraSession.connect(config.cassandra)
    except Exception as exc:
        console.print(f"[red]Cannot connect to Cassandra:[/red] {exc}")
        raise typer.Exit(1) from exc
    try:
        validate_destinations(session, config.cassandra.keyspace, tables)
    except ConnectorError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc
    finally:
        session.close()
    console.print(f"[green]All {len(tables)} table(s) present[/green]")


@app.command()
def health(
    config_path: str = typer.Argument(..., help="Path to connector YAML"),
) -> None:
    """Check Kafka and Cassandra reachability."""
    config = _load(config_path)
    result = check_connector_health(config)

    table = Table(title="Connector Health")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")
    for c in result.components:
        style = "green" if c.status == Status.HEALTHY else "red"
        table.add_row(c.name, f"[{style}]{c.status}[/{style}]", c.detail)

    console.print(table)
    if not result.healthy:
        raise typer.Exit(1)


@app.command()
def run(
    config_path: str = typer.Argument(..., help="Path to connector YAML"),
) -> None:
    """Consume the configured topics and write them to Cassandra."""
    config = _load(config_path)

    from cassandra_sink.pipeline.runner import Pipeline

    console.print(f"[yellow]Starting connector:[/yellow] {config.connector_name}")
    runner = Pipeline(config)
    try:
        runner.start()
    except KeyboardInterrupt:
        runner.stop()
    except ConnectorError as exc:
        logger.error("connector.fatal", error=str(exc))
        console.print(f"[red]Connector failed:[/red] {exc}")
        raise typer.Exit(1) from exc
