"""Command-line interface for cartridge-stream."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .connectors.base import Record
from .connectors.memory import InMemoryDdlConnector
from .core.config import StreamConfig
from .core.logging import setup_logging
from .core.runner import StreamRunner
from .schema_evolution.exceptions import SchemaEvolutionError, TypeConflict
from .schema_evolution.inferencer import TypeInferencer
from .schema_evolution.type_converter import TypeConverter
from .schema_evolution.types import BatchClassification

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="cartridge-stream")
def cli():
    """Cartridge-Stream: schema evolution for streaming sinks

    Infers column types from JSON records and evolves the target table so
    the records can be written.
    """
    setup_logging(cli_mode=True)


@cli.command()
@click.argument("records", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def infer(records: Path):
    """Infer column types from a JSON lines file."""

    try:
        batch = _load_records(records)
    except (OSError, ValueError) as e:
        console.print(f"[red]Failed to read records: {e}[/red]")
        sys.exit(1)

    inferencer = TypeInferencer()
    converter = TypeConverter()
    columns = {}
    conflicts: dict[str, TypeConflict] = {}

    for index, record in enumerate(batch, start=1):
        try:
            inferred = inferencer.infer_record(record)
        except SchemaEvolutionError as e:
            console.print(f"[yellow]Record {index} skipped: {e}[/yellow]")
            continue
        for column, descriptor in inferred.items():
            if column in conflicts:
                continue
            try:
                columns[column] = inferencer.merger.merge(
                    columns.get(column), descriptor, column
                ).descriptor
            except TypeConflict as e:
                conflicts[column] = e

    table = Table(title="Inferred Columns")
    table.add_column("Column", style="cyan")
    table.add_column("Type", style="magenta")
    for column, descriptor in columns.items():
        if column in conflicts:
            table.add_row(column, f"[red]conflict: {conflicts[column].incoming}[/red]")
        else:
            table.add_row(column, converter.to_sql(descriptor.committed()))
    console.print(table)


@cli.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option("--table", "-t", required=True, help="Target table name")
@click.option(
    "--batch-size", type=int, default=100, show_default=True, help="Records per batch"
)
@click.argument("records", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def evolve(config: Optional[Path], table: str, batch_size: int, records: Path):
    """Evolve a table for the records in a JSON lines file."""

    try:
        stream_config = StreamConfig.from_file(config) if config else StreamConfig()
        batch = _load_records(records)
    except Exception as e:
        console.print(f"[red]Failed to load input: {e}[/red]")
        sys.exit(1)

    if batch_size < 1:
        console.print("[red]--batch-size must be positive[/red]")
        sys.exit(1)

    batches = [
        (table, batch[start:start + batch_size]) for start in range(0, len(batch), batch_size)
    ]

    async def run_batches():
        async with StreamRunner(stream_config) as runner:
            results = await runner.process_batches(batches)
            columns = await runner.connector.describe_table(table)
            return runner, results, columns

    try:
        runner, results, columns = asyncio.run(run_batches())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    _display_results(results)
    _display_columns(columns)

    if isinstance(runner.connector, InMemoryDdlConnector):
        for statement in runner.connector.statements:
            console.print(f"[dim]{statement}[/dim]")

    if any(isinstance(result, BaseException) for result in results):
        sys.exit(1)


@cli.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Path to configuration file",
)
def validate(config: Path):
    """Validate configuration file."""

    try:
        console.print(f"[blue]Validating configuration: {config}[/blue]")
        stream_config = StreamConfig.from_file(config)

        console.print("[green]✓ Configuration is valid[/green]")
        _display_config_summary(stream_config)

    except Exception as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        sys.exit(1)


@cli.command()
def init():
    """Initialize a new cartridge-stream configuration file."""

    config_template = """# Cartridge-Stream Configuration

# DDL connector configuration
connector:
  type: memory
  name: "my_connector"
  properties:
    account_url: "https://account.example.com"
    role: "ingest"
    user: "stream_user"

# Schema evolution settings
schema_evolution:
  enabled: true
  max_concurrent_workers: 4
  batch_timeout_seconds: 300
  excluded_tables: []

# Retry settings for throttled DDL
error_handling:
  max_retries: 3
  backoff_factor: 2.0
  initial_backoff_seconds: 0.5
  max_backoff_seconds: 30

# Monitoring configuration
monitoring:
  prometheus:
    enabled: false
    port: 8080
    path: "/metrics"
  log_level: "INFO"
  structured_logging: true

# Existing tables (in-memory connector only)
tables:
  events:
    ID: "NUMBER(19,0)"
"""

    config_file = Path("cartridge-stream-config.yaml")

    if config_file.exists():
        console.print(
            f"[yellow]Configuration file already exists: {config_file}[/yellow]"
        )
        if not click.confirm("Overwrite existing file?"):
            return

    config_file.write_text(config_template)
    console.print(f"[green]Created configuration file: {config_file}[/green]")
    console.print("[blue]Edit the file with your connector and evolution settings.[/blue]")


def _load_records(path: Path) -> list[Record]:
    """Read one JSON record per non-empty line."""
    records = []
    with open(path) as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                records.append(Record.from_json(line, offset=line_number))
            except json.JSONDecodeError as e:
                raise ValueError(f"line {line_number}: {e}") from e
    return records


def _display_results(results):
    table = Table(title="Batch Results")
    table.add_column("Batch", style="cyan")
    table.add_column("Writable", style="green")
    table.add_column("Conflicted", style="yellow")
    table.add_column("Rejected", style="red")
    table.add_column("Evolved", style="magenta")

    for index, result in enumerate(results, start=1):
        if isinstance(result, BatchClassification):
            table.add_row(
                str(index),
                str(len(result.writable)),
                str(len(result.conflicted)),
                str(len(result.rejected)),
                ", ".join(column.name for column in result.evolved) or "-",
            )
        else:
            table.add_row(str(index), "-", "-", "-", f"[red]failed: {result}[/red]")

    console.print(table)


def _display_columns(columns):
    converter = TypeConverter()
    table = Table(title="Table Columns")
    table.add_column("Column", style="cyan")
    table.add_column("Type", style="magenta")
    for column in columns:
        table.add_row(column.name, converter.to_sql(column.type))
    console.print(table)


def _display_config_summary(config: StreamConfig):
    """Display a summary of the configuration."""

    table = Table(title="Configuration Summary")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Connector Type", config.connector.type)
    table.add_row("Connector Name", config.connector.name or "Not specified")
    table.add_row(
        "Schema Evolution", "Enabled" if config.schema_evolution.enabled else "Disabled"
    )
    table.add_row("Max Workers", str(config.schema_evolution.max_concurrent_workers))
    table.add_row("Batch Timeout", f"{config.schema_evolution.batch_timeout_seconds}s")
    table.add_row("Max Retries", str(config.error_handling.max_retries))
    table.add_row(
        "Prometheus", "Enabled" if config.monitoring.prometheus.enabled else "Disabled"
    )

    console.print(table)

    if config.tables:
        tables = Table(title="Seed Tables")
        tables.add_column("Table", style="cyan")
        tables.add_column("Columns", style="yellow")
        for name, columns in config.tables.items():
            tables.add_row(name, str(len(columns)))
        console.print(tables)


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
