"""
Command-line interface for the Mesos metrics collector
"""

import click
import json
import logging
import signal
import sys
import threading
from tabulate import tabulate
from typing import Optional

from mesos_collector import __version__
from mesos_collector.api.server import ControlServer
from mesos_collector.collectors.accumulator import Accumulator
from mesos_collector.context import CollectorContext
from mesos_collector.exceptions import ConfigurationError
from mesos_collector.models import strip_user_info
from mesos_collector.registry.containers import read_container_files
from mesos_collector.utils.config import Config, load_config


def _setup_logging(config: Config, verbose: bool) -> None:
    level = "DEBUG" if verbose else str(config.get("logging.level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=config.get("logging.format"),
    )


def _build_context(config: Config) -> CollectorContext:
    try:
        context = CollectorContext.from_config(config)
        context.start()
    except ConfigurationError as e:
        click.echo(f"✗ Invalid configuration: {e}", err=True)
        sys.exit(1)
    return context


def _format_fields(fields: dict) -> str:
    return ", ".join(f"{k}={v}" for k, v in sorted(fields.items()))


def _format_tags(tags: dict) -> str:
    return ", ".join(f"{k}={v}" for k, v in sorted(tags.items()))


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="Path to YAML configuration file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], verbose: bool):
    """Mesos Collector - Gather metrics from Mesos nodes and their workloads"""
    config = load_config(config_path)
    _setup_logging(config, verbose)
    ctx.obj = config


@cli.command()
@click.option(
    "--format",
    "output_format",
    default="table",
    type=click.Choice(["table", "json"]),
    help="Output format (default: table)",
)
@click.option(
    "--wait-metadata",
    default=0.0,
    type=float,
    help="Seconds to wait for a metadata refresh and re-enrich (default: 0)",
)
@click.pass_obj
def gather(config: Config, output_format: str, wait_metadata: float):
    """Run one collection cycle and print the records"""
    context = _build_context(config)
    accumulator = Accumulator()

    try:
        context.gather(accumulator)
        if wait_metadata > 0 and context.metadata is not None:
            # A refresh triggered by unknown containers may complete in time
            if context.metadata.wait_for_refresh(timeout=wait_metadata):
                context.metadata.apply(accumulator.records())
    finally:
        context.stop()

    records = accumulator.records()
    if output_format == "json":
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))
    elif records:
        table_data = [
            [r.name, r.kind.value, _format_fields(r.fields), _format_tags(r.tags)]
            for r in records
        ]
        click.echo(
            tabulate(table_data, headers=["Name", "Kind", "Fields", "Tags"], tablefmt="grid")
        )
    else:
        click.echo("No records collected.")

    for error in accumulator.errors:
        click.echo(f"✗ {error}", err=True)


@cli.command()
@click.pass_obj
def targets(config: Config):
    """Print the scrape targets resolved for the next cycle"""
    context = _build_context(config)
    try:
        resolved = context.scraper.resolver.resolve()
    finally:
        context.stop()

    if not resolved:
        click.echo("No scrape targets found.")
        return

    table_data = [
        [strip_user_info(t.url), t.url_tag(), t.address or "-", _format_tags(t.tags) or "-"]
        for t in resolved.values()
    ]
    click.echo(
        tabulate(table_data, headers=["URL", "Origin", "Address", "Tags"], tablefmt="grid")
    )


@cli.command()
@click.option(
    "--containers-dir",
    default=None,
    type=click.Path(file_okay=False),
    help="Directory of persisted registrations (default: statsd.containers_dir)",
)
@click.pass_obj
def containers(config: Config, containers_dir: Optional[str]):
    """Print the container registrations persisted on disk"""
    directory = containers_dir or config.get("statsd.containers_dir")
    if not directory:
        click.echo("✗ No containers directory configured", err=True)
        sys.exit(1)

    registered = read_container_files(directory)
    if not registered:
        click.echo("No containers registered.")
        return

    table_data = [[c.container_id, c.statsd_host, c.statsd_port] for c in registered]
    click.echo(
        tabulate(table_data, headers=["Container ID", "Statsd Host", "Statsd Port"], tablefmt="grid")
    )


@cli.command()
@click.option("--host", default=None, help="Host to bind the control API to")
@click.option("--port", default=None, type=int, help="Port to bind the control API to")
@click.option("--interval", default=None, type=float, help="Collection interval in seconds")
@click.pass_obj
def serve(config: Config, host: Optional[str], port: Optional[int], interval: Optional[float]):
    """Start the control API and the periodic collection loop"""
    host = host or config.get("api.host", "127.0.0.1")
    port = port if port is not None else config.get("api.port", 8888)
    interval = interval or config.get("collection.interval", 10.0)

    context = _build_context(config)
    server = ControlServer(context.registry, host=host, port=port)

    click.echo(f"Starting Mesos Collector control API on {host}:{port}")
    click.echo(f"Collection interval: {interval}s")

    stopped = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: stopped.set())

    server.start()
    context.run(interval)
    try:
        while not stopped.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        click.echo("Shutting down...")
        server.stop()
        context.stop()


def main():
    """Main entry point for the CLI"""
    cli()


if __name__ == "__main__":
    main()
