#!/usr/bin/env python3
"""
Command-line interface for state transfer operations.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional, Tuple

import click
import yaml

from state_transfer.client import StateTransferClient
from state_transfer.config import AppConfig, config_loader
from state_transfer.endpoint import discover_endpoint, wait_for_healthy
from state_transfer.exceptions import ConfigurationError, StateTransferError
from state_transfer.logging import logger
from state_transfer.models import NamespacedName, TransferType

ENDPOINT_TYPES = [
    "edge",
    "passthrough",
    "ingress",
    "loadbalancer",
    "clusterip",
    "nodeport",
    "local",
]
DEFAULT_CONFIG_PATHS = [
    "~/.config/state-transfer/config.yaml",
    "/etc/state-transfer/config.yaml",
    "config.yaml",
]


def setup_logging(
    verbose: bool = False, quiet: bool = False, log_level: str = "INFO"
) -> None:
    """Setup logging configuration."""
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    logger.set_level(level)


def load_config(config_path: Optional[str]) -> AppConfig:
    """Load configuration, falling back to defaults when it cannot be read."""
    try:
        return config_loader.load_config(config_path)
    except ConfigurationError as e:
        click.echo(f"Warning: {e}", err=True)
        return AppConfig()


def with_overrides(app_config: AppConfig, overrides: dict) -> AppConfig:
    """
    Copy the configuration with command line overrides applied and validated.

    Raises:
        ConfigurationError: If an override is invalid
    """
    try:
        return AppConfig(**{**app_config.model_dump(), **overrides})
    except ValueError as e:
        raise ConfigurationError(f"Invalid option: {e}") from e


def parse_claims(claims: Tuple[str, ...]) -> List[Tuple[str, Optional[str]]]:
    """
    Parse ``SOURCE[:DESTINATION]`` claim arguments.

    Raises:
        click.BadParameter: If a name is empty
    """
    parsed = []
    for claim in claims:
        source, _, destination = claim.partition(":")
        if not source:
            raise click.BadParameter(f"empty source claim in {claim!r}")
        parsed.append((source, destination or None))
    return parsed


def emit(ctx: Any, data: dict) -> None:
    """Print a result in the selected output format."""
    output_format = ctx.obj.get("output_format", "text")
    if output_format == "json":
        click.echo(json.dumps(data, indent=2))
    elif output_format == "yaml":
        click.echo(yaml.safe_dump(data, default_flow_style=False))
    else:
        for key, value in data.items():
            click.echo(f"  {key}: {value}")


@click.group()
@click.option("--config", "-c", default=None, help="Configuration file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-error output")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["text", "json", "yaml"]),
    default="text",
    help="Output format",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default=None,
    help="Log level (defaults to the configured level)",
)
@click.version_option(package_name="state-transfer")
@click.pass_context
def cli(
    ctx: Any,
    config: Optional[str],
    verbose: bool,
    quiet: bool,
    output: str,
    log_level: Optional[str],
) -> None:
    """Migrate persistent volume claims between Kubernetes clusters."""
    app_config = load_config(config)
    setup_logging(verbose, quiet, log_level or app_config.log_level)

    ctx.ensure_object(dict)
    ctx.obj["config"] = app_config
    ctx.obj["output_format"] = output
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet


def _client(ctx: Any) -> StateTransferClient:
    return StateTransferClient(ctx.obj["config"])


@cli.command()
@click.argument("namespace")
@click.pass_context
def quiesce(ctx: Any, namespace: str) -> None:
    """Stop the workloads of a source namespace and wait for their pods."""
    try:
        if not ctx.obj["quiet"]:
            click.echo(f"Quiescing namespace '{namespace}'...")
        changed = _client(ctx).quiesce(namespace)
        click.echo(f"✓ Quiesced namespace '{namespace}' ({len(changed)} changed)")
        for key in changed:
            click.echo(f"  {key}")
    except StateTransferError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(e.error_code)
    except Exception as e:
        click.echo(f"✗ Unexpected error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("namespace")
@click.pass_context
def unquiesce(ctx: Any, namespace: str) -> None:
    """Restore the workloads of a source namespace."""
    try:
        changed = _client(ctx).unquiesce(namespace)
        click.echo(f"✓ Un-quiesced namespace '{namespace}' ({len(changed)} changed)")
        for key in changed:
            click.echo(f"  {key}")
    except StateTransferError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(e.error_code)
    except Exception as e:
        click.echo(f"✗ Unexpected error: {e}", err=True)
        sys.exit(1)


@cli.group()
def endpoint() -> None:
    """Manage destination endpoints."""
    pass


@endpoint.command("create")
@click.argument("name")
@click.argument("namespace")
@click.option(
    "--type",
    "endpoint_type",
    type=click.Choice(ENDPOINT_TYPES),
    default=None,
    help="Endpoint type (defaults to the configured type)",
)
@click.option("--hostname", default=None, help="Advertised hostname for service endpoints")
@click.option("--wait", is_flag=True, help="Wait until the endpoint is healthy")
@click.pass_context
def endpoint_create(
    ctx: Any,
    name: str,
    namespace: str,
    endpoint_type: Optional[str],
    hostname: Optional[str],
    wait: bool,
) -> None:
    """Create an endpoint in the destination cluster."""
    try:
        client = _client(ctx)
        ep = client.build_endpoint(
            NamespacedName(namespace, name), endpoint_type, hostname=hostname
        )
        ep.create(client.destination_store)
        click.echo(f"✓ Created {ep.endpoint_type.value} endpoint {namespace}/{name}")
        if wait:
            wait_for_healthy(
                ep,
                client.destination_store,
                interval=client.config.health_poll_interval,
            )
            emit(
                ctx,
                {
                    "hostname": ep.hostname,
                    "port": ep.port,
                    "exposed_port": ep.exposed_port,
                },
            )
    except StateTransferError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(e.error_code)
    except Exception as e:
        click.echo(f"✗ Unexpected error: {e}", err=True)
        sys.exit(1)


@endpoint.command("status")
@click.argument("name")
@click.argument("namespace")
@click.option(
    "--type",
    "endpoint_type",
    type=click.Choice(ENDPOINT_TYPES),
    default=None,
    help="Endpoint type (defaults to the configured type)",
)
@click.pass_context
def endpoint_status(
    ctx: Any, name: str, namespace: str, endpoint_type: Optional[str]
) -> None:
    """Show whether an endpoint is ready and where it listens."""
    try:
        client = _client(ctx)
        ep = discover_endpoint(
            endpoint_type or client.config.endpoint_type,
            client.destination_store,
            NamespacedName(namespace, name),
        )
        if ep is None:
            emit(ctx, {"name": name, "namespace": namespace, "ready": False})
            sys.exit(1)
        emit(
            ctx,
            {
                "name": name,
                "namespace": namespace,
                "ready": True,
                "hostname": ep.hostname,
                "port": ep.port,
                "exposed_port": ep.exposed_port,
            },
        )
    except StateTransferError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(e.error_code)


@cli.command()
@click.argument(
    "transfer_type", type=click.Choice([t.value for t in TransferType])
)
@click.argument("claims", nargs=-1, required=True)
@click.option("--source-namespace", "-s", required=True, help="Namespace of the source claims")
@click.option(
    "--destination-namespace",
    "-d",
    default=None,
    help="Namespace of the destination claims (defaults to the source namespace)",
)
@click.option(
    "--endpoint-type",
    type=click.Choice(ENDPOINT_TYPES),
    default=None,
    help="Endpoint type (defaults to the configured type)",
)
@click.option(
    "--transport-type",
    type=click.Choice(["stunnel", "null"]),
    default=None,
    help="Transport type (defaults to the configured type)",
)
@click.option("--bwlimit", type=int, default=None, help="rsync bandwidth limit in KiB/s")
@click.pass_context
def transfer(
    ctx: Any,
    transfer_type: str,
    claims: Tuple[str, ...],
    source_namespace: str,
    destination_namespace: Optional[str],
    endpoint_type: Optional[str],
    transport_type: Optional[str],
    bwlimit: Optional[int],
) -> None:
    """
    Copy claims with rsync, rclone or blockrsync.

    CLAIMS are SOURCE[:DESTINATION] claim names.
    """
    try:
        app_config: AppConfig = ctx.obj["config"]
        overrides = {}
        if endpoint_type:
            overrides["endpoint_type"] = endpoint_type
        if transport_type:
            overrides["transport_type"] = transport_type
        if bwlimit is not None:
            overrides["rsync_bandwidth_limit"] = bwlimit
        if overrides:
            app_config = with_overrides(app_config, overrides)

        client = StateTransferClient(app_config)
        pvc_list = client.load_pvc_list(
            source_namespace,
            destination_namespace or source_namespace,
            parse_claims(claims),
        )
        built = client.build_transfer(transfer_type, pvc_list)

        if not ctx.obj["quiet"]:
            click.echo(
                f"Starting {transfer_type} transfer of {len(pvc_list)} claim(s) "
                f"from '{source_namespace}'..."
            )
        client.start_transfer(built)
        click.echo(f"✓ Transfer started via {built.endpoint.hostname}")
    except StateTransferError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(e.error_code)
    except Exception as e:
        click.echo(f"✗ Unexpected error: {e}", err=True)
        sys.exit(1)


@cli.group()
def config() -> None:
    """Manage configuration settings."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: Any) -> None:
    """Display current configuration."""
    config_data = ctx.obj["config"].model_dump()
    if config_data.get("proxy_password"):
        config_data["proxy_password"] = "***"
    click.echo(yaml.safe_dump(config_data, default_flow_style=False))


@config.command("init")
@click.option(
    "--config-dir", default="~/.config/state-transfer", help="Configuration directory"
)
def config_init(config_dir: str) -> None:
    """Initialize default configuration."""
    config_path = Path(config_dir).expanduser()
    config_path.mkdir(parents=True, exist_ok=True)

    config_file = config_path / "config.yaml"
    if config_file.exists():
        click.echo(f"Configuration already exists at {config_file}", err=True)
        sys.exit(1)

    with open(config_file, "w") as f:
        yaml.safe_dump(AppConfig().model_dump(), f, default_flow_style=False)

    click.echo(f"Configuration initialized at {config_file}")


@config.command("path")
def config_path() -> None:
    """Show the configuration file path being used."""
    default_paths = [os.path.expanduser(path) for path in DEFAULT_CONFIG_PATHS]

    click.echo("Configuration search paths (in order):")
    for i, path in enumerate(default_paths, 1):
        exists = "✓" if os.path.exists(path) else "✗"
        click.echo(f"  {i}. {exists} {path}")

    for path in default_paths:
        if os.path.exists(path):
            click.echo(f"\nCurrently using: {path}")
            return

    click.echo("\nNo configuration file found. Run 'state-transfer config init' to create one.")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
