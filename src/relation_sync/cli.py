"""Command-line interface for Relation Sync."""

from pathlib import Path
from typing import Annotated, Optional

import typer

from relation_sync import __version__
from relation_sync.config import SyncConfig, SyncSettings, load_config

app = typer.Typer(
    name="relation-sync",
    help="Keep material-partner relationships aligned with partner identifiers and the DTR",
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config.yaml"),
]


def _load(config: Optional[Path]) -> tuple[SyncSettings, SyncConfig]:
    settings = SyncSettings(config_file=config) if config else SyncSettings()
    return settings, load_config(settings)


@app.callback()
def callback() -> None:
    """Relation Sync CLI."""


@app.command()
def validate(config: ConfigOption = None) -> None:
    """Validate the configuration file."""
    try:
        settings, cfg = _load(config)
    except Exception as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(1)

    fetch, publish = cfg.fetch_retry, cfg.publish_retry
    typer.echo(f"Configuration valid: {settings.config_file}")
    typer.echo(f"  Own BPNL: {cfg.own_bpnl}")
    typer.echo(f"  Known partners: {len(cfg.partners)}")
    typer.echo(f"  Registry: {cfg.registry.base_url}")
    typer.echo(f"  Resolver: {cfg.resolver.base_url}")
    typer.echo(f"  Workers: {cfg.workers.max_workers}")
    typer.echo(f"  Fetch retries: {fetch.max_retries} x {fetch.delay_seconds}s")
    typer.echo(f"  Publish retries: {publish.max_retries} x {publish.delay_seconds}s")


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"relation-sync {__version__}")


@app.command()
def resolve(
    material_id: Annotated[str, typer.Argument(help="Own material number")],
    partner_id: Annotated[str, typer.Argument(help="Partner handle from the config")],
    supplier_number: Annotated[
        Optional[str],
        typer.Option("--supplier-number", "-s", help="Partner's material number"),
    ] = None,
    config: ConfigOption = None,
) -> None:
    """Ask a supplier for its identifier of a material, once and without storing it."""
    from relation_sync.domain.models import Relationship, is_well_formed_identifier
    from relation_sync.registry.part_type_client import PartTypeInformationClient
    from relation_sync.registry.partners import StaticPartnerDirectory, UnknownPartnerError
    from relation_sync.sync.errors import SyncError

    _, cfg = _load(config)
    relationship = Relationship(
        material_id=material_id,
        partner_id=partner_id,
        supplies_material=True,
        partner_material_number=supplier_number,
    )

    with PartTypeInformationClient(cfg.resolver, StaticPartnerDirectory(cfg.partners)) as client:
        try:
            identifier = client.resolve(relationship)
        except (SyncError, UnknownPartnerError) as e:
            typer.echo(f"Resolution failed: {e}", err=True)
            raise typer.Exit(1)

    if not is_well_formed_identifier(identifier):
        typer.echo(f"Malformed identifier: {identifier}", err=True)
        raise typer.Exit(2)
    typer.echo(identifier)


@app.command()
def status(
    config: ConfigOption = None,
    host: Annotated[str, typer.Option(help="Host running the service")] = "localhost",
) -> None:
    """Check the status of a running service instance."""
    import httpx

    _, cfg = _load(config)
    url = f"http://{host}:{cfg.observability.health_port}/health"

    try:
        resp = httpx.get(url, timeout=5.0)
    except httpx.TransportError:
        typer.echo("Service is not running or health endpoint unreachable", err=True)
        raise typer.Exit(1)

    data = resp.json() if resp.headers.get("content-type") == "application/json" else {}
    typer.echo(f"Status: {data.get('status', 'unknown')} (HTTP {resp.status_code})")
    typer.echo(f"Fetches in flight: {data.get('fetches_in_flight', 0)}")
    typer.echo(f"Delayed jobs: {data.get('delayed_jobs', 0)}")
    typer.echo(f"Publish jobs: {data.get('publish_jobs', {})}")
    if resp.status_code != 200:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
