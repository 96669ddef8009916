#!/usr/bin/env python3
"""
Tile Sync CLI

Command-line interface for the map distribution service.

Usage:
    tilesync serve                     # Start the REST API
    tilesync upload FILE               # Store a new map version
    tilesync download MAP_ID           # Fetch a map artifact
    tilesync metadata MAP_ID           # Show a map record
    tilesync latest                    # Show the latest map version
    tilesync list                      # List stored maps
    tilesync diff MAP_ID MANIFEST      # Tiles changed since a client manifest
    tilesync verify MAP_ID             # Re-check an artifact's digest
    tilesync config [--example]        # Show settings
"""

import asyncio
import json
from pathlib import Path
from typing import AsyncIterator

import aiofiles
import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, DownloadColumn
from rich.panel import Panel
from rich.logging import RichHandler

from .config import EXAMPLE_CONFIG, load_config
from .errors import TileSyncError
from .logs import setup_logging as setup_structured_logging
from .service import MapService
from .transfer.downloader import copy_stream
from .transfer.metrics import format_bytes

console = Console()

FILE_READ_SIZE = 1024 * 1024


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    setup_structured_logging(
        'DEBUG' if verbose else level,
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )


def run_command(coro):
    """Run a coroutine, printing core errors instead of a traceback."""
    try:
        return asyncio.run(coro)
    except TileSyncError as e:
        console.print(f"[red]✗ {e.kind}: {e}[/red]")
        raise SystemExit(1)


async def read_file_chunks(path: Path) -> AsyncIterator[bytes]:
    """Stream a local file in 1 MiB pieces."""
    async with aiofiles.open(path, 'rb') as f:
        while True:
            data = await f.read(FILE_READ_SIZE)
            if not data:
                break
            yield data


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(), help='JSON config file')
@click.option('--storage-dir', help='Artifact storage directory')
@click.pass_context
def cli(ctx, verbose, config_path, storage_dir):
    """Tile Sync - distribute map artifacts and sync changed tiles."""
    config = load_config(Path(config_path) if config_path else None)
    if storage_dir:
        config.storage_dir = Path(storage_dir)
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', default=None, help='Bind address')
@click.option('--port', default=None, type=int, help='REST API port')
@click.pass_context
def serve(ctx, host, port):
    """Start the REST API."""
    config = ctx.obj['config']
    host = host or config.host
    port = port or config.port

    async def run():
        from .api import run_api_server

        service = MapService(config)
        console.print(Panel.fit(
            f"[bold green]Tile Sync API[/bold green]\n\n"
            f"Storage: [blue]{config.storage_dir}[/blue]\n"
            f"Listening: [yellow]http://{host}:{port}[/yellow]\n"
            f"Docs: [dim]http://{host}:{port}/docs[/dim]",
            title="Server Info"
        ))
        await run_api_server(service, host=host, port=port)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--name', '-n', default=None, help='Map name')
@click.option('--description', '-d', default=None, help='Map description')
@click.option('--version', 'map_version', default=None, help='Version, e.g. 1.2.0')
@click.pass_context
def upload(ctx, file_path, name, description, map_version):
    """Store a new map version."""
    config = ctx.obj['config']
    file_path = Path(file_path)

    async def run():
        service = MapService(config)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task(f"Uploading {file_path.name}...", total=None)
            record = await service.upload(
                read_file_chunks(file_path),
                file_path.name,
                name=name,
                description=description,
                version=map_version,
                declared_length=file_path.stat().st_size,
            )
            progress.update(task, description="Done!")

        tiles = len(record.tile_checksums) if record.tile_checksums is not None else 'none'
        console.print(Panel.fit(
            f"[bold green]Map Uploaded Successfully[/bold green]\n\n"
            f"Name: [cyan]{record.name}[/cyan]\n"
            f"Version: [yellow]{record.version}[/yellow]\n"
            f"Size: [yellow]{format_bytes(record.size)}[/yellow]\n"
            f"Tile manifest: [yellow]{tiles}[/yellow]\n\n"
            f"[bold]Map ID:[/bold]\n"
            f"[green]{record.map_id}[/green]",
            title="Uploaded Map"
        ))

    run_command(run())


@cli.command()
@click.argument('map_id')
@click.option('--output', '-o', type=click.Path(), help='Output path')
@click.pass_context
def download(ctx, map_id, output):
    """Fetch a map artifact."""
    config = ctx.obj['config']

    async def run():
        service = MapService(config)
        record, stream = await service.open_download(map_id)
        output_path = Path(output) if output else Path(f"map-{map_id}.{service.extension}")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            console=console,
        ) as progress:
            task = progress.add_task(f"Downloading {record.name}...", total=stream.total_size)

            async with aiofiles.open(output_path, 'wb') as f:
                async def write(data: bytes):
                    await f.write(data)
                    progress.update(task, advance=len(data))

                summary = await copy_stream(stream, write)

        console.print(
            f"\n[green]✓ Downloaded to: {output_path}[/green] "
            f"[dim]({summary.average_speed}, {summary.total_packets} packets)[/dim]"
        )

    run_command(run())


@cli.command()
@click.argument('map_id')
@click.pass_context
def metadata(ctx, map_id):
    """Show a map record."""
    config = ctx.obj['config']

    async def run():
        record = await MapService(config).get_metadata(map_id)
        console.print_json(record.to_json())

    run_command(run())


@cli.command()
@click.pass_context
def latest(ctx):
    """Show the latest map version."""
    config = ctx.obj['config']

    async def run():
        result = await MapService(config).get_latest_version()
        console.print(Panel.fit(
            f"Map ID: [green]{result.map_id}[/green]\n"
            f"Version: [yellow]{result.version}[/yellow]\n"
            f"Name: [cyan]{result.metadata.name}[/cyan]\n"
            f"Created: {result.metadata.created_at}",
            title="Latest Version"
        ))

    run_command(run())


@cli.command('list')
@click.pass_context
def list_maps(ctx):
    """List stored maps."""
    config = ctx.obj['config']

    async def run():
        records = await MapService(config).list_maps()

        if not records:
            console.print("[yellow]No maps stored[/yellow]")
            return

        table = Table(title="Stored Maps")
        table.add_column("Name", style="cyan")
        table.add_column("Version", style="yellow")
        table.add_column("Size", justify="right")
        table.add_column("Created")
        table.add_column("Map ID", style="green")

        for r in records:
            table.add_row(r.name, r.version, format_bytes(r.size), r.created_at, r.map_id)

        console.print(table)

    run_command(run())


@cli.command()
@click.argument('map_id')
@click.argument('manifest', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def diff(ctx, map_id, manifest):
    """
    Tiles changed since a client manifest.

    MANIFEST is a JSON file holding either a map record (with
    tileChecksums) or a bare {"z/x/y": checksum} mapping.
    """
    config = ctx.obj['config']
    with open(manifest) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"not valid JSON: {e}", param_hint='MANIFEST')

    if not isinstance(data, dict):
        raise click.BadParameter("must be a JSON object", param_hint='MANIFEST')
    client_checksums = data['tileChecksums'] if 'tileChecksums' in data else data
    if client_checksums is not None and not isinstance(client_checksums, dict):
        raise click.BadParameter("tileChecksums must be a JSON object", param_hint='MANIFEST')

    async def run():
        updates = await MapService(config).diff_tiles(map_id, client_checksums)
        if not updates:
            console.print("[green]Client is up to date[/green]")
            return

        table = Table(title=f"{len(updates)} tiles to fetch")
        table.add_column("z", justify="right")
        table.add_column("x", justify="right")
        table.add_column("y", justify="right")
        table.add_column("Checksum", style="green")
        for u in updates[:50]:
            table.add_row(str(u.z), str(u.x), str(u.y), u.checksum[:16] + "...")
        console.print(table)
        if len(updates) > 50:
            console.print(f"[dim]... and {len(updates) - 50} more[/dim]")

    run_command(run())


@cli.command()
@click.argument('map_id')
@click.pass_context
def verify(ctx, map_id):
    """Re-check an artifact against its recorded digest."""
    config = ctx.obj['config']

    async def run():
        return await MapService(config).verify_artifact(map_id)

    if run_command(run()):
        console.print(f"[green]✓ {map_id} matches its checksum[/green]")
    else:
        console.print(f"[red]✗ {map_id} does not match its checksum[/red]")
        raise SystemExit(1)


@cli.command('config')
@click.option('--example', is_flag=True, help='Print a config file template')
@click.pass_context
def show_config(ctx, example):
    """Show the effective settings, or a config file template."""
    if example:
        click.echo(EXAMPLE_CONFIG.strip())
        return
    click.echo(json.dumps(ctx.obj['config'].to_dict(), indent=2))


if __name__ == '__main__':
    cli()
