#!/usr/bin/env python3
"""
foldersync CLI

Command-line interface for the folder server and its client.

Usage:
    foldersync serve                 # Run the server (configured from env)
    foldersync upload                # Replace the server's folder with ours
    foldersync download              # Replace our folder with the server's
    foldersync settings              # Show or change client settings
    foldersync menu                  # Interactive menu
    foldersync token new             # Append a fresh token to the token file
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt

from .archive import ArchiveError
from .config import (
    DEFAULT_CLIENT_CONFIG, ClientConfig, ServerConfig,
    expand_path, mask_token, normalize_url,
)
from .tokens import append_token, generate_token
from .tokens.generator import DEFAULT_TOKEN_LENGTH
from .transfer import TransferClient, TransferError

console = Console()

TRANSFER_ERRORS = (TransferError, ArchiveError, OSError, httpx.HTTPError)


def setup_logging(verbose: bool = False):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


# === Client helpers ===

def ensure_client_config(path: Path) -> ClientConfig:
    """Load client settings, prompting for anything missing, and save them."""
    config = ClientConfig.load(path)

    if not config.token:
        config.token = click.prompt("Token").strip()
    if not config.folder_path:
        config.folder_path = expand_path(click.prompt("Folder path"))

    config.save(path)
    return config


def show_settings(config: ClientConfig):
    console.print(Panel.fit(
        f"Server: [cyan]{config.server_url}[/cyan]\n"
        f"Folder: [blue]{config.folder_path or '-'}[/blue]\n"
        f"Token:  [yellow]{mask_token(config.token) or '-'}[/yellow]",
        title="Settings"
    ))


def run_transfer(action: str, config: ClientConfig) -> bool:
    """
    Run an upload or download and report the outcome.

    Returns:
        True on success
    """
    folder = Path(config.folder_path)

    try:
        with TransferClient(config.server_url, config.token) as client:
            if action == 'upload':
                with console.status("Uploading..."):
                    client.upload_folder(folder)
                console.print(f"[green]✓ Folder uploaded: {folder}[/green]")
            else:
                with console.status("Downloading..."):
                    count = client.download_folder(folder)
                console.print(f"[green]✓ Folder downloaded: {folder} ({count} entries)[/green]")
    except TRANSFER_ERRORS as e:
        console.print(f"[red]✗ {action.capitalize()} failed: {escape(str(e))}[/red]", highlight=False)
        return False

    return True


def edit_settings(config: ClientConfig, path: Path):
    """Interactively change settings; an empty answer keeps the current value."""
    folder = Prompt.ask("Folder path", default=config.folder_path, console=console)
    if folder.strip():
        config.folder_path = expand_path(folder)

    token = Prompt.ask(
        f"Token ({escape(mask_token(config.token))}, empty keeps it)",
        default="", show_default=False, console=console,
    )
    if token.strip():
        config.token = token.strip()

    while True:
        server = Prompt.ask("Server address", default=config.server_url, console=console)
        normalized = normalize_url(server)
        if normalized:
            config.server_url = normalized
            break
        console.print("[red]Invalid address[/red]")

    config.save(path)
    console.print("[green]Settings saved[/green]")


# === Commands ===

@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', default=str(DEFAULT_CLIENT_CONFIG),
              envvar='FOLDERSYNC_CONFIG', type=click.Path(dir_okay=False, path_type=Path),
              help='Client settings file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """foldersync - replace a folder on a server, or from it, in one go."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path


@cli.command()
@click.option('--host', default=None, help='Listen address (default: $HOST or 0.0.0.0)')
@click.option('--port', default=None, type=int, help='Listen port (default: $PORT or 1244)')
def serve(host: Optional[str], port: Optional[int]):
    """Run the folder server."""
    config = ServerConfig.from_env()
    if host:
        config.host = host
    if port:
        config.port = port

    logging.getLogger().setLevel(config.log_level)

    limit = format_size(config.max_upload_bytes) if config.max_upload_bytes else "unlimited"
    console.print(Panel.fit(
        f"[bold green]Folder Server[/bold green]\n\n"
        f"Address: [cyan]{config.host}:{config.port}[/cyan]\n"
        f"Storage: [blue]{config.storage_path}[/blue]\n"
        f"Tokens:  [blue]{config.tokens_path}[/blue]\n"
        f"Upload limit: [yellow]{limit}[/yellow]",
        title="foldersync"
    ))

    from .api import run_api_server

    try:
        asyncio.run(run_api_server(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command()
@click.pass_context
def upload(ctx):
    """Replace the server's folder with the local one."""
    config = ensure_client_config(ctx.obj['config_path'])
    if not run_transfer('upload', config):
        ctx.exit(1)


@cli.command()
@click.pass_context
def download(ctx):
    """Replace the local folder with the server's copy."""
    config = ensure_client_config(ctx.obj['config_path'])
    if not run_transfer('download', config):
        ctx.exit(1)


@cli.command()
@click.option('--folder', help='Local folder to synchronize')
@click.option('--token', help='Access token')
@click.option('--server', help='Server address, e.g. http://host:1244')
@click.pass_context
def settings(ctx, folder, token, server):
    """Show or change client settings."""
    path = ctx.obj['config_path']
    config = ClientConfig.load(path)

    changed = False
    if folder:
        config.folder_path = expand_path(folder)
        changed = True
    if token:
        config.token = token.strip()
        changed = True
    if server:
        normalized = normalize_url(server)
        if not normalized:
            raise click.BadParameter(f"invalid address: {server}", param_hint="'--server'")
        config.server_url = normalized
        changed = True

    if changed:
        config.save(path)
        console.print("[green]Settings saved[/green]")

    show_settings(config)


@cli.command()
@click.pass_context
def menu(ctx):
    """Interactive menu: download, upload, settings."""
    path = ctx.obj['config_path']
    config = ensure_client_config(path)

    while True:
        console.print()
        console.print(Panel.fit(
            f"Server: [cyan]{config.server_url}[/cyan]\n"
            f"Folder: [blue]{config.folder_path}[/blue]",
            title="foldersync"
        ))
        choice = Prompt.ask(
            "Action",
            choices=["download", "upload", "settings", "quit"],
            default="download",
            console=console,
        )

        if choice == "quit":
            break
        if choice == "settings":
            edit_settings(config, path)
        else:
            run_transfer(choice, config)


@cli.group()
def token():
    """Manage server access tokens."""


@token.command('new')
@click.option('--file', 'token_file', default='tokens.txt', envvar='TOKENS_PATH',
              type=click.Path(dir_okay=False, path_type=Path), show_default=True,
              help='Token file to append to')
@click.option('--length', default=DEFAULT_TOKEN_LENGTH, show_default=True,
              type=click.IntRange(min=16), help='Token length')
def new_token(token_file: Path, length: int):
    """Generate a token and append it to the token file."""
    value = generate_token(length)
    append_token(token_file, value)
    console.print(f"New token: {value}", highlight=False, soft_wrap=True)


if __name__ == '__main__':
    cli()
