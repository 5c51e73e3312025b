"""Command-line interface for gitterchat."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from gitterchat.chat import (
    ConnectionClosed,
    ConfigError,
    Gitter,
    GitterError,
    MessageReceived,
    Pagination,
)
from gitterchat.config import load_config
from gitterchat.models import Config

logger = logging.getLogger(__name__)


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _make_client(cfg: Config) -> Gitter:
    if not cfg.token:
        raise click.UsageError(
            "No access token. Pass --token, set GITTER_TOKEN or add 'token' to the config file."
        )
    return Gitter(
        cfg.token,
        api_base_url=cfg.api_base_url,
        stream_base_url=cfg.stream_base_url,
        timeout=cfg.request_timeout_sec,
    )


def _echo_model(model) -> None:
    click.echo(model.model_dump_json(by_alias=True, exclude_none=True))


def _run(cfg: Config, action) -> None:
    """Run ``action(gitter)`` on a fresh client, turning API errors into exit code 1."""

    async def runner():
        async with _make_client(cfg) as gitter:
            return await action(gitter)

    try:
        asyncio.run(runner())
    except GitterError as e:
        logger.error(f"Request failed: {e}")
        sys.exit(1)


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default="config.yaml",
    help="Path to config YAML file",
)
@click.option("--token", envvar="GITTER_TOKEN", help="Gitter access token")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Path, token: Optional[str], debug: bool):
    """gitterchat - Gitter rooms and messages from the command line."""
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    if token:
        cfg.token = token
    if debug:
        cfg.debug = True

    _setup_logging(cfg.debug)
    ctx.obj = cfg


@cli.command()
@click.pass_obj
def user(cfg: Config):
    """Show the current user."""

    async def action(gitter: Gitter):
        _echo_model(await gitter.get_user())

    _run(cfg, action)


@cli.command()
@click.option("--user-id", help="List rooms of this user instead of the current user")
@click.pass_obj
def rooms(cfg: Config, user_id: Optional[str]):
    """List rooms."""

    async def action(gitter: Gitter):
        if user_id:
            result = await gitter.get_user_rooms(user_id)
        else:
            result = await gitter.get_rooms()
        for room_ in result:
            _echo_model(room_)

    _run(cfg, action)


@cli.command()
@click.argument("room_id")
@click.pass_obj
def room(cfg: Config, room_id: str):
    """Show a single room."""

    async def action(gitter: Gitter):
        _echo_model(await gitter.get_room(room_id))

    _run(cfg, action)


@cli.command()
@click.argument("room_id")
@click.option("--skip", type=int, default=0, help="Skip n messages")
@click.option("--before-id", help="Only messages before this message ID")
@click.option("--after-id", help="Only messages after this message ID")
@click.option("--limit", type=int, default=0, help="Maximum number of messages")
@click.pass_obj
def messages(
    cfg: Config,
    room_id: str,
    skip: int,
    before_id: Optional[str],
    after_id: Optional[str],
    limit: int,
):
    """List messages in a room."""
    pagination = Pagination(skip=skip, before_id=before_id, after_id=after_id, limit=limit)

    async def action(gitter: Gitter):
        for message in await gitter.get_messages(room_id, pagination):
            _echo_model(message)

    _run(cfg, action)


@cli.command()
@click.argument("room_id")
@click.argument("text")
@click.pass_obj
def send(cfg: Config, room_id: str, text: str):
    """Send a message to a room."""

    async def action(gitter: Gitter):
        message = await gitter.send_message(room_id, text)
        if message is not None:
            _echo_model(message)

    _run(cfg, action)


@cli.command()
@click.argument("room_id")
@click.option("--wait", type=float, help="Reconnect backoff unit in seconds")
@click.option("--max-retries", type=int, help="Failed reconnects before giving up")
@click.pass_obj
def listen(cfg: Config, room_id: str, wait: Optional[float], max_retries: Optional[int]):
    """Stream messages from a room until the connection is closed."""

    async def action(gitter: Gitter):
        stream = gitter.stream(
            room_id,
            wait=wait if wait is not None else cfg.stream_wait_sec,
            max_retries=max_retries if max_retries is not None else cfg.stream_max_retries,
        )
        listener = asyncio.create_task(gitter.listen(stream))

        try:
            async for event in stream:
                if isinstance(event, MessageReceived):
                    _echo_model(event.message)
                elif isinstance(event, ConnectionClosed):
                    logger.info(f"Stream closed ({event.reason.value})")
                    click.echo(json.dumps({"event": "closed", "reason": event.reason.value}))
        finally:
            stream.close()
            if not listener.done():
                listener.cancel()
            await asyncio.gather(listener, return_exceptions=True)

    try:
        _run(cfg, action)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, stream closed")


if __name__ == "__main__":
    cli()
