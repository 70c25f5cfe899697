"""Entry-point for the reading portal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Tuple

import typer
import uvicorn

from portal.bootstrap import initialize_app
from portal.config import AppConfig
from portal.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from portal.services.audio import AudioSourceResolver, PlaybackEvent, PlaybackSession
from portal.services.cache import ContentCache
from portal.services.defaults import DefaultCatalogProvider
from portal.services.events import emit_db_event
from portal.services.reading_state import ReadingStateService
from portal.services.storage import CatalogRepository, SQLiteCatalogGateway
from portal.ui.overview import CatalogOverview
from portal.web import create_app


LOGGER = logging.getLogger("reading_portal.cli")


cli = typer.Typer(add_completion=False, help="Reading portal management commands")


def _prepare_logging(storage_root: Path) -> None:
    log_file = get_log_file_path(storage_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


def build_services(config: AppConfig) -> Tuple[SQLiteCatalogGateway, ContentCache, ReadingStateService]:
    """Construct the shared gateway, cache and reading-state service once."""

    gateway = SQLiteCatalogGateway(CatalogRepository(config, event_emitter=emit_db_event))
    cache = ContentCache(
        gateway,
        freshness_seconds=config.cache_ttl_seconds,
        timeout_seconds=config.gateway_timeout_seconds,
    )
    reading_state = ReadingStateService(gateway, timeout_seconds=config.gateway_timeout_seconds)
    return gateway, cache, reading_state


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="READING_PORTAL_ROOT_PATH",
    ),
) -> None:
    """Run the FastAPI-powered portal API."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    _, cache, reading_state = build_services(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(cache, reading_state, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving reading portal on http://%s:%s%s/", host, port, normalized_root)
    server.run()


@cli.command()
def overview() -> None:
    """Render the catalog, falling back to the default series when it is empty."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    _, cache, _ = build_services(config)
    CatalogOverview(asyncio.run(cache.get_all())).run()


@cli.command("resolve-audio")
def resolve_audio(
    link: str = typer.Argument(..., help="Stored chapter link to classify."),
    fail_native: bool = typer.Option(
        False,
        "--fail-native",
        help="Simulate a media error to show which fallback the player would use.",
    ),
) -> None:
    """Show how the player would handle *link*."""

    source = AudioSourceResolver().resolve(link)
    session = PlaybackSession(source)
    if fail_native and source.has_source:
        session.dispatch(PlaybackEvent.MEDIA_ERROR)

    typer.echo(f"Playable URL: {source.playable_url or '(none)'}")
    typer.echo(f"Embed URL: {source.embed_url or '(none)'}")
    typer.echo(f"Third-party host: {'yes' if source.is_third_party_host else 'no'}")
    typer.echo(f"Playback mode: {session.fallback.value}")


@cli.command()
def seed() -> None:
    """Publish the default series into an empty catalog store."""

    config = initialize_app()
    _prepare_logging(config.storage_root)
    gateway, _, _ = build_services(config)

    async def _seed() -> int:
        if await gateway.list_series():
            return 0
        created = 0
        for series in DefaultCatalogProvider().get_all():
            if await gateway.create_series(series.title, series.description, series.icon, series.image):
                created += 1
        return created

    created = asyncio.run(_seed())
    if created:
        typer.echo(f"Published {created} default series.")
    else:
        typer.echo("Catalog already has content; nothing to seed.")


if __name__ == "__main__":
    cli()
