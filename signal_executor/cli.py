"""
CLI entrypoint for the signal executor.

Provides commands to serve the webhook, check account readiness, and
replay recorded alerts.
"""
import asyncio
import json
import os
from pathlib import Path
from typing import Optional

import typer

from signal_executor.config.config import Config, load_config
from signal_executor.config.dotenv_loader import load_dotenv_files
from signal_executor.monitoring.logger import get_logger, setup_logging

app = typer.Typer(
    name="signal-executor",
    help="Webhook perp-futures signal executor",
    add_completion=False,
)

logger = get_logger(__name__)


def _load(config_path: Optional[Path]) -> Config:
    load_dotenv_files()
    config = load_config(config_path)
    setup_logging(config.monitoring.log_level, config.monitoring.log_format, config.monitoring.log_file)
    return config


@app.command()
def serve(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default from config)"),
):
    """
    Serve the alert webhook.

    Example:
        signal-executor serve --port 3000
    """
    import uvicorn

    from signal_executor.api.server import create_app
    from signal_executor.services.alert_service import build_service

    config = _load(config_path)
    service = build_service(config)
    bind_host = host or config.webhook.host
    bind_port = port or config.webhook.port

    logger.info(
        "Starting webhook server",
        host=bind_host,
        port=bind_port,
        environment=config.environment,
        dry_run=config.system.dry_run,
    )
    uvicorn.run(create_app(service), host=bind_host, port=bind_port, log_config=None)


@app.command()
def accounts(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
):
    """Print account readiness for every registered exchange."""
    from signal_executor.services.alert_service import build_service

    config = _load(config_path)

    async def run() -> dict:
        service = build_service(config)
        try:
            return await service.accounts()
        finally:
            await service.close()

    status = asyncio.run(run())
    for key, ready in status.items():
        typer.echo(f"{key:<16} {'ready' if ready else 'NOT READY'}")
    if not all(status.values()):
        raise typer.Exit(code=1)


@app.command()
def replay(
    alerts_file: Path = typer.Argument(..., exists=True, readable=True, help="JSON file: one alert or a list"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
    live: bool = typer.Option(False, "--live", help="Send orders to the configured venue instead of the paper gateway"),
):
    """
    Feed recorded alerts through the service once, in file order.

    Dedup state is kept in memory so replays never touch the live alert store.

    Example:
        signal-executor replay alerts.json
    """
    from signal_executor.runtime.clock import SimClock
    from signal_executor.services.alert_service import build_service
    from signal_executor.storage.alert_store import AlertDeduplicator, MemoryAlertStore

    if live:
        if not typer.confirm("Replay against the LIVE venue?"):
            raise typer.Abort()
    else:
        os.environ["DRY_RUN"] = "1"
    config = _load(config_path)

    raw = json.loads(alerts_file.read_text())
    payloads = raw if isinstance(raw, list) else [raw]

    async def run() -> list:
        service = build_service(
            config,
            clock=None if live else SimClock(),
            deduplicator=AlertDeduplicator(MemoryAlertStore()),
        )
        outcomes = []
        try:
            for payload in payloads:
                outcomes.append(await service.handle_alert(payload))
        finally:
            await service.close()
        return outcomes

    outcomes = asyncio.run(run())
    for index, outcome in enumerate(outcomes):
        typer.echo(f"#{index:<4} {outcome.value}")
    logger.info("Replay completed", alerts=len(outcomes), live=live)


if __name__ == "__main__":
    app()
