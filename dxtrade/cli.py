"""
CLI entrypoint for the DXtrade client.

Provides quick account inspection commands: positions, metrics, orders,
close-all and watch-positions. Credentials come from DXTRADE_* environment
variables (.env is loaded outside production) or a YAML file via --config.
"""
import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer

from dxtrade.client import DxtradeClient
from dxtrade.config.config import load_config
from dxtrade.config.dotenv_loader import load_dotenv_files
from dxtrade.exceptions import DxtradeError
from dxtrade.monitoring.logger import get_logger, setup_logging

app = typer.Typer(
    name="dxtrade",
    help="DXtrade gateway client",
    add_completion=False,
)

logger = get_logger(__name__)

_state = {"config_path": None, "log_level": "WARNING", "log_format": "console", "log_file": None}


def _run(action: Callable[[DxtradeClient], Awaitable[Any]]) -> Any:
    """Connect, run one action, disconnect. Client errors exit with status 1, Ctrl-C with 130."""
    load_dotenv_files()
    setup_logging(_state["log_level"], _state["log_format"], _state["log_file"])
    config = load_config(_state["config_path"])

    async def run():
        async with DxtradeClient(config) as client:
            return await action(client)

    try:
        return asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        raise typer.Exit(130)
    except DxtradeError as e:
        logger.error("Command failed", code=e.code, error=e.message)
        typer.echo(f"Error [{e.code}]: {e.message}", err=True)
        raise typer.Exit(1)


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


@app.command()
def positions():
    """Show open positions with P&L and margin."""
    rows = _run(lambda client: client.positions.get())
    if not rows:
        typer.echo("No open positions.")
        return
    _echo_json(rows)


@app.command()
def metrics():
    """Show account metrics (equity, balance, margin, open P&L)."""
    _echo_json(_run(lambda client: client.account.metrics()))


@app.command()
def orders():
    """Show working and recent orders."""
    rows = _run(lambda client: client.orders.get())
    if not rows:
        typer.echo("No orders.")
        return
    _echo_json(rows)


@app.command(name="close-all")
def close_all(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Market-close every open position."""
    if not yes:
        typer.confirm("Close ALL open positions at market?", abort=True)
    closed = _run(lambda client: client.positions.close_all())
    typer.echo(f"Sent close orders for {len(closed or [])} position(s).")


@app.command(name="watch-positions")
def watch_positions(
    seconds: float = typer.Option(60.0, "--seconds", help="How long to watch"),
):
    """Print merged positions every time they update."""

    def on_update(rows):
        typer.echo(f"--- {len(rows)} position(s) ---")
        for row in rows:
            typer.echo(
                f"{row.get('positionKey', {}).get('positionCode')}: "
                f"qty={row.get('quantity')} plOpen={row.get('plOpen')} margin={row.get('margin')}"
            )

    async def watch(client: DxtradeClient):
        unsubscribe = client.positions.stream(on_update)
        try:
            await asyncio.sleep(seconds)
        finally:
            unsubscribe()

    _run(watch)


@app.callback()
def main(
    config_path: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level"),
    log_format: str = typer.Option("console", "--log-format", help="console or json"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also log to this file"),
):
    """
    DXtrade gateway client.
    """
    _state["config_path"] = config_path
    _state["log_level"] = log_level.upper()
    _state["log_format"] = log_format
    _state["log_file"] = str(log_file) if log_file else None


if __name__ == "__main__":
    app()
