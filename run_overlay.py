#!/usr/bin/env python3
"""
run_overlay.py - CLI entrypoint for one-off requests against the overlay.

Builds a provider from config/default.yaml (+ user.yaml and environment),
optionally funds accounts and advances time on the pending chain, then
sends a single JSON-RPC request and prints the result as JSON.

Usage:
    python run_overlay.py --method eth_blockNumber
    python run_overlay.py --advance-time 7200 --method eth_getBlockByNumber --params '["latest", false]'
    python run_overlay.py --fund 0x1000000000000000000000000000000000000012:1000000000000000000 \\
        --method eth_getBalance --params '["0x1000000000000000000000000000000000000012", "latest"]'
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import click

from config import load_simulator_config
from core.exceptions import OverlayError
from core.logging import get_logger, set_global_context, setup_logging
from harness.artifacts import mint_eth
from harness.provider import MockEthereumProvider

logger = get_logger("overlay.cli")


def parse_fund_option(values: tuple[str, ...]) -> dict[str, int]:
    """Parse repeated address:amount options into {address: wei}."""
    amounts = {}
    for value in values:
        address, sep, amount = value.partition(":")
        if not sep:
            raise click.BadParameter(f"Expected address:amount, got {value!r}", param_hint="--fund")
        amounts[address] = int(amount, 0)
    return amounts


async def run_request(
    provider: MockEthereumProvider,
    method: str,
    params: list,
    advance_time: Optional[int],
    fund: dict[str, int],
) -> Any:
    try:
        if fund:
            await mint_eth(provider, fund)
        if advance_time:
            await provider.advance_time(advance_time)
        return await provider.request({"method": method, "params": params})
    finally:
        await provider.close()


@click.command()
@click.option("--method", "-m", required=True, help="JSON-RPC method to send")
@click.option("--params", "-p", default="[]", help="JSON array of params")
@click.option("--advance-time", "-t", default=None, type=int, help="Seconds to advance before the request")
@click.option("--fund", "-f", multiple=True, help="address:wei balance override (repeatable)")
@click.option("--config-dir", type=click.Path(exists=True, file_okay=False), default=None)
@click.option(
    "--log-level",
    "-l",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Log level (default from config)",
)
@click.option("--json-logs/--no-json-logs", default=None, help="Use JSON log format (default from config)")
def main(
    method: str,
    params: str,
    advance_time: Optional[int],
    fund: tuple[str, ...],
    config_dir: Optional[str],
    log_level: Optional[str],
    json_logs: Optional[bool],
) -> None:
    """
    Simulation overlay request runner.

    Answers one request from the pending chain built on top of the
    configured node; nothing is ever broadcast.
    """
    config = load_simulator_config(Path(config_dir) if config_dir else None)
    setup_logging(
        level=log_level or config.logging.level,
        json_output=config.logging.json_output if json_logs is None else json_logs,
        log_file=config.logging.log_file,
    )
    set_global_context(service="overlay-cli", rpc_url=config.rpc.url)

    try:
        parsed_params = json.loads(params)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}", param_hint="--params")
    if not isinstance(parsed_params, list):
        raise click.BadParameter("Params must be a JSON array", param_hint="--params")

    provider = MockEthereumProvider.from_config(config)
    try:
        result = asyncio.run(
            run_request(provider, method, parsed_params, advance_time, parse_fund_option(fund))
        )
    except OverlayError as e:
        logger.error(
            f"Request failed: {e}",
            extra={"context": {"method": method, "error": e.to_rpc_error()}},
        )
        click.echo(json.dumps({"error": e.to_rpc_error()}, indent=2))
        sys.exit(1)

    click.echo(json.dumps({"result": result}, indent=2))


if __name__ == "__main__":
    main()
