#!/usr/bin/env python
"""
CLI management commands for the telehealth billing cycle.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import click

from telehealth.platform.billing.config import BillingCycleConfig, get_billing_cycle_config
from telehealth.platform.billing.cycle.factory import build_billing_cycle_service
from telehealth.platform.billing.cycle.scheduler import BillingCycleScheduler
from telehealth.platform.billing.cycle.service import BillingCycleService
from telehealth.platform.billing.exceptions import BillingError
from telehealth.platform.billing.mappers import ensure_utc
from telehealth.platform.db import create_all_tables_async, dispose_engine
from telehealth.platform.logging import setup_logging


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    service_factory: Callable[[], BillingCycleService]
    config_factory: Callable[[], BillingCycleConfig]
    create_tables: Callable[[], Awaitable[None]]
    dispose_engine: Callable[[], Awaitable[None]]
    setup_logging: Callable[[], None]


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    return CLIDependencies(
        service_factory=build_billing_cycle_service,
        config_factory=get_billing_cycle_config,
        create_tables=create_all_tables_async,
        dispose_engine=dispose_engine,
        setup_logging=setup_logging,
    )


def _billing_failure(exc: BillingError) -> click.ClickException:
    """Usage error carrying the billing error as JSON (code, context, recovery hint)."""
    return click.ClickException(json.dumps(exc.to_dict(), default=str))


def _build_service(deps: CLIDependencies) -> BillingCycleService:
    try:
        return deps.service_factory()
    except BillingError as exc:
        raise _billing_failure(exc) from exc


@click.group()
def cli() -> None:
    """Telehealth billing cycle CLI."""
    pass


@cli.command()
def init_database() -> None:
    """Create the billing tables."""
    deps = _get_cli_dependencies()
    deps.setup_logging()
    click.echo("Initializing database...")

    async def _init() -> None:
        try:
            await deps.create_tables()
        finally:
            await deps.dispose_engine()

    asyncio.run(_init())
    click.echo("Database initialized successfully!")


@cli.command()
def run_cycle() -> None:
    """Run one billing cycle now (manual trigger)."""
    deps = _get_cli_dependencies()
    deps.setup_logging()
    service = _build_service(deps)

    async def _run() -> Any:
        try:
            return await service.trigger_manual_billing_cycle()
        finally:
            await deps.dispose_engine()

    result = asyncio.run(_run())
    click.echo(result.message)
    if result.cycle is not None:
        click.echo(json.dumps(result.cycle.summary(), indent=2))
    if not result.success:
        raise SystemExit(1)


@cli.command()
@click.option("--start", type=click.DateTime(), default=None, help="Report start (UTC)")
@click.option("--end", type=click.DateTime(), default=None, help="Report end (UTC)")
def report(start: datetime | None, end: datetime | None) -> None:
    """Print a billing cycle report as JSON."""
    deps = _get_cli_dependencies()
    deps.setup_logging()
    service = _build_service(deps)

    async def _report() -> dict[str, Any]:
        try:
            result = await service.get_billing_cycle_report(ensure_utc(start), ensure_utc(end))
        finally:
            await deps.dispose_engine()
        return result.model_dump(mode="json")

    try:
        payload = asyncio.run(_report())
    except BillingError as exc:
        raise _billing_failure(exc) from exc
    click.echo(json.dumps(payload, indent=2))


@cli.command()
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between cycles (defaults to BILLING__CYCLE_INTERVAL_SECONDS)",
)
def scheduler(interval: float | None) -> None:
    """Run the billing cycle on a fixed interval until interrupted."""
    deps = _get_cli_dependencies()
    deps.setup_logging()
    config = deps.config_factory()
    service = _build_service(deps)

    loop_scheduler = BillingCycleScheduler.from_config(service, config)
    if interval is not None:
        loop_scheduler.interval_seconds = interval

    async def _run() -> None:
        try:
            await loop_scheduler.run_forever()
        finally:
            await loop_scheduler.stop()
            await deps.dispose_engine()

    click.echo(f"Billing scheduler running every {loop_scheduler.interval_seconds:g}s")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        click.echo("Billing scheduler stopped.")


if __name__ == "__main__":
    cli()
