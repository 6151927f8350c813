#!/usr/bin/env python3
"""Elastic pool autoscaler: runs one evaluation cycle every poll interval.

Usage:
    python autoscaler.py                     # Run with config.yaml
    python autoscaler.py --config my.yaml    # Custom config
    python autoscaler.py --dry-run           # Log intended changes without applying them
    python autoscaler.py --once              # Run a single cycle and exit
"""

import argparse
import asyncio
import dataclasses
import logging
import os
import sys
from typing import Optional

from src.control import ArmResourceControl, ClientSecretCredential, StaticTokenCredential
from src.scaling.config import AutoScalerConfig, RetryPolicy, load_autoscaler_config
from src.scaling.controller import ScalingController
from src.scaling.errors import ErrorRecorder
from src.scaling.exceptions import AutoScalerError, ConfigurationError
from src.scaling.settings import ConnectionSettings
from src.sqlstore import (
    SqlCooldownProvider,
    SqlMetricsProvider,
    SqlMonitorSink,
    SqlTransitionProvider,
    create_engine,
)

logger = logging.getLogger("autoscaler")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("autoscaler.log"),
        ],
    )


def build_credential(settings: ConnectionSettings, retry: Optional[RetryPolicy] = None):
    if settings.tenant_id and settings.client_id and settings.client_secret:
        return ClientSecretCredential(
            settings.tenant_id, settings.client_id, settings.client_secret, retry=retry
        )
    if settings.access_token:
        return StaticTokenCredential(settings.access_token)
    raise ConfigurationError(
        "Set AUTOSCALER_TENANT_ID/CLIENT_ID/CLIENT_SECRET or AUTOSCALER_ACCESS_TOKEN"
    )


def build_controller(config: AutoScalerConfig, settings: ConnectionSettings) -> ScalingController:
    """Wire the collaborators for one server."""
    if not settings.master_database_url or not settings.pool_database_url:
        raise ConfigurationError(
            "AUTOSCALER_MASTER_DATABASE_URL and AUTOSCALER_POOL_DATABASE_URL must be set"
        )

    errors = ErrorRecorder(
        server_name=config.server_name,
        redis_url=settings.error_redis_url,
        stream_name=settings.error_stream,
    )
    master_engine = create_engine(settings.master_database_url)
    monitor_engine = (
        create_engine(settings.monitor_database_url) if settings.monitor_database_url else None
    )
    resource_control = ArmResourceControl(
        credential=build_credential(settings, config.retry),
        subscription_id=settings.subscription_id,
        resource_group=settings.resource_group,
        server_name=config.server_name,
        endpoint=settings.arm_endpoint,
        api_version=settings.arm_api_version,
        timeout=settings.request_timeout_seconds,
    )

    return ScalingController(
        config=config,
        metrics=SqlMetricsProvider(
            master_engine,
            settings.pool_database_url,
            short_window_seconds=config.short_window_seconds,
            long_window_seconds=config.long_window_seconds,
            retry=config.retry,
            errors=errors,
        ),
        transitions=SqlTransitionProvider(master_engine),
        cooldowns=SqlCooldownProvider(master_engine),
        resource_control=resource_control,
        monitor=SqlMonitorSink(monitor_engine),
        errors=errors,
    )


async def run(controller: ScalingController, once: bool = False) -> None:
    """Run cycles back to back, one poll interval apart.

    Cycles never overlap: the next one starts only after the previous one
    has finished.
    """
    interval = controller.config.poll_interval_seconds
    await controller.errors.connect()
    try:
        while True:
            try:
                evaluated = await controller.run_cycle()
                for evaluation in controller.last_evaluations:
                    logger.info(
                        f"{evaluation.pool_id}: {evaluation.status} "
                        f"({evaluation.current_capacity:g} -> {evaluation.target_capacity:g})"
                    )
                logger.debug(f"Cycle finished, pools evaluated: {evaluated}")
            except AutoScalerError as e:
                logger.error(f"Cycle aborted: {e}")
            except Exception:
                logger.exception("Unexpected error in autoscaler cycle")

            if once:
                return
            await asyncio.sleep(interval)
    finally:
        await controller.close()


def main():
    parser = argparse.ArgumentParser(description="Capacity autoscaler for elastic pools")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    parser.add_argument("--dry-run", action="store_true", help="Log intended changes without applying them")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    configure_logging(args.verbose)

    config_path = args.config
    if not os.path.exists(config_path):
        # Try relative to script directory
        config_path = os.path.join(os.path.dirname(__file__), args.config)

    try:
        config = load_autoscaler_config(config_path)
        if args.dry_run:
            config = dataclasses.replace(config, dry_run=True)
        controller = build_controller(config, ConnectionSettings())
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    if not config.pools:
        logger.warning("No pools configured; every cycle will be a no-op")
    logger.info(f"Autoscaler starting for server {config.server_name} (dry run: {config.dry_run})")

    try:
        asyncio.run(run(controller, once=args.once))
    except KeyboardInterrupt:
        logger.info("Autoscaler stopped")


if __name__ == "__main__":
    main()
