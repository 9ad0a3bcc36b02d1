from __future__ import annotations

import argparse
import asyncio
import json

import structlog

from endpoint_checks.client import ClientSetupError
from endpoint_checks.config import ConfigError, RunConfig, config_json_schema, load_config, resolve_config_path
from endpoint_checks.dispatcher import run_healthchecks
from endpoint_checks.logging_setup import configure_logging
from endpoint_checks.watch import watch


logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_DOWN = 1
EXIT_SETUP_ERROR = 2


async def run(config: RunConfig, *, once: bool = False) -> int:
    """Watch forever when a watch interval is configured, otherwise one run."""
    if config.watch_interval_sec and not once:
        await watch(config)
        return EXIT_OK

    summary = await run_healthchecks(config)
    if config.summary_json:
        print(summary.to_json_line(), flush=True)
    return EXIT_DOWN if summary.down > 0 else EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="endpoint-healthcheck",
        description="Concurrent HTTP healthchecker with file-based config",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to config file (json|yaml). Falls back to $CONFIG_PATH or ./config/config.json",
    )
    parser.add_argument("--print-schema", action="store_true", help="Print JSON schema for the config and exit")
    parser.add_argument("--once", action="store_true", help="Run one check cycle even if watch mode is configured")
    parser.add_argument("--log-level", default=None, help="Logging level (overrides the config file)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.print_schema:
        print(json.dumps(config_json_schema(), indent=2))
        return EXIT_OK

    config_path = resolve_config_path(args.config)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        configure_logging(args.log_level)
        logger.error("configuration error", error=str(e))
        return EXIT_SETUP_ERROR

    configure_logging(args.log_level or config.log_level, json_logging=config.json_logging)
    logger.info("loaded configuration", config_path=str(config_path))

    try:
        return asyncio.run(run(config, once=bool(args.once)))
    except ClientSetupError as e:
        logger.error("client setup error", error=str(e))
        return EXIT_SETUP_ERROR
    except KeyboardInterrupt:
        logger.info("interrupted")
        return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
