"""CLI entry point: python main.py --configs configs.json --snapshot snapshot.json"""

import argparse
import asyncio
import json
import sys

from src.alerts import (
    AlertingConfig,
    AlertManager,
    AlertRuleEngine,
    ConfigurationValidationError,
    EvaluationWorker,
    StaticSnapshotProvider,
    load_configurations,
    load_snapshot,
)
from src.logging_config import LogFormat, LoggingConfig, LogLevel, configure_logging
from src.settings import get_settings


def build_manager(settings) -> AlertManager:
    return AlertManager(
        engine=AlertRuleEngine(concurrency=settings.evaluation_concurrency),
        config=AlertingConfig.from_settings(settings),
    )


def validate(manager: AlertManager, configurations) -> int:
    """Print validation results; returns the number of invalid configurations."""
    invalid = 0
    for configuration in configurations:
        validation = manager.engine.validate_configuration(configuration)
        if not validation.is_valid:
            invalid += 1
        print(json.dumps(
            {"configuration": configuration.name, **validation.to_dict()}, indent=2,
        ))
    return invalid


async def run(args, manager: AlertManager, configurations) -> int:
    for configuration in configurations:
        try:
            manager.add_configuration(configuration)
        except ConfigurationValidationError as e:
            print(f"Skipping configuration '{configuration.name}': {e}", file=sys.stderr)

    context = load_snapshot(args.snapshot)

    if args.loop:
        worker = EvaluationWorker(
            manager, StaticSnapshotProvider(context), interval_seconds=args.interval,
        )
        try:
            await worker.run_forever(max_passes=args.passes)
        finally:
            await worker.stop()
        print(f"Ran {worker.passes_run} passes ({worker.passes_failed} failed)")
        return 0

    try:
        alerts = await manager.run_pass(context)
    finally:
        await manager.shutdown()

    print(json.dumps([alert.to_dict() for alert in alerts], indent=2, default=str))
    if args.verbose:
        print(json.dumps(manager.get_stats(), indent=2))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Building alerts - evaluate alert rules and deliver notifications"
    )
    parser.add_argument(
        "--configs", required=True,
        help="JSON file with one configuration, a list, or {\"configurations\": [...]}"
    )
    parser.add_argument(
        "--snapshot",
        help="JSON sensor snapshot to evaluate"
    )
    parser.add_argument(
        "--validate", action="store_true",
        help="Validate configurations and exit"
    )
    parser.add_argument(
        "--loop", action="store_true",
        help="Re-evaluate the snapshot on an interval"
    )
    parser.add_argument(
        "--interval", type=float, default=None,
        help="Seconds between passes with --loop (default: from settings)"
    )
    parser.add_argument(
        "--passes", type=int, default=None,
        help="Stop after this many passes with --loop"
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Console logging at DEBUG level and engine stats"
    )
    args = parser.parse_args()

    settings = get_settings()
    log_config = LoggingConfig.from_settings(settings)
    if args.verbose:
        log_config.level = LogLevel.DEBUG
        log_config.format = LogFormat.CONSOLE
    configure_logging(log_config, settings)

    manager = build_manager(settings)
    configurations = load_configurations(args.configs)

    if args.validate:
        return 1 if validate(manager, configurations) else 0

    if not args.snapshot:
        parser.error("--snapshot is required unless --validate is given")

    return asyncio.run(run(args, manager, configurations))


if __name__ == "__main__":
    sys.exit(main())
