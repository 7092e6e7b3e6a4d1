"""AURA CLI — run the automation hub and inspect its state."""

import argparse
import asyncio
import json
import logging
import signal
import sys

from aura import __version__
from aura.bootstrap import Components, build_hub
from aura.config import AuraConfig
from aura.hub.constants import MODULE_PREDICTIONS
from aura.shared.providers import Providers

logger = logging.getLogger("aura.cli")


def setup_logging(level: str = "INFO"):
    """Configure logging for hub and modules."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aura",
        description="AURA — Adaptive User Routine Automation",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable DEBUG logging")
    parser.add_argument("--quiet", action="store_true", help="Only show WARNING and above")
    parser.add_argument("--db", default=None, help="SQLite database path (default: $AURA_DB_PATH or ~/.aura/aura.db)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Run the automation hub until interrupted")

    status_parser = subparsers.add_parser("status", help="Show stored state summary")
    status_parser.add_argument("--json", action="store_true", dest="json_output", help="Output as JSON")

    rules_parser = subparsers.add_parser("rules", help="Automation rules")
    rules_sub = rules_parser.add_subparsers(dest="rules_command")
    rules_sub.add_parser("list", help="List automation rules")

    devices_parser = subparsers.add_parser("devices", help="Registered devices")
    devices_sub = devices_parser.add_subparsers(dest="devices_command")
    devices_sub.add_parser("list", help="List devices and their state")

    predict_parser = subparsers.add_parser("predict", help="Run one analysis cycle and print predictions")
    predict_parser.add_argument(
        "--type",
        dest="prediction_type",
        choices=["behavior", "preference", "schedule", "environment"],
        default=None,
        help="Only print predictions of this type",
    )
    return parser


def main(argv: list[str] | None = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    log_level = "INFO"
    if args.verbose:
        log_level = "DEBUG"
    elif args.quiet:
        log_level = "WARNING"
    setup_logging(log_level)

    config = AuraConfig.from_env()
    if args.db:
        config.storage.db_path = args.db

    _dispatch(args, config)


def _dispatch(args, config: AuraConfig):
    """Route CLI commands."""
    if args.command == "serve":
        asyncio.run(_serve(config))
    elif args.command == "status":
        asyncio.run(_status(config, json_output=args.json_output))
    elif args.command == "rules" and args.rules_command == "list":
        asyncio.run(_rules_list(config))
    elif args.command == "devices" and args.devices_command == "list":
        asyncio.run(_devices_list(config))
    elif args.command == "predict":
        asyncio.run(_predict(config, args.prediction_type))
    else:
        print(f"Usage: aura {args.command} list")
        sys.exit(1)


async def _serve(config: AuraConfig):
    """Run the hub until SIGINT/SIGTERM."""
    components = build_hub(config)
    hub = components.hub

    logger.info("=" * 70)
    logger.info("AURA %s — user %s", __version__, config.user_id)
    logger.info("Database: %s", config.storage.db_path)
    logger.info("=" * 70)

    await hub.initialize()
    total = len(hub.module_status)
    failed = [mid for mid, s in hub.module_status.items() if s == "failed"]
    if failed:
        logger.warning("Loaded %d/%d modules (%s failed)", total - len(failed), total, ", ".join(failed))
    else:
        logger.info("Loaded %d/%d modules (all healthy)", total, total)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        await hub.shutdown()


async def _open(config: AuraConfig) -> Components:
    """One-shot hub: no providers, no background loops."""
    components = build_hub(config, providers=Providers())
    await components.hub.initialize(background=False)
    return components


async def _status(config: AuraConfig, json_output: bool = False):
    components = await _open(config)
    try:
        predictions_ready = components.hub.module_status.get(MODULE_PREDICTIONS) == "running"
        predictions = components.predictions.get_predictions() if predictions_ready else []
        result = {
            "version": __version__,
            "user_id": config.user_id,
            "database": str(config.storage.db_path),
            "modules": dict(components.hub.module_status),
            "devices": len(components.registry.get_devices()),
            "automations": len(components.registry.get_automations()),
            "rules": len(components.rules.get_rules()),
            "predictions": len(predictions) if predictions_ready else None,
            "last_prediction": predictions[0].timestamp.isoformat() if predictions else None,
            "emotional_state": components.emotional.get_current_state().to_dict(),
        }
    finally:
        await components.hub.shutdown()

    if json_output:
        print(json.dumps(result, indent=2))
        return

    print("AURA Status")
    print("=" * 40)
    print(f"  Version:          {result['version']}")
    print(f"  User:             {result['user_id']}")
    print(f"  Database:         {result['database']}")
    running = sum(1 for s in result["modules"].values() if s == "running")
    print(f"  Modules:          {running}/{len(result['modules'])} healthy")
    print(f"  Devices:          {result['devices']}")
    print(f"  Automations:      {result['automations']}")
    print(f"  Rules:            {result['rules']}")
    predictions_line = "unavailable" if result["predictions"] is None else result["predictions"]
    print(f"  Predictions:      {predictions_line}")
    print(f"  Last prediction:  {result['last_prediction'] or 'none'}")
    state = result["emotional_state"]
    print(f"  Mood:             {state['mood']} (energy {state['energy']}, stress {state['stress']})")


async def _rules_list(config: AuraConfig):
    components = await _open(config)
    try:
        rules = components.rules.get_rules()
    finally:
        await components.hub.shutdown()
    for rule in rules:
        trigger = rule.to_dict()["trigger"]
        status = "on " if rule.enabled else "off"
        print(f"[{status}] {rule.id:<20} {rule.name:<24} {trigger['type']}:{json.dumps(trigger['value'])} -> {rule.action.type}")


async def _devices_list(config: AuraConfig):
    components = await _open(config)
    try:
        devices = components.registry.get_devices()
    finally:
        await components.hub.shutdown()
    if not devices:
        print("No devices registered")
        return
    for device in devices:
        print(f"{device.id:<20} {device.type.value:<11} {device.status.value:<8} {json.dumps(device.state)}")


async def _predict(config: AuraConfig, prediction_type: str | None = None):
    components = await _open(config)
    try:
        predictions = await components.predictions.run_cycle()
    finally:
        await components.hub.shutdown()
    if prediction_type:
        predictions = [p for p in predictions if p.type == prediction_type]
    if not predictions:
        print("No predictions (not enough context yet)")
        return
    for prediction in predictions:
        print(json.dumps(prediction.to_dict(), indent=2, default=str))


if __name__ == "__main__":
    main()
