"""
Command-line interface for the OpenNMS cloud bridge.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="OpenNMS cloud bridge CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cloud-bridge init --force                 # Write the default config
  cloud-bridge validate --check-providers   # Validate config and provider credentials
  cloud-bridge start                        # Run schedules until interrupted
  cloud-bridge discover demo --json         # Discover one provider once
  cloud-bridge collect demo --push          # Collect all resources of a provider once
  cloud-bridge status                       # Show a one-shot status summary
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version="opennms-cloud-bridge 0.1.0"
    )

    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Setup commands
    _add_init_command(subparsers)
    _add_validate_command(subparsers)

    # Service commands
    _add_start_command(subparsers)
    _add_status_command(subparsers)

    # One-shot runs
    _add_discover_command(subparsers)
    _add_collect_command(subparsers)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    # Until the config's logging section is applied
    if args.quiet:
        logging.basicConfig(level=logging.ERROR)
    elif args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    else:
        logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    command_handlers = {
        "init": init_command,
        "validate": validate_command,
        "start": start_command,
        "status": status_command,
        "discover": discover_command,
        "collect": collect_command,
    }

    handler = command_handlers.get(args.command)
    if handler:
        try:
            if asyncio.iscoroutinefunction(handler):
                return asyncio.run(handler(args))
            else:
                return handler(args)
        except KeyboardInterrupt:
            print("\nOperation cancelled by user.")
            return 130
        except Exception as e:
            if args.verbose:
                import traceback
                traceback.print_exc()
            else:
                print(f"Error: {e}")
            return 1
    else:
        print(f"Unknown command: {args.command}")
        return 1


def _add_init_command(subparsers):
    """Add init command parser."""
    init_parser = subparsers.add_parser(
        "init",
        help="Write the default configuration",
        description="Create a configuration file with default settings and a mock provider"
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing configuration"
    )


def _add_validate_command(subparsers):
    """Add validate command parser."""
    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate configuration",
        description="Validate the configuration file and optionally the configured backends"
    )
    validate_parser.add_argument(
        "--check-providers",
        action="store_true",
        help="Also validate every provider against its cloud backend"
    )
    validate_parser.add_argument(
        "--check-opennms",
        action="store_true",
        help="Also check OpenNMS REST connectivity"
    )


def _add_start_command(subparsers):
    """Add start command parser."""
    start_parser = subparsers.add_parser(
        "start",
        help="Start the bridge",
        description="Run the global discovery and collection schedules until interrupted"
    )
    start_parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Do not watch the configuration file for changes"
    )


def _add_status_command(subparsers):
    """Add status command parser."""
    status_parser = subparsers.add_parser(
        "status",
        help="Show bridge status",
        description="Display configured providers and global schedules"
    )
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status in JSON format"
    )


def _add_discover_command(subparsers):
    """Add discover command parser."""
    discover_parser = subparsers.add_parser(
        "discover",
        help="Run discovery once",
        description="Discover the resources of one provider"
    )
    discover_parser.add_argument(
        "provider_id",
        help="Provider id from the configuration"
    )
    discover_parser.add_argument(
        "--json",
        action="store_true",
        help="Output resources in JSON format"
    )
    discover_parser.add_argument(
        "--push",
        action="store_true",
        help="Push the discovered nodes to OpenNMS"
    )


def _add_collect_command(subparsers):
    """Add collect command parser."""
    collect_parser = subparsers.add_parser(
        "collect",
        help="Run collection once",
        description="Collect metrics for every resource of one provider"
    )
    collect_parser.add_argument(
        "provider_id",
        help="Provider id from the configuration"
    )
    collect_parser.add_argument(
        "--json",
        action="store_true",
        help="Output metric batches in JSON format"
    )
    collect_parser.add_argument(
        "--push",
        action="store_true",
        help="Submit the metrics to OpenNMS"
    )


def _load_config(args):
    from cloud_bridge.config.manager import ConfigManager

    manager = ConfigManager(args.config)
    config = manager.load_config()
    _setup_logging(config, args)
    return manager, config


def _setup_logging(config, args) -> None:
    from cloud_bridge.utils.structured_logging import logging_manager

    # Drop the bootstrap handlers installed by main()
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    level = config.logging.level
    if args.quiet:
        level = "ERROR"
    elif args.verbose:
        level = "DEBUG"

    logging_manager.setup_logging(
        log_level=level,
        log_file=config.logging.file,
        max_file_size=config.logging.max_file_size,
        backup_count=config.logging.backup_count,
        structured_format=config.logging.structured,
        force=True
    )


def _build_service(config, push: bool = True):
    from cloud_bridge.service import BridgeService

    if not push:
        config = replace(config, opennms=replace(config.opennms, enabled=False))
    return BridgeService.from_config(config)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def init_command(args):
    """Write the default configuration file."""
    config_path = Path(args.config)

    if config_path.exists() and not args.force:
        print(f"Configuration file {config_path} already exists. Use --force to overwrite.")
        return 1

    from cloud_bridge.config.manager import ConfigManager

    print(f"Initializing configuration at {config_path}...")
    manager = ConfigManager(str(config_path))
    manager.create_default_config(overwrite=True)
    config = manager.load_config()

    print(f"[OK] Configuration initialized at {config_path}")
    print(f"  OpenNMS: {config.opennms.base_url}")
    print(f"  Providers: {', '.join(p.provider_id for p in config.providers) or 'none'}")
    return 0


def validate_command(args):
    """Validate configuration file."""
    config_path = Path(args.config)

    if not config_path.exists():
        print(f"Configuration file {config_path} not found.")
        return 1

    from cloud_bridge.config.manager import ConfigManager

    print(f"Validating configuration: {config_path}")

    manager = ConfigManager(str(config_path))
    is_valid, errors = manager.validate_config_file()

    if not is_valid:
        print("✗ Configuration validation failed:")
        for error in errors:
            print(f"  - {error}")
        return 1

    print("✓ Configuration is valid")
    config = manager.load_config()

    print(f"\nConfiguration Summary:")
    print(f"  OpenNMS: {config.opennms.base_url} (enabled: {config.opennms.enabled})")
    print(f"  Providers:")
    for provider in config.providers:
        print(f"    {provider.provider_id}: backend={provider.backend}, "
              f"regions={', '.join(provider.regions) or 'default'}, enabled={provider.enabled}")
    for name in ("discovery", "collection"):
        schedule = getattr(config.scheduling, name)
        print(f"  {name.capitalize()} schedule: every {schedule.interval} "
              f"after {schedule.initial_delay} (enabled: {schedule.enabled})")

    if args.check_providers or args.check_opennms:
        return asyncio.run(_additional_validation(config, args.check_providers, args.check_opennms))

    return 0


async def _additional_validation(config, check_providers: bool, check_opennms: bool):
    """Validate providers and OpenNMS connectivity."""
    success = True

    if check_providers:
        service = _build_service(config, push=False)
        try:
            for provider_id in service.registry.ids():
                print(f"\nValidating provider {provider_id}...")
                result = await service.validate_provider(provider_id)
                if result.is_valid:
                    print(f"✓ Provider {provider_id} is reachable")
                else:
                    success = False
                    for error in result.errors:
                        print(f"✗ {error}")
        finally:
            await service.shutdown(push_timeout=0)

    if check_opennms:
        from cloud_bridge.sinks.opennms import OpenNMSClient

        print("\nValidating OpenNMS connectivity...")
        async with OpenNMSClient(config.opennms) as client:
            if await client.test_connection():
                print("✓ OpenNMS connection successful")
            else:
                print("✗ OpenNMS connection failed")
                success = False

    return 0 if success else 1


async def start_command(args):
    """Run the bridge until SIGINT or SIGTERM."""
    manager, config = _load_config(args)
    service = _build_service(config)
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _on_config_change(new_config):
        # Called from the file watcher thread
        future = asyncio.run_coroutine_threadsafe(service.apply_config(new_config), loop)
        future.add_done_callback(_report_reload)

    def _report_reload(future):
        if not future.cancelled() and future.exception() is not None:
            logging.getLogger(__name__).error(f"Applying reloaded configuration failed: {future.exception()}")

    def _request_stop():
        print("\nReceived shutdown signal. Stopping gracefully...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop)
        except NotImplementedError:
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(_request_stop))

    print("Starting OpenNMS cloud bridge...")
    service.start()
    if not args.no_reload:
        manager.add_change_callback(_on_config_change)
        manager.start_hot_reload()

    print(f"✓ Bridge started with providers: {', '.join(service.registry.ids()) or 'none'}")
    print("Press Ctrl+C to stop.")

    try:
        await stop_event.wait()
    finally:
        manager.stop_hot_reload()
        await service.shutdown()

    return 0


async def status_command(args):
    """Show configured providers and global schedules."""
    _, config = _load_config(args)
    service = _build_service(config, push=False)

    status: Dict[str, Any] = {
        "config_file": str(Path(args.config).resolve()),
        "opennms": {
            "base_url": config.opennms.base_url,
            "enabled": config.opennms.enabled,
        },
        "providers": [provider.describe() for provider in service.registry.all()],
        "schedules": {},
    }
    for target in ("discovery", "collection"):
        info = service.get_schedule_info(target)
        status["schedules"][target] = {
            "enabled": info["enabled"],
            "initial_delay_minutes": info["initial_delay"],
            "interval_minutes": info["interval"],
        }
    await service.shutdown(push_timeout=0)

    if args.json:
        _print_json(status)
        return 0

    print("OpenNMS Cloud Bridge Status")
    print("=" * 40)
    print(f"Configuration: {status['config_file']}")
    print(f"OpenNMS: {status['opennms']['base_url']} (enabled: {status['opennms']['enabled']})")
    print(f"\nProviders ({len(status['providers'])}):")
    for provider in status["providers"]:
        print(f"  {provider['provider_id']}: {provider['provider_type']} via {provider['backend']}")
    print("\nSchedules:")
    for target, info in status["schedules"].items():
        state = "enabled" if info["enabled"] else "disabled"
        print(f"  {target}: {state}, every {info['interval_minutes']}m "
              f"after {info['initial_delay_minutes']}m")
    return 0


async def discover_command(args):
    """Discover one provider's resources."""
    _, config = _load_config(args)
    service = _build_service(config, push=args.push)

    try:
        resources = await service.run_discovery(args.provider_id, push=args.push)
        if args.push:
            await service.wait_for_pushes()
    finally:
        await service.shutdown()

    ordered = sorted(resources, key=lambda r: r.id)
    if args.json:
        _print_json([resource.to_dict() for resource in ordered])
        return 0

    print(f"Discovered {len(ordered)} resources from provider {args.provider_id}:")
    for resource in ordered:
        address = resource.properties.get("private_ip_address") or "-"
        print(f"  {resource.id}  {resource.resource_type}  {resource.region or '-'}  "
              f"{resource.status or '-'}  {address}  {resource.display_name}")
    return 0


async def collect_command(args):
    """Collect metrics for every resource of one provider."""
    _, config = _load_config(args)
    service = _build_service(config, push=args.push)

    try:
        batches = await service.collect_all_metrics(args.provider_id, push=args.push)
        failed = [status for status in service.get_collection_status() if status.last_error_message]
        if args.push:
            await service.wait_for_pushes()
    finally:
        await service.shutdown()

    if args.json:
        _print_json([batch.to_dict() for batch in batches])
    else:
        print(f"Collected metrics for {len(batches)} resources of provider {args.provider_id}:")
        for batch in batches:
            print(f"  {batch.resource_id}: {batch.metric_count} metrics")
            for name, value in sorted(batch.as_measurements().items()):
                print(f"    {name} = {value:.2f}")
        for status in failed:
            print(f"✗ {status.entity_id}: {status.last_error_message}")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
