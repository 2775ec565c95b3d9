"""Command line entry point: deploy, destroy and inspect an application."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, TextIO

from pydantic import ValidationError

from swarm_deployer.adapters.output import StreamOutput
from swarm_deployer.application.cancellation import CancellationToken
from swarm_deployer.application.services.deployment_service import DeploymentService
from swarm_deployer.config import Settings, get_settings
from swarm_deployer.errors import DeployError
from swarm_deployer.main import open_application
from swarm_deployer.models import AppConfig, DeployOutcome, ServiceInfo

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130
DEFAULT_CONFIG = "swarm-deployer.json"


def exit_code_for(outcome: DeployOutcome) -> int:
    if outcome.succeeded:
        return EXIT_OK
    if outcome.cancelled:
        return EXIT_CANCELLED
    return EXIT_FAILED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="swarm-deployer", description="Deploy an application to Docker Swarm"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--env-file", default=None, help="Optional .env file with settings")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG,
        help=f"App description (JSON, default: {DEFAULT_CONFIG})",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    deploy = subcommands.add_parser("deploy", help="Create or update the service and wait")
    deploy.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Stop waiting after this many seconds (the rollout itself continues)",
    )

    destroy = subcommands.add_parser("destroy", help="Remove the service and its proxy config")
    destroy.add_argument("--yes", action="store_true", help="Skip confirmation prompt")

    subcommands.add_parser("info", help="Display information about the app")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = Settings.from_env(args.env_file) if args.env_file else get_settings()
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILED
    logging.basicConfig(
        level=logging.DEBUG if args.debug else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        app = AppConfig.load(Path(args.config))
    except (OSError, ValidationError) as exc:
        print(f"error: failed to load {args.config}: {exc}", file=sys.stderr)
        return EXIT_FAILED

    if args.command == "destroy" and not args.yes:
        if not confirm(f"Are you sure you want to destroy the app '{app.name}'?"):
            return EXIT_OK

    try:
        return asyncio.run(run_command(args, settings, app))
    except DeployError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILED


async def run_command(args: argparse.Namespace, settings: Settings, app: AppConfig) -> int:
    output = StreamOutput()
    async with open_application(settings, output) as application:
        if args.command == "deploy":
            outcome = await deploy_with_signals(application.deployment_service, app, args.timeout)
            if not outcome.succeeded:
                reason = outcome.reason or outcome.status
                print(f"error: deploy of {app.name} ended: {reason}", file=sys.stderr)
            else:
                print(app.name)
            return exit_code_for(outcome)
        if args.command == "destroy":
            await application.deployment_service.destroy(app.name)
            print(app.name)
            return EXIT_OK
        info = await application.info_service.describe(app.name)
        print_info(sys.stdout, info)
        return EXIT_OK


async def deploy_with_signals(
    service: DeploymentService, app: AppConfig, timeout: Optional[float]
) -> DeployOutcome:
    """Wire SIGINT/SIGTERM and the optional timeout to cancellation tokens."""
    loop = asyncio.get_running_loop()
    interrupt = CancellationToken()
    context = CancellationToken()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, interrupt.cancel, sig.name)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - platform specific
            logger.debug("Signal handler for %s unavailable", sig.name)
    timer = loop.call_later(timeout, context.cancel, "timeout") if timeout else None
    try:
        return await service.deploy(app, interrupt=interrupt, context=context)
    finally:
        if timer is not None:
            timer.cancel()
        for sig in installed:
            loop.remove_signal_handler(sig)


def confirm(question: str, stream: TextIO = sys.stdin) -> bool:
    print(f"{question} [y/N] ", end="", flush=True)
    answer = stream.readline().strip().lower()
    return answer in {"y", "yes"}


def print_info(out: TextIO, info: ServiceInfo) -> None:
    out.write(f"Name: {info.name}\n")
    out.write(f"Status: {info.status}\n")
    if info.update_state:
        message = f" ({info.update_message})" if info.update_message else ""
        out.write(f"Last update: {info.update_state}{message}\n")
    if info.health_error:
        out.write(f"\nHealth Check Error:\n{info.health_error}\n")
    if info.image:
        out.write(f"\nImage: {info.image}\n")
    if info.env:
        out.write("\nEnvironment:\n")
        for key, value in sorted(info.env.items()):
            out.write(f"  {key}={value}\n")
    if info.labels:
        out.write("\nLabels:\n")
        for key, value in sorted(info.labels.items()):
            out.write(f"  {key}={value}\n")
    if info.secrets:
        out.write("\nSecrets:\n")
        for name in info.secrets:
            out.write(f"  {name}\n")
    if info.healthcheck:
        check = info.healthcheck
        out.write("\nHealth Check:\n")
        out.write(f"  Test: {' '.join(check.test)}\n")
        out.write(f"  Interval: {check.interval}\n")
        out.write(f"  Timeout: {check.timeout}\n")
        out.write(f"  Retries: {check.retries}\n")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
