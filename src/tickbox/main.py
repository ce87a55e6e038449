"""
Main entry point for tickbox.

Loads the steps and configuration, bootstraps the environment, then runs
the scheduler and the display side by side over the event bus.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
import tempfile
from typing import Optional

import structlog
from dotenv import load_dotenv
from pydantic import ValidationError

from . import __version__
from .core.config import ConfigLoader, RunOptions, DEFAULT_CONCURRENCY, parse_range
from .core.environment import build_environment
from .core.errors import ConfigError, TickboxError
from .core.registry import load_tasks
from .orchestrator.events import EventBus
from .orchestrator.scheduler import WorkflowScheduler
from .orchestrator.sync import resolve_policy
from .ui.input import UserInput
from .ui.renderers import LiveRenderer, PlainRenderer, Renderer


logger = structlog.get_logger()


def configure_logging(level: str = "warning") -> None:
    """Configure structured logging to stderr."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.WARNING),
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if os.getenv("LOG_FORMAT") == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _range_arg(text: str) -> tuple[int, int]:
    try:
        return parse_range(text)
    except ConfigError as e:
        raise argparse.ArgumentTypeError(e.message)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tickbox",
        description="Run a directory of numbered step scripts as one workflow.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--dir", required=True, help="Directory holding the step files")
    parser.add_argument("--cwd", default=".", help="Working directory for every step")
    parser.add_argument(
        "--config",
        default=None,
        help="Workflow config (JSON or YAML); defaults to DIR/.tickbox.json if present",
    )
    parser.add_argument(
        "-j", "--concurrency",
        type=int,
        default=None,
        help=f"Maximum steps running at once (default {DEFAULT_CONCURRENCY})",
    )
    parser.add_argument(
        "--sync",
        action="append",
        type=_range_arg,
        default=[],
        metavar="LO-HI",
        help="Inclusive id range allowed to run in parallel; repeatable",
    )
    parser.add_argument(
        "--filter",
        default="",
        help="Only run steps whose name matches this regex; others are skipped",
    )
    parser.add_argument(
        "--wait",
        action="store_true",
        help="Keep the display open at the end even when everything passed",
    )
    parser.add_argument(
        "--plain",
        action="store_true",
        help="Plain line output instead of the live view",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("TICKBOX_LOG_LEVEL", "warning"),
        choices=["debug", "info", "warning", "error"],
    )
    return parser


def resolve_options(args: argparse.Namespace, config_concurrency: Optional[int]) -> RunOptions:
    """Merge CLI flags, config file and environment defaults."""
    if args.concurrency is not None:
        concurrency = args.concurrency
    elif config_concurrency is not None:
        concurrency = config_concurrency
    else:
        raw = os.getenv("TICKBOX_CONCURRENCY", str(DEFAULT_CONCURRENCY))
        try:
            concurrency = int(raw)
        except ValueError:
            raise ConfigError(f"TICKBOX_CONCURRENCY is not an integer: {raw!r}")
    try:
        return RunOptions(
            concurrency=concurrency,
            ranges=args.sync,
            name_filter=args.filter,
            wait=args.wait,
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid options: {e}")


def make_interrupt_handler(user_input: UserInput, main_task: asyncio.Task):
    """
    Ctrl-C handler: the first press asks the display to quit, a second one
    cancels the run so every supervisor kills its process group.
    """

    def on_interrupt() -> None:
        if user_input.quit_requested.is_set():
            logger.warning("forced_exit")
            main_task.cancel()
        else:
            user_input.request_quit()

    return on_interrupt


def make_renderer(plain: bool, user_input: UserInput) -> Renderer:
    if plain or not sys.stdout.isatty():
        return PlainRenderer(user_input=user_input)
    return LiveRenderer(user_input=user_input)


async def run(args: argparse.Namespace) -> int:
    """Run one workflow; returns the process exit status."""
    config = ConfigLoader(args.dir).load(args.config)
    options = resolve_options(args, config.concurrency)
    tasks = load_tasks(args.dir)
    policy = resolve_policy(options.ranges, config.sync)

    with tempfile.TemporaryDirectory(prefix="tickbox-") as tempdir:
        env = await build_environment(args.cwd, tempdir, config.env)

        bus = EventBus()
        sender = bus.sender()
        scheduler = WorkflowScheduler(sender, shell=config.shell, line_limit=config.line_limit)
        user_input = UserInput()
        renderer = make_renderer(args.plain, user_input)

        loop = asyncio.get_running_loop()
        loop.add_signal_handler(
            signal.SIGINT, make_interrupt_handler(user_input, asyncio.current_task())
        )

        async def produce() -> bool:
            with sender:
                return await scheduler.run(
                    tasks,
                    concurrency=options.concurrency,
                    policy=policy,
                    name_filter=options.name_filter,
                    env=env,
                    wait=options.wait,
                )

        try:
            success, _ = await asyncio.gather(produce(), renderer.consume(bus.receiver()))
        finally:
            loop.remove_signal_handler(signal.SIGINT)

    logger.info("run_complete", success=success, **scheduler.summary())
    return 0 if success else 1


def main(argv: Optional[list[str]] = None) -> int:
    """Console entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        return asyncio.run(run(args))
    except asyncio.CancelledError:
        print("tickbox: interrupted", file=sys.stderr)
        return 130
    except TickboxError as e:
        logger.error("startup_failed", error=e.to_dict())
        print(f"tickbox: {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
