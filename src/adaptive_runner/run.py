# run.py
# Entry point. Config and wiring only, no logic lives here.
#
# Swap model strings for any OpenRouter-supported model via the
# ADAPTIVE_RUNNER_*_MODEL environment variables.
# https://openrouter.ai/models

import asyncio
import os
import sys
from pathlib import Path

import rich_click as click

from adaptive_runner import display
from adaptive_runner.backend import OpenRouterBackend
from adaptive_runner.classifier import classify
from adaptive_runner.config import Settings, configure_logging
from adaptive_runner.engine import Engine
from adaptive_runner.models import RunMode, RunReport
from adaptive_runner.tools import LocalToolService

click.rich_click.USE_MARKDOWN = True

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def exit_code(report: RunReport) -> int:
    """0 when something got done (or nothing failed), 1 otherwise."""
    if report.mode is RunMode.NOTHING:
        return EXIT_FAILED
    if report.completed or not report.failed:
        return EXIT_OK
    return EXIT_FAILED


@click.command()
@click.argument("instruction")
@click.option(
    "--workdir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Workspace directory every tool path is resolved against.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Overrides ADAPTIVE_RUNNER_LOG_LEVEL.",
)
def main(instruction: str, workdir: Path, log_level: str | None) -> None:
    """
    Execute a numbered, multi-step INSTRUCTION.

    Pass `-` to read the instruction from stdin.
    """
    if instruction == "-":
        instruction = sys.stdin.read()

    settings = Settings.from_env()
    configure_logging(log_level or settings.log_level)

    chain = settings.chain()
    display.banner(chain)

    # Instructions without numbered steps never reach the backend.
    if classify(instruction) and not os.getenv("OPENROUTER_API_KEY"):
        raise click.ClickException("OPENROUTER_API_KEY is not set (environment or .env).")

    workdir.mkdir(parents=True, exist_ok=True)
    engine = Engine(
        OpenRouterBackend(chain, base_url=settings.base_url),
        LocalToolService(workdir, command_timeout=settings.command_timeout),
        settings,
        chain,
    )

    try:
        report = asyncio.run(engine.run(instruction))
    except KeyboardInterrupt:
        display.interrupted(engine.partial_report())
        sys.exit(EXIT_INTERRUPTED)

    sys.exit(exit_code(report))


if __name__ == "__main__":
    main()
