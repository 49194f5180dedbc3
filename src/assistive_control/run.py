# run.py
# Entry point. Config and wiring only. No logic lives here.
#
# Provider and model come from the environment (or .env); CLI flags override.
# The REPL drives a DryRunSurface, so nothing on the desktop is touched.

import argparse
import asyncio
import logging

from rich.logging import RichHandler

from assistive_control import display
from assistive_control.automation import DryRunSurface
from assistive_control.config import ConfigError, ProviderType, Settings
from assistive_control.dispatcher import Dispatcher
from assistive_control.harness import AgentLoop
from assistive_control.llm import make_client
from assistive_control.schema import default_schema
from assistive_control.validator import IntentValidator

NEW_SESSION = "/new"
QUIT = "/quit"


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="assistive-control",
        description="Control the desktop in natural language (dry run).",
    )
    parser.add_argument(
        "--provider",
        choices=[provider.value for provider in ProviderType],
        help="Model provider. Defaults to ASSISTIVE_PROVIDER or ollama.",
    )
    parser.add_argument("--model", help="Model name for the chosen provider.")
    return parser.parse_args(argv)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=display.console, rich_tracebacks=True)],
    )


def _load_settings(args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {"provider": args.provider}
    if args.model:
        provider = ProviderType(args.provider) if args.provider else Settings.from_env().provider
        overrides[f"{provider.value}_model"] = args.model
    return Settings.from_env(**overrides)


async def _repl(settings: Settings) -> None:
    schema = default_schema()
    surface = DryRunSurface()
    client = make_client(settings)
    loop = AgentLoop(
        client,
        schema,
        IntentValidator(schema, max_depth=settings.max_plan_depth),
        Dispatcher(
            schema,
            surface,
            step_delay=settings.step_delay,
            launch_delay=settings.launch_delay,
            action_timeout=settings.action_timeout,
            max_depth=settings.max_plan_depth,
        ),
        max_retries=settings.max_retries,
        max_observations=settings.max_observations,
        model_timeout=settings.model_timeout,
        observers=[display.ConsoleObserver()],
    )

    display.banner(settings.provider.value, settings.model_name)
    try:
        while True:
            try:
                text = await asyncio.to_thread(display.console.input, "[bold cyan]> [/bold cyan]")
            except (EOFError, KeyboardInterrupt):
                break

            command = text.strip()
            if not command:
                continue
            if command == QUIT:
                break
            if command == NEW_SESSION:
                loop.new_session()
                surface.calls.clear()
                display.session_reset()
                continue

            seen = len(surface.calls)
            await loop.handle_turn(command)
            display.dry_run_calls(surface.calls[seen:])
    finally:
        await client.aclose()


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    try:
        settings = _load_settings(args)
        _configure_logging(settings.log_level)
        asyncio.run(_repl(settings))
    except ConfigError as exc:
        display.fatal(str(exc))
        raise SystemExit(2) from exc


if __name__ == "__main__":
    main()
