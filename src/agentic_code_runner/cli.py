"""CLI entrypoint for the code runner."""

import logging
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from agentic_code_runner.config import ConfigError, load_config
from agentic_code_runner.constants import DEFAULT_RETRY_BUDGET, MAX_RETRY_BUDGET, MIN_RETRY_BUDGET
from agentic_code_runner.providers import available_providers

# Load .env file on CLI startup
load_dotenv()


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(config_path: Optional[str], timeout: Optional[float]):
    config = load_config(Path(config_path) if config_path else None)
    if timeout is not None:
        config.timeout_seconds = timeout
    return config


def _parse_budget(raw: str) -> int:
    """Retry count from user input; falls back to the default when invalid."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = None
    if value is None or not MIN_RETRY_BUDGET <= value <= MAX_RETRY_BUDGET:
        click.echo(f"Invalid input. Using default value of {DEFAULT_RETRY_BUDGET} attempts.")
        return DEFAULT_RETRY_BUDGET
    return value


@click.group()
@click.version_option(package_name="agentic-code-runner")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool):
    """Code runner - generate code with an AI, run it, fix compilation errors."""
    configure_logging(verbose)


_common_options = [
    click.option(
        "--retries",
        type=click.IntRange(MIN_RETRY_BUDGET, MAX_RETRY_BUDGET),
        default=DEFAULT_RETRY_BUDGET,
        show_default=True,
        help="Retry budget for this query (1-10).",
    ),
    click.option("--provider", default=None, help="Provider name (default from config)."),
    click.option(
        "--timeout", type=click.FloatRange(0, min_open=True), default=None, help="Seconds allowed per attempt."
    ),
    click.option("--config", "config_path", type=click.Path(), default=None, help="Path to providers.yaml."),
    click.option("--no-trace", is_flag=True, help="Run without the LangGraph wrapper."),
    click.option("--report-dir", type=click.Path(), default=None, help="Write a JSON run report here."),
]


def common_options(func):
    for option in reversed(_common_options):
        func = option(func)
    return func


@cli.command("run")
@click.argument("query")
@common_options
def run_command(query, retries, provider, timeout, config_path, no_trace, report_dir):
    """Generate code for QUERY, run it, and fix compilation errors."""
    from agentic_code_runner.query_runner import run_query

    try:
        config = _load_config(config_path, timeout)
        state = run_query(
            query,
            retries,
            config,
            provider_name=provider,
            use_graph=not no_trace,
            report_dir=Path(report_dir) if report_dir else None,
        )
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        raise SystemExit(1)

    if state is None or state.status != "SUCCEEDED":
        raise SystemExit(1)


@cli.command("exec")
@click.argument("script", type=click.Path(exists=True, dir_okay=False))
@click.option("--query", required=True, help="What the script is supposed to do (sent with corrections).")
@common_options
def exec_command(script, query, retries, provider, timeout, config_path, no_trace, report_dir):
    """Run an existing SCRIPT, fixing compilation errors with the AI."""
    from datetime import datetime

    from agentic_code_runner.engine import PythonEngine
    from agentic_code_runner.execution_loop import run
    from agentic_code_runner.providers import create_provider
    from agentic_code_runner.query_runner import write_run_report

    try:
        config = _load_config(config_path, timeout)
        ai = create_provider(provider or config.default_provider, config)
        start_time = datetime.now()
        state = run(
            query,
            Path(script).read_text(),
            retries,
            ai,
            PythonEngine(),
            timeout_seconds=config.timeout_seconds,
            use_graph=not no_trace,
        )
        if report_dir:
            report_path = write_run_report(state, ai.name, Path(report_dir), start_time, datetime.now())
            click.echo(f"Report: {report_path}")
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        raise SystemExit(1)

    if state.status != "SUCCEEDED":
        raise SystemExit(1)


@cli.command()
@click.option("--timeout", type=click.FloatRange(0, min_open=True), default=None, help="Seconds allowed per attempt.")
@click.option("--config", "config_path", type=click.Path(), default=None, help="Path to providers.yaml.")
@click.option("--no-trace", is_flag=True, help="Run without the LangGraph wrapper.")
def shell(timeout, config_path, no_trace):
    """Interactive mode: ask for queries until EOF or 'exit'."""
    from agentic_code_runner.query_runner import run_query

    try:
        config = _load_config(config_path, timeout)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    click.secho("Welcome to the code runner!", fg="red")
    providers = available_providers()

    while True:
        try:
            query = click.prompt("\nEnter your query", prompt_suffix=":\n").strip()
        except (EOFError, click.Abort):
            click.echo()
            return
        if query.lower() in ("exit", "quit"):
            return
        if not query:
            continue

        try:
            budget = _parse_budget(click.prompt(
                f"How many retry attempts would you like? ({MIN_RETRY_BUDGET}-{MAX_RETRY_BUDGET})",
                default=str(DEFAULT_RETRY_BUDGET),
                prompt_suffix=":\n",
            ))

            click.echo("\nChoose AI provider:")
            for i, name in enumerate(providers, start=1):
                click.echo(f"{i}: {name}")
            choice = click.prompt("", default="1", show_default=False, prompt_suffix="")
            if choice.isdigit() and 1 <= int(choice) <= len(providers):
                provider_name = providers[int(choice) - 1]
            else:
                click.echo(f"Invalid choice. Using default {config.default_provider} provider.")
                provider_name = config.default_provider

            run_query(query, budget, config, provider_name=provider_name, use_graph=not no_trace)
        except (EOFError, click.Abort):
            click.echo()
            return
        except Exception as e:
            # one failed query must not end the session
            logging.getLogger(__name__).exception("Query failed")
            click.echo(f"Error: {e}", err=True)


@cli.command("providers")
def list_providers():
    """List the available AI providers."""
    for name in available_providers():
        click.echo(name)


@cli.command("check-config")
@click.option("--config", "config_path", type=click.Path(), default=None, help="Path to providers.yaml.")
def check_config(config_path):
    """Check provider configuration and the prompt file."""
    try:
        config = _load_config(config_path, None)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    click.echo("Configuration loaded successfully!")
    click.echo(f"  Default provider: {config.default_provider}")
    click.echo(f"  Timeout: {config.timeout_seconds:g}s")
    prompt_state = "found" if config.prompt_file.exists() else "MISSING"
    click.echo(f"  Prompt file: {config.prompt_file} ({prompt_state})")
    for name, provider in config.providers.items():
        key_state = "[set]" if provider.api_key else "[not set]"
        click.echo(f"  {name}: {provider.endpoint} model={provider.model} key={key_state}")


if __name__ == "__main__":
    cli()
