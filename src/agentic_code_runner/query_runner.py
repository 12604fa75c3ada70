"""Thin runner for one top-level query.

Creates the provider, asks for a first draft, runs the correction loop and
optionally writes a JSON report of the run.
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import click

from agentic_code_runner.config import Config
from agentic_code_runner.engine import ExecutionEngine, PythonEngine
from agentic_code_runner.execution_loop import run
from agentic_code_runner.execution_state import LoopState
from agentic_code_runner.harness import StopSource
from agentic_code_runner.providers import AIProvider, create_provider, is_placeholder

logger = logging.getLogger(__name__)


def _slug(text: str, limit: int = 40) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:limit].rstrip("-") or "query"


def write_run_report(
    state: LoopState,
    provider_name: str,
    output_dir: Path,
    start_time: datetime,
    end_time: datetime,
) -> Path:
    """
    Write a structured run report to disk.

    Report format: JSON with the attempt trace and budget accounting.
    Filename: {query-slug}_{timestamp}.json
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = end_time.strftime("%Y%m%d_%H%M%S")
    report_path = output_dir / f"{_slug(state.query)}_{timestamp}.json"

    report = {
        "query": state.query,
        "provider": provider_name,
        "status": state.status,
        "reason": state.reason,
        "retry_budget": state.retry_budget,
        "remaining_budget": state.remaining_budget,
        "correction_calls": state.correction_calls,
        "attempts": [
            {"sequence": a.sequence, "remaining_budget": a.remaining_budget, "code": a.code}
            for a in state.attempts
        ],
        "outcomes": [{"kind": o.kind, "detail": o.describe()} for o in state.outcomes],
        "output": state.output,
        "start_time": start_time.isoformat(),
        "end_time": end_time.isoformat(),
        "duration_seconds": (end_time - start_time).total_seconds(),
    }

    report_path.write_text(json.dumps(report, indent=2))
    return report_path


def run_query(
    query: str,
    retry_budget: int,
    config: Config,
    provider_name: Optional[str] = None,
    provider: Optional[AIProvider] = None,
    engine: Optional[ExecutionEngine] = None,
    use_graph: bool = True,
    report_dir: Optional[Path] = None,
    stop: Optional[StopSource] = None,
    echo: Callable[[str], None] = click.echo,
) -> Optional[LoopState]:
    """
    Main entry point for a natural-language query.

    Args:
        query: Task description for the AI
        retry_budget: Attempts allowed, 1-10
        config: Loaded configuration
        provider_name: Provider to use (default: config.default_provider)
        provider: Ready-made provider; skips the factory
        engine: Execution engine (default: PythonEngine)
        use_graph: Run through the LangGraph state machine
        report_dir: Write a JSON run report here if given
        stop: External stop source for this query
        echo: Sink for progress output

    Returns:
        Final LoopState, or None if the provider produced no first draft
    """
    if provider is None:
        provider = create_provider(provider_name or config.default_provider, config)

    echo(f"Using {provider.name} provider...")
    start_time = datetime.now()

    draft = provider.generate(query)
    if is_placeholder(draft) or not draft.strip():
        logger.error("No first draft from %s: %s", provider.name, draft)
        echo(f"Error: {draft or 'the AI returned an empty response'}")
        return None

    state = run(
        query,
        draft,
        retry_budget,
        provider,
        engine or PythonEngine(),
        timeout_seconds=config.timeout_seconds,
        stop=stop,
        echo=echo,
        use_graph=use_graph,
    )

    if report_dir is not None:
        report_path = write_run_report(state, provider.name, report_dir, start_time, datetime.now())
        echo(f"Report: {report_path}")

    return state
