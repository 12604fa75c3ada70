"""Self-correcting execution loop.

State machine per top-level query:

    SANITIZING -> EXECUTING -> SUCCEEDED
                            -> CORRECTING -> SANITIZING (next attempt)
                                          -> TERMINATED
                            -> TERMINATED

Only a CompilationFailure is corrected. Runtime faults, timeouts and
security rejections end the query. Attempts run strictly one after another
because each correction needs the previous attempt's diagnostics.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import click

from agentic_code_runner.constants import DEFAULT_TIMEOUT_S
from agentic_code_runner.engine import ExecutionEngine
from agentic_code_runner.execution_state import LoopState
from agentic_code_runner.harness import StopRequested, StopSource, TimeoutHarness, call_until_stopped
from agentic_code_runner.outcomes import CompilationFailure, SecurityRejected, Success
from agentic_code_runner.providers import AIProvider, is_placeholder
from agentic_code_runner.sanitizer import (
    DEFAULT_POLICY,
    EmptyCodeError,
    SecurityPolicy,
    SecurityViolation,
    sanitize_code,
)

logger = logging.getLogger(__name__)


BUDGET_EXHAUSTED = "Maximum retry attempts reached. Unable to fix the code."
NO_CORRECTION = "No correction produced: the AI could not generate a correction."
STOPPED = "Run cancelled before the next correction."


@dataclass
class LoopDeps:
    """Collaborators for one top-level query."""
    provider: AIProvider
    engine: ExecutionEngine
    harness: TimeoutHarness = field(default_factory=TimeoutHarness)
    stop: StopSource = field(default_factory=StopSource)
    policy: SecurityPolicy = DEFAULT_POLICY
    echo: Callable[[str], None] = click.echo


def sanitize_node(state: LoopState, deps: LoopDeps) -> LoopState:
    """
    Open the next attempt and run the code through the sanitizer.

    A security violation or empty code ends the query before any engine
    call. Never retried.
    """
    state.status = "SANITIZING"
    try:
        state.code = sanitize_code(state.code, deps.policy)
    except SecurityViolation as e:
        state.next_attempt()
        state.outcomes.append(SecurityRejected(pattern=e.pattern))
        logger.warning("Attempt rejected by security policy (%s): %s", e.category, e.pattern)
        deps.echo(f"Security Error: {e}")
        state.terminate(f"Security policy violation: {e.pattern}")
        return state
    except EmptyCodeError as e:
        logger.error("Code input is empty")
        deps.echo(f"Error: {e}")
        state.terminate(str(e))
        return state

    state.next_attempt()
    state.status = "EXECUTING"
    return state


def execute_node(state: LoopState, deps: LoopDeps) -> LoopState:
    """Run the current attempt through the timeout harness and classify it."""
    attempt = state.attempts[-1]
    logger.info("Executing attempt %d (%d budget left)", attempt.sequence, attempt.remaining_budget)
    deps.echo(f"Executing code (attempt {attempt.sequence})...")
    deps.echo(attempt.code)

    outcome = deps.harness.run(deps.engine, attempt.code, deps.stop)
    state.outcomes.append(outcome)
    logger.info("Attempt %d finished: %s", attempt.sequence, outcome.kind)

    if isinstance(outcome, Success):
        if outcome.output:
            deps.echo(outcome.output.rstrip("\n"))
        state.output = outcome.output
        state.status = "SUCCEEDED"
        state.reason = outcome.describe()
    elif outcome.correctable:
        deps.echo(outcome.describe())
        state.status = "CORRECTING"
    else:
        deps.echo(outcome.describe())
        state.terminate(outcome.describe())
    return state


def correct_node(state: LoopState, deps: LoopDeps) -> LoopState:
    """
    Ask the provider to fix a compilation failure.

    Spends one unit of budget per accepted correction. Provider errors and
    placeholder replies count as no correction and end the query.
    """
    if state.remaining_budget <= 1:
        deps.echo(BUDGET_EXHAUSTED)
        state.terminate(BUDGET_EXHAUSTED)
        return state

    if deps.stop.stop_requested:
        state.terminate(STOPPED)
        return state

    failure = state.last_outcome
    if not isinstance(failure, CompilationFailure):
        state.terminate(f"Nothing to correct after {state.trace[-1] if state.trace else 'no attempt'}")
        return state

    deps.echo(f"Attempting to fix the error... ({state.remaining_budget - 1} attempts remaining)")

    state.correction_calls += 1
    try:
        corrected = call_until_stopped(
            lambda: deps.provider.correct(state.query, state.code, failure.diagnostics_text),
            deps.stop,
            deps.harness.poll_interval,
        )
    except StopRequested:
        logger.info("Stop requested while waiting for a correction")
        state.terminate(STOPPED)
        return state
    except Exception as e:
        logger.exception("Error during AI correction")
        corrected = None
        deps.echo(f"Error getting AI correction: {e}")

    if deps.stop.stop_requested:
        state.terminate(STOPPED)
        return state

    if corrected is None or is_placeholder(corrected) or not corrected.strip():
        if is_placeholder(corrected):
            logger.error("Provider returned placeholder: %s", corrected)
        deps.echo(NO_CORRECTION)
        state.terminate(NO_CORRECTION)
        return state

    state.remaining_budget -= 1
    state.code = corrected
    state.status = "SANITIZING"
    deps.echo("Executing corrected code...")
    return state


def run_execution_loop(state: LoopState, deps: LoopDeps) -> LoopState:
    """Drive the nodes until the query succeeds or terminates."""
    while not state.done:
        state = sanitize_node(state, deps)
        if state.done:
            break
        state = execute_node(state, deps)
        if state.status != "CORRECTING":
            break
        state = correct_node(state, deps)
    return state


def run(
    query: str,
    code: str,
    retry_budget: int,
    provider: AIProvider,
    engine: ExecutionEngine,
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_S,
    policy: SecurityPolicy = DEFAULT_POLICY,
    stop: Optional[StopSource] = None,
    echo: Callable[[str], None] = click.echo,
    use_graph: bool = False,
) -> LoopState:
    """
    Run code for a query, correcting compilation failures via the provider.

    Args:
        query: The natural-language task the code is meant to solve
        code: First draft (raw provider text is fine; fences are stripped)
        retry_budget: Attempts allowed for this query, 1-10
        provider: AI provider used for corrections
        engine: Execution engine
        timeout_seconds: Deadline per attempt
        policy: Security deny-list
        stop: External stop source for this run only; stop is requested on
              it when the run ends. A private one is used if not given.
        echo: Sink for progress and the final report
        use_graph: Run through the LangGraph state machine instead of the loop

    Returns:
        Final LoopState (status SUCCEEDED or TERMINATED)

    Raises:
        ValueError: If retry_budget is outside 1-10
    """
    state = LoopState(query=query, code=code, retry_budget=retry_budget)
    harness = TimeoutHarness(timeout_seconds=timeout_seconds)

    with (stop or StopSource()) as stop_source:
        deps = LoopDeps(
            provider=provider,
            engine=engine,
            harness=harness,
            stop=stop_source,
            policy=policy,
            echo=echo,
        )
        if use_graph:
            from agentic_code_runner.execution_graph import run_execution_graph
            state = run_execution_graph(state, deps)
        else:
            state = run_execution_loop(state, deps)

    report_final(state, echo)
    return state


def report_final(state: LoopState, echo: Callable[[str], None]) -> None:
    used = state.retry_budget - state.remaining_budget
    echo(
        f"Finished: {state.status} after {len(state.attempts)} attempt(s), "
        f"{state.correction_calls} correction call(s), {used} retry(ies) used."
    )
    if state.status != "SUCCEEDED" and state.reason:
        echo(f"Reason: {state.reason}")
