"""Timeout and cancellation harness for execution attempts and AI calls.

Every attempt gets a fresh CancelSignal that combines a fixed wall-clock
deadline with the StopSource owned by the orchestrator run. The harness
stops waiting at the deadline; it cannot force the engine to halt, so
engines are expected to poll the signal and wind down on their own.
"""

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Callable

from agentic_code_runner.constants import DEFAULT_TIMEOUT_S, POLL_INTERVAL_S
from agentic_code_runner.outcomes import Cancelled, ExecutionOutcome, RuntimeFailure, TimedOut

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancelSignal:
    """Composite cancellation signal: deadline OR external stop."""
    deadline: float
    timeout_seconds: float
    stop_event: threading.Event

    @property
    def timed_out(self) -> bool:
        return time.monotonic() >= self.deadline

    @property
    def stop_requested(self) -> bool:
        return self.stop_event.is_set()

    @property
    def cancelled(self) -> bool:
        return self.stop_requested or self.timed_out

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds`` (never past the deadline); True if cancelled."""
        self.stop_event.wait(min(seconds, self.remaining()))
        return self.cancelled


class StopSource:
    """External stop request tied to one orchestrator run.

    Used as a context manager, it requests stop on exit so any abandoned
    attempt still running in the background sees its signal fire.
    """

    def __init__(self):
        self._event = threading.Event()

    def request_stop(self) -> None:
        self._event.set()

    @property
    def stop_requested(self) -> bool:
        return self._event.is_set()

    def signal(self, timeout_seconds: float) -> CancelSignal:
        """Create a fresh signal whose deadline starts now."""
        return CancelSignal(
            deadline=time.monotonic() + timeout_seconds,
            timeout_seconds=timeout_seconds,
            stop_event=self._event,
        )

    def __enter__(self) -> "StopSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.request_stop()


class StopRequested(Exception):
    """Raised when a stop arrives while waiting on a background call."""
    pass


def _start_worker(fn: Callable[[], Any], name: str) -> Future:
    """Run fn on a daemon thread; the returned future carries its result."""
    future: Future = Future()

    def _call():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn())
        except Exception as e:
            future.set_exception(e)

    # Daemon thread: a hung call must not keep the process alive.
    threading.Thread(target=_call, name=name, daemon=True).start()
    return future


def call_until_stopped(fn: Callable[[], Any], stop: StopSource, poll_interval: float = POLL_INTERVAL_S) -> Any:
    """
    Call fn in the background and wait for it unless a stop is requested.

    Returns fn's result. Exceptions raised by fn propagate. If stop is
    requested first, raises StopRequested immediately; the abandoned call
    finishes on its own thread and its result is discarded.
    """
    if stop.stop_requested:
        raise StopRequested()

    future = _start_worker(fn, "background-call")
    while True:
        try:
            return future.result(timeout=poll_interval)
        except FuturesTimeoutError:
            if future.done():
                return future.result()
            if stop.stop_requested:
                raise StopRequested()


class TimeoutHarness:
    """Runs one engine call per attempt under a fixed deadline."""

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_S, poll_interval: float = POLL_INTERVAL_S):
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")
        self.timeout_seconds = timeout_seconds
        self.poll_interval = poll_interval

    def run(self, engine, code: str, stop: StopSource) -> ExecutionOutcome:
        """
        Evaluate code with the engine, bounded by the deadline.

        Args:
            engine: Object with ``evaluate(code, cancel) -> ExecutionOutcome``
            code: Sanitized source text
            stop: Stop source of the current orchestrator run

        Returns:
            The engine's outcome, TimedOut at the deadline, or Cancelled if a
            stop was requested. Exceptions escaping the engine become
            RuntimeFailure.
        """
        signal = stop.signal(self.timeout_seconds)
        if signal.stop_requested:
            return Cancelled()

        future = _start_worker(lambda: engine.evaluate(code, signal), "execution-attempt")

        while True:
            try:
                return self._settle(future.result(timeout=min(self.poll_interval, signal.remaining())), signal)
            except FuturesTimeoutError:
                if future.done():
                    # finished after the wait, or the engine raised TimeoutError itself
                    error = future.exception()
                    if error is None:
                        return self._settle(future.result(), signal)
                    return RuntimeFailure(fault=f"{type(error).__name__}: {error}")
                if signal.timed_out:
                    logger.warning("Attempt exceeded %.1fs deadline", self.timeout_seconds)
                    return TimedOut(seconds=self.timeout_seconds)
                if signal.stop_requested:
                    return Cancelled()
            except Exception as e:
                logger.exception("Execution engine raised")
                return RuntimeFailure(fault=f"{type(e).__name__}: {e}")

    def _settle(self, outcome: ExecutionOutcome, signal: CancelSignal) -> ExecutionOutcome:
        # an engine that noticed the deadline itself still reports a timeout
        if isinstance(outcome, Cancelled) and signal.timed_out:
            return TimedOut(seconds=self.timeout_seconds)
        return outcome
