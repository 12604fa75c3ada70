"""Tests for the self-correcting execution loop (fake provider and engine)."""

import threading
import time

import pytest

from agentic_code_runner.engine import PythonEngine
from agentic_code_runner.execution_loop import (
    BUDGET_EXHAUSTED,
    NO_CORRECTION,
    STOPPED,
    LoopDeps,
    correct_node,
    run,
    sanitize_node,
)
from agentic_code_runner.execution_state import LoopState
from agentic_code_runner.harness import StopSource
from agentic_code_runner.outcomes import (
    COMPILATION_FAILURE,
    RUNTIME_FAILURE,
    SECURITY_REJECTED,
    SUCCESS,
    TIMED_OUT,
    RuntimeFailure,
    Success,
)
from agentic_code_runner.providers import NO_CONTENT, Placeholder

from conftest import FakeProvider, ScriptedEngine, compile_error


@pytest.fixture(params=[False, True], ids=["loop", "graph"])
def use_graph(request):
    return request.param


def run_fake(provider, engine, budget=3, code="print(total)", echo=None, use_graph=False, **kwargs):
    lines = [] if echo is None else echo
    return run("sum 1..10", code, budget, provider, engine, echo=lines.append, use_graph=use_graph, **kwargs)


class TestScenarios:

    def test_one_correction_then_success(self, use_graph):
        provider = FakeProvider(corrections=["```python\ntotal = sum(range(1, 11))\nprint(total)\n```"])
        engine = ScriptedEngine([compile_error(), Success(output="55\n")])

        state = run_fake(provider, engine, budget=3, use_graph=use_graph)

        assert state.status == "SUCCEEDED"
        assert state.trace == [COMPILATION_FAILURE, SUCCESS]
        assert len(provider.correct_calls) == 1
        assert state.correction_calls == 1
        assert state.retry_budget - state.remaining_budget == 1
        assert state.output == "55\n"
        # the corrected code reached the engine without its fences
        assert engine.calls[1] == "total = sum(range(1, 11))\nprint(total)"

    def test_correction_receives_query_code_and_diagnostics(self, use_graph):
        provider = FakeProvider(corrections=["print(55)"])
        engine = ScriptedEngine([compile_error(), Success()])

        run_fake(provider, engine, use_graph=use_graph)

        query, code, diagnostics = provider.correct_calls[0]
        assert query == "sum 1..10"
        assert code == "print(total)"
        assert diagnostics == "(1,7): error: undefined name 'total'"

    def test_forbidden_process_spawn(self, use_graph):
        provider = FakeProvider()
        engine = ScriptedEngine([Success()])

        state = run_fake(provider, engine, code="import subprocess\nsubprocess.run(['ls'])", use_graph=use_graph)

        assert state.trace == [SECURITY_REJECTED]
        assert state.status == "TERMINATED"
        assert engine.calls == []
        assert provider.correct_calls == []
        assert "subprocess" in state.reason

    def test_corrected_code_is_sanitized_too(self, use_graph):
        provider = FakeProvider(corrections=["import os\nos.system('rm -rf /')"])
        engine = ScriptedEngine([compile_error()])

        state = run_fake(provider, engine, use_graph=use_graph)

        assert state.trace == [COMPILATION_FAILURE, SECURITY_REJECTED]
        assert len(engine.calls) == 1
        assert [a.sequence for a in state.attempts] == [1, 2]


class TestBudget:

    @pytest.mark.parametrize("budget", range(1, 11))
    def test_always_failing_code_exhausts_budget(self, budget):
        provider = FakeProvider(corrections=[f"print(missing_{i})" for i in range(20)])
        engine = ScriptedEngine([compile_error()])
        lines = []

        state = run_fake(provider, engine, budget=budget, echo=lines)

        assert len(provider.correct_calls) == budget - 1
        assert len(engine.calls) == budget
        assert state.status == "TERMINATED"
        assert state.reason == BUDGET_EXHAUSTED
        assert BUDGET_EXHAUSTED in lines
        assert state.remaining_budget == 1

    def test_budget_exhaustion_via_graph(self):
        provider = FakeProvider(corrections=["print(a)"] * 10)
        engine = ScriptedEngine([compile_error()])

        state = run_fake(provider, engine, budget=10, use_graph=True)

        assert len(provider.correct_calls) == 9
        assert state.reason == BUDGET_EXHAUSTED

    def test_attempt_sequence_and_budget_snapshots(self):
        provider = FakeProvider(corrections=["print(b)", "print(c)"])
        engine = ScriptedEngine([compile_error(), compile_error(), Success()])

        state = run_fake(provider, engine, budget=5)

        assert [a.sequence for a in state.attempts] == [1, 2, 3]
        assert [a.remaining_budget for a in state.attempts] == [5, 4, 3]
        assert state.remaining_budget == 3

    @pytest.mark.parametrize("budget", [0, 11, -1])
    def test_budget_out_of_range(self, budget):
        with pytest.raises(ValueError):
            run_fake(FakeProvider(), ScriptedEngine([Success()]), budget=budget)


class TestTerminalOutcomes:

    def test_runtime_failure_not_retried(self, use_graph):
        provider = FakeProvider()
        engine = ScriptedEngine([RuntimeFailure(fault="ZeroDivisionError: division by zero")])

        state = run_fake(provider, engine, use_graph=use_graph)

        assert state.trace == [RUNTIME_FAILURE]
        assert provider.correct_calls == []
        assert state.remaining_budget == state.retry_budget
        assert "ZeroDivisionError" in state.reason

    def test_timeout_not_retried(self, hanging_engine, use_graph):
        provider = FakeProvider()
        started = time.monotonic()

        state = run_fake(provider, hanging_engine, timeout_seconds=0.2, use_graph=use_graph)

        assert time.monotonic() - started < 2
        assert state.trace == [TIMED_OUT]
        assert provider.correct_calls == []
        assert state.remaining_budget == state.retry_budget

    def test_success_does_not_spend_budget(self):
        state = run_fake(FakeProvider(), ScriptedEngine([Success(output="ok\n")]), budget=4)
        assert state.status == "SUCCEEDED"
        assert state.remaining_budget == 4


class TestFailSoftCorrection:

    @pytest.mark.parametrize("reply", ["", "   \n", Placeholder(NO_CONTENT), Placeholder("Error calling AI endpoint: boom")])
    def test_empty_or_placeholder_correction(self, reply, use_graph):
        provider = FakeProvider(corrections=[reply])
        engine = ScriptedEngine([compile_error()])

        state = run_fake(provider, engine, use_graph=use_graph)

        assert state.status == "TERMINATED"
        assert state.reason == NO_CORRECTION
        assert len(provider.correct_calls) == 1
        assert len(engine.calls) == 1
        assert state.remaining_budget == state.retry_budget

    def test_provider_exception_degrades_to_no_correction(self):
        class ExplodingProvider(FakeProvider):
            def correct(self, query, code, diagnostics):
                raise RuntimeError("backend down")

        state = run_fake(ExplodingProvider(), ScriptedEngine([compile_error()]))

        assert state.reason == NO_CORRECTION


class TestNodes:

    def make_deps(self, provider=None, engine=None, stop=None):
        return LoopDeps(
            provider=provider or FakeProvider(),
            engine=engine or ScriptedEngine([Success()]),
            stop=stop or StopSource(),
            echo=lambda line: None,
        )

    def test_empty_code_terminates_before_attempt(self):
        state = LoopState(query="q", code="```python\n```", retry_budget=3)
        state = sanitize_node(state, self.make_deps())
        assert state.status == "TERMINATED"
        assert state.attempts == []

    def test_stop_prevents_correction(self):
        stop = StopSource()
        provider = FakeProvider(corrections=["print(1)"])
        state = LoopState(query="q", code="print(x)", retry_budget=3)
        state.next_attempt()
        state.outcomes.append(compile_error())
        state.status = "CORRECTING"
        stop.request_stop()

        state = correct_node(state, self.make_deps(provider=provider, stop=stop))

        assert state.status == "TERMINATED"
        assert provider.correct_calls == []

    def test_stop_interrupts_pending_correction(self, use_graph):
        released = threading.Event()

        class SlowProvider(FakeProvider):
            def correct(self, query, code, diagnostics):
                self.correct_calls.append((query, code, diagnostics))
                released.wait(3)
                return "print(1)"

        stop = StopSource()
        timer = threading.Timer(0.1, stop.request_stop)
        provider = SlowProvider()
        started = time.monotonic()
        timer.start()
        try:
            state = run_fake(provider, ScriptedEngine([compile_error()]), stop=stop, use_graph=use_graph)
        finally:
            timer.cancel()
            released.set()

        assert time.monotonic() - started < 1.0
        assert len(provider.correct_calls) == 1
        assert state.status == "TERMINATED"
        assert state.reason == STOPPED
        assert state.remaining_budget == state.retry_budget

    def test_run_releases_stop_source(self):
        stop = StopSource()
        run_fake(FakeProvider(), ScriptedEngine([Success()]), stop=stop)
        assert stop.stop_requested


class TestWithPythonEngine:
    """End to end with the real engine; only the AI is faked."""

    def test_undeclared_identifier_fixed(self):
        provider = FakeProvider(corrections=["total = sum(range(1, 11))\nprint(total)"])
        broken = "for i in range(1, 11):\n    total += i\nprint(total)\n"
        lines = []

        state = run_fake(provider, PythonEngine(), code=broken, echo=lines)

        assert state.trace == [COMPILATION_FAILURE, SUCCESS]
        assert state.output == "55\n"
        assert any("undefined name 'total'" in line for line in lines)
