"""Shared fakes for loop tests (no network, no real AI)."""

import threading
from typing import List, Optional

import pytest

from agentic_code_runner.config import ProviderConfig
from agentic_code_runner.engine import ExecutionEngine
from agentic_code_runner.outcomes import CompilationFailure, Diagnostic, Success
from agentic_code_runner.providers import AIProvider


class FakeProvider(AIProvider):
    """Returns scripted corrections and records every call."""

    name = "Fake"

    def __init__(self, corrections: Optional[List[str]] = None, draft: str = "print('draft')"):
        super().__init__(ProviderConfig(endpoint="http://fake.invalid", model="fake-model"))
        self.corrections = list(corrections or [])
        self.draft = draft
        self.generate_calls: List[str] = []
        self.correct_calls: List[tuple] = []

    def build_payload(self, messages):
        return {}

    def generate(self, query):
        self.generate_calls.append(query)
        return self.draft

    def correct(self, query, code, diagnostics):
        self.correct_calls.append((query, code, diagnostics))
        if self.corrections:
            return self.corrections.pop(0)
        return "print('still broken'"


class ScriptedEngine(ExecutionEngine):
    """Returns outcomes from a script; repeats the last one when exhausted."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls: List[str] = []

    def evaluate(self, code, cancel):
        self.calls.append(code)
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0]


class HangingEngine(ExecutionEngine):
    """Never returns on its own; ignores the cancel signal until released."""

    def __init__(self):
        self.release = threading.Event()
        self.calls = 0

    def evaluate(self, code, cancel):
        self.calls += 1
        self.release.wait(30)
        return Success(output="too late")


def compile_error(message="undefined name 'total'", line=1, column=7):
    return CompilationFailure(diagnostics=(Diagnostic(message=message, line=line, column=column),))


@pytest.fixture
def echo_lines():
    lines: List[str] = []
    return lines


@pytest.fixture
def hanging_engine():
    engine = HangingEngine()
    yield engine
    engine.release.set()


@pytest.fixture
def prompt_file(tmp_path):
    path = tmp_path / "prompt.txt"
    path.write_text("You write Python.")
    return path
