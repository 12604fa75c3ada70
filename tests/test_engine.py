"""Tests for the Python execution engine (runs a real child interpreter)."""

import sys
import time

import pytest

from agentic_code_runner.engine import PythonEngine, check_source
from agentic_code_runner.harness import StopSource
from agentic_code_runner.outcomes import (
    Cancelled,
    CompilationFailure,
    RuntimeFailure,
    Success,
    TimedOut,
)


class TestCheckSource:

    def test_clean_code_has_no_diagnostics(self):
        code = "def add(a, b):\n    return a + b\n\nprint(add(1, 2))\n"
        assert check_source(code) == []

    def test_syntax_error_has_location(self):
        diagnostics = check_source("print('hi'\n")
        assert len(diagnostics) == 1
        assert diagnostics[0].severity == "error"
        assert diagnostics[0].line == 1

    def test_compile_stage_error_reported(self):
        diagnostics = check_source("return 5\n")
        assert len(diagnostics) == 1
        assert "return" in diagnostics[0].message

    def test_undefined_name_reported_once_in_order(self):
        code = "for i in range(1, 11):\n    total += i\nprint(totl)\nprint(total)\n"
        diagnostics = check_source(code)
        assert [d.message for d in diagnostics] == [
            "undefined name 'total'",
            "undefined name 'totl'",
        ]
        assert diagnostics[0].line == 2

    def test_bindings_in_all_forms_are_known(self):
        code = (
            "import os.path\n"
            "from collections import Counter as C\n"
            "class Box:\n"
            "    size = 1\n"
            "def f(x, *args, key=None, **kw):\n"
            "    global seen\n"
            "    seen = [y for y in args]\n"
            "    return (n := len(seen)) + x\n"
            "try:\n"
            "    f(1)\n"
            "except Exception as err:\n"
            "    print(err)\n"
            "print(os.path.sep, C, Box, n, seen, __name__, len)\n"
        )
        assert check_source(code) == []

    @pytest.mark.skipif(sys.version_info < (3, 12), reason="PEP 695 syntax needs Python 3.12")
    def test_type_parameters_are_bound(self):
        code = (
            "def first[T](items: list[T]) -> T:\n"
            "    return items[0]\n"
            "class Box[T, *Ts, **P]:\n"
            "    item: T\n"
            "type Pair[K] = tuple[K, K]\n"
            "print(first([1]), Box, Pair)\n"
        )
        assert check_source(code) == []

    def test_star_import_disables_name_check(self):
        assert check_source("from math import *\nprint(pi)\n") == []

    def test_diagnostic_rendering(self):
        diagnostic = check_source("print(missing)\n")[0]
        assert str(diagnostic) == "(1,7): error: undefined name 'missing'"


class TestPythonEngine:

    def test_success_captures_stdout(self):
        engine = PythonEngine()
        outcome = engine.evaluate("print(sum(range(1, 11)))", StopSource().signal(20))
        assert outcome == Success(output="55\n")

    def test_compilation_failure_does_not_run(self, tmp_path):
        marker = tmp_path / "ran.txt"
        code = f"open({str(marker)!r}, 'w').write('x')\nprint(undefined_thing)\n"
        outcome = PythonEngine().evaluate(code, StopSource().signal(20))
        assert isinstance(outcome, CompilationFailure)
        assert not marker.exists()
        assert "undefined_thing" in outcome.diagnostics_text

    def test_non_utf8_output_is_replaced(self):
        code = "import sys\nsys.stdout.buffer.write(b'\\xff\\xfe ok\\n')\n"
        outcome = PythonEngine().evaluate(code, StopSource().signal(20))
        assert isinstance(outcome, Success)
        assert outcome.output == "\ufffd\ufffd ok\n"

    def test_runtime_failure_keeps_traceback_tail(self):
        outcome = PythonEngine().evaluate("print(1 / 0)", StopSource().signal(20))
        assert isinstance(outcome, RuntimeFailure)
        assert "ZeroDivisionError" in outcome.fault

    def test_deadline_kills_child(self):
        engine = PythonEngine(poll_interval=0.02)
        started = time.monotonic()
        outcome = engine.evaluate("while True:\n    pass\n", StopSource().signal(0.5))
        assert isinstance(outcome, TimedOut)
        assert time.monotonic() - started < 5

    def test_stop_before_run(self):
        stop = StopSource()
        signal = stop.signal(20)
        stop.request_stop()
        outcome = PythonEngine().evaluate("print(1)", signal)
        assert isinstance(outcome, Cancelled)

    def test_runs_in_private_directory(self, tmp_path):
        code = "import os\nprint(os.listdir('.'))"
        outcome = PythonEngine().evaluate(code, StopSource().signal(20))
        assert isinstance(outcome, Success)
        assert outcome.output.strip() == "['attempt.py']"
