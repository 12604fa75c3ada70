"""Execution engine boundary and the default Python engine.

The orchestrator only depends on ``ExecutionEngine.evaluate``. PythonEngine
compiles the source in-process to collect diagnostics, then runs it in a
child interpreter that is killed as soon as the cancel signal fires.
"""

import ast
import builtins
import logging
import subprocess
import sys
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from agentic_code_runner.constants import MAX_FAULT_CHARS, POLL_INTERVAL_S
from agentic_code_runner.harness import CancelSignal
from agentic_code_runner.outcomes import (
    Cancelled,
    CompilationFailure,
    Diagnostic,
    ExecutionOutcome,
    RuntimeFailure,
    Success,
    TimedOut,
)

logger = logging.getLogger(__name__)


KNOWN_MODULE_NAMES = frozenset(dir(builtins)) | {"__file__", "__builtins__"}

# PEP 695 type parameters (Python 3.12+)
TYPE_PARAM_NODES = tuple(
    getattr(ast, name) for name in ("TypeVar", "ParamSpec", "TypeVarTuple") if hasattr(ast, name)
)


class ExecutionEngine(ABC):
    """Compiles and runs source text under a cancel signal."""

    @abstractmethod
    def evaluate(self, code: str, cancel: CancelSignal) -> ExecutionOutcome:
        """
        Compile and run code.

        Args:
            code: Sanitized source text
            cancel: Signal to observe at safe points

        Returns:
            CompilationFailure with structured diagnostics, or the run outcome
        """
        pass


def _augmented_targets(tree: ast.AST) -> set:
    """ids of Name nodes updated in place (`x += 1` reads x first)."""
    return {
        id(node.target) for node in ast.walk(tree)
        if isinstance(node, ast.AugAssign) and isinstance(node.target, ast.Name)
    }


def _bound_names(tree: ast.AST, augmented: set) -> set:
    """Every name the module binds anywhere, ignoring scope."""
    bound = set(KNOWN_MODULE_NAMES)
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and isinstance(node.ctx, (ast.Store, ast.Del)):
            if id(node) in augmented:
                continue
            bound.add(node.id)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            bound.add(node.name)
        elif isinstance(node, ast.arg):
            bound.add(node.arg)
        elif isinstance(node, ast.alias):
            bound.add((node.asname or node.name).split(".")[0])
        elif isinstance(node, ast.ExceptHandler) and node.name:
            bound.add(node.name)
        elif isinstance(node, (ast.Global, ast.Nonlocal)):
            bound.update(node.names)
        elif isinstance(node, (ast.MatchAs, ast.MatchStar)) and node.name:
            bound.add(node.name)
        elif isinstance(node, ast.MatchMapping) and node.rest:
            bound.add(node.rest)
        elif isinstance(node, TYPE_PARAM_NODES):
            bound.add(node.name)
    return bound


def _has_star_import(tree: ast.AST) -> bool:
    return any(
        isinstance(node, ast.ImportFrom) and any(a.name == "*" for a in node.names)
        for node in ast.walk(tree)
    )


def check_source(code: str, filename: str = "<attempt>") -> List[Diagnostic]:
    """
    Compile code and report problems a compiler would reject.

    Syntax errors come first and stop the check. Otherwise each name that is
    read but never bound in the module (and is not a builtin) is reported
    once, at its first use, in source order.
    """
    try:
        tree = ast.parse(code, filename)
        compile(tree, filename, "exec", dont_inherit=True)
    except SyntaxError as e:
        return [Diagnostic(message=e.msg or "invalid syntax", line=e.lineno, column=e.offset)]
    except ValueError as e:
        # e.g. source containing null bytes
        return [Diagnostic(message=str(e))]

    if _has_star_import(tree):
        return []

    augmented = _augmented_targets(tree)
    bound = _bound_names(tree, augmented)
    seen = set()
    diagnostics = []
    loads = sorted(
        (
            n for n in ast.walk(tree)
            if isinstance(n, ast.Name) and (isinstance(n.ctx, ast.Load) or id(n) in augmented)
        ),
        key=lambda n: (n.lineno, n.col_offset),
    )
    for node in loads:
        if node.id in bound or node.id in seen:
            continue
        seen.add(node.id)
        diagnostics.append(Diagnostic(
            message=f"undefined name '{node.id}'",
            line=node.lineno,
            column=node.col_offset + 1,
        ))
    return diagnostics


class PythonEngine(ExecutionEngine):
    """Runs Python source in an isolated child interpreter."""

    def __init__(self, python: Optional[str] = None, poll_interval: float = POLL_INTERVAL_S):
        self.python = python or sys.executable
        self.poll_interval = poll_interval

    def evaluate(self, code: str, cancel: CancelSignal) -> ExecutionOutcome:
        diagnostics = check_source(code)
        if diagnostics:
            return CompilationFailure(diagnostics=tuple(diagnostics))

        if cancel.cancelled:
            return self._cancelled(cancel)

        with tempfile.TemporaryDirectory(prefix="coderun_") as workdir:
            script = Path(workdir) / "attempt.py"
            script.write_text(code, encoding="utf-8")
            return self._run(script, cancel)

    def _run(self, script: Path, cancel: CancelSignal) -> ExecutionOutcome:
        proc = subprocess.Popen(
            [self.python, "-I", str(script)],
            cwd=script.parent,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
        )
        try:
            while True:
                try:
                    stdout, stderr = proc.communicate(timeout=self.poll_interval)
                    break
                except subprocess.TimeoutExpired:
                    if cancel.cancelled:
                        logger.debug("Killing child interpreter pid=%s", proc.pid)
                        proc.kill()
                        proc.communicate()
                        return self._cancelled(cancel)
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()

        if proc.returncode == 0:
            return Success(output=stdout)

        fault = stderr.strip()[-MAX_FAULT_CHARS:] or f"Process exited with code {proc.returncode}"
        return RuntimeFailure(fault=fault)

    @staticmethod
    def _cancelled(cancel: CancelSignal) -> ExecutionOutcome:
        if cancel.timed_out:
            return TimedOut(seconds=cancel.timeout_seconds)
        return Cancelled()
