"""Execution outcomes and compiler diagnostics.

One frozen dataclass per outcome tag. Callers dispatch on ``kind`` or on
``isinstance``; only a CompilationFailure is worth a correction cycle.
"""

from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple


SUCCESS = "SUCCESS"
COMPILATION_FAILURE = "COMPILATION_FAILURE"
RUNTIME_FAILURE = "RUNTIME_FAILURE"
TIMED_OUT = "TIMED_OUT"
SECURITY_REJECTED = "SECURITY_REJECTED"
CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class Diagnostic:
    """A compiler-reported problem, passed through to the AI verbatim."""
    message: str
    severity: str = "error"
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self) -> str:
        if self.line is None:
            return f"{self.severity}: {self.message}"
        return f"({self.line},{self.column or 1}): {self.severity}: {self.message}"


@dataclass(frozen=True)
class ExecutionOutcome:
    """Base for all outcome variants."""
    kind: ClassVar[str] = ""

    @property
    def correctable(self) -> bool:
        return False

    def describe(self) -> str:
        return self.kind


@dataclass(frozen=True)
class Success(ExecutionOutcome):
    kind: ClassVar[str] = SUCCESS
    output: str = ""

    def describe(self) -> str:
        return "Execution succeeded"


@dataclass(frozen=True)
class CompilationFailure(ExecutionOutcome):
    kind: ClassVar[str] = COMPILATION_FAILURE
    diagnostics: Tuple[Diagnostic, ...] = ()

    @property
    def correctable(self) -> bool:
        return True

    @property
    def diagnostics_text(self) -> str:
        """Diagnostics in engine order, one per line."""
        return "\n".join(str(d) for d in self.diagnostics)

    def describe(self) -> str:
        return f"Compilation errors:\n{self.diagnostics_text}"


@dataclass(frozen=True)
class RuntimeFailure(ExecutionOutcome):
    kind: ClassVar[str] = RUNTIME_FAILURE
    fault: str = ""

    def describe(self) -> str:
        return f"An error occurred during execution: {self.fault}"


@dataclass(frozen=True)
class TimedOut(ExecutionOutcome):
    kind: ClassVar[str] = TIMED_OUT
    seconds: float = 0.0

    def describe(self) -> str:
        return f"Execution timed out after {self.seconds:g} seconds"


@dataclass(frozen=True)
class SecurityRejected(ExecutionOutcome):
    kind: ClassVar[str] = SECURITY_REJECTED
    pattern: str = ""

    def describe(self) -> str:
        return f"Security Error: code contains potentially dangerous operation: {self.pattern}"


@dataclass(frozen=True)
class Cancelled(ExecutionOutcome):
    kind: ClassVar[str] = CANCELLED
    reason: str = "stop requested"

    def describe(self) -> str:
        return f"Execution cancelled: {self.reason}"
