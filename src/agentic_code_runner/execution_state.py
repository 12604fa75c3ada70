"""State for the self-correcting execution loop."""

from dataclasses import dataclass, field
from typing import List, Optional

from agentic_code_runner.constants import MAX_RETRY_BUDGET, MIN_RETRY_BUDGET
from agentic_code_runner.outcomes import ExecutionOutcome


@dataclass(frozen=True)
class Attempt:
    sequence: int
    code: str
    remaining_budget: int


@dataclass
class LoopState:
    query: str
    code: str
    retry_budget: int
    remaining_budget: int = field(init=False)
    attempts: List[Attempt] = field(default_factory=list)
    outcomes: List[ExecutionOutcome] = field(default_factory=list)
    correction_calls: int = 0
    status: str = "PENDING"  # PENDING | SANITIZING | EXECUTING | CORRECTING | SUCCEEDED | TERMINATED
    reason: Optional[str] = None
    output: Optional[str] = None

    def __post_init__(self):
        if not MIN_RETRY_BUDGET <= self.retry_budget <= MAX_RETRY_BUDGET:
            raise ValueError(
                f"retry_budget must be between {MIN_RETRY_BUDGET} and "
                f"{MAX_RETRY_BUDGET}, got {self.retry_budget}"
            )
        self.remaining_budget = self.retry_budget

    def next_attempt(self) -> Attempt:
        """Open a new attempt for the current code."""
        sequence = self.attempts[-1].sequence + 1 if self.attempts else 1
        attempt = Attempt(sequence=sequence, code=self.code, remaining_budget=self.remaining_budget)
        self.attempts.append(attempt)
        return attempt

    def terminate(self, reason: str) -> None:
        self.status = "TERMINATED"
        self.reason = reason

    @property
    def done(self) -> bool:
        return self.status in ("SUCCEEDED", "TERMINATED")

    @property
    def last_outcome(self) -> Optional[ExecutionOutcome]:
        return self.outcomes[-1] if self.outcomes else None

    @property
    def trace(self) -> List[str]:
        """Outcome kinds in attempt order."""
        return [o.kind for o in self.outcomes]
