# errors.py
# Exception hierarchy for the step-graph engine.
#
# Only the fatal kinds escape a step: compile, scheduling, oracle transport,
# iteration budget and unsupported executors. Tool failures,
# malformed outputs and invariant failures are converted into in-band
# signal and never raised out of the execution loop.


class StepGraphError(Exception):
    """Base class for every error raised by stepgraph."""


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------


class CompileError(StepGraphError):
    """Raised when a step-graph draft is malformed. The run never starts."""


class SchedulingError(StepGraphError):
    """Raised when a graph cannot be fully ordered (cycle or dangling edge)."""


class PatchError(StepGraphError):
    """Raised when a patch cannot be spliced into a graph."""


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class OracleError(StepGraphError):
    """Raised when the reasoning provider fails. Always fatal, never retried."""


class IterationBudgetExceeded(StepGraphError):
    """Raised when a step exhausts its negotiation rounds without a result."""

    def __init__(self, step_id: str, max_iterations: int) -> None:
        super().__init__(
            f"Iteration budget exceeded for step '{step_id}' "
            f"({max_iterations} rounds without a final JSON result)."
        )
        self.step_id = step_id
        self.max_iterations = max_iterations


class UnsupportedExecutorError(StepGraphError):
    """Raised when a step declares an executor the engine cannot run yet."""


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class GraphUnwrapError(StepGraphError):
    """Raised when a JSON document does not contain a step graph."""


class InputFileError(StepGraphError):
    """Raised when a seeded input file is unreadable, too large or invalid."""
