# compiler.py
# Static validation of step-graph drafts.
#
# Checks per entry only: the map key equals the contract's own step_id and
# outputs_schema is non-empty. Graph shape (cycles, dangling edges) is the
# scheduler's job.

from typing import Any

from pydantic import ValidationError

from stepgraph.errors import CompileError
from stepgraph.models import StepGraph
from stepgraph.verify import parse_invariants


def compile_graph(draft: StepGraph | dict[str, Any]) -> StepGraph:
    """
    Validate a draft and return it unchanged.

    Accepts a StepGraph or its JSON-shaped dict. Fails fast on the first
    violation, naming the offending step id.
    """
    if isinstance(draft, StepGraph):
        graph = draft
    else:
        try:
            graph = StepGraph.model_validate(draft)
        except ValidationError as exc:
            raise CompileError(f"Step graph draft is malformed: {exc}") from exc

    for key, step in graph.steps.items():
        if key != step.step_id:
            raise CompileError(f"step_id mismatch for {key} (contract says {step.step_id!r})")
        if not step.outputs_schema:
            raise CompileError(f"outputs_schema missing for {key}")
        # Parsed here so every expression is cached before the run starts.
        parse_invariants(step.invariants)

    return graph
