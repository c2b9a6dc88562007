# branching.py
# Maps a failed invariant's intent to a small corrective subgraph.
# Pure lookup: unknown intents yield an empty graph (no remediation).

from stepgraph.models import StepContract, StepGraph, StepInputs
from stepgraph.verify import DEEPEN_SEARCH, REVISE_OUTPUT


def _deepen_search(failing: StepContract) -> StepGraph:
    step = StepContract(
        step_id="search_more",
        executor="reactive",
        goal="Find additional high-quality sources to raise confidence.",
        inputs=StepInputs(
            required=[f"{failing.step_id}.notes"],
            optional=["workflow_definition"],
        ),
        outputs_schema={"sources": "string[]", "confidence": "number", "notes": "string"},
        determinism="low",
        invariants=["len(sources)>=3", "confidence>=0.75"],
    )
    return StepGraph(steps={step.step_id: step})


def _revise_output(failing: StepContract) -> StepGraph:
    step_id = f"{failing.step_id}_revise"
    checks = "; ".join(failing.invariants) or "none"
    step = StepContract(
        step_id=step_id,
        executor="reactive",
        goal=(
            f"Revise the outputs of step '{failing.step_id}' so they satisfy: {checks}. "
            f"Original goal: {failing.goal}"
        ),
        inputs=StepInputs(
            required=[f"{failing.step_id}.{field}" for field in failing.outputs_schema],
        ),
        outputs_schema=dict(failing.outputs_schema),
        determinism="low",
    )
    return StepGraph(steps={step_id: step})


BRANCHES = {
    DEEPEN_SEARCH: _deepen_search,
    REVISE_OUTPUT: _revise_output,
}


def branch(intent: str | None, failing: StepContract) -> StepGraph:
    """Corrective subgraph for `intent`, or an empty graph when none is known."""
    builder = BRANCHES.get(intent or "")
    if builder is None:
        return StepGraph()
    return builder(failing)
